"""Tests for admin notifications."""

from jewelcart.notifications import NotificationStore


class TestNotificationStore:
    def test_list_recent_newest_first_and_limited(self, store):
        notifications = NotificationStore(store)
        for i in range(25):
            notifications.create(f"Title {i}", "Message", type="order")

        recent = notifications.list_recent()
        assert len(recent) == 20
        assert recent[0].title == "Title 24"

    def test_mark_one_read(self, store):
        notifications = NotificationStore(store)
        first = notifications.create("A", "m")
        notifications.create("B", "m")

        assert notifications.mark_read(first.id) == 1
        read = {n.title: n.is_read for n in notifications.list_recent()}
        assert read == {"A": True, "B": False}

    def test_mark_all_read(self, store):
        notifications = NotificationStore(store)
        notifications.create("A", "m")
        notifications.create("B", "m")

        assert notifications.mark_read("all") == 2
        assert notifications.mark_read("all") == 0

    def test_mark_missing(self, store):
        assert NotificationStore(store).mark_read("missing") == 0
