"""Admin dashboard notifications."""

from .document_store import DocumentStore
from .models import AdminNotification

RECENT_LIMIT = 20


class NotificationStore:
    def __init__(self, store: DocumentStore):
        self._collection = store.notifications

    def create(
        self, title: str, message: str, type: str = "other", link: str | None = None
    ) -> AdminNotification:
        notification = AdminNotification.create(title, message, type=type, link=link)
        self._collection.insert(notification.to_dict())
        return notification

    def list_recent(self, limit: int = RECENT_LIMIT) -> list[AdminNotification]:
        """Newest first."""
        docs = self._collection.find(sort_key=lambda d: d.get("created_at", ""), reverse=True)
        return [AdminNotification.from_dict(d) for d in docs[:limit]]

    def mark_read(self, notification_id: str) -> int:
        """Mark one notification read, or every unread one when the ID is ``all``."""
        if notification_id == "all":
            return self._collection.update_many(lambda d: not d.get("is_read"), {"is_read": True})
        return 1 if self._collection.update(notification_id, {"is_read": True}) else 0
