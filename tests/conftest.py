"""Pytest fixtures for jewelcart tests."""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from jewelcart.config import AppConfig
from jewelcart.dispatcher import Dispatcher
from jewelcart.document_store import DocumentStore
from jewelcart.fulfillment import FulfillmentService
from jewelcart.models import CustomerSnapshot, LineItem
from jewelcart.outbox import OutboundQueue
from jewelcart.settings_store import SettingsStore
from jewelcart.transport import DeliveryResult, OutgoingEmail


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeSleep:
    """Records requested sleeps and moves the clock instead of blocking."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds=seconds)


class RecordingTransport:
    """In-memory transport; queue failures with ``fail_next``."""

    name = "recording"

    def __init__(self):
        self.sent: list[OutgoingEmail] = []
        self.attempted: list[OutgoingEmail] = []
        self._failures: list[DeliveryResult] = []

    def fail_next(self, count: int = 1, error: str = "421 try later", transient: bool = True) -> None:
        self._failures.extend(DeliveryResult.failure(error, transient) for _ in range(count))

    def send(self, email: OutgoingEmail) -> DeliveryResult:
        self.attempted.append(email)
        if self._failures:
            return self._failures.pop(0)
        self.sent.append(email)
        return DeliveryResult.ok(f"rec-{len(self.sent)}")

    def subjects(self) -> list[str]:
        return [e.subject for e in self.sent]


@pytest.fixture
def temp_dir():
    """Create a temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_dir):
    return DocumentStore(temp_dir / "data")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(clock):
    return FakeSleep(clock)


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def config(temp_dir):
    return AppConfig(data_dir=temp_dir / "data", store_url="https://shop.example")


@pytest.fixture
def queue(store, clock):
    return OutboundQueue(store, clock=clock)


@pytest.fixture
def dispatcher(queue, transport, store, fake_sleep, config):
    return Dispatcher(
        queue,
        transport,
        SettingsStore(store),
        store_url=config.store_url,
        max_attempts=3,
        retry_delay=timedelta(minutes=5),
        sleep=fake_sleep,
    )


@pytest.fixture
def service(store, dispatcher, config):
    """FulfillmentService with seeded settings/templates, a 10.00 fee and free shipping from 100."""
    svc = FulfillmentService(store, dispatcher, config)
    svc.startup()
    settings = svc.settings.load()
    settings.standard_shipping_fee = 10.0
    settings.free_shipping_threshold = 100.0
    svc.settings.save(settings)
    return svc


@pytest.fixture
def products(store):
    """Two products with stock."""
    store.products.insert_many(
        [
            {"id": "ring-1", "name": "Gold Ring", "price": 40.0, "stock": 5, "sold": 0},
            {"id": "chain-1", "name": "Silver Chain", "price": 25.0, "stock": 10, "sold": 1},
        ]
    )
    return store.products


def make_customer(**overrides) -> CustomerSnapshot:
    data = {
        "first_name": "Ada",
        "last_name": "Stone",
        "email": "ada@example.com",
        "phone": "5551234567",
        "address": "12 Main Street",
        "city": "Trenton",
        "zip_code": "08601",
    }
    data.update(overrides)
    return CustomerSnapshot(**data)


def make_items(*lines: tuple[str, float, int]) -> list[LineItem]:
    """Build line items from (product_id, price, quantity) tuples."""
    if not lines:
        lines = (("ring-1", 40.0, 2),)
    return [
        LineItem(product_id=pid, name=f"Item {pid}", price=price, quantity=qty)
        for pid, price, qty in lines
    ]
