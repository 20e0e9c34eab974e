"""
Pytest fixtures for test database, client, collaborators and authentication.

Each test gets its own SQLite file database (through aiosqlite) so that
concurrent sessions really use separate connections. The payment gateway
and the notifier are in-memory doubles injected through constructors and
`app.dependency_overrides`.
"""

import hashlib
import hmac
import json
import os
import tempfile
import time
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

# Settings are cached on first import: configure the environment first
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{tempfile.mkdtemp(prefix='retreat-booking-')}/app.db"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["REDIS_ENABLED"] = "false"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ.pop("SMTP_HOST", None)

import pytest_asyncio  # noqa: E402
from httpx import AsyncClient, ASGITransport  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from retreat_booking.main import app  # noqa: E402
from retreat_booking.core.exceptions import UpstreamFailure  # noqa: E402
from retreat_booking.core.security import ROLE_ADMIN, create_access_token  # noqa: E402
from retreat_booking.db.base import Base, utcnow  # noqa: E402
from retreat_booking.db.session import get_db  # noqa: E402
from retreat_booking.models.retreat import Retreat, RetreatSession  # noqa: E402
from retreat_booking.schemas.booking import BookingCreate  # noqa: E402
from retreat_booking.schemas.payment import PaymentIntent, WebhookEvent  # noqa: E402
from retreat_booking.services.booking_service import BookingService  # noqa: E402
from retreat_booking.services.interfaces.notifier import Notifier  # noqa: E402
from retreat_booking.services.interfaces.payment_gateway import PaymentGateway  # noqa: E402
from retreat_booking.services.payment_service import PaymentService  # noqa: E402
from retreat_booking.services.reconciliation_service import ReconciliationService  # noqa: E402
from retreat_booking.services.strategy_factory import get_notifier, get_payment_gateway  # noqa: E402
from retreat_booking.services.stripe_gateway import construct_webhook_event  # noqa: E402

WEBHOOK_SECRET = "whsec_test_secret"

SESSION_START = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
SESSION_END = datetime(2025, 6, 5, 17, 0, tzinfo=timezone.utc)
SECOND_SESSION_START = datetime(2025, 9, 10, 9, 0, tzinfo=timezone.utc)
SECOND_SESSION_END = datetime(2025, 9, 14, 17, 0, tzinfo=timezone.utc)
SESSION_PRICE = 50000  # 500.00 EUR


# ----------------------------------------------------------------------
# Collaborator doubles
# ----------------------------------------------------------------------

class FakeGateway(PaymentGateway):
    """In-memory payment gateway. Webhook verification is the real Stripe one."""

    def __init__(self):
        self.intents: dict[str, PaymentIntent] = {}
        self.cancelled: list[str] = []
        self.fail_cancel = False
        self.fail_list = False
        # Awaited with the intent id when a cancel arrives, before it is applied
        self.on_cancel = None
        self._counter = 0

    async def create_payment_intent(self, amount: int, currency: str, metadata: dict[str, str]) -> PaymentIntent:
        self._counter += 1
        intent_id = f"pi_test_{self._counter}"
        intent = PaymentIntent(
            id=intent_id,
            status="requires_payment_method",
            amount=amount,
            currency=currency,
            metadata=metadata,
            client_secret=f"{intent_id}_secret",
            created_at=utcnow(),
        )
        self.intents[intent_id] = intent
        return intent

    async def get_payment_intent(self, payment_intent_id: str) -> PaymentIntent:
        if payment_intent_id not in self.intents:
            raise UpstreamFailure(f"No such payment_intent: {payment_intent_id}")
        return self.intents[payment_intent_id]

    async def cancel_payment_intent(self, payment_intent_id: str) -> bool:
        if self.fail_cancel:
            raise UpstreamFailure("Stripe cancel_payment_intent timed out")
        if self.on_cancel is not None:
            await self.on_cancel(payment_intent_id)
        self.cancelled.append(payment_intent_id)
        intent = self.intents.get(payment_intent_id)
        if intent is None or intent.status in ("canceled", "succeeded"):
            return False
        self.intents[payment_intent_id] = intent.model_copy(update={"status": "canceled"})
        return True

    async def list_successful_payments(self, since: datetime) -> list[PaymentIntent]:
        if self.fail_list:
            raise UpstreamFailure("Stripe list_successful_payments failed")
        return [
            intent for intent in self.intents.values()
            if intent.status == "succeeded" and intent.amount_received > 0 and intent.created_at >= since
        ]

    def verify_webhook_signature(self, payload: bytes, signature: str, secret: str) -> WebhookEvent:
        return construct_webhook_event(payload, signature, secret)

    def add_payment(
        self,
        amount: int,
        metadata: Optional[dict[str, str]] = None,
        created_at: Optional[datetime] = None,
        status: str = "succeeded",
    ) -> PaymentIntent:
        """Register a payment made outside our checkout flow."""
        self._counter += 1
        intent = PaymentIntent(
            id=f"pi_test_{self._counter}",
            status=status,
            amount=amount,
            amount_received=amount if status == "succeeded" else 0,
            currency="eur",
            metadata=metadata or {},
            created_at=created_at or utcnow(),
        )
        self.intents[intent.id] = intent
        return intent

    def succeed(self, payment_intent_id: str, created_at: Optional[datetime] = None) -> PaymentIntent:
        intent = self.intents[payment_intent_id]
        update = {"status": "succeeded", "amount_received": intent.amount}
        if created_at is not None:
            update["created_at"] = created_at
        self.intents[payment_intent_id] = intent.model_copy(update=update)
        return self.intents[payment_intent_id]


class RecordingNotifier(Notifier):
    def __init__(self):
        self.confirmations: list[tuple] = []
        self.alerts: list[tuple[str, str]] = []
        self.fail = False
        self.explode = False

    async def send_booking_confirmation(self, booking, retreat, attachment: bytes) -> bool:
        if self.explode:
            raise RuntimeError("mail server on fire")
        self.confirmations.append((booking.id, retreat.title, attachment))
        return not self.fail

    async def send_admin_alert(self, subject: str, body: str) -> bool:
        if self.explode:
            raise RuntimeError("mail server on fire")
        self.alerts.append((subject, body))
        return not self.fail


# ----------------------------------------------------------------------
# Database
# ----------------------------------------------------------------------

@pytest_asyncio.fixture(scope="function")
async def engine(tmp_path):
    """Fresh SQLite file database per test."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"timeout": 30},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


async def create_retreat(
    session_factory,
    title: str = "Alpine Retreat",
    capacity: int = 2,
    price: int = SESSION_PRICE,
    with_second_session: bool = False,
) -> Retreat:
    async with session_factory() as session:
        retreat = Retreat(title=title, address="12 Chemin des Alpes, Chamonix")
        retreat.sessions = [
            RetreatSession(
                start_at=SESSION_START,
                end_at=SESSION_END,
                capacity=capacity,
                price=price,
                arrival_time="09:00",
                departure_time="17:00",
            ),
        ]
        if with_second_session:
            retreat.sessions.append(RetreatSession(
                start_at=SECOND_SESSION_START,
                end_at=SECOND_SESSION_END,
                capacity=capacity,
                price=price,
            ))
        session.add(retreat)
        await session.commit()
        await session.refresh(retreat)
        return retreat


@pytest_asyncio.fixture
async def retreat(session_factory) -> Retreat:
    """Alpine Retreat: one session 2025-06-01..2025-06-05, capacity 2, 500.00 EUR."""
    return await create_retreat(session_factory)


def booking_payload(
    retreat_id: str,
    seat_count: int = 1,
    session_start: datetime = SESSION_START,
    session_end: datetime = SESSION_END,
    email: str = "anna@example.com",
) -> dict:
    return {
        "retreat_id": retreat_id,
        "session_start": session_start.isoformat(),
        "session_end": session_end.isoformat(),
        "seat_count": seat_count,
        "participants": [{"first_name": "Anna", "last_name": "Keller", "email": email}],
        "billing_address": {
            "address": "3 Rue du Lac",
            "city": "Annecy",
            "postal_code": "74000",
            "country": "France",
            "phone": "+33 6 12 34 56 78",
        },
        "notes": None,
    }


def booking_create(retreat_id: str, **kwargs) -> BookingCreate:
    return BookingCreate.model_validate(booking_payload(retreat_id, **kwargs))


# ----------------------------------------------------------------------
# Services
# ----------------------------------------------------------------------

@pytest_asyncio.fixture
async def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def booking_service(db_session, notifier) -> BookingService:
    return BookingService(db_session, notifier)


@pytest_asyncio.fixture
async def payment_service(db_session, gateway, booking_service) -> PaymentService:
    return PaymentService(db_session, gateway, booking_service)


@pytest_asyncio.fixture
async def reconciliation_service(db_session, gateway, notifier) -> ReconciliationService:
    return ReconciliationService(db_session, gateway, notifier)


# ----------------------------------------------------------------------
# Webhooks
# ----------------------------------------------------------------------

def sign_payload(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def payment_event(
    event_type: str,
    payment_intent_id: str,
    metadata: dict,
    amount: int = SESSION_PRICE,
    status: str = "succeeded",
) -> bytes:
    return json.dumps({
        "id": f"evt_{payment_intent_id}_{event_type.rsplit('.', 1)[-1]}",
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": payment_intent_id,
                "object": "payment_intent",
                "amount": amount,
                "amount_received": amount if status == "succeeded" else 0,
                "currency": "eur",
                "status": status,
                "created": int(time.time()),
                "client_secret": f"{payment_intent_id}_secret",
                "metadata": metadata,
            }
        },
    }).encode("utf-8")


# ----------------------------------------------------------------------
# HTTP
# ----------------------------------------------------------------------

@pytest_asyncio.fixture(scope="function")
async def client(session_factory, gateway, notifier) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client wired to the test database and collaborator doubles."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


def _headers(sub: str, **claims) -> dict:
    token = create_access_token(data={"sub": sub, **claims})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def auth_headers() -> dict:
    return _headers("user-1")


@pytest_asyncio.fixture
async def other_auth_headers() -> dict:
    return _headers("user-2")


@pytest_asyncio.fixture
async def admin_headers() -> dict:
    return _headers("admin-1", role=ROLE_ADMIN)
