import asyncio
from typing import Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

from groupsettle.api.deps import get_group_service
from groupsettle.core.exceptions import PaymentRailError
from groupsettle.db.mongo import create_indexes
from groupsettle.integrations.identity import StaticIdentityResolver
from groupsettle.integrations.notifications import EventDispatcher
from groupsettle.main import app
from groupsettle.services.executor import ExecutionPolicy
from groupsettle.services.group_service import GroupService

TEST_DB = "groupsettle_test"
MEMBERS = ["A", "B", "C", "D", "E", "F"]


def acct(member_id: str) -> str:
    return f"acct-{member_id}"


class FakePaymentRail:
    """In-memory payment rail with scriptable failures."""

    def __init__(self):
        self.submissions = []
        self.confirmations = []
        self.transient = {}  # (from, to) -> retryable failures before success
        self.rejections = {}  # (from, to) -> non-retryable reason
        self.hangs = set()  # (from, to) pairs that never answer
        self.gate: Optional[asyncio.Event] = None
        self.submitted = asyncio.Event()
        self._seen_keys = {}

    def fail_transiently(self, from_member, to_member, times=1):
        self.transient[(acct(from_member), acct(to_member))] = times

    def reject(self, from_member, to_member, reason="insufficient funds"):
        self.rejections[(acct(from_member), acct(to_member))] = reason

    def hang(self, from_member, to_member):
        self.hangs.add((acct(from_member), acct(to_member)))

    def block(self):
        """Hold every submission until release() is called."""
        self.gate = asyncio.Event()

    def release(self):
        if self.gate is not None:
            self.gate.set()

    def submissions_for(self, from_member, to_member) -> List[tuple]:
        return [s for s in self.submissions if s[1] == acct(from_member) and s[2] == acct(to_member)]

    async def submit(self, amount, from_account, to_account, idempotency_key):
        self.submissions.append((amount, from_account, to_account, idempotency_key))
        self.submitted.set()
        pair = (from_account, to_account)

        if self.gate is not None:
            await self.gate.wait()
        if pair in self.hangs:
            await asyncio.sleep(3600)
        if self.transient.get(pair, 0) > 0:
            self.transient[pair] -= 1
            raise PaymentRailError("rail busy", retryable=True)
        if pair in self.rejections:
            raise PaymentRailError(self.rejections[pair], retryable=False)

        # same key, same reference: the rail never moves money twice
        return self._seen_keys.setdefault(idempotency_key, f"ref-{len(self._seen_keys) + 1}")

    async def confirm(self, reference):
        self.confirmations.append(reference)


class GatedIdentityResolver(StaticIdentityResolver):
    """Static resolver that waits for a gate before answering."""

    def __init__(self, addresses: Dict[str, str]):
        super().__init__(addresses)
        self.gate = asyncio.Event()
        self.called = asyncio.Event()

    async def resolve(self, member_id):
        self.called.set()
        await self.gate.wait()
        return await super().resolve(member_id)


class RecordingSink:
    def __init__(self):
        self.events = []

    async def publish(self, event):
        self.events.append(event)

    def types(self) -> List[str]:
        return [e.type for e in self.events]


@pytest_asyncio.fixture
async def test_db():
    """Fresh in-memory MongoDB database per test."""
    client = AsyncMongoMockClient()
    db = client[TEST_DB]
    await create_indexes(db)
    yield db


@pytest.fixture
def rail():
    return FakePaymentRail()


@pytest.fixture
def identity():
    return StaticIdentityResolver({m: acct(m) for m in MEMBERS})


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def policy():
    return ExecutionPolicy(timeout=0.2, max_attempts=3, backoff=0.01, concurrency=4)


@pytest.fixture
def make_service(test_db, rail, identity, sink, policy):
    """Factory for a GroupService wired to fakes; keyword overrides allowed."""
    def _make(**overrides):
        return GroupService(
            test_db,
            rail=overrides.get("rail", rail),
            identity=overrides.get("identity", identity),
            events=EventDispatcher([overrides.get("sink", sink)], timeout=1.0),
            policy=overrides.get("policy", policy),
            use_transactions=False,
        )
    return _make


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def gated_identity():
    return GatedIdentityResolver({m: acct(m) for m in MEMBERS})


@pytest_asyncio.fixture
async def group(service):
    """ACTIVE group of four members, admin A."""
    return await service.create_group("Trip", "A", ["B", "C", "D"])


@pytest_asyncio.fixture
async def api_client(service):
    """HTTP client against the app with the test service injected."""
    app.dependency_overrides[get_group_service] = lambda: service
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
