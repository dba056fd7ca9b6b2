import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agentfails.chain import ChainUnavailable, EventLog, ReceiptStatus, TransactionReceipt
from agentfails.config import Settings, get_settings
from agentfails.db import Base, get_db
from agentfails.main import create_app
from agentfails.members import get_chain_reader
from agentfails.payments import TRANSFER_TOPIC

USDC = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
COLLECTOR = "0x615e3faa99dd7de64812128a953215a09509f16a"
PAYER = "0xAA00000000000000000000000000000000000001"
OTHER = "0xbb00000000000000000000000000000000000002"
TX = "0x" + "deadbeef" * 8
TX2 = "0x" + "cafebabe" * 8


def _topic(address: str) -> bytes:
    return bytes(12) + bytes.fromhex(address[2:])


def transfer_log(amount: int, sender: str = PAYER, recipient: str = COLLECTOR, token: str = USDC) -> EventLog:
    return EventLog(
        emitter=token.lower(),
        topics=(TRANSFER_TOPIC, _topic(sender), _topic(recipient)),
        data=amount.to_bytes(32, "big"),
    )


def receipt(*logs: EventLog, status: ReceiptStatus = ReceiptStatus.SUCCESS) -> TransactionReceipt:
    return TransactionReceipt(status=status, logs=tuple(logs))


class FakeReader:
    """In-memory stand-in for ChainReader."""

    def __init__(self):
        self.receipts = {}
        self.balances = {}
        self.calls = 0
        self.down = False

    def add(self, tx_hash: str, rcpt: TransactionReceipt) -> None:
        self.receipts[tx_hash.lower()] = rcpt

    def fetch_receipt(self, tx_hash: str):
        self.calls += 1
        if self.down:
            raise ChainUnavailable("RPC request failed")
        return self.receipts.get(tx_hash.lower())

    def balance_of(self, contract: str, owner: str) -> int:
        if self.down:
            raise ChainUnavailable("RPC request failed")
        return self.balances.get(owner.lower(), 0)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        jwt_secret="test-secret",
        admin_email="mod@agentfails.wtf",
        admin_password="hunter2",
    )


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def reader() -> FakeReader:
    return FakeReader()


@pytest.fixture
def client(settings, session_factory, reader):
    app = create_app(settings)

    def _db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_chain_reader] = lambda: reader
    return TestClient(app)
