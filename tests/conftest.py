import pytest
from httpx import AsyncClient, ASGITransport
import os
from datetime import timedelta

# Set up test environment variables before anything else
os.environ["ENV"] = "testing"
os.environ["DB_NAME"] = "collabhub_test"
os.environ["SECRET_KEY"] = "test_secret_key_12345"
os.environ["SCHEDULER_ENABLED"] = "false"

from config import config
config.ENV = "testing"
config.RESEND_API_KEY = None

from mongomock_motor import AsyncMongoMockClient

from main import app, install_services
from database import client, db as database, ensure_indexes
from models.user import UserModel
from routes.deps import create_access_token


class FakeWebSocket:
    """Stands in for a starlette WebSocket when driving the gateway directly."""

    def __init__(self, incoming=None):
        self.sent = []
        self.accepted = False
        self.close_code = None
        self.calls = []
        # ASGI receive messages handed to `serve`; a disconnect follows the last one
        self.incoming = list(incoming or [])

    async def accept(self):
        self.accepted = True
        self.calls.append("accept")

    async def close(self, code: int = 1000):
        self.close_code = code
        self.calls.append("close")

    async def receive(self):
        if self.incoming:
            return self.incoming.pop(0)
        return {"type": "websocket.disconnect", "code": 1000}

    async def send_json(self, data):
        self.sent.append(data)

    def events(self, name=None):
        return [frame for frame in self.sent if name is None or frame["event"] == name]


def token_for(user: dict) -> str:
    return create_access_token(data={"sub": user["id"]}, expires_delta=timedelta(minutes=60))


def headers_for(user: dict) -> dict:
    return {"Authorization": f"Bearer {token_for(user)}"}


async def _insert_user(db, **fields) -> dict:
    user = UserModel(**fields).model_dump()
    await db.users.insert_one(user)
    user.pop("_id", None)
    return user


@pytest.fixture(scope="function", autouse=True)
async def db():
    """Fresh in-memory store and fresh realtime services for every test."""
    client.use_client(AsyncMongoMockClient())
    await ensure_indexes()
    install_services(app)
    yield database


@pytest.fixture(scope="function")
def gateway(db):
    return app.state.gateway


@pytest.fixture(scope="function")
def events(db):
    return app.state.events


@pytest.fixture(scope="function")
def dispatcher(db):
    return app.state.dispatcher


@pytest.fixture(scope="function")
async def async_client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as test_client:
        yield test_client


@pytest.fixture(scope="function")
async def test_user(db):
    return await _insert_user(db, id="test_owner_id", email="owner@collabhub.io", name="Test Owner", role="admin")


@pytest.fixture(scope="function")
async def jane(db):
    return await _insert_user(db, id="jane_id", email="jane@collabhub.io", name="Jane Doe")


@pytest.fixture(scope="function")
async def bob(db):
    return await _insert_user(db, id="bob_id", email="bob@collabhub.io", name="bob")


@pytest.fixture(scope="function")
def auth_headers(test_user):
    return headers_for(test_user)


@pytest.fixture(scope="function")
def jane_headers(jane):
    return headers_for(jane)


@pytest.fixture(scope="function")
def bob_headers(bob):
    return headers_for(bob)


@pytest.fixture(scope="function")
def connect(gateway):
    """Open an authenticated gateway connection for a user. Returns (connection, websocket)."""
    async def _connect(user: dict):
        websocket = FakeWebSocket()
        connection = await gateway.open(websocket, token_for(user))
        assert connection is not None
        return connection, websocket
    return _connect
