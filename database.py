from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from logging_config import get_logger
from config import config
import certifi

logger = get_logger("database")

if not config.MONGO_URI:
    logger.error("MONGO_URI not found in configuration!")


class MongoConnection:
    """Owns the motor client. Connects on first use so importing the app never touches the network."""

    def __init__(self, uri: str, db_name: str):
        self.uri = uri
        self.db_name = db_name
        self._client = None

    def _connect(self):
        # Atlas needs the certifi bundle; local and CI servers run without TLS
        if config.ENV == "production":
            return AsyncIOMotorClient(self.uri, tlsCAFile=certifi.where())
        return AsyncIOMotorClient(self.uri)

    @property
    def database(self):
        if self._client is None:
            self._client = self._connect()
            logger.info(f"Connected to MongoDB database {self.db_name}", extra={"data": {"uri": self.uri[:20] + "..."}})
        return self._client[self.db_name]

    def use_client(self, motor_client):
        """Swap in an already-built client (e.g. an in-memory one for tests). The previous client is not closed."""
        self._client = motor_client

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None


client = MongoConnection(config.MONGO_URI, config.DB_NAME)


class Database:
    """`db.chats`, `db["chats"]`: collections resolved against whichever client is current."""

    def get_collection(self, name):
        return client.database[name]

    def __getattr__(self, name):
        if name.startswith("__"):
            raise AttributeError(name)
        return self.get_collection(name)

    def __getitem__(self, name):
        return self.get_collection(name)


db = Database()


class LazyCollection:
    """Module-level handle for scripts and auth lookups; resolves the collection per call."""

    def __init__(self, name):
        self.name = name

    def __getattr__(self, attr):
        return getattr(db.get_collection(self.name), attr)


users_collection = LazyCollection("users")


async def ensure_indexes():
    """Create the indexes the chat/membership code relies on. Safe to call repeatedly."""
    # Membership relations: one row per (entity, user)
    await db.chat_members.create_index([("chat_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    await db.chat_members.create_index([("user_id", ASCENDING)])
    await db.project_members.create_index([("project_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    await db.project_members.create_index([("user_id", ASCENDING)])
    await db.task_members.create_index([("task_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    await db.task_members.create_index([("user_id", ASCENDING)])

    # Exactly one chat per project / task, one personal chat per user pair
    await db.project_chats.create_index([("project_id", ASCENDING)], unique=True)
    await db.task_chats.create_index([("task_id", ASCENDING)], unique=True)
    await db.personal_chats.create_index([("pair_key", ASCENDING)], unique=True)

    # Keyset pagination: find({chat_id}).sort(created_at: -1, _id: -1)
    await db.messages.create_index([("chat_id", ASCENDING), ("created_at", DESCENDING), ("_id", DESCENDING)])

    # Unread count and listing
    await db.notifications.create_index([("user_id", ASCENDING), ("read", ASCENDING)])
    await db.notifications.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])

    await db.project_invitations.create_index([("invitee_id", ASCENDING), ("status", ASCENDING)])
    await db.tasks.create_index([("project_id", ASCENDING)])
    await db.users.create_index([("email", ASCENDING)], unique=True)

    logger.info("Database indexes ensured")
