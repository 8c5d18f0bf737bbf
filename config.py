import os
from dotenv import load_dotenv

load_dotenv()

DEV_SECRET_KEY = "collabhub-dev-only-secret"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _secret_key(env: str) -> str:
    key = os.getenv("SECRET_KEY")
    if key:
        return key
    if env == "production":
        raise ValueError("SECRET_KEY must be set when ENV=production")
    return DEV_SECRET_KEY


class Config:
    ENV = os.getenv("ENV", "development")  # development | testing | production

    # Storage
    MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017/")
    DB_NAME = os.getenv("DB_NAME", "collabhub")

    # Tokens are minted by the identity service with this shared key
    SECRET_KEY = _secret_key(ENV)
    ALGORITHM = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES = _env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7)

    # Links in invitation emails point here
    FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
    RESEND_API_KEY = os.getenv("RESEND_API_KEY")
    MAIL_FROM = os.getenv("MAIL_FROM", "team@collabhub.app")

    # Chat
    CHAT_MESSAGE_PAGE_LIMIT = _env_int("CHAT_MESSAGE_PAGE_LIMIT", 50)
    CHAT_MESSAGE_PAGE_MAX = 200
    CHAT_MESSAGE_MAX_LENGTH = _env_int("CHAT_MESSAGE_MAX_LENGTH", 5000)
    # Off: removing a project/task member leaves their chat membership (and history access) intact
    CHAT_REVOKE_REMOVED_MEMBERS = _env_bool("CHAT_REVOKE_REMOVED_MEMBERS", False)

    INVITATION_EXPIRY_DAYS = _env_int("INVITATION_EXPIRY_DAYS", 7)

    # Deadline reminders and cleanup sweeps (automations/reminders.py)
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", ENV != "testing")


config = Config()
