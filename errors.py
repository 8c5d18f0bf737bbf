"""
Domain error taxonomy shared by the REST routers and the realtime gateway.

Services raise these; `main.py` maps them onto HTTP responses and the gateway
turns them into `*_error` events scoped to the acting connection.
"""

from functools import wraps

from pymongo.errors import DuplicateKeyError, PyMongoError


class CollabError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CollabError):
    """Bad input shape or empty content."""
    status_code = 400


class NotFoundError(CollabError):
    status_code = 404


class ForbiddenError(CollabError):
    """Not a member, not the sender, insufficient role."""
    status_code = 403


class ConflictError(CollabError):
    """Duplicate membership or pending invitation."""
    status_code = 409


class TransientStoreError(CollabError):
    """I/O failure against the durable store. Never retried inside the core."""
    status_code = 503


def store_call(func):
    """Re-raise driver failures (other than unique-index conflicts) as TransientStoreError."""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except DuplicateKeyError:
            raise
        except PyMongoError as e:
            raise TransientStoreError(f"Store operation failed: {e}") from e
    return wrapper
