from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from datetime import datetime, timedelta, timezone
from typing import Optional
from database import db as raw_db, users_collection
from models.user import UserModel
from logging_config import get_logger
from config import config

logger = get_logger("auth")

# Tokens are issued by the identity service; this API only verifies them
bearer_token = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign `data` (which must carry `sub` = user id) as an HS256 JWT."""
    claims = dict(data)
    lifetime = expires_delta if expires_delta is not None else timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims["exp"] = datetime.now(timezone.utc) + lifetime
    return jwt.encode(claims, config.SECRET_KEY, algorithm=config.ALGORITHM)


def verify_token(token: str) -> Optional[str]:
    """Return the user id a token was issued for, or None if it does not verify."""
    try:
        claims = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError as e:
        logger.warning(f"Token rejected: {e}")
        return None
    user_id = claims.get("sub")
    if not user_id:
        logger.warning("Token verified but carries no 'sub' claim")
        return None
    return user_id


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(token: Optional[str] = Depends(bearer_token)) -> UserModel:
    user_id = verify_token(token) if token else None
    if user_id is None:
        raise _unauthorized()

    user = await users_collection.find_one({"id": user_id})
    if user is None:
        logger.warning("Token for unknown user", extra={"data": {"user_id": user_id}})
        raise _unauthorized()
    return UserModel(**user)


async def get_db(current_user: UserModel = Depends(get_current_user)):
    """The document store, for authenticated requests only."""
    return raw_db


# ─── Realtime / notification services (built in main.install_services) ───────

def get_gateway(request: Request):
    return request.app.state.gateway

def get_dispatcher(request: Request):
    return request.app.state.dispatcher


# ─── Centralized membership helpers ──────────────────────────────────────────

async def get_project_membership(db, project_id: str, user_id: str) -> dict:
    """Project must exist and `user_id` must belong to it. Returns the membership row."""
    project = await db.projects.find_one({"id": project_id})
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    membership = await db.project_members.find_one({"project_id": project_id, "user_id": user_id})
    if not membership:
        logger.warning(f"Project access denied: not a member", extra={"data": {"project_id": project_id}})
        raise HTTPException(status_code=403, detail="Not a member of this project")
    return membership


def require_project_role(membership: dict, *allowed_roles):
    if membership.get("role") not in allowed_roles:
        logger.warning(
            f"Access denied: requires {allowed_roles}",
            extra={"data": {"project_id": membership.get("project_id"), "role": membership.get("role")}}
        )
        raise HTTPException(status_code=403, detail="Insufficient permissions")
