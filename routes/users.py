from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from models.user import UserModel
from routes.deps import get_current_user, get_db
from logging_config import get_logger

router = APIRouter(prefix="/api/users", tags=["Users"])
logger = get_logger("users")

PUBLIC_FIELDS = {"_id": 0, "id": 1, "name": 1, "email": 1, "avatar": 1, "role": 1}


@router.get("")
async def list_users(
    search: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db)
):
    """List users for member pickers and mention autocomplete"""
    query = {}
    if search:
        query["name"] = {"$regex": search, "$options": "i"}
    return await db.users.find(query, PUBLIC_FIELDS).sort("name", 1).limit(limit).to_list(limit)


@router.get("/me")
async def get_me(current_user: UserModel = Depends(get_current_user)):
    return current_user.public()


@router.get("/{user_id}")
async def get_user(user_id: str, current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    user = await db.users.find_one({"id": user_id}, PUBLIC_FIELDS)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user
