import asyncio
import sys
from database import users_collection
from routes.deps import create_access_token
from logging_config import setup_logging

setup_logging()


async def get_token(email: str = None):
    query = {"email": email} if email else {}
    user = await users_collection.find_one(query)
    if user:
        token = create_access_token({"sub": user["id"]})
        print(f"TOKEN={token}")
        print(f"USER_ID={user['id']}")
        print(f"WS_URL=ws://localhost:8000/ws?token={token}")
    else:
        print("No users found")

if __name__ == "__main__":
    asyncio.run(get_token(sys.argv[1] if len(sys.argv) > 1 else None))
