import asyncio
from database import users_collection
from models.user import UserModel
from dotenv import load_dotenv

# Load environment variables (for DB connection string)
load_dotenv()

DEV_USERS = [
    {"name": "Priya Raman", "email": "priya@test.com", "role": "admin"},
    {"name": "Jane Doe", "email": "jane@test.com", "role": "member"},
    {"name": "bob", "email": "bob@test.com", "role": "member"},
    {"name": "Arjun Mehta", "email": "arjun@test.com", "role": "member"},
]


async def seed_users():
    print("🌱 Seeding dev users...")

    count = 0
    for user_data in DEV_USERS:
        if await users_collection.find_one({"email": user_data["email"]}):
            print(f"⚠️ Skipped (Exists): {user_data['name']}")
            continue
        user = UserModel(
            avatar=f"https://api.dicebear.com/7.x/avataaars/svg?seed={user_data['email']}",
            **user_data
        )
        await users_collection.insert_one(user.model_dump())
        print(f"✅ Added: {user.name}")
        count += 1

    print(f"\n🎉 Seeding Complete! Added {count} new users. Use get_test_token.py <email> for a token.")

if __name__ == "__main__":
    asyncio.run(seed_users())
