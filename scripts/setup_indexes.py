import sys
import os
import asyncio

# Add parent directory to path to import database
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import ensure_indexes
from logging_config import setup_logging, get_logger

setup_logging()
logger = get_logger("setup_indexes")


async def create_indexes():
    print("🚀 Ensuring indexes...")
    await ensure_indexes()
    print("✨ Membership, chat, message and notification indexes are in place")


if __name__ == "__main__":
    asyncio.run(create_indexes())
