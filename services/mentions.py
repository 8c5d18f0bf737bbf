"""
@mention parsing and chat_ping fan-out.

Supported forms, in precedence order at any given `@`:
    @"Full Name"   @'Full Name'   @username
Tokens match user display names exactly (case-sensitive).
"""

import re
from typing import List, NamedTuple

from constants import NotificationTypes
from logging_config import get_logger

logger = get_logger("mentions")

_MENTION = re.compile(r"""@(?:"([^"]+)"|'([^']+)'|(\w+))""")


class MentionToken(NamedTuple):
    raw: str           # Text as written, including the @ and quotes
    display_name: str  # Name to resolve


def tokenize_mentions(content: str) -> List[MentionToken]:
    """Single pass over `content`; duplicates (by display name) are dropped, first occurrence kept."""
    tokens: List[MentionToken] = []
    seen = set()
    for match in _MENTION.finditer(content or ""):
        name = next(group for group in match.groups() if group is not None)
        if name in seen:
            continue
        seen.add(name)
        tokens.append(MentionToken(raw=match.group(0), display_name=name))
    return tokens


async def resolve_mentions(db, tokens: List[MentionToken], sender_id: str) -> List[dict]:
    """Users named by `tokens`, excluding the sender. Unresolved tokens are skipped; each user appears once."""
    resolved = []
    seen_ids = set()
    for token in tokens:
        user = await db.users.find_one({"name": token.display_name}, {"_id": 0, "id": 1, "name": 1})
        if not user:
            logger.debug(f"No user for mention {token.raw}")
            continue
        if user["id"] == sender_id or user["id"] in seen_ids:
            continue
        seen_ids.add(user["id"])
        resolved.append(user)
    return resolved


async def notify_mentions(db, dispatcher, chat_id: str, sender_id: str, sender_name: str, content: str) -> int:
    """Send one chat_ping per mentioned user. Never raises; returns how many notifications were created."""
    try:
        tokens = tokenize_mentions(content)
        if not tokens:
            return 0
        users = await resolve_mentions(db, tokens, sender_id)
    except Exception as e:
        logger.error(f"Mention resolution failed: {e}", exc_info=True, extra={"data": {"chat_id": chat_id}})
        return 0

    sent = 0
    for user in users:
        try:
            await dispatcher.create_notification(
                user["id"],
                NotificationTypes.CHAT_PING,
                "Chat Mention",
                f"{sender_name} mentioned you in chat",
                related_id=chat_id,
                metadata={"chat_id": chat_id, "sender_name": sender_name, "sender_id": sender_id},
            )
            sent += 1
        except Exception as e:
            logger.error(f"Mention notification failed: {e}", extra={"data": {"chat_id": chat_id, "user_id": user["id"]}})
    if sent:
        logger.info("Mention notifications sent", extra={"data": {"chat_id": chat_id, "count": sent}})
    return sent
