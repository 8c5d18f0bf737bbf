from datetime import datetime, timezone


def utc_now() -> datetime:
    # Naive UTC at millisecond precision, matching what pymongo hands back from the store
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)
