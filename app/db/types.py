"""
Column types that behave the same on PostgreSQL and SQLite.
"""
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import TIMESTAMP, BigInteger, Integer, TypeDecorator

# SQLite only autoincrements INTEGER PRIMARY KEY columns
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp normalised to UTC.

    PostgreSQL keeps the offset natively; SQLite stores naive text, so values
    are written as naive UTC and re-tagged with UTC when read back.
    """

    impl = TIMESTAMP(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
