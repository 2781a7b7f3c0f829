# utils/db_context.py
"""Per-request query deadlines (default / fast tiers) on top of the request session."""
from __future__ import annotations

import enum
import logging

from sqlalchemy import text
from sqlalchemy.orm import Session

from fastapi import Depends

from config import get_settings
from database import get_db

logger = logging.getLogger(__name__)


class QueryTier(str, enum.Enum):
    DEFAULT = "default"
    FAST = "fast"


def timeout_ms(tier: QueryTier) -> int:
    s = get_settings()
    if tier == QueryTier.FAST:
        return s.query_timeout_fast_ms
    return s.query_timeout_default_ms


def apply_deadline(db: Session, tier: QueryTier = QueryTier.DEFAULT) -> None:
    """
    Bound every statement of the current transaction.
    Postgres only (SET LOCAL dies with the transaction); other dialects: no-op.
    A cancelled statement surfaces as errors.Timeout via the DBAPIError handler.
    """
    if db.get_bind().dialect.name != "postgresql":
        return
    ms = int(timeout_ms(tier))
    db.execute(text(f"SET LOCAL statement_timeout = {ms}"))
    logger.debug("statement_timeout=%sms (%s)", ms, tier.value)


def deadline(tier: QueryTier = QueryTier.DEFAULT):
    """Dependency factory: ``db = Depends(deadline(QueryTier.FAST))``."""
    def dep(db: Session = Depends(get_db)) -> Session:
        apply_deadline(db, tier)
        return db

    return dep
