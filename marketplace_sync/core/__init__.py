"""Core application modules."""

from marketplace_sync.core.config import settings
from marketplace_sync.core.currency import format_currency, round_currency, to_decimal
from marketplace_sync.core.encryption import EncryptionError, TokenCipher
from marketplace_sync.core.idempotency import (
    IdempotencyGuard,
    InMemoryIdempotencyCache,
    RedisIdempotencyCache,
)
from marketplace_sync.core.logging import get_logger, setup_logging, audit_logger
from marketplace_sync.core.time import utcnow, format_datetime, parse_iso

__all__ = [
    "settings",
    "get_logger",
    "setup_logging",
    "audit_logger",
    "utcnow",
    "format_datetime",
    "parse_iso",
    "format_currency",
    "round_currency",
    "to_decimal",
    "EncryptionError",
    "TokenCipher",
    "IdempotencyGuard",
    "InMemoryIdempotencyCache",
    "RedisIdempotencyCache",
]
