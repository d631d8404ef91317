"""
Logging utilities for Numora custody with sensitive data masking.

This module provides logging utilities that automatically mask sensitive
data like private keys, seed phrases and bearer tokens from log messages.

Usage:
    from numora_custody.logging import configure_logging, mask_sensitive_data

    configure_logging(level=logging.INFO, json_format=True)

    logger.info("Persisting wallet", extra={"data": mask_sensitive_data({
        "user_id": "u_123",
        "hyperliquidPrivateKey": "0xabc...",  # Will be masked
    })})
"""
from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, FrozenSet, Optional, Sequence

from mnemonic import Mnemonic

MASK_PATTERN = "***REDACTED***"
MNEMONIC_MASK = "***MNEMONIC***"
MAX_LOG_MESSAGE_LENGTH = 10000

SENSITIVE_FIELDS: FrozenSet[str] = frozenset({
    "password",
    "secret",
    "token",
    "api_key",
    "private_key",
    "privatekey",
    "secret_key",
    "signing_key",
    "hyperliquidprivatekey",
    "hyperliquid_private_key",
    "mnemonic",
    "seed",
    "seed_phrase",
    "phrase",
    "access_token",
    "refresh_token",
    "authorization",
})

# Runs of twelve or more lowercase words; checked against the BIP-39 list
_WORD_RUN = re.compile(r"\b[a-z]{3,8}(?:\s+[a-z]{3,8}){11,}\b")
_HEX_PRIVATE_KEY = re.compile(r"\b0x[a-fA-F0-9]{64}\b")


@lru_cache(maxsize=1)
def _bip39_words() -> FrozenSet[str]:
    return frozenset(Mnemonic("english").wordlist)


# =============================================================================
# Sensitive Data Masking
# =============================================================================

def mask_value(value: str, show_chars: int = 4) -> str:
    """Mask a sensitive value, optionally showing first/last characters.

    Args:
        value: The value to mask
        show_chars: Number of characters to show at start and end

    Returns:
        Masked string
    """
    if not value or len(value) <= show_chars * 2:
        return MASK_PATTERN

    return f"{value[:show_chars]}...{value[-show_chars:]}"


def is_sensitive_key(key: str) -> bool:
    """Check if a key name indicates sensitive data.

    Address fields are deliberately not sensitive: public addresses and
    transaction hashes are safe to log.
    """
    key_lower = key.lower().replace("-", "_")
    if key_lower.endswith("address"):
        return False
    return key_lower in SENSITIVE_FIELDS or any(
        sensitive in key_lower
        for sensitive in ("secret", "password", "token", "key", "credential", "mnemonic", "seed")
    )


def mask_sensitive_data(
    data: Any,
    additional_fields: Optional[Sequence[str]] = None,
    mask_pattern: str = MASK_PATTERN,
    _depth: int = 0,
    _max_depth: int = 10,
) -> Any:
    """Recursively mask sensitive data in a data structure.

    Args:
        data: The data structure to mask (dict, list, or scalar)
        additional_fields: Additional field names to mask
        mask_pattern: Pattern to replace sensitive values with

    Returns:
        Copy of data with sensitive values masked
    """
    if _depth > _max_depth:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if is_sensitive_key(str(key)):
                result[key] = mask_pattern
            elif additional_fields and key in additional_fields:
                result[key] = mask_pattern
            else:
                result[key] = mask_sensitive_data(
                    value,
                    additional_fields,
                    mask_pattern,
                    _depth + 1,
                    _max_depth,
                )
        return result

    elif isinstance(data, (list, tuple)):
        return type(data)(
            mask_sensitive_data(
                item,
                additional_fields,
                mask_pattern,
                _depth + 1,
                _max_depth,
            )
            for item in data
        )

    elif isinstance(data, str):
        return mask_inline_patterns(data)

    return data


def _mask_word_run(match: re.Match) -> str:
    words = match.group(0).split()
    wordlist = _bip39_words()
    if all(word in wordlist for word in words):
        return MNEMONIC_MASK
    return match.group(0)


def mask_inline_patterns(text: str) -> str:
    """Mask sensitive patterns in free text.

    Handles patterns like:
    - BIP-39 seed phrases (12+ consecutive word-list words)
    - 32-byte hex private keys
    - Bearer tokens
    - URLs with credentials
    """
    if len(text) > MAX_LOG_MESSAGE_LENGTH:
        text = text[:MAX_LOG_MESSAGE_LENGTH] + "...[truncated]"

    text = _WORD_RUN.sub(_mask_word_run, text)

    patterns = [
        (r'(Bearer\s+)[a-zA-Z0-9._-]+', r'\1***'),
        (r'(https?://)[^:/\s]+:[^@/\s]+@', r'\1***:***@'),
    ]
    for pattern, replacement in patterns:
        text = re.sub(pattern, replacement, text, flags=re.IGNORECASE)

    return _HEX_PRIVATE_KEY.sub(MASK_PATTERN, text)


class SensitiveDataFilter(logging.Filter):
    """Logging filter that masks secrets in messages and arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = mask_inline_patterns(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = mask_sensitive_data(record.args)
            else:
                record.args = tuple(
                    mask_inline_patterns(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )
        data = getattr(record, "data", None)
        if data:
            record.data = mask_sensitive_data(data)
        return True


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging.

    Formats log records as JSON for easy parsing by log aggregators.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "data") and record.data:
            log_data["data"] = record.data

        return json.dumps(log_data, default=str)


def configure_logging(
    level: int = logging.INFO,
    json_format: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Configure logging for the application.

    Every handler carries a SensitiveDataFilter.

    Args:
        level: Logging level
        json_format: Whether to use JSON formatting
        log_file: Optional file path for logging
    """
    handlers: list[logging.Handler] = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)

    if json_format:
        console_handler.setFormatter(JsonFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            )
        )

    handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(JsonFormatter())  # Always JSON for files
        handlers.append(file_handler)

    for handler in handlers:
        handler.addFilter(SensitiveDataFilter())

    logging.basicConfig(
        level=level,
        handlers=handlers,
        force=True,
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


__all__ = [
    "MASK_PATTERN",
    "mask_value",
    "is_sensitive_key",
    "mask_sensitive_data",
    "mask_inline_patterns",
    "SensitiveDataFilter",
    "JsonFormatter",
    "configure_logging",
]
