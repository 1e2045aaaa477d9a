"""Request validation for flag keys and values."""

from __future__ import annotations

import json
import re

from bandera_service.core.exceptions import ValidationException

from .models import FlagType

KEY_MIN_LENGTH = 2
KEY_MAX_LENGTH = 50
_KEY_PATTERN = re.compile(r"[A-Za-z][A-Za-z0-9_-]*")


def validate_flag_key(key: str) -> str:
    """Return the stripped key or raise ValidationException."""
    key = key.strip()
    if not key:
        raise ValidationException("Flag key cannot be empty", extra={"field": "key"})
    if not KEY_MIN_LENGTH <= len(key) <= KEY_MAX_LENGTH:
        raise ValidationException(
            f"Flag key must be between {KEY_MIN_LENGTH} and {KEY_MAX_LENGTH} characters",
            extra={"field": "key"},
        )
    if not _KEY_PATTERN.fullmatch(key):
        raise ValidationException(
            "Flag key must start with a letter and contain only letters, numbers, "
            "underscores and hyphens",
            extra={"field": "key"},
        )
    return key


def validate_default_value(value: str, flag_type: FlagType) -> str:
    """Check that a default value parses as its flag type."""
    if flag_type is FlagType.BOOLEAN:
        if value.strip().lower() not in {"true", "false"}:
            raise ValidationException(
                "Boolean flags require 'true' or 'false'",
                extra={"field": "default_value"},
            )
    elif flag_type is FlagType.NUMBER:
        try:
            float(value)
        except ValueError:
            raise ValidationException(
                "Number flags require a numeric value",
                extra={"field": "default_value"},
            ) from None
    elif flag_type is FlagType.JSON:
        try:
            json.loads(value)
        except json.JSONDecodeError:
            raise ValidationException(
                "JSON flags require a valid JSON document",
                extra={"field": "default_value"},
            ) from None
    return value


def validate_override_value(value: str) -> str:
    # Overrides are free-form per user; only emptiness is rejected.
    if not value.strip():
        raise ValidationException("Override value cannot be empty", extra={"field": "value"})
    return value
