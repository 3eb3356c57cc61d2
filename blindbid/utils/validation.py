"""
Input Validation - checks for command-line input.

Every argument is checked before any network call. Primitive validators
return (is_valid, error_message); validate_fields applies a declarative
list of FieldRule and raises ArgumentError on the first failure.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Tuple

from blindbid.core.errors import ArgumentError

# =============================================================================
# Constants
# =============================================================================

MAX_STRING_LENGTH = 256

ALPHANUMERIC = r"[A-Za-z0-9]+"
DIGITS = r"[0-9]+"
ORG_NAME = r"org[12]"


# =============================================================================
# Validation Functions
# =============================================================================


def validate_string(
    value: Any,
    name: str,
    max_length: int = MAX_STRING_LENGTH,
    pattern: Optional[str] = None,
    ignore_case: bool = False,
) -> Tuple[bool, str]:
    """
    Validate string input.

    Args:
        value: Value to validate
        name: Field name for error messages
        max_length: Maximum string length
        pattern: Optional regex the whole value must match
        ignore_case: Match pattern case-insensitively

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    if not value:
        return False, f"{name} must be non-empty"

    if len(value) > max_length:
        return False, f"{name} exceeds max length {max_length}"

    flags = re.IGNORECASE if ignore_case else 0
    if pattern and not re.fullmatch(pattern, value, flags):
        return False, f"{name} does not match required pattern"

    return True, ""


def validate_org(value: Any) -> Tuple[bool, str]:
    """Organization short name: org1 or org2, any case."""
    valid, _ = validate_string(value, "org", pattern=ORG_NAME, ignore_case=True)
    if not valid:
        return False, "Org must be either org1 or org2"
    return True, ""


def validate_numeric(value: Any, name: str) -> Tuple[bool, str]:
    """Non-empty decimal digits; "0" is accepted."""
    valid, _ = validate_string(value, name, pattern=DIGITS)
    if not valid:
        return False, f"{name} must be a non-empty string of digits"
    return True, ""


def validate_alphanumeric(value: Any, name: str) -> Tuple[bool, str]:
    """Non-empty ASCII letters and digits."""
    valid, _ = validate_string(value, name, pattern=ALPHANUMERIC)
    if not valid:
        return False, f"{name} must be a non-empty alphanumeric string"
    return True, ""


# =============================================================================
# Declarative schemas
# =============================================================================


@dataclass(frozen=True)
class FieldRule:
    """One positional argument and how to check it."""
    name: str
    kind: str  # "org", "numeric" or "alphanumeric"
    label: str = ""

    @property
    def display(self) -> str:
        return self.label or self.name.replace("_", " ")

    def check(self, value: Any) -> Tuple[bool, str]:
        if self.kind == "org":
            return validate_org(value)
        if self.kind == "numeric":
            return validate_numeric(value, self.display)
        if self.kind == "alphanumeric":
            return validate_alphanumeric(value, self.display)
        raise ValueError(f"Unknown field kind: {self.kind}")


def validate_fields(rules: Sequence[FieldRule], values: Dict[str, Any]) -> None:
    """
    Check `values` against `rules`.

    Raises:
        ArgumentError: Listing missing fields, or naming the first invalid one
    """
    missing = [r.display for r in rules if values.get(r.name) in (None, "")]
    if missing:
        raise ArgumentError(f"Missing required arguments: {', '.join(missing)}")

    for rule in rules:
        valid, err = rule.check(values[rule.name])
        if not valid:
            raise ArgumentError(err)


__all__ = [
    "validate_string",
    "validate_org",
    "validate_numeric",
    "validate_alphanumeric",
    "FieldRule",
    "validate_fields",
    "MAX_STRING_LENGTH",
]
