"""Work unit identifier parsing, validation and allocation."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Final

from lumenflow_core.constants import WU_ID_PREFIX
from lumenflow_core.errors import ErrorCode, SchemaError

WU_ID_PATTERN_DESCRIPTION: Final[str] = f"{WU_ID_PREFIX}-123"

_WU_ID_RE: Final[re.Pattern[str]] = re.compile(rf"^{WU_ID_PREFIX}-(\d+)$")


class InvalidWUIdError(SchemaError):
    """Raised when a value is not a ``WU-<integer>`` identifier."""

    default_code = ErrorCode.INVALID_WU_ID


def is_wu_id(value: object) -> bool:
    return isinstance(value, str) and _WU_ID_RE.fullmatch(value) is not None


def validate_wu_id(value: object) -> str:
    """Return ``value`` unchanged when it is a canonical WU identifier."""

    if not isinstance(value, str):
        raise InvalidWUIdError(
            f"WU id must be a string, got {type(value).__name__}",
            expected=WU_ID_PATTERN_DESCRIPTION,
            found=repr(value),
        )
    if _WU_ID_RE.fullmatch(value) is None:
        raise InvalidWUIdError(
            f"invalid WU id {value!r}",
            expected=WU_ID_PATTERN_DESCRIPTION,
            found=value,
            remediation=f"Use the canonical form {WU_ID_PATTERN_DESCRIPTION} (uppercase prefix).",
        )
    return value


def normalize_wu_id(value: str) -> str:
    """Accept ``wu-12`` / `` WU-12 `` and return ``WU-12``."""

    return validate_wu_id(value.strip().upper())


def wu_number(wu_id: str) -> int:
    return int(validate_wu_id(wu_id).partition("-")[2])


def format_wu_id(number: int) -> str:
    if number < 1:
        raise InvalidWUIdError(f"WU number must be >= 1, got {number}")
    return f"{WU_ID_PREFIX}-{number}"


def next_available_id(used: Iterable[str]) -> str:
    """Return the smallest unused ``WU-<n>`` with ``n >= 1``.

    Values in ``used`` that are not canonical identifiers are ignored.
    """

    taken = {int(match.group(1)) for value in used if (match := _WU_ID_RE.fullmatch(value))}
    candidate = 1
    while candidate in taken:
        candidate += 1
    return format_wu_id(candidate)


__all__ = [
    "InvalidWUIdError",
    "WU_ID_PATTERN_DESCRIPTION",
    "format_wu_id",
    "is_wu_id",
    "next_available_id",
    "normalize_wu_id",
    "validate_wu_id",
    "wu_number",
]
