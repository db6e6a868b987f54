"""Identifier format checks for allotment lookups.

None of these helpers log or retain their input; PAN and account numbers
only pass through on their way to the registrar.
"""

from __future__ import annotations

import re

_PAN_PATTERN = re.compile(r"[A-Z]{5}[0-9]{4}[A-Z]")
_APPLICATION_NO_PATTERN = re.compile(r"[0-9]{8,12}")
_DEPOSITORY_ID_PATTERN = re.compile(r"[0-9]{8}")

PAN_MASK = "******"
MASKED_PLACEHOLDER = "****"


def validate_pan(value: str | None) -> bool:
    if not value:
        return False
    return _PAN_PATTERN.fullmatch(value.upper()) is not None


def validate_application_number(value: str | None) -> bool:
    if not value:
        return False
    return _APPLICATION_NO_PATTERN.fullmatch(value) is not None


def validate_dp_client_id(dp_id: str | None, client_id: str | None) -> bool:
    if not dp_id or not client_id:
        return False
    return (
        _DEPOSITORY_ID_PATTERN.fullmatch(dp_id) is not None
        and _DEPOSITORY_ID_PATTERN.fullmatch(client_id) is not None
    )


def mask_pan(value: str | None) -> str:
    """Return a display-only PAN with everything but the last 4 characters hidden."""
    if not value or len(value) < 4:
        return MASKED_PLACEHOLDER
    return PAN_MASK + value[-4:]
