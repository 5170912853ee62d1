"""
Route parameter validators.
"""

import re
from typing import Any, Mapping

from gateway.routes.types import ValidationResult

CHAIN_PATTERN = re.compile(r"^[a-zA-Z0-9-]+$")
NUMERIC_PATTERN = re.compile(r"^\d+$")
# Bech32 style: lowercase prefix, separator "1", data part
ADDRESS_PATTERN = re.compile(r"^[a-z]+1[a-z0-9]{38,}$")


def validate_params(
    query: Mapping[str, str],
    required_params: list[str],
    optional_params: list[str] | None = None,
) -> ValidationResult:
    """Check required parameters and collect present optional ones."""
    errors: list[str] = []
    params: dict[str, str] = {}

    for name in required_params:
        value = query.get(name)
        if not value:
            errors.append(f"Missing required parameter: {name}")
        else:
            params[name] = value

    for name in optional_params or []:
        value = query.get(name)
        if value:
            params[name] = value

    return ValidationResult(valid=not errors, params=params, errors=errors)


def validate_required(params: Mapping[str, Any], required: list[str]) -> list[str]:
    """Return the names of required keys that are absent or None."""
    return [name for name in required if params.get(name) is None]


def validate_chain(chain: str | None) -> bool:
    """Chain names are alphanumeric with hyphens."""
    return bool(chain) and bool(CHAIN_PATTERN.match(chain))


def validate_numeric(value: str | None) -> bool:
    return bool(value) and bool(NUMERIC_PATTERN.match(value))


def validate_address(address: str | None) -> bool:
    return bool(address) and bool(ADDRESS_PATTERN.match(address))
