from __future__ import annotations

from typing import Any

# Minimum role levels, matching the employee role ladder of the field-service backend.
LEVEL_STOCK_READ = 1
LEVEL_STOCK_OPERATE = 1
LEVEL_STOCK_SUPERVISE = 2
LEVEL_CATALOG_ADMIN = 3


def role_level_of(claims: dict[str, Any]) -> int:
    level = claims.get("role_level", 0)
    if isinstance(level, bool) or not isinstance(level, int):
        return 0
    return level


def has_min_level(claims: dict[str, Any], min_level: int) -> bool:
    return role_level_of(claims) >= min_level
