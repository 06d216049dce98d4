"""Group membership extraction and allow-list checks.

Both strategies gate access the same way: an empty allow-list admits any
authenticated identity, otherwise at least one of the user's groups must match.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from enum import StrEnum
from typing import Any

_CN_PATTERN = re.compile(r"^CN=([^,]+)", re.IGNORECASE)


class GroupMatch(StrEnum):
    # Azure AD: group object ids compared exactly.
    EXACT = "exact"
    # Directory: case-insensitive "allowed group appears in the user's group string".
    # Looser than EXACT: a short allowed name also matches any DN containing it.
    SUBSTRING = "substring"


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value if v is not None]
    return []


def parse_group_list(raw: str | None) -> tuple[str, ...]:
    """Split a comma-separated allow-list, dropping blanks and duplicates."""

    seen: set[str] = set()
    groups: list[str] = []
    for item in (raw or "").split(","):
        group = item.strip()
        if not group or group in seen:
            continue
        seen.add(group)
        groups.append(group)
    return tuple(groups)


def expand_member_of(member_of: Any) -> list[str]:
    """Turn ``memberOf`` DNs into the CN fragment followed by the full DN, per group."""

    groups: list[str] = []
    for group_dn in _as_list(member_of):
        match = _CN_PATTERN.match(group_dn)
        if match:
            groups.append(match.group(1))
        groups.append(group_dn)
    return groups


class GroupAuthorizer:
    """Decide whether a user's groups satisfy a configured allow-list."""

    def __init__(self, match: GroupMatch) -> None:
        self.match = match

    def is_authorized(self, user_groups: Iterable[str], allowed_groups: Iterable[str]) -> bool:
        allowed = [group.strip() for group in allowed_groups if group and group.strip()]
        if not allowed:
            return True

        if self.match is GroupMatch.EXACT:
            return not set(allowed).isdisjoint(user_groups)

        user = [group.lower() for group in user_groups]
        for allowed_group in allowed:
            needle = allowed_group.lower()
            for user_group in user:
                if needle in user_group:
                    return True
        return False


federated_authorizer = GroupAuthorizer(GroupMatch.EXACT)
directory_authorizer = GroupAuthorizer(GroupMatch.SUBSTRING)
