"""
Row-level security: building the current user's scope and filtering records.
"""

import json
from typing import Any, FrozenSet, Iterable, List, Mapping, Optional

from maintdash.config import ALL_BRANCHES
from maintdash.models import CodeAccess, CurrentUser, DenyAll, PurchaseRecord, RestrictedTo, Unrestricted

ROLES = {"ADMIN", "USER"}


def _decode_list(raw: Any, field_name: str) -> Optional[List[str]]:
    """Accept a list, JSON text of a list, or None. Blank text counts as None."""
    if raw is None:
        return None
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raise ValueError(f"{field_name} must be a JSON array of strings.")
        if raw is None:
            return None
    if not isinstance(raw, (list, tuple, set, frozenset)) or not all(isinstance(v, str) for v in raw):
        raise ValueError(f"{field_name} must be an array of strings.")
    return list(raw)


def parse_code_access(raw: Any) -> CodeAccess:
    """None -> Unrestricted, [] -> DenyAll, [codes] -> RestrictedTo(codes)."""
    codes = _decode_list(raw, "assignedCostCodes")
    if codes is None:
        return Unrestricted()
    if not codes:
        return DenyAll()
    return RestrictedTo(frozenset(codes))


def parse_group_access(raw: Any) -> Optional[FrozenSet[str]]:
    """None or an empty list both mean "no group restriction"."""
    groups = _decode_list(raw, "assignedGroups")
    return frozenset(groups) if groups else None


def load_current_user(claims: Mapping[str, Any]) -> CurrentUser:
    """Build a CurrentUser from authenticated token claims."""
    role = str(claims.get("role") or "").strip()
    if role.upper() not in ROLES:
        raise ValueError(f"Unsupported role '{claims.get('role')}'.")

    branch = str(claims.get("branch") or ALL_BRANCHES).strip().upper()
    return CurrentUser(
        role="ADMIN" if role.upper() == "ADMIN" else "User",
        branch=branch,
        cost_codes=parse_code_access(claims.get("assignedCostCodes")),
        groups=parse_group_access(claims.get("assignedGroups")),
        user_id=claims.get("user_id"),
        username=claims.get("username"),
    )


def filter_records(records: Iterable[PurchaseRecord], user: CurrentUser) -> List[PurchaseRecord]:
    """Reduce *records* to the ones *user* may see.

    Branch scoping applies to every role, admins included. Non-admins are
    further limited by assigned groups OR assigned cost codes; cost codes
    match on exact text only, never fuzzily.
    """
    visible = list(records)

    if user.branch and user.branch != ALL_BRANCHES:
        visible = [r for r in visible if r.branch == user.branch]

    if user.is_admin:
        return visible

    groups = user.groups or frozenset()
    codes = user.cost_codes.codes if isinstance(user.cost_codes, RestrictedTo) else frozenset()

    if groups or codes:
        return [r for r in visible if r.group in groups or r.cost_code in codes]

    if isinstance(user.cost_codes, DenyAll):
        return []

    return visible


def describe_scope(user: CurrentUser) -> str:
    """One-line, human readable summary of what *user* can see."""
    branch = "all branches" if user.branch == ALL_BRANCHES else f"branch {user.branch}"
    if user.is_admin:
        return f"Admin: {branch}, every cost code."

    parts = []
    if user.groups:
        parts.append(f"groups {', '.join(sorted(user.groups))}")
    if isinstance(user.cost_codes, RestrictedTo):
        parts.append(f"cost codes {', '.join(sorted(user.cost_codes.codes))}")
    if parts:
        return f"User: {branch}, " + " or ".join(parts) + "."
    if isinstance(user.cost_codes, DenyAll):
        return f"User: {branch}, no cost codes assigned."
    return f"User: {branch}, every cost code."
