"""
Cost-code normalisation, branch ownership and fuzzy matching.

Branch databases store the same cost code in different shapes
("PMB-MNT-001", " mnt - 001 ", "PTA MNT 001"). Two normalised forms are used:

- the comparison form strips the branch prefix and every separator and is
  only ever compared, never shown;
- the display form keeps the structure and only tidies case and spacing.

The fuzzy helpers here are for catalogue work (dedup, grouping, matching
typos). Permission checks never go through them; see maintdash.permissions.
"""

import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from maintdash.config import BRANCH_ORDER, SIMILARITY_THRESHOLD
from maintdash.similarity import similarity

CATEGORY_BY_PREFIX = {
    "MNT": "General Maintenance",
    "ELEC": "Electrical",
    "PLUMB": "Plumbing",
    "HVAC": "HVAC",
    "FLOOR": "Flooring",
    "ROOF": "Roofing",
}
OTHER_CATEGORY = "Other"

_NON_ALNUM = re.compile(r"[^A-Z0-9]")
_DASH_SPACING = re.compile(r"\s*-\s*")


def _split_branch_prefix(upper_code: str) -> Tuple[Optional[str], str]:
    """Return (branch, remainder) for a trimmed, uppercased code."""
    for branch in BRANCH_ORDER:
        if upper_code.startswith(branch + "-") or upper_code.startswith(branch + " "):
            return branch, upper_code[len(branch) + 1:].strip()
    return None, upper_code


# ── Normalisation ────────────────────────────────────────────────────

def normalize_for_comparison(code: Optional[str]) -> str:
    """Canonical key: no branch prefix, uppercase, alphanumerics only.

    "PMB-MNT-001" -> "MNT001", " mnt - 001 " -> "MNT001",
    "PMB-DAFF/ROMAINTENANCE" -> "DAFFROMAINTENANCE".
    """
    if not code:
        return ""
    _, rest = _split_branch_prefix(code.strip().upper())
    return _NON_ALNUM.sub("", rest)


def normalize_for_display(code: Optional[str]) -> str:
    """"PMB - Mechanical Maintenance" -> "PMB-MECHANICAL MAINTENANCE"."""
    if not code:
        return ""
    return _DASH_SPACING.sub("-", code.strip().upper())


def codes_match(first: Optional[str], second: Optional[str]) -> bool:
    return normalize_for_comparison(first) == normalize_for_comparison(second)


# ── Branch ownership ─────────────────────────────────────────────────

def extract_owning_branch(code: Optional[str]) -> Optional[str]:
    """Branch named by the code's prefix ("PMB-MNT-001" -> "PMB"), else None."""
    if not code:
        return None
    branch, _ = _split_branch_prefix(code.strip().upper())
    return branch


def code_owned_by_branch(code: Optional[str], branch: str) -> bool:
    return extract_owning_branch(code) == branch


def codes_for_branch(codes: Iterable[str], branch: str) -> List[str]:
    """Codes carrying *branch*'s prefix plus generic codes with no prefix."""
    return [c for c in codes if extract_owning_branch(c) in (branch, None)]


# ── Matching ─────────────────────────────────────────────────────────

def find_best_match(candidate: Optional[str], assigned: Sequence[str],
                    threshold: float = SIMILARITY_THRESHOLD) -> Optional[str]:
    """Return the assigned code *candidate* matches, or None.

    Exact match on the comparison form wins. Otherwise the most similar
    assigned code is accepted only when its similarity is strictly greater
    than *threshold*; on ties the first one seen is kept.
    """
    normalized = normalize_for_comparison(candidate)

    for code in assigned:
        if normalize_for_comparison(code) == normalized:
            return code

    best_match = None
    best_score = threshold
    for code in assigned:
        score = similarity(normalized, normalize_for_comparison(code))
        if score > best_score:
            best_score = score
            best_match = code
    return best_match


def filter_by_assigned_codes(records, assigned: Optional[Sequence[str]]):
    """Keep records whose cost code fuzzily matches an assigned code.

    ``None`` or an empty list keeps everything.
    """
    if not assigned:
        return list(records)
    return [r for r in records if find_best_match(r.cost_code, assigned) is not None]


def match_details(records, assigned: Optional[Sequence[str]]) -> List[Dict[str, object]]:
    """Which record codes matched which assigned codes, and how closely."""
    if not assigned:
        return []

    details = []
    for record in records:
        match = find_best_match(record.cost_code, assigned)
        if match is None:
            continue
        left = normalize_for_comparison(record.cost_code)
        right = normalize_for_comparison(match)
        details.append({
            "recordCode": record.cost_code,
            "assignedCode": match,
            "similarity": f"{similarity(left, right) * 100:.1f}%",
            "isExactMatch": left == right,
        })
    return details


# ── Catalogue helpers ────────────────────────────────────────────────

def deduplicate(codes: Iterable[Optional[str]]) -> List[str]:
    """First original text of each distinct comparison form, sorted.

    ["PMB-MNT-001", "PTA-MNT-001", "QTN-ELEC-001"] -> ["PMB-MNT-001", "QTN-ELEC-001"]
    """
    seen = set()
    unique = []
    for code in codes:
        key = normalize_for_comparison(code)
        if key and key not in seen:
            seen.add(key)
            unique.append(code)
    return sorted(unique)


def category_of(code: Optional[str]) -> str:
    """Category from the token before the first separator (branch prefix ignored)."""
    _, rest = _split_branch_prefix(normalize_for_display(code))
    token = re.split(r"[^A-Z0-9]+", rest, maxsplit=1)[0] if rest else ""
    return CATEGORY_BY_PREFIX.get(token, OTHER_CATEGORY)


def group_by_category(codes: Iterable[str]) -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    for code in codes:
        grouped.setdefault(category_of(code), []).append(code)
    return grouped
