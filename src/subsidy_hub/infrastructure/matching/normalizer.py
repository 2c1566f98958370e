"""
Device model code normalization and lookup-variant generation.

Support tables, rebate tables and the canonical device list are maintained
by different teams, so the same device shows up as ``SM-S928N``,
``sm_s928n`` or ``SMS928N``. Every composite-key write and lookup goes
through this module so that all of those spellings meet on one key.

CRITICAL: ``normalize`` is total and idempotent. It must never raise and
``normalize(normalize(x)) == normalize(x)`` for every input.
"""

import re
from typing import Any, FrozenSet, List, Tuple

# Characters that carry no identity in a model code
_SEPARATORS = re.compile(r"[\s\-_]+")

# Manufacturer prefix hyphen, e.g. SMS928N -> SM-S928N, LMV510N -> LM-V510N
_PREFIX_HYPHEN = re.compile(r"^([A-Z]{2})([A-Z]\d[A-Z0-9]*)$")

# Brand / digits / suffix split used by the dealer sheets, e.g. SM-S928N256
_BRAND_SPLIT = re.compile(r"([A-Z]+)(\d+)([A-Z]*)(\d*)")


def normalize(code: Any) -> str:
    """
    Canonicalize a device model code into its comparable form.

    Operations:
    1. Convert to string (None -> "")
    2. Remove whitespace, hyphens and underscores
    3. Lowercase

    Examples:
        >>> normalize("SM-S928N")
        'sms928n'
        >>> normalize(" sm_s928 n ")
        'sms928n'
        >>> normalize("")
        ''
    """
    if code is None:
        return ""
    return _SEPARATORS.sub("", str(code)).lower()


def _hyphen_variants(compact_upper: str) -> List[str]:
    """Hyphen insertion variants for a separator-free uppercase code."""
    if not compact_upper:
        return []

    found: List[str] = []
    prefix = _PREFIX_HYPHEN.match(compact_upper)
    if prefix:
        found.append(f"{prefix.group(1)}-{prefix.group(2)}")

    parts = _BRAND_SPLIT.search(compact_upper)
    if parts:
        brand, num1, mid, num2 = parts.groups()
        if brand and num1:
            found.append(f"{brand}-{num1}{mid}{num2}")
            if mid and num2:
                found.append(f"{brand}-{num1}-{mid}{num2}")
    return found


def variant_chain(code: Any) -> Tuple[str, ...]:
    """
    Ordered, de-duplicated lookup variants for a model code.

    The exact input comes first, then its case variants, then the normalized
    forms, then hyphen insertion/removal forms. Lookups walk this chain and
    stop at the first hit.

    Examples:
        >>> variant_chain("SM-S928N")[:4]
        ('SM-S928N', 'sm-s928n', 'sms928n', 'SMS928N')
    """
    if code is None:
        return ()
    raw = str(code)
    if not raw:
        return ()

    compact = normalize(raw)
    compact_upper = compact.upper()
    candidates: List[str] = [
        raw,
        raw.lower(),
        raw.upper(),
        compact,
        compact.lower(),
        compact_upper,
        raw.strip(),
    ]
    for hyphenated in _hyphen_variants(compact_upper):
        candidates.extend([hyphenated, hyphenated.lower()])

    seen = set()
    chain: List[str] = []
    for candidate in candidates:
        if candidate and candidate not in seen:
            seen.add(candidate)
            chain.append(candidate)
    return tuple(chain)


def variants(code: Any) -> FrozenSet[str]:
    """
    All lookup-candidate spellings of a model code.

    Deterministic and side-effect free; see ``variant_chain`` for the order in
    which lookups try them.
    """
    return frozenset(variant_chain(code))
