"""ID prefixes and generation for workspace entities.

Two ID strategies:
- Random (workflows, nodes, contacts, deals, pipelines): prefix + 12 hex chars.
- Sequential (executions): atomic counter from DB, minimum 4 digits.

INVARIANT: IDs are permanent. Once generated, an ID never changes.
"""

from __future__ import annotations

import re
import secrets

TYPE_PREFIXES: dict[str, str] = {
    "workflow": "wf_",
    "node": "nd_",
    "contact": "ct_",
    "deal": "dl_",
    "pipeline": "pl_",
    "stage": "st_",
    "note": "dn_",
    "execution": "RUN-",
}

ID_PATTERNS: dict[str, re.Pattern[str]] = {
    "workflow": re.compile(r"^wf_[0-9a-f]{12}$"),
    "contact": re.compile(r"^ct_[0-9a-f]{12}$"),
    "deal": re.compile(r"^dl_[0-9a-f]{12}$"),
    "execution": re.compile(r"^RUN-\d{4,}$"),
}

_SLUG_WORDS = (
    "amber", "brisk", "cedar", "dapper", "ember", "fable", "gentle", "harbor",
    "ivory", "jolly", "kindle", "lunar", "maple", "nimble", "opal", "pepper",
    "quiet", "river", "silver", "tidal", "umber", "velvet", "willow", "zephyr",
)  # fmt: skip


def generate_id(entity: str) -> str:
    """Return a new random ID for *entity* (``"workflow"``, ``"contact"``, ...)."""
    prefix = TYPE_PREFIXES[entity]
    return f"{prefix}{secrets.token_hex(6)}"


def generate_slug(words: int = 3) -> str:
    """Human-friendly default name such as ``"amber-river-opal"``."""
    return "-".join(secrets.choice(_SLUG_WORDS) for _ in range(words))


def validate_id(entity_id: str, entity: str) -> bool:
    """Check whether *entity_id* matches the expected pattern for *entity*."""
    pattern = ID_PATTERNS.get(entity)
    if pattern is None:
        return False
    return pattern.match(entity_id) is not None
