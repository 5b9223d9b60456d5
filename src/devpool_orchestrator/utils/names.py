"""Deterministic display names for orchestrator instances and worker slots."""

from __future__ import annotations

import hashlib
from typing import Final

NAMES: Final[tuple[str, ...]] = (
    "Ada",
    "Alan",
    "Alonzo",
    "Anita",
    "Barbara",
    "Bjarne",
    "Brian",
    "Butler",
    "Charles",
    "Claude",
    "Dennis",
    "Donald",
    "Edsger",
    "Edgar",
    "Fran",
    "Frances",
    "Grace",
    "Guido",
    "Hedy",
    "Ivan",
    "Jean",
    "John",
    "Joan",
    "Ken",
    "Kathleen",
    "Klara",
    "Leslie",
    "Linus",
    "Lynn",
    "Margaret",
    "Marvin",
    "Mary",
    "Niklaus",
    "Radia",
    "Robin",
    "Ross",
    "Shafi",
    "Sophie",
    "Tim",
    "Tony",
    "Vint",
    "Whitfield",
    "Yukihiro",
    "Adele",
    "Betty",
    "Carl",
    "Dana",
    "Evelyn",
)


def name_from_seed(seed: str) -> str:
    """Return a stable name for ``seed``; the same seed always yields the same name."""

    if not isinstance(seed, str) or not seed:
        raise ValueError("seed must be a non-empty string")
    digest = hashlib.sha256(seed.encode("utf-8")).digest()
    index = int.from_bytes(digest[:8], "big") % len(NAMES)
    return NAMES[index]


def slot_name(project: str, role: str, level: str, slot_index: int) -> str:
    """Deterministic slot display name from slot coordinates."""

    if slot_index < 0:
        raise ValueError("slot_index must be >= 0")
    return name_from_seed(f"{project}-{role}-{level}-{slot_index}")


__all__ = ["NAMES", "name_from_seed", "slot_name"]
