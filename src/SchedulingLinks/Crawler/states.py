"""US state and territory codes used for jurisdiction tags.

The numeric values are the ``state_id`` primary keys of the ``states`` table.
Both the crawler database and exported snapshots are seeded from this
enumeration, so the ids never diverge between producers and consumers.
"""

from __future__ import annotations

import logging
from enum import IntEnum
from typing import Iterable, List, Optional, Tuple

__all__ = ("State", "lookup_state", "resolve_states", "state_rows")

LOGGER = logging.getLogger(__name__)


class State(IntEnum):
    """Two-letter state/territory code with its stable ``state_id``."""

    AL = 1
    AK = 2
    AZ = 3
    AR = 4
    CA = 5
    CO = 6
    CT = 7
    DE = 8
    DC = 9
    FL = 10
    GA = 11
    HI = 12
    ID = 13
    IL = 14
    IN = 15
    IA = 16
    KS = 17
    KY = 18
    LA = 19
    ME = 20
    MD = 21
    MA = 22
    MI = 23
    MN = 24
    MS = 25
    MO = 26
    MT = 27
    NE = 28
    NV = 29
    NH = 30
    NJ = 31
    NM = 32
    NY = 33
    NC = 34
    ND = 35
    OH = 36
    OK = 37
    OR = 38
    PA = 39
    RI = 40
    SC = 41
    SD = 42
    TN = 43
    TX = 44
    UT = 45
    VT = 46
    VA = 47
    WA = 48
    WV = 49
    WI = 50
    WY = 51
    AS = 52
    GU = 53
    MP = 54
    PR = 55
    VI = 56
    UM = 57


def lookup_state(code: object) -> Optional[State]:
    """Return the :class:`State` for ``code`` (case-insensitive), or ``None``."""

    if not isinstance(code, str):
        return None
    return State.__members__.get(code.strip().upper())


def resolve_states(codes: Iterable[object], *, url: str | None = None) -> List[State]:
    """Map manifest annotations to states, logging and dropping unknown codes.

    Order of first appearance is kept and repeated codes collapse to one entry.
    """

    resolved: List[State] = []
    for code in codes:
        state = lookup_state(code)
        if state is None:
            LOGGER.warning("Failed to find state id for %r (descriptor %s)", code, url)
            continue
        if state not in resolved:
            resolved.append(state)
    return resolved


def state_rows() -> List[Tuple[int, str]]:
    """Rows for seeding a ``states(state_id, name)`` table."""

    return [(int(state), state.name) for state in State]
