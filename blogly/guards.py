from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from .errors import EditConflict, NotFound, StoreError, Unauthorized


logger = logging.getLogger(__name__)

VERSION_STEP = timedelta(microseconds=1)


def next_version(previous: Optional[datetime] = None) -> datetime:
    """Return a fresh last-modified timestamp strictly later than ``previous``."""
    now = datetime.now(timezone.utc)
    if previous is not None and now <= previous:
        return previous + VERSION_STEP
    return now


class WritePhase(str, Enum):
    ATTEMPTED = "attempted"
    DISAMBIGUATING = "disambiguating"
    RESOLVED = "resolved"


@dataclass
class ConditionalWrite:
    """Resolves a conditioned UPDATE/DELETE that may have matched nothing.

    The statement predicate carries the id, plus the owner and/or version when
    they apply, so zero affected rows is ambiguous. A follow-up read keyed only
    by the id (and parent scope) settles it: a missing row is ``NotFound``, a
    row with a different owner is ``Unauthorized`` and anything else means the
    version moved, which is ``EditConflict``. An unversioned write that finds
    its row present and permitted has no valid explanation and raises
    ``RuntimeError``.
    """

    entity: str
    owner_id: Optional[int] = None
    versioned: bool = False
    phase: WritePhase = WritePhase.ATTEMPTED
    outcome: Optional[StoreError] = None

    def record_rowcount(self, rowcount: int) -> bool:
        if self.phase is not WritePhase.ATTEMPTED:
            raise RuntimeError(f"write already {self.phase.value}")
        if rowcount > 0:
            self.phase = WritePhase.RESOLVED
            return True
        self.phase = WritePhase.DISAMBIGUATING
        return False

    def resolve(self, row: Optional[Mapping[str, Any]]) -> StoreError:
        if self.phase is not WritePhase.DISAMBIGUATING:
            raise RuntimeError(f"cannot disambiguate a write that is {self.phase.value}")
        self.phase = WritePhase.RESOLVED
        if row is None:
            outcome: StoreError = NotFound(f"{self.entity} not found")
        elif self.owner_id is not None and row["owner_id"] != self.owner_id:
            outcome = Unauthorized()
        elif self.versioned:
            outcome = EditConflict()
        else:
            raise RuntimeError(f"unversioned {self.entity} write affected no rows although its row is present")
        logger.debug("Conditional %s write resolved as %s", self.entity, type(outcome).__name__)
        self.outcome = outcome
        return outcome
