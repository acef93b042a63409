# src/keysmidi/history.py
"""
Snapshot-based undo/redo.

Every commit stores a full deep copy of the tracks plus tempo/meter. The
list is bounded; the oldest entry falls off when it overflows. Selection,
zoom, visibility and playhead are deliberately not part of a snapshot.
"""
from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from .model import Track

log = logging.getLogger(__name__)

# Tags, die auch ohne Zustandsänderung einen Eintrag erzeugen
ALWAYS_RECORD = frozenset({"paste", "cut", "delete", "import", "edit-value", "reassign"})
# Tags, deren schnelle Wiederholung in den letzten Eintrag gefaltet wird
MERGEABLE = frozenset({"nudge", "velocity"})


@dataclass(frozen=True)
class Snapshot:
    tracks: Tuple[Track, ...]
    bpm: float
    beats_per_measure: int

    def same_state(self, other: Optional["Snapshot"]) -> bool:
        if other is None:
            return False
        return (self.bpm == other.bpm
                and self.beats_per_measure == other.beats_per_measure
                and list(self.tracks) == list(other.tracks))


@dataclass
class HistoryEntry:
    snapshot: Snapshot
    tag: str
    timestamp: float


class HistoryManager:
    def __init__(self,
                 capture: Callable[[], Snapshot],
                 restore: Callable[[Snapshot], None],
                 capacity: int = 50,
                 merge_cooldown: float = 1.0,
                 clock: Callable[[], float] = time.monotonic):
        if capacity < 2:
            raise ValueError("history capacity must be >= 2")
        self._capture = capture
        self._restore = restore
        self.capacity = int(capacity)
        self.merge_cooldown = float(merge_cooldown)
        self._clock = clock
        self._entries: List[HistoryEntry] = []
        self._cursor = -1

    # ---------- state ----------
    @property
    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def current(self) -> Optional[HistoryEntry]:
        if 0 <= self._cursor < len(self._entries):
            return self._entries[self._cursor]
        return None

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return self._cursor < len(self._entries) - 1

    # ---------- operations ----------
    def reset(self, tag: str = "initial"):
        """Drop all entries and record the current state as the new baseline."""
        self._entries = [HistoryEntry(self._capture(), tag, self._clock())]
        self._cursor = 0

    def commit(self, tag: str) -> bool:
        """Record the current state. Returns False when the commit was skipped."""
        if self._cursor < 0:
            self.reset()
        snap = self._capture()
        now = self._clock()
        cur = self.current
        if tag not in ALWAYS_RECORD and snap.same_state(cur.snapshot):
            log.debug("history: '%s' skipped, state unchanged", tag)
            return False

        if (tag in MERGEABLE and cur.tag == tag and self._cursor > 0
                and self._cursor == len(self._entries) - 1
                and now - cur.timestamp < self.merge_cooldown):
            if snap.same_state(self._entries[self._cursor - 1].snapshot):
                # zurueck beim Vorgaenger: Eintrag entfaellt
                del self._entries[self._cursor]
                self._cursor -= 1
                log.debug("history: '%s' cancelled out, entry dropped", tag)
                return True
            self._entries[self._cursor] = HistoryEntry(snap, tag, now)
            log.debug("history: '%s' merged into entry %d", tag, self._cursor)
            return True

        # Redo-Zweig verwerfen
        del self._entries[self._cursor + 1:]
        self._entries.append(HistoryEntry(snap, tag, now))
        if len(self._entries) > self.capacity:
            self._entries.pop(0)
        self._cursor = len(self._entries) - 1
        log.debug("history: '%s' recorded at %d", tag, self._cursor)
        return True

    def undo(self) -> bool:
        if not self.can_undo:
            log.info("undo: nothing to undo")
            return False
        self._cursor -= 1
        self._restore(self._entries[self._cursor].snapshot)
        return True

    def redo(self) -> bool:
        if not self.can_redo:
            log.info("redo: nothing to redo")
            return False
        self._cursor += 1
        self._restore(self._entries[self._cursor].snapshot)
        return True
