# src/keysmidi/snap.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Iterable

from .store import NoteRef
from .util.time import round_half_up

log = logging.getLogger(__name__)


@dataclass
class SnapEngine:
    precision: int = 4          # grid lines per beat (4 = sixteenths)
    sensitivity: float = 0.3    # capture radius, fraction of one grid unit
    enabled: bool = True

    def __post_init__(self):
        self.configure(self.precision, self.sensitivity)

    def configure(self, precision: int = None, sensitivity: float = None):
        if precision is not None:
            self.precision = max(1, int(precision))
        if sensitivity is not None:
            self.sensitivity = max(0.0, min(1.0, float(sensitivity)))

    @property
    def grid_unit(self) -> float:
        return 1.0 / self.precision

    def quantize(self, t: float) -> float:
        return round_half_up(float(t) * self.precision) / self.precision

    def snap(self, t: float) -> float:
        """Pull t onto the nearest grid line, but only from within the capture radius."""
        if not self.enabled:
            return t
        snapped = self.quantize(t)
        if abs(snapped - t) < self.sensitivity / self.precision:
            return snapped
        return t

    def snap_positions(self, refs: Iterable[NoteRef]) -> int:
        """Quantise each start, duration unchanged. Returns how many notes moved."""
        refs = list(refs)
        if not refs:
            log.info("snap position: nothing selected")
            return 0
        changed = 0
        for r in refs:
            start = r.start
            q = max(0.0, self.quantize(start))
            if q == start:
                continue
            end = r.end
            r.set_span(q, None if end is None else q + (end - start))
            changed += 1
        return changed

    def snap_durations(self, refs: Iterable[NoteRef]) -> int:
        """Quantise each duration; never shorter than one grid unit."""
        refs = list(refs)
        if not refs:
            log.info("snap duration: nothing selected")
            return 0
        changed = 0
        for r in refs:
            if r.end is None:
                continue
            d = r.duration
            q = self.quantize(d)
            if q < self.grid_unit or q == d:
                continue
            r.set_span(r.start, r.start + q)
            changed += 1
        return changed
