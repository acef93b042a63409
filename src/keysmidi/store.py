# src/keysmidi/store.py
"""
Track & note store.

Tracks are keyed by instrument id and exist only while they hold notes.
Callers keep ``NoteRef`` handles (instrument + index) instead of raw Note
objects; a ref re-resolves itself when the index went stale.
"""
from __future__ import annotations
import logging
from collections import defaultdict
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

import numpy as np

from .errors import StaleReferenceError, ValidationError
from .model import DEFAULT_VELOCITY, Note, Track, clamp_beat

log = logging.getLogger(__name__)

# Zeitfenster für den Wertevergleich beim Re-Resolve (in Beats)
MATCH_WINDOW = 1e-6


class NoteRef:
    """Read/write-through handle to one note of a track."""

    __slots__ = ("_store", "_instrument", "_index", "_note", "_fp")

    def __init__(self, store: "TrackStore", instrument: str, index: int, note: Optional[Note] = None):
        self._store = store
        self._instrument = instrument
        self._index = index
        if note is None:
            note = store.get_track(instrument).notes[index]
        self._note = note
        self._fp = note.fingerprint()

    # --- resolution ---
    def _lookup(self) -> Optional[Tuple[int, Note]]:
        track = self._store.get_track(self._instrument)
        if track is None:
            return None
        notes = track.notes
        i = self._index
        if 0 <= i < len(notes) and notes[i] is self._note:
            return i, self._note
        i = track.index_of(self._note)
        if i >= 0:
            return i, self._note
        # Objekt nicht mehr da (z.B. nach History-Restore): über Werte suchen
        pitch, start, end = self._fp
        for i, n in enumerate(notes):
            if n.pitch != pitch or abs(n.start - start) > MATCH_WINDOW:
                continue
            if (n.end is None) != (end is None):
                continue
            if end is not None and abs(n.end - end) > MATCH_WINDOW:
                continue
            return i, n
        return None

    def resolve(self) -> Note:
        hit = self._lookup()
        if hit is None:
            raise StaleReferenceError(
                f"note {self._fp} no longer in track '{self._instrument}'")
        self._index, self._note = hit
        return self._note

    @property
    def alive(self) -> bool:
        return self._lookup() is not None

    @property
    def note(self) -> Note:
        return self.resolve()

    @property
    def instrument(self) -> str:
        return self._instrument

    @property
    def index(self) -> int:
        self.resolve()
        return self._index

    def _touch(self):
        self._fp = self._note.fingerprint()

    # --- accessors ---
    @property
    def pitch(self) -> int:
        return self.resolve().pitch

    @pitch.setter
    def pitch(self, value):
        self.resolve().pitch = value
        self._touch()

    @property
    def start(self) -> float:
        return self.resolve().start

    @start.setter
    def start(self, value):
        n = self.resolve()
        n.set_span(value, n.end)
        self._touch()

    @property
    def end(self) -> Optional[float]:
        return self.resolve().end

    @end.setter
    def end(self, value):
        n = self.resolve()
        if value is not None and value < n.start:
            raise ValidationError(f"end {value} before start {n.start}")
        n.end = value
        self._touch()

    @property
    def velocity(self) -> int:
        return self.resolve().velocity

    @velocity.setter
    def velocity(self, value):
        self.resolve().velocity = value
        self._touch()

    @property
    def duration(self) -> float:
        return self.resolve().duration

    def set_span(self, start: float, end: Optional[float]):
        self.resolve().set_span(start, end)
        self._touch()

    def same_note(self, other: "NoteRef") -> bool:
        if self._instrument != other._instrument:
            return False
        a, b = self._lookup(), other._lookup()
        return a is not None and b is not None and a[1] is b[1]

    def __repr__(self):
        return f"NoteRef({self._instrument!r}, {self._index}, pitch={self._fp[0]}, start={self._fp[1]})"


class TrackStore:
    def __init__(self):
        self._tracks: Dict[str, Track] = {}
        self.visible: Set[str] = set()

    # ---------- queries ----------
    @property
    def tracks(self) -> List[Track]:
        return list(self._tracks.values())

    @property
    def instruments(self) -> List[str]:
        return list(self._tracks.keys())

    def get_track(self, instrument: str) -> Optional[Track]:
        return self._tracks.get(instrument)

    def __len__(self) -> int:
        return len(self._tracks)

    def total_note_count(self) -> int:
        return sum(len(t.notes) for t in self._tracks.values())

    def end_beat(self) -> float:
        return max((t.end_beat for t in self._tracks.values()), default=0.0)

    def ref_for(self, instrument: str, note: Note) -> NoteRef:
        track = self._tracks.get(instrument)
        i = track.index_of(note) if track is not None else -1
        if i < 0:
            raise StaleReferenceError(f"note not in track '{instrument}'")
        return NoteRef(self, instrument, i, note)

    def refs(self, instrument: Optional[str] = None) -> Iterator[NoteRef]:
        for inst, track in list(self._tracks.items()):
            if instrument is not None and inst != instrument:
                continue
            for i, n in enumerate(track.notes):
                yield NoteRef(self, inst, i, n)

    def note_at(self, beat: float, pitch: int, visible_only: bool = True) -> Optional[NoteRef]:
        """First note whose row is `pitch` and whose span contains `beat`."""
        for inst, track in self._tracks.items():
            if visible_only and inst not in self.visible:
                continue
            for i, n in enumerate(track.notes):
                if n.pitch != pitch or n.end is None:
                    continue
                if n.start <= beat <= n.end:
                    return NoteRef(self, inst, i, n)
        return None

    def notes_in_range(self, b0: float, b1: float, p_lo: int, p_hi: int,
                       visible_only: bool = True) -> List[NoteRef]:
        """Notes intersecting [b0, b1] in time with pitch in [p_lo, p_hi]."""
        b0, b1 = min(b0, b1), max(b0, b1)
        p_lo, p_hi = min(p_lo, p_hi), max(p_lo, p_hi)
        out: List[NoteRef] = []
        for inst, track in self._tracks.items():
            if visible_only and inst not in self.visible:
                continue
            if not track.notes:
                continue
            starts = np.fromiter((n.start for n in track.notes), dtype=float, count=len(track.notes))
            ends = np.fromiter((n.end if n.end is not None else n.start for n in track.notes),
                               dtype=float, count=len(track.notes))
            pitches = np.fromiter((n.pitch for n in track.notes), dtype=int, count=len(track.notes))
            mask = (ends >= b0) & (starts <= b1) & (pitches >= p_lo) & (pitches <= p_hi)
            for i in np.flatnonzero(mask):
                out.append(NoteRef(self, inst, int(i), track.notes[int(i)]))
        return out

    def open_note(self, instrument: str, pitch: int) -> Optional[NoteRef]:
        """Most recent note of `pitch` that has no end yet."""
        track = self._tracks.get(instrument)
        if track is None:
            return None
        for i in range(len(track.notes) - 1, -1, -1):
            n = track.notes[i]
            if n.pitch == pitch and n.end is None:
                return NoteRef(self, instrument, i, n)
        return None

    def open_notes(self) -> List[NoteRef]:
        return [r for r in self.refs() if r.end is None]

    # ---------- mutations ----------
    def get_or_create_track(self, instrument: str) -> Track:
        if not instrument or not isinstance(instrument, str):
            raise ValidationError(f"invalid instrument id: {instrument!r}")
        track = self._tracks.get(instrument)
        if track is None:
            track = Track(instrument)
            self._tracks[instrument] = track
            self.visible.add(instrument)
            log.debug("track created: %s", instrument)
        return track

    def add_note(self, instrument: str, pitch: int, start: float,
                 end: Optional[float] = None, velocity: int = DEFAULT_VELOCITY) -> NoteRef:
        if end is not None and float(end) < clamp_beat(start):
            raise ValidationError(f"note end {end} before start {start}")
        note = Note(pitch=pitch, start=start, end=end, velocity=velocity)
        track = self.get_or_create_track(instrument)
        track.notes.append(note)
        return NoteRef(self, instrument, len(track.notes) - 1, note)

    def remove_notes(self, refs: Iterable[NoteRef]) -> int:
        """Remove the referenced notes; stale refs are ignored. Returns count removed."""
        by_track: Dict[str, Set[int]] = defaultdict(set)
        for ref in refs:
            if not ref.alive:
                log.debug("skip stale ref %r", ref)
                continue
            by_track[ref.instrument].add(ref.index)
        removed = 0
        for inst, idxs in by_track.items():
            track = self._tracks[inst]
            # absteigend löschen, damit die übrigen Indizes gültig bleiben
            for i in sorted(idxs, reverse=True):
                del track.notes[i]
                removed += 1
            self._prune(inst)
        return removed

    def move_note_to_track(self, ref: NoteRef, instrument: str) -> NoteRef:
        note = ref.resolve()
        src = ref.instrument
        if src == instrument:
            return ref
        target = self.get_or_create_track(instrument)
        del self._tracks[src].notes[ref.index]
        target.notes.append(note)
        self._prune(src)
        return NoteRef(self, instrument, len(target.notes) - 1, note)

    def _prune(self, instrument: str):
        track = self._tracks.get(instrument)
        if track is not None and not track.notes:
            del self._tracks[instrument]
            self.visible.discard(instrument)
            log.debug("track pruned: %s", instrument)

    def clear(self):
        self._tracks.clear()
        self.visible.clear()

    def copy_tracks(self) -> Tuple[Track, ...]:
        return tuple(t.copy() for t in self._tracks.values())

    def replace_tracks(self, tracks: Iterable[Track]):
        """Swap in deep copies of `tracks`; visibility survives for kept ids."""
        new: Dict[str, Track] = {}
        for t in tracks:
            if not t.notes:
                continue
            if t.instrument in new:
                new[t.instrument].notes.extend(n.copy() for n in t.notes)
            else:
                new[t.instrument] = t.copy()
        old_ids = set(self._tracks)
        self._tracks = new
        self.visible = {i for i in self.visible if i in new} | {i for i in new if i not in old_ids}

    # ---------- visibility ----------
    def set_visible(self, instrument: str, visible: bool = True):
        if instrument not in self._tracks:
            return
        if visible:
            self.visible.add(instrument)
        else:
            self.visible.discard(instrument)

    def toggle_visible(self, instrument: str) -> bool:
        self.set_visible(instrument, instrument not in self.visible)
        return instrument in self.visible
