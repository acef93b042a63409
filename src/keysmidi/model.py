# src/keysmidi/model.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

MIN_PITCH, MAX_PITCH = 0, 127
MIN_VELOCITY, MAX_VELOCITY = 0, 100
DEFAULT_VELOCITY = 100
DEFAULT_BPM = 120.0
DEFAULT_BEATS_PER_MEASURE = 4

NOTE_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")

def _clamp(v: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, v))

def clamp_pitch(p) -> int:
    return _clamp(int(round(float(p))), MIN_PITCH, MAX_PITCH)

def clamp_velocity(v) -> int:
    return _clamp(int(round(float(v))), MIN_VELOCITY, MAX_VELOCITY)

def clamp_beat(t) -> float:
    return max(0.0, float(t))

def note_name(pitch: int) -> str:
    """60 -> 'C4' (MIDI octave numbering, C-1 = 0)."""
    p = clamp_pitch(pitch)
    return f"{NOTE_NAMES[p % 12]}{p // 12 - 1}"


@dataclass
class Note:
    pitch: int
    start: float          # beats
    end: Optional[float] = None   # None: Taste wird noch gehalten (Aufnahme)
    velocity: int = DEFAULT_VELOCITY

    # Klemmung bei jeder Zuweisung, auch im generierten __init__
    def __setattr__(self, name, value):
        if name == "pitch":
            value = clamp_pitch(value)
        elif name == "velocity":
            value = clamp_velocity(value)
        elif name == "start":
            value = clamp_beat(value)
        elif name == "end" and value is not None:
            value = clamp_beat(value)
        object.__setattr__(self, name, value)

    def __post_init__(self):
        if self.end is not None and self.end < self.start:
            self.end = self.start

    @property
    def is_open(self) -> bool:
        return self.end is None

    @property
    def duration(self) -> float:
        if self.end is None:
            return 0.0
        return max(0.0, self.end - self.start)

    def set_span(self, start: float, end: Optional[float]):
        """Set start and end together; end never ends up before start."""
        start = clamp_beat(start)
        if end is not None:
            end = max(start, float(end))
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    def shifted(self, dt: float) -> Tuple[float, Optional[float]]:
        """(start, end) moved by dt, start clamped at 0 with duration kept."""
        start = max(0.0, self.start + dt)
        end = None if self.end is None else start + self.duration
        return start, end

    def copy(self) -> "Note":
        return Note(pitch=self.pitch, start=self.start, end=self.end, velocity=self.velocity)

    def fingerprint(self) -> Tuple[int, float, Optional[float]]:
        return (self.pitch, self.start, self.end)


@dataclass
class Track:
    instrument: str
    notes: List[Note] = field(default_factory=list)

    def copy(self) -> "Track":
        return Track(self.instrument, [n.copy() for n in self.notes])

    def index_of(self, note: Note) -> int:
        """Identity lookup; list.index() would match equal-valued duplicates."""
        for i, n in enumerate(self.notes):
            if n is note:
                return i
        return -1

    @property
    def end_beat(self) -> float:
        return max((n.end if n.end is not None else n.start for n in self.notes), default=0.0)
