from __future__ import annotations

import pytest

from keysmidi.session import Session
from keysmidi.store import TrackStore


class FakeClock:
    def __init__(self, t: float = 100.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, dt: float):
        self.t += dt


class RecordingAudio:
    """Audio collaborator that just remembers what it was asked to do."""

    def __init__(self):
        self.calls = []

    def play_note(self, pitch, velocity, allow_retrigger, instrument):
        self.calls.append(("on", instrument, pitch, velocity, allow_retrigger))

    def stop_note(self, pitch, instrument):
        self.calls.append(("off", instrument, pitch))

    def ons(self):
        return [c for c in self.calls if c[0] == "on"]

    def offs(self):
        return [c for c in self.calls if c[0] == "off"]


class BrokenAudio:
    def play_note(self, pitch, velocity, allow_retrigger, instrument):
        raise RuntimeError("sampler not loaded")

    def stop_note(self, pitch, instrument):
        raise RuntimeError("sampler not loaded")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def audio():
    return RecordingAudio()


@pytest.fixture
def store():
    return TrackStore()


@pytest.fixture
def session(clock, audio):
    # leere Konfiguration: reine Defaults, keine Benutzerdatei
    return Session(config={}, audio=audio, clock=clock)


# Default view: 120 bpm, 100 px/s -> 50 px per beat; 1600 px / 128 rows -> 12.5 px per row.
PX_PER_BEAT = 50.0
ROW_H = 12.5


def xy(beat: float, pitch: int):
    """Pixel position inside the row of `pitch` at `beat` for the default view."""
    return beat * PX_PER_BEAT, (127 - pitch) * ROW_H + ROW_H / 2
