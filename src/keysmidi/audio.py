# src/keysmidi/audio.py
from __future__ import annotations
import logging
from typing import Optional, Protocol, Set, Tuple

log = logging.getLogger(__name__)


class AudioEngine(Protocol):
    def play_note(self, pitch: int, velocity: int, allow_retrigger: bool, instrument: str) -> None: ...
    def stop_note(self, pitch: int, instrument: str) -> None: ...


class NullAudio:
    """Silent engine for headless use and tests."""

    def play_note(self, pitch, velocity, allow_retrigger, instrument):
        pass

    def stop_note(self, pitch, instrument):
        pass


class SafeAudio:
    """
    Wraps the external audio engine: calls are fire-and-forget, failures
    are logged and swallowed so a broken instrument never aborts the
    session. Also remembers which (instrument, pitch) pairs are sounding
    so `release_all` can stop them (no stuck notes).
    """

    def __init__(self, engine: Optional[AudioEngine] = None):
        self.engine = engine or NullAudio()
        self.sounding: Set[Tuple[str, int]] = set()
        self.failures = 0

    def play_note(self, pitch: int, velocity: int, allow_retrigger: bool, instrument: str) -> bool:
        try:
            self.engine.play_note(pitch, velocity, allow_retrigger, instrument)
        except Exception as e:
            self.failures += 1
            log.warning("audio play_note(%s, %s) failed: %s", instrument, pitch, e)
            return False
        self.sounding.add((instrument, pitch))
        return True

    def stop_note(self, pitch: int, instrument: str) -> bool:
        self.sounding.discard((instrument, pitch))
        try:
            self.engine.stop_note(pitch, instrument)
        except Exception as e:
            self.failures += 1
            log.warning("audio stop_note(%s, %s) failed: %s", instrument, pitch, e)
            return False
        return True

    def release_all(self) -> int:
        pending = sorted(self.sounding)
        for instrument, pitch in pending:
            self.stop_note(pitch, instrument)
        return len(pending)
