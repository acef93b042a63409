# src/keysmidi/transport.py
"""
Playhead, playback and metronome, driven by a fixed-tick scheduler.

There are no threads here: the host loop calls ``Transport.pump()`` (or
``TickScheduler.pump()``) as often as it likes, and one tick fires per
elapsed interval of the injected clock. Playhead position is derived from
an anchor ``(wall time, beat)`` and the current bpm, so changing the tempo
only needs a re-anchor.
"""
from __future__ import annotations
import enum
import logging
import math
import time
from typing import Callable, Dict, Optional, Tuple

from .audio import SafeAudio
from .errors import ValidationError
from .model import DEFAULT_BEATS_PER_MEASURE, DEFAULT_BPM
from .store import TrackStore
from .util.time import seconds_to_beats

log = logging.getLogger(__name__)

Clock = Callable[[], float]


class TickScheduler:
    """Fires `callback(now)` once per elapsed `interval` seconds."""

    def __init__(self, interval: float, callback: Callable[[float], None],
                 clock: Clock = time.monotonic, max_catchup: int = 4):
        if interval <= 0:
            raise ValidationError("tick interval must be positive")
        self.interval = float(interval)
        self.callback = callback
        self.clock = clock
        self.max_catchup = max(1, int(max_catchup))
        self._next: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._next is not None

    def start(self, now: Optional[float] = None):
        now = self.clock() if now is None else now
        self._next = now + self.interval

    def stop(self):
        self._next = None

    def pump(self, now: Optional[float] = None) -> int:
        """Run due ticks; returns how many fired."""
        if self._next is None:
            return 0
        now = self.clock() if now is None else now
        fired = 0
        while self._next is not None and now >= self._next and fired < self.max_catchup:
            tick_time = self._next
            self._next += self.interval
            self.callback(tick_time)
            fired += 1
        if self._next is not None and now >= self._next:
            # zu weit hinterher: Rest verwerfen statt nachholen
            self._next = now + self.interval
        return fired


class TransportState(enum.Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"
    RECORDING = "recording"


class Transport:
    def __init__(self, store: TrackStore, audio: SafeAudio,
                 bpm: float = DEFAULT_BPM,
                 beats_per_measure: int = DEFAULT_BEATS_PER_MEASURE,
                 tick_hz: float = 60.0,
                 clock: Clock = time.monotonic):
        self.store = store
        self.audio = audio
        self.clock = clock
        self.state = TransportState.STOPPED
        self.bpm = float(bpm)
        self.beats_per_measure = int(beats_per_measure)
        self.metronome_enabled = False
        self.on_metronome: Optional[Callable[[int, bool], None]] = None   # (beat, downbeat)
        self.on_auto_pause: Optional[Callable[[], None]] = None
        self.scheduler = TickScheduler(1.0 / tick_hz, self._tick, clock)
        self._playhead = 0.0
        self._anchor: Tuple[float, float] = (0.0, 0.0)   # (wall time, beat)
        self._active: Dict[int, Tuple[str, int]] = {}    # id(note) -> (instrument, pitch)

    # ---------- position ----------
    @property
    def playhead(self) -> float:
        return self._playhead

    @property
    def is_playing(self) -> bool:
        return self.state is TransportState.PLAYING

    @property
    def is_recording(self) -> bool:
        return self.state is TransportState.RECORDING

    @property
    def is_running(self) -> bool:
        return self.state in (TransportState.PLAYING, TransportState.RECORDING)

    def position(self, now: float) -> float:
        wall, beat = self._anchor
        return max(0.0, beat + seconds_to_beats(now - wall, self.bpm))

    def _reanchor(self, now: float, beat: float):
        self._anchor = (now, beat)

    def set_playhead(self, beat: float):
        self._playhead = max(0.0, float(beat))
        if self.is_running:
            self._release()
            self._reanchor(self.clock(), self._playhead)

    def set_bpm(self, bpm: float):
        bpm = float(bpm)
        if not bpm > 0:
            raise ValidationError(f"bpm must be positive, got {bpm}")
        if self.is_running:
            now = self.clock()
            self._reanchor(now, self.position(now))
        self.bpm = bpm

    def set_beats_per_measure(self, n: int):
        if int(n) != n or n < 1:
            raise ValidationError(f"beats per measure must be a positive integer, got {n}")
        self.beats_per_measure = int(n)

    # ---------- state changes ----------
    def has_notes_from(self, beat: float) -> bool:
        for track in self.store.tracks:
            for n in track.notes:
                if n.start >= beat or (n.end is not None and n.start < beat < n.end):
                    return True
        return False

    def play(self) -> bool:
        """Start playback at the playhead; nothing left to play means pause."""
        if self.is_playing:
            return True
        if not self.has_notes_from(self._playhead):
            log.info("nothing to play after beat %.3f", self._playhead)
            self.pause()
            return False
        now = self.clock()
        self._reanchor(now, self._playhead)
        self.state = TransportState.PLAYING
        self.scheduler.start(now)
        return True

    def pause(self):
        self.scheduler.stop()
        self._release()
        self.state = TransportState.PAUSED

    def stop(self):
        self.scheduler.stop()
        self._release()
        self.state = TransportState.STOPPED
        self._playhead = 0.0

    def start_recording(self):
        if self.is_playing:
            self.pause()
        now = self.clock()
        self._reanchor(now, self._playhead)
        self.state = TransportState.RECORDING
        self.scheduler.start(now)

    def stop_recording(self):
        """Leave recording; the playhead stays where recording ended."""
        if not self.is_recording:
            return
        self._playhead = self.position(self.clock())
        self.scheduler.stop()
        self.state = TransportState.STOPPED

    def current_beat(self) -> float:
        """Live position while running, the parked playhead otherwise."""
        if self.is_running:
            return self.position(self.clock())
        return self._playhead

    def _release(self):
        for inst, pitch in self._active.values():
            self.audio.stop_note(pitch, inst)
        self._active.clear()
        self.audio.release_all()

    # ---------- ticking ----------
    def pump(self, now: Optional[float] = None) -> int:
        return self.scheduler.pump(now)

    def _tick(self, now: float):
        prev = self._playhead
        beat = self.position(now)
        self._playhead = beat
        if self.metronome_enabled and self.on_metronome is not None:
            b = math.floor(beat)
            if b > math.floor(prev):
                self.on_metronome(b, b % self.beats_per_measure == 0)
        if self.state is TransportState.PLAYING:
            self._play_crossings(beat)
            if beat > self.store.end_beat():
                log.debug("auto-pause at beat %.3f", beat)
                self.pause()
                if self.on_auto_pause is not None:
                    self.on_auto_pause()

    def _play_crossings(self, beat: float):
        for track in self.store.tracks:
            inst = track.instrument
            for n in track.notes:
                if n.end is None:
                    continue
                k = id(n)
                if n.start <= beat < n.end:
                    if k not in self._active:
                        self.audio.play_note(n.pitch, n.velocity, False, inst)
                        self._active[k] = (inst, n.pitch)
                elif k in self._active:
                    self.audio.stop_note(n.pitch, inst)
                    del self._active[k]
