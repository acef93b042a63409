# src/keysmidi/recorder.py
"""
Live keyboard input: sounds notes through the audio wrapper and, while
recording, writes them into the store at the current playhead beat.

The sustain pedal defers releases. A key released under the pedal keeps
its recorded note open (and its audio sounding) until the pedal comes up
or the same pitch is struck again.
"""
from __future__ import annotations
import logging
from typing import Callable, Dict, Set, Tuple

from .audio import SafeAudio
from .model import DEFAULT_VELOCITY
from .store import NoteRef, TrackStore

log = logging.getLogger(__name__)

DEFAULT_INSTRUMENT = "sampledPiano"


class Recorder:
    def __init__(self, store: TrackStore, audio: SafeAudio,
                 commit: Callable[[str], object],
                 instrument: str = DEFAULT_INSTRUMENT):
        self.store = store
        self.audio = audio
        self._commit = commit
        self.instrument = instrument
        self.recording = False
        self.sustain = False
        self.pending: Dict[int, NoteRef] = {}           # pitch -> Note, Ende aufgeschoben
        self._held_audio: Set[Tuple[str, int]] = set()  # klingt nur noch wegen Pedal
        self._recorded = 0

    # ---------- recording ----------
    def start(self):
        self.recording = True
        self.pending.clear()
        self._recorded = 0
        log.info("recording started (%s)", self.instrument)

    def stop(self, beat: float) -> int:
        """Close every open note at `beat`. Returns the number of notes recorded."""
        if not self.recording:
            return 0
        for ref in self.store.open_notes():
            ref.end = max(beat, ref.start)
        self.pending.clear()
        self.recording = False
        n, self._recorded = self._recorded, 0
        if n:
            self._commit("record")
        log.info("recording stopped: %d notes", n)
        return n

    def _record_on(self, pitch: int, beat: float, velocity: int):
        pend = self.pending.pop(pitch, None)
        if pend is not None and pend.alive and pend.end is None:
            pend.end = max(beat, pend.start)
        self.store.add_note(self.instrument, pitch, beat, None, velocity)
        self._recorded += 1

    def _record_off(self, pitch: int, beat: float):
        ref = self.store.open_note(self.instrument, pitch)
        if ref is None:
            return
        if self.sustain:
            self.pending[pitch] = ref
        else:
            ref.end = max(beat, ref.start)

    # ---------- keys & pedal ----------
    def key_on(self, pitch: int, beat: float, velocity: int = DEFAULT_VELOCITY):
        if self.recording:
            self._record_on(pitch, beat, velocity)
        self._held_audio.discard((self.instrument, pitch))
        self.audio.play_note(pitch, velocity, self.sustain, self.instrument)

    def key_off(self, pitch: int, beat: float):
        if self.recording:
            self._record_off(pitch, beat)
        if self.sustain:
            self._held_audio.add((self.instrument, pitch))
        else:
            self.audio.stop_note(pitch, self.instrument)

    def pedal_down(self):
        self.sustain = True

    def pedal_up(self, beat: float):
        self.sustain = False
        for pitch, ref in list(self.pending.items()):
            if ref.alive and ref.end is None:
                ref.end = max(beat, ref.start)
        self.pending.clear()
        for inst, pitch in sorted(self._held_audio):
            self.audio.stop_note(pitch, inst)
        self._held_audio.clear()
