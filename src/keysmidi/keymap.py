# src/keysmidi/keymap.py
from __future__ import annotations
from typing import Dict, Optional

from .model import MAX_PITCH, MIN_PITCH

# Computer keyboard -> MIDI, drei Reihen ab C2 (36) bis C5 (72)
DEFAULT_KEYMAP: Dict[str, int] = {
    "q": 36, "2": 37, "w": 38, "3": 39, "e": 40, "r": 41, "5": 42,
    "t": 43, "6": 44, "y": 45, "7": 46, "u": 47,
    "i": 48, "9": 49, "o": 50, "0": 51, "p": 52, "[": 53, "=": 54, "]": 55,
    "a": 56, "z": 57, "s": 58, "x": 59, "c": 60, "f": 61, "v": 62,
    "g": 63, "b": 64, "n": 65, "j": 66, "m": 67, "k": 68, ",": 69,
    "l": 70, ".": 71, "/": 72,
}

MAX_OCTAVE_SHIFT = 3
MAX_SEMITONE_SHIFT = 11


class KeyMapper:
    def __init__(self, keymap: Optional[Dict[str, int]] = None):
        self.keymap = dict(keymap or DEFAULT_KEYMAP)
        self.octave_shift = 0
        self.semitone_shift = 0

    def pitch_for(self, key: str) -> Optional[int]:
        base = self.keymap.get((key or "").lower())
        if base is None:
            return None
        p = base + self.octave_shift * 12 + self.semitone_shift
        if p < MIN_PITCH or p > MAX_PITCH:
            return None
        return p

    def shift_octave(self, direction: int) -> int:
        self.octave_shift = max(-MAX_OCTAVE_SHIFT, min(MAX_OCTAVE_SHIFT, self.octave_shift + direction))
        return self.octave_shift

    def shift_semitone(self, direction: int) -> int:
        self.semitone_shift = max(-MAX_SEMITONE_SHIFT, min(MAX_SEMITONE_SHIFT, self.semitone_shift + direction))
        return self.semitone_shift

    def reset(self):
        self.octave_shift = 0
        self.semitone_shift = 0
