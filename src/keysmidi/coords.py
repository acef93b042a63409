# src/keysmidi/coords.py
from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .model import MAX_PITCH, MIN_PITCH, DEFAULT_BPM, Note

PITCH_ROWS = MAX_PITCH - MIN_PITCH + 1  # 128


@dataclass
class CoordinateMapper:
    """
    Beats/pitch <-> pixel coordinates of the piano roll.

    x grows with time (pixels_per_second at the current tempo), y grows
    downwards; pitch 127 is the top row. All functions accept scalars or
    numpy arrays.
    """
    bpm: float = DEFAULT_BPM
    pixels_per_second: float = 100.0
    canvas_height: float = 1600.0
    min_pps: float = 20.0
    max_pps: float = 500.0
    zoom_factor: float = 1.1
    min_canvas_height: float = 400.0
    height_step: float = 50.0

    @property
    def row_height(self) -> float:
        return self.canvas_height / PITCH_ROWS

    @property
    def pixels_per_beat(self) -> float:
        return self.pixels_per_second * 60.0 / max(1e-6, self.bpm)

    # --- time axis ---
    def beat_to_x(self, beat):
        if isinstance(beat, (list, tuple, np.ndarray)):
            return np.asarray(beat, dtype=float) * self.pixels_per_beat
        return float(beat) * self.pixels_per_beat

    def x_to_beat(self, x):
        if isinstance(x, (list, tuple, np.ndarray)):
            return np.maximum(0.0, np.asarray(x, dtype=float) / self.pixels_per_beat)
        return max(0.0, float(x) / self.pixels_per_beat)

    def dx_to_beats(self, dx: float) -> float:
        return float(dx) / self.pixels_per_beat

    # --- pitch axis ---
    def pitch_to_y(self, pitch):
        """Top edge of the pitch row."""
        if isinstance(pitch, (list, tuple, np.ndarray)):
            return (MAX_PITCH - np.asarray(pitch, dtype=float)) * self.row_height
        return (MAX_PITCH - float(pitch)) * self.row_height

    def y_to_pitch(self, y):
        if isinstance(y, (list, tuple, np.ndarray)):
            p = MAX_PITCH - np.floor(np.asarray(y, dtype=float) / self.row_height)
            return np.clip(p, MIN_PITCH, MAX_PITCH).astype(int)
        p = MAX_PITCH - int(math.floor(float(y) / self.row_height))
        return max(MIN_PITCH, min(MAX_PITCH, p))

    def note_rect(self, note: Note) -> Tuple[float, float, float, float]:
        """(x, y, width, height) of a note in pixels; open notes have width 0."""
        x = self.beat_to_x(note.start)
        w = self.beat_to_x(note.duration)
        return x, self.pitch_to_y(note.pitch), w, self.row_height

    # --- zoom ---
    def zoom(self, steps: int) -> float:
        """Positive steps zoom in by zoom_factor each; clamped to [min_pps, max_pps]."""
        pps = self.pixels_per_second * (self.zoom_factor ** steps)
        self.pixels_per_second = max(self.min_pps, min(self.max_pps, pps))
        return self.pixels_per_second

    def zoom_at(self, steps: int, anchor_x: float) -> float:
        """Zoom and return the scroll delta that keeps the beat under anchor_x in place."""
        beat = self.x_to_beat(anchor_x)
        self.zoom(steps)
        return self.beat_to_x(beat) - anchor_x

    def resize_rows(self, steps: int) -> float:
        h = self.canvas_height + steps * self.height_step
        self.canvas_height = max(self.min_canvas_height, h)
        return self.canvas_height
