"""Tests for grid snapping and the pixel <-> beat/pitch mapping."""

from __future__ import annotations

import numpy as np
import pytest

from keysmidi.coords import CoordinateMapper
from keysmidi.model import Note
from keysmidi.snap import SnapEngine

# ── SnapEngine ─────────────────────────────────────────────


class TestSnapEngine:
    def test_quantize_rounds_half_up(self):
        s = SnapEngine(precision=4)
        assert s.quantize(0.125) == 0.25
        assert s.quantize(0.374) == 0.25
        assert s.quantize(1.0) == 1.0

    def test_soft_snap_within_radius(self):
        s = SnapEngine(precision=4, sensitivity=0.3)
        assert s.snap(0.26) == 0.25
        assert s.snap(0.35) == 0.35

    def test_disabled(self):
        s = SnapEngine(enabled=False)
        assert s.snap(0.26) == 0.26

    @pytest.mark.parametrize("t", [0.0, 0.01, 0.124, 0.125, 0.26, 0.49, 0.5, 3.333, 17.9])
    def test_idempotent(self, t):
        s = SnapEngine(precision=4, sensitivity=0.3)
        assert s.snap(s.snap(t)) == s.snap(t)

    def test_configure_clamps(self):
        s = SnapEngine()
        s.configure(precision=0, sensitivity=2.0)
        assert s.precision == 1
        assert s.sensitivity == 1.0
        s.configure(sensitivity=-1)
        assert s.sensitivity == 0.0
        assert s.precision == 1

    def test_snap_positions_keeps_duration(self, store):
        s = SnapEngine(precision=4)
        a = store.add_note("piano", 60, 0.3, 1.3)
        b = store.add_note("piano", 62, 1.0, 2.0)
        assert s.snap_positions([a, b]) == 1
        assert (a.start, a.end) == (0.25, pytest.approx(1.25))
        assert (b.start, b.end) == (1.0, 2.0)

    def test_snap_positions_empty(self):
        assert SnapEngine().snap_positions([]) == 0

    def test_snap_durations_never_below_grid(self, store):
        s = SnapEngine(precision=4)
        tiny = store.add_note("piano", 60, 0.0, 0.1)
        odd = store.add_note("piano", 62, 1.0, 1.6)
        assert s.snap_durations([tiny, odd]) == 1
        assert tiny.end == 0.1
        assert odd.end == pytest.approx(1.5)


# ── CoordinateMapper ───────────────────────────────────────


class TestCoordinateMapper:
    def test_defaults(self):
        m = CoordinateMapper()
        assert m.row_height == 12.5
        assert m.pixels_per_beat == 50.0

    def test_beat_x_roundtrip(self):
        m = CoordinateMapper(bpm=90)
        assert m.x_to_beat(m.beat_to_x(3.5)) == pytest.approx(3.5)
        assert m.x_to_beat(-20) == 0.0

    def test_pitch_rows(self):
        m = CoordinateMapper()
        assert m.pitch_to_y(127) == 0.0
        assert m.y_to_pitch(0.0) == 127
        assert m.y_to_pitch(m.pitch_to_y(60) + 1) == 60
        assert m.y_to_pitch(99999) == 0
        assert m.y_to_pitch(-5) == 127

    def test_arrays(self):
        m = CoordinateMapper()
        xs = m.beat_to_x(np.array([0.0, 1.0, 2.0]))
        assert list(xs) == [0.0, 50.0, 100.0]
        assert list(m.y_to_pitch([0.0, 12.5])) == [127, 126]

    def test_note_rect(self):
        m = CoordinateMapper()
        assert m.note_rect(Note(127, 1.0, 3.0)) == (50.0, 0.0, 100.0, 12.5)

    def test_zoom_clamped(self):
        m = CoordinateMapper()
        m.zoom(1)
        assert m.pixels_per_second == pytest.approx(110.0)
        m.zoom(100)
        assert m.pixels_per_second == 500.0
        m.zoom(-100)
        assert m.pixels_per_second == 20.0

    def test_zoom_at_keeps_anchor(self):
        m = CoordinateMapper()
        beat = m.x_to_beat(200.0)
        delta = m.zoom_at(1, 200.0)
        assert m.beat_to_x(beat) - delta == pytest.approx(200.0)

    def test_resize_rows(self):
        m = CoordinateMapper()
        m.resize_rows(2)
        assert m.canvas_height == 1700.0
        m.resize_rows(-100)
        assert m.canvas_height == 400.0
        assert m.row_height == 400.0 / 128
