"""Tests for the editing engine, driven through the session's input routing."""

from __future__ import annotations

import pytest

from conftest import xy
from keysmidi.editor import KeyEvent, Mode, Modifiers, Selection
from keysmidi.errors import ValidationError

CTRL = Modifiers(ctrl=True)


def notes(session, instrument="sampledPiano"):
    t = session.store.get_track(instrument)
    return [] if t is None else [(n.pitch, n.start, n.end) for n in t.notes]


@pytest.fixture
def two(session):
    """A = pitch 60 over [1, 2], B = pitch 62 over [2, 4]."""
    a = session.store.add_note("sampledPiano", 60, 1.0, 2.0)
    b = session.store.add_note("sampledPiano", 62, 2.0, 4.0)
    session.commit("record")
    return a, b


def last_tag(session):
    return session.history.current.tag


# ── selection ──────────────────────────────────────────────


class TestSelection:
    def test_dedup(self, store):
        a = store.add_note("piano", 60, 0.0, 1.0)
        sel = Selection([a, next(store.refs())])
        assert len(sel) == 1
        assert sel.add(a) is False

    def test_toggle(self, store):
        a = store.add_note("piano", 60, 0.0, 1.0)
        sel = Selection()
        assert sel.toggle(a) is True
        assert sel.toggle(a) is False
        assert not sel

    def test_prune(self, store):
        a = store.add_note("piano", 60, 0.0, 1.0)
        store.add_note("piano", 61, 0.0, 1.0)
        sel = Selection([a])
        store.remove_notes([a])
        assert sel.prune() == 1


class TestClickSelect:
    def test_click_selects_note(self, session, two):
        a, b = two
        session.pointer_down(*xy(1.5, 60))
        session.pointer_up(*xy(1.5, 60))
        assert session.selection.refs[0].same_note(a)
        assert len(session.selection) == 1
        assert session.editor.mode is Mode.IDLE

    def test_click_empty_clears_and_sets_playhead(self, session, two):
        session.pointer_down(*xy(1.5, 60))
        session.pointer_up(*xy(1.5, 60))
        session.pointer_down(200.0, 100.0)
        session.pointer_up(202.0, 101.0)
        assert not session.selection
        assert session.playhead == 4.0

    def test_ctrl_click_toggles(self, session, two):
        a, b = two
        session.pointer_down(*xy(1.5, 60), CTRL)
        session.pointer_up(*xy(1.5, 60))
        session.pointer_down(*xy(3.0, 62), CTRL)
        session.pointer_up(*xy(3.0, 62))
        assert len(session.selection) == 2
        session.pointer_down(*xy(1.5, 60), CTRL)
        session.pointer_up(*xy(1.5, 60))
        assert len(session.selection) == 1
        assert session.selection.first.same_note(b)

    def test_click_on_selected_without_drag_deselects_it(self, session, two):
        a, b = two
        for beat, pitch in ((1.5, 60), (3.0, 62)):
            session.pointer_down(*xy(beat, pitch), CTRL)
            session.pointer_up(*xy(beat, pitch))
        session.pointer_down(*xy(1.5, 60))
        session.pointer_up(*xy(1.5, 60))
        assert len(session.selection) == 1
        assert session.selection.first.same_note(b)

    def test_range_select(self, session, two):
        c = session.store.add_note("sampledPiano", 80, 1.0, 2.0)
        session.pointer_down(*xy(0.5, 64))
        assert session.editor.mode is Mode.RANGE_SELECTING
        session.pointer_move(*xy(3.0, 58))
        assert len(session.editor.preselected) == 2
        session.pointer_up(*xy(3.0, 58))
        assert sorted(r.pitch for r in session.selection) == [60, 62]
        assert not session.selection.contains(c)
        assert session.editor.preselected == []

    def test_select_all_shortcut(self, session, two):
        assert session.key_down(KeyEvent("a", ctrl=True))
        assert len(session.selection) == 2

    def test_hover_and_preview(self, session, two):
        session.pointer_move(*xy(1.5, 60))
        assert session.editor.hovered.pitch == 60
        assert session.editor.preview_x is None
        session.pointer_move(400.0, 100.0)
        assert session.editor.hovered is None
        assert session.editor.preview_x == 400.0
        session.pointer_leave()
        assert session.editor.preview_x is None


# ── drags ──────────────────────────────────────────────────


class TestDrag:
    def test_move_time_and_pitch(self, session, two):
        x, y = xy(1.5, 60)
        session.pointer_down(x, y)
        session.pointer_move(x + 25, y)
        session.pointer_move(*xy(2.5, 62))
        session.pointer_up(*xy(2.5, 62))
        assert notes(session)[0] == (62, 2.0, 3.0)
        assert last_tag(session) == "move"
        session.undo()
        assert notes(session)[0] == (60, 1.0, 2.0)

    def test_move_snaps_to_grid(self, session, two):
        x, y = xy(1.5, 60)
        session.pointer_down(x, y)
        session.pointer_move(x + 13.0, y)      # +0.26 beats
        session.pointer_up(x + 13.0, y)
        assert notes(session)[0] == (60, 1.25, 2.25)

    def test_move_clamps_at_zero_keeping_duration(self, session):
        session.store.add_note("sampledPiano", 60, 0.5, 1.5)
        x, y = xy(1.0, 60)
        session.pointer_down(x, y)
        session.pointer_move(x - 100.0, y)
        session.pointer_up(x - 100.0, y)
        assert notes(session)[0] == (60, 0.0, 1.0)

    def test_group_move(self, session, two):
        for beat, pitch in ((1.5, 60), (3.0, 62)):
            session.pointer_down(*xy(beat, pitch), CTRL)
            session.pointer_up(*xy(beat, pitch))
        session.pointer_down(*xy(1.5, 60))
        session.pointer_move(*xy(2.5, 59))
        session.pointer_up(*xy(2.5, 59))
        assert notes(session) == [(59, 2.0, 3.0), (61, 3.0, 5.0)]
        assert len(session.selection) == 2

    def test_resize_right(self, session, two):
        y = xy(0, 60)[1]
        session.pointer_down(99.0, y)
        assert session.editor.drag_type.value == "resize-right"
        session.pointer_move(151.0, y)
        session.pointer_up(151.0, y)
        assert notes(session)[0] == (60, 1.0, 3.0)
        assert last_tag(session) == "resize"

    def test_resize_left(self, session, two):
        y = xy(0, 60)[1]
        session.pointer_down(51.0, y)
        assert session.editor.drag_type.value == "resize-left"
        session.pointer_move(25.0, y)
        assert notes(session)[0] == (60, 0.5, 2.0)
        session.pointer_move(125.0, y)      # past the end: frame ignored
        assert notes(session)[0] == (60, 0.5, 2.0)
        session.pointer_up(125.0, y)

    def test_stretch_right(self, session, two):
        for beat, pitch in ((1.5, 60), (3.0, 62)):
            session.pointer_down(*xy(beat, pitch), CTRL)
            session.pointer_up(*xy(beat, pitch))
        y = xy(0, 62)[1]
        session.pointer_down(198.0, y)
        session.pointer_move(350.0, y)
        session.pointer_up(350.0, y)
        pivot, ratio = 1.0, 2.5            # B: (7-2)/(4-2)
        for (p, s, e), (s0, e0) in zip(notes(session), ((1.0, 2.0), (2.0, 4.0))):
            assert e - pivot == pytest.approx((e0 - pivot) * ratio)
            assert s - pivot == pytest.approx((s0 - pivot) * ratio)
        assert last_tag(session) == "stretch"
        assert len(session.selection) == 2

    def test_stretch_left(self, session, two):
        for beat, pitch in ((1.5, 60), (3.0, 62)):
            session.pointer_down(*xy(beat, pitch), CTRL)
            session.pointer_up(*xy(beat, pitch))
        y = xy(0, 60)[1]
        session.pointer_down(52.0, y)
        session.pointer_move(37.5, y)       # beat 0.75: A dauert 1.25 statt 1
        session.pointer_up(37.5, y)
        assert notes(session) == [(60, pytest.approx(0.25), pytest.approx(1.5)),
                                  (62, pytest.approx(1.5), pytest.approx(4.0))]

    def test_stretch_ratio_follows_reference_duration(self, session, two):
        for beat, pitch in ((1.5, 60), (3.0, 62)):
            session.pointer_down(*xy(beat, pitch), CTRL)
            session.pointer_up(*xy(beat, pitch))
        y = xy(0, 60)[1]
        session.pointer_down(52.0, y)
        session.pointer_move(37.5, y)
        pivot, ratio = 4.0, 1.25
        for (p, s, e), (s0, e0) in zip(notes(session), ((1.0, 2.0), (2.0, 4.0))):
            assert pivot - e == pytest.approx((pivot - e0) * ratio)
            assert pivot - s == pytest.approx((pivot - s0) * ratio)
        session.pointer_move(12.5, y)       # A haette Start -0.5
        assert notes(session)[0][1] == pytest.approx(0.25)
        session.pointer_up(12.5, y)

    def test_stretch_below_zero_is_ignored(self, session, two):
        for beat, pitch in ((1.5, 60), (3.0, 62)):
            session.pointer_down(*xy(beat, pitch), CTRL)
            session.pointer_up(*xy(beat, pitch))
        y = xy(0, 62)[1]
        session.pointer_down(102.0, y)
        session.pointer_move(0.0, y)        # A would start at -2
        session.pointer_up(0.0, y)
        assert notes(session) == [(60, 1.0, 2.0), (62, 2.0, 4.0)]

    def test_pointer_blocked_while_playing(self, session, two):
        assert session.play()
        assert session.pointer_down(*xy(1.5, 60)) is False
        assert not session.selection


# ── keyboard & wheel ───────────────────────────────────────


def select(session, *points):
    session.editor.clear_selection()
    for beat, pitch in points:
        session.pointer_down(*xy(beat, pitch), CTRL)
        session.pointer_up(*xy(beat, pitch))


class TestCommands:
    def test_nudge(self, session, two):
        select(session, (1.5, 60))
        session.key_down(KeyEvent("ArrowRight"))
        session.key_down(KeyEvent("ArrowRight", shift=True))
        session.key_down(KeyEvent("ArrowUp"))
        assert notes(session)[0] == (61, 1.75, 2.75)
        assert session.keymap.octave_shift == 0

    def test_nudges_merge_into_one_step(self, session, two):
        select(session, (1.5, 60))
        for _ in range(3):
            session.key_down(KeyEvent("ArrowLeft"))
        assert notes(session)[0] == (60, 0.25, 1.25)
        session.undo()
        assert notes(session)[0] == (60, 1.0, 2.0)

    def test_nudge_left_clamps(self, session, two):
        select(session, (1.5, 60))
        for _ in range(8):
            session.key_down(KeyEvent("ArrowLeft", shift=True))
        assert notes(session)[0] == (60, 0.0, 1.0)

    def test_delete_prunes_track(self, session, two):
        select(session, (1.5, 60), (3.0, 62))
        assert session.key_down(KeyEvent("Delete"))
        assert session.tracks == []
        assert session.visible == set()
        assert last_tag(session) == "delete"
        session.undo()
        assert len(notes(session)) == 2

    def test_copy_paste_at_playhead(self, session, two):
        select(session, (1.5, 60), (3.0, 62))
        session.key_down(KeyEvent("c", ctrl=True))
        session.transport.set_playhead(8.0)
        session.key_down(KeyEvent("v", meta=True))
        assert notes(session)[2:] == [(60, 8.0, 9.0), (62, 9.0, 11.0)]
        assert sorted(r.start for r in session.selection) == [8.0, 9.0]
        assert last_tag(session) == "paste"

    def test_cut(self, session, two):
        select(session, (1.5, 60))
        session.key_down(KeyEvent("x", ctrl=True))
        assert notes(session) == [(62, 2.0, 4.0)]
        assert last_tag(session) == "cut"
        assert session.editor.paste()
        assert (60, 0.0, 1.0) in notes(session)

    def test_paste_with_empty_clipboard(self, session, two):
        assert session.editor.paste() is False

    def test_velocity_wheel(self, session, two):
        select(session, (1.5, 60))
        for _ in range(3):
            assert session.wheel(*xy(1.5, 60), dy=1.0)
        assert session.store.get_track("sampledPiano").notes[0].velocity == 85
        session.wheel(*xy(1.5, 60), dy=-1.0)
        assert session.store.get_track("sampledPiano").notes[0].velocity == 90
        assert session.wheel(*xy(3.0, 62), dy=1.0) is False

    def test_set_values(self, session, two):
        select(session, (1.5, 60))
        session.editor.set_values(pitch=72, velocity=50, end=3.0)
        n = session.store.get_track("sampledPiano").notes[0]
        assert (n.pitch, n.velocity, n.end) == (72, 50, 3.0)
        assert last_tag(session) == "edit-value"

    def test_set_values_rejects_inverted_span(self, session, two):
        select(session, (1.5, 60))
        with pytest.raises(ValidationError):
            session.editor.set_values(pitch=72, end=0.5)
        assert notes(session)[0] == (60, 1.0, 2.0)

    def test_reassign_instrument(self, session, two):
        select(session, (1.5, 60), (3.0, 62))
        assert session.editor.reassign_instrument("synth") == 2
        assert session.store.get_track("sampledPiano") is None
        assert notes(session, "synth") == [(60, 1.0, 2.0), (62, 2.0, 4.0)]
        assert all(r.instrument == "synth" for r in session.selection)
        assert last_tag(session) == "reassign"

    def test_snap_commands(self, session):
        session.store.add_note("sampledPiano", 60, 1.1, 2.0)
        select(session, (1.5, 60))
        assert session.editor.snap_selection_positions() == 1
        assert notes(session)[0] == (60, 1.0, pytest.approx(1.9))
        assert last_tag(session) == "snap-position"
        assert session.editor.snap_selection_durations() == 1
        assert notes(session)[0] == (60, 1.0, 2.0)
        assert last_tag(session) == "snap-duration"

    def test_snap_with_empty_selection(self, session, two):
        before = len(session.history.entries)
        assert session.editor.snap_selection_positions() == 0
        assert len(session.history.entries) == before

    def test_summary(self, session, two):
        assert session.editor.summary() == {"count": 0}
        select(session, (1.5, 60))
        s = session.editor.summary()
        assert s["name"] == "C4" and s["count"] == 1
        select(session, (1.5, 60), (3.0, 62))
        s = session.status()["selection"]
        assert (s["count"], s["start"], s["end"]) == (2, 1.0, 4.0)
