# src/keysmidi/editor.py
"""
Selection & editing engine of the piano roll.

Pointer input arrives in local pixel coordinates. A press on empty space
starts a range selection (or, if the pointer barely moves, places the
playhead); a press on a note starts a move or an edge resize, decided by
where inside the note the press landed. With several notes selected an
edge drag stretches the whole group proportionally around a pivot.

All drag frames are computed from the positions captured at press time,
so intermediate frames never accumulate rounding error. History is
committed once per completed gesture.
"""
from __future__ import annotations
import enum
import logging
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .config import Settings
from .coords import CoordinateMapper
from .errors import ValidationError
from .model import Note, clamp_pitch, note_name
from .snap import SnapEngine
from .store import NoteRef, TrackStore

log = logging.getLogger(__name__)


class Mode(enum.Enum):
    IDLE = "idle"
    RANGE_SELECTING = "range-selecting"
    EDITING = "editing"


class DragType(enum.Enum):
    MOVE = "move"
    RESIZE_LEFT = "resize-left"
    RESIZE_RIGHT = "resize-right"


@dataclass
class Modifiers:
    ctrl: bool = False
    shift: bool = False
    meta: bool = False
    alt: bool = False

    @property
    def additive(self) -> bool:
        return self.ctrl or self.meta


@dataclass
class KeyEvent:
    key: str
    ctrl: bool = False
    shift: bool = False
    meta: bool = False
    alt: bool = False
    repeat: bool = False

    @property
    def name(self) -> str:
        return (self.key or "").lower()

    @property
    def command(self) -> bool:
        return self.ctrl or self.meta


@dataclass
class ClipboardItem:
    instrument: str
    note: Note


class Selection:
    """Deduplicated note references; the first one is the default reference."""

    def __init__(self, refs: Iterable[NoteRef] = ()):
        self._refs: List[NoteRef] = []
        for r in refs:
            self.add(r)

    def __len__(self):
        return len(self._refs)

    def __iter__(self) -> Iterator[NoteRef]:
        return iter(list(self._refs))

    def __bool__(self):
        return bool(self._refs)

    @property
    def refs(self) -> List[NoteRef]:
        return list(self._refs)

    @property
    def first(self) -> Optional[NoteRef]:
        return self._refs[0] if self._refs else None

    def _find(self, ref: NoteRef) -> int:
        for i, r in enumerate(self._refs):
            if r.same_note(ref):
                return i
        return -1

    def contains(self, ref: NoteRef) -> bool:
        return self._find(ref) >= 0

    def add(self, ref: NoteRef) -> bool:
        if not ref.alive or self.contains(ref):
            return False
        self._refs.append(ref)
        return True

    def remove(self, ref: NoteRef) -> bool:
        i = self._find(ref)
        if i < 0:
            return False
        del self._refs[i]
        return True

    def toggle(self, ref: NoteRef) -> bool:
        """Returns True if the note is selected afterwards."""
        if self.remove(ref):
            return False
        return self.add(ref)

    def replace(self, refs: Iterable[NoteRef]):
        self._refs = []
        for r in refs:
            self.add(r)

    def clear(self):
        self._refs = []

    def prune(self) -> int:
        before = len(self._refs)
        self._refs = [r for r in self._refs if r.alive]
        return before - len(self._refs)


# Schnappschuss einer Note zu Beginn eines Drags: (ref, start, end, pitch)
_Orig = Tuple[NoteRef, float, Optional[float], int]


class EditingEngine:
    def __init__(self,
                 store: TrackStore,
                 mapper: CoordinateMapper,
                 snap: SnapEngine,
                 transport,
                 commit: Callable[[str], object],
                 settings: Optional[Settings] = None):
        self.store = store
        self.mapper = mapper
        self.snap = snap
        self.transport = transport      # needs .playhead and .set_playhead(beat)
        self._commit = commit
        self.settings = settings or Settings()

        self.selection = Selection()
        self.clipboard: List[ClipboardItem] = []
        self.mode = Mode.IDLE
        self.drag_type: Optional[DragType] = None
        self.hovered: Optional[NoteRef] = None
        self.preview_x: Optional[float] = None
        self.preselected: List[NoteRef] = []

        self._press: Tuple[float, float] = (0.0, 0.0)
        self._last: Tuple[float, float] = (0.0, 0.0)
        self._ref: Optional[NoteRef] = None
        self._ref_orig: Optional[_Orig] = None
        self._orig: List[_Orig] = []
        self._pivot = 0.0
        self._has_dragged = False
        self._pending_deselect: Optional[NoteRef] = None

    # ------------------------------------------------------------------
    # pointer state machine
    def pointer_down(self, x: float, y: float, mods: Optional[Modifiers] = None):
        mods = mods or Modifiers()
        if self.mode is not Mode.IDLE:
            self.pointer_up(*self._last)
        self._has_dragged = False
        self._press = self._last = (x, y)
        hit = self.store.note_at(self.mapper.x_to_beat(x), self.mapper.y_to_pitch(y))

        if hit is not None:
            if mods.additive:
                self.selection.toggle(hit)
                return
            if self.selection.contains(hit):
                self._pending_deselect = hit
            else:
                self.selection.replace([hit])
            self._begin_drag(hit, x)
            return

        if not mods.additive:
            self.selection.clear()
        self.mode = Mode.RANGE_SELECTING
        self.preselected = []

    def pointer_move(self, x: float, y: float):
        self._last = (x, y)
        if self.mode is Mode.EDITING:
            if (x, y) != self._press:
                self._has_dragged = True
            self._drag_frame(x, y)
        elif self.mode is Mode.RANGE_SELECTING:
            self.hovered = None
            self.preselected = self._notes_in_rect(self._press, (x, y))
        else:
            self.hovered = self.store.note_at(self.mapper.x_to_beat(x), self.mapper.y_to_pitch(y))
            self.preview_x = None if self.hovered is not None else x

    def pointer_up(self, x: float, y: float):
        self._last = (x, y)
        if self.mode is Mode.RANGE_SELECTING:
            px, py = self._press
            thr = self.settings.click_threshold_px
            if abs(x - px) < thr and abs(y - py) < thr:
                self.transport.set_playhead(self.mapper.x_to_beat(px))
            else:
                for ref in self._notes_in_rect(self._press, (x, y)):
                    self.selection.add(ref)
            self.preselected = []
        elif self.mode is Mode.EDITING:
            if self._has_dragged:
                self._commit(self._drag_tag())
            elif self._pending_deselect is not None:
                self.selection.remove(self._pending_deselect)
        self._reset_gesture()

    def pointer_leave(self):
        if self.mode is not Mode.IDLE:
            self.pointer_up(*self._last)
        self.preview_x = None
        self.hovered = None

    def _reset_gesture(self):
        self.mode = Mode.IDLE
        self.drag_type = None
        self._ref = None
        self._ref_orig = None
        self._orig = []
        self._pending_deselect = None
        self.preview_x = None

    def _notes_in_rect(self, a: Tuple[float, float], b: Tuple[float, float]) -> List[NoteRef]:
        x0, x1 = sorted((a[0], b[0]))
        y0, y1 = sorted((a[1], b[1]))
        m = self.mapper
        # y wächst nach unten: obere Kante = höchste Tonhöhe
        return self.store.notes_in_range(m.x_to_beat(x0), m.x_to_beat(x1),
                                         m.y_to_pitch(y1), m.y_to_pitch(y0))

    # ------------------------------------------------------------------
    # drag handling
    def _begin_drag(self, ref: NoteRef, x: float):
        nx, _, nw, _ = self.mapper.note_rect(ref.note)
        margin = self.settings.edge_margin_px
        if x < nx + margin:
            self.drag_type = DragType.RESIZE_LEFT
        elif x > nx + nw - margin:
            self.drag_type = DragType.RESIZE_RIGHT
        else:
            self.drag_type = DragType.MOVE
        self.mode = Mode.EDITING
        self._ref = ref
        self._ref_orig = (ref, ref.start, ref.end, ref.pitch)
        self._orig = [(r, r.start, r.end, r.pitch) for r in self.selection]
        if self.drag_type is DragType.RESIZE_LEFT:
            self._pivot = max((e if e is not None else s) for _, s, e, _ in self._orig)
        elif self.drag_type is DragType.RESIZE_RIGHT:
            self._pivot = min(s for _, s, _, _ in self._orig)

    def _drag_tag(self) -> str:
        if self.drag_type is DragType.MOVE:
            return "move"
        return "stretch" if len(self._orig) > 1 else "resize"

    def _drag_frame(self, x: float, y: float):
        if self._ref is None or not self._orig:
            return
        if self.drag_type is DragType.MOVE:
            self._move_frame(x, y)
        elif len(self._orig) == 1:
            self._resize_frame(x)
        else:
            self._stretch_frame(x)

    def _move_frame(self, x: float, y: float):
        _, s0, _, _ = self._ref_orig
        px, py = self._press
        new_start = max(0.0, s0 + self.mapper.dx_to_beats(x - px))
        dt = self.snap.snap(new_start) - s0
        dp = self.mapper.y_to_pitch(y) - self.mapper.y_to_pitch(py)
        for ref, s, e, p in self._orig:
            start = max(0.0, s + dt)
            ref.set_span(start, None if e is None else start + (e - s))
            ref.pitch = clamp_pitch(p + dp)

    def _resize_frame(self, x: float):
        ref, s0, e0, _ = self._ref_orig
        t = self.snap.snap(self.mapper.x_to_beat(x))
        if self.drag_type is DragType.RESIZE_LEFT:
            if e0 is not None and t < e0:
                ref.set_span(t, e0)
        elif e0 is not None and t > s0:
            ref.set_span(s0, t)

    def _stretch_frame(self, x: float):
        _, s0, e0, _ = self._ref_orig
        pivot = self._pivot
        t = self.snap.snap(self.mapper.x_to_beat(x))
        if e0 is None or e0 - s0 <= 0:
            return
        # Verhaeltnis neue/alte Dauer der Referenznote
        if self.drag_type is DragType.RESIZE_LEFT:
            ratio = (e0 - t) / (e0 - s0)
            remap = lambda v: pivot - (pivot - v) * ratio
        else:
            ratio = (t - s0) / (e0 - s0)
            remap = lambda v: pivot + (v - pivot) * ratio
        if ratio <= 0:
            return
        planned = []
        for ref, s, e, _ in self._orig:
            ns = remap(s)
            if ns < 0:
                return
            planned.append((ref, ns, None if e is None else remap(e)))
        for ref, ns, ne in planned:
            ref.set_span(ns, ne)

    # ------------------------------------------------------------------
    # keyboard / wheel
    def handle_key(self, ev: KeyEvent) -> bool:
        """Editing shortcuts. Returns True when the key was consumed."""
        k = ev.name
        if ev.command:
            if k == "c":
                return self.copy()
            if k == "x":
                return self.cut()
            if k == "v":
                return self.paste()
            if k == "a":
                return self.select_all() > 0
            return False
        if not self.selection:
            return False
        step = self.settings.nudge_beats_fast if ev.shift else self.settings.nudge_beats
        if k == "arrowleft":
            return self.nudge(dt=-step)
        if k == "arrowright":
            return self.nudge(dt=step)
        if k == "arrowup":
            return self.nudge(dp=1)
        if k == "arrowdown":
            return self.nudge(dp=-1)
        if k in ("backspace", "delete"):
            return self.delete_selected() > 0
        return False

    def nudge(self, dt: float = 0.0, dp: int = 0) -> bool:
        if not self.selection:
            return False
        for ref in self.selection:
            if dt:
                s, e = ref.note.shifted(dt)
                ref.set_span(s, e)
            if dp:
                ref.pitch = ref.pitch + dp
        self._commit("nudge")
        return True

    def wheel(self, x: float, y: float, dy: float) -> bool:
        """Wheel over a selected note changes velocity of the whole selection."""
        hit = self.store.note_at(self.mapper.x_to_beat(x), self.mapper.y_to_pitch(y))
        if hit is None or not self.selection.contains(hit):
            return False
        step = self.settings.velocity_step
        return self.adjust_velocity(-step if dy > 0 else step)

    def adjust_velocity(self, delta: int) -> bool:
        if not self.selection:
            return False
        for ref in self.selection:
            ref.velocity = ref.velocity + delta
        self._commit("velocity")
        return True

    # ------------------------------------------------------------------
    # commands
    def clear_selection(self):
        self.selection.clear()
        self.hovered = None
        self.preselected = []

    def select_all(self) -> int:
        self.selection.replace(r for r in self.store.refs() if r.instrument in self.store.visible)
        return len(self.selection)

    def delete_selected(self, tag: str = "delete") -> int:
        if not self.selection:
            return 0
        n = self.store.remove_notes(self.selection.refs)
        self.selection.clear()
        self.hovered = None
        self._commit(tag)
        return n

    def copy(self) -> bool:
        if not self.selection:
            return False
        self.clipboard = [ClipboardItem(r.instrument, r.note.copy()) for r in self.selection]
        log.debug("copied %d notes", len(self.clipboard))
        return True

    def cut(self) -> bool:
        if not self.copy():
            return False
        self.delete_selected(tag="cut")
        return True

    def paste(self) -> bool:
        """Paste so that the earliest clipboard note starts at the playhead."""
        if not self.clipboard:
            return False
        offset = self.transport.playhead - min(c.note.start for c in self.clipboard)
        refs = []
        for item in self.clipboard:
            n = item.note
            end = None if n.end is None else n.end + offset
            refs.append(self.store.add_note(item.instrument, n.pitch, n.start + offset, end, n.velocity))
        self.selection.replace(refs)
        self._commit("paste")
        return True

    def set_values(self, pitch: Optional[int] = None, start: Optional[float] = None,
                   end: Optional[float] = None, velocity: Optional[int] = None) -> bool:
        """Explicit value edit applied to every selected note (always recorded)."""
        if not self.selection:
            return False
        refs = self.selection.refs
        # erst prüfen, dann schreiben
        for r in refs:
            s = r.start if start is None else max(0.0, float(start))
            e = r.end if end is None else float(end)
            if e is not None and e < s:
                raise ValidationError(f"end {e} before start {s}")
        for r in refs:
            if start is not None or end is not None:
                r.set_span(r.start if start is None else start, r.end if end is None else end)
            if pitch is not None:
                r.pitch = pitch
            if velocity is not None:
                r.velocity = velocity
        self._commit("edit-value")
        return True

    def reassign_instrument(self, instrument: str) -> int:
        if not self.selection:
            return 0
        if not instrument:
            raise ValidationError("instrument id required")
        moved = [self.store.move_note_to_track(r, instrument) for r in self.selection.refs]
        self.selection.replace(moved)
        self._commit("reassign")
        return len(moved)

    def snap_selection_positions(self) -> int:
        n = self.snap.snap_positions(self.selection.refs)
        if n:
            self._commit("snap-position")
        return n

    def snap_selection_durations(self) -> int:
        n = self.snap.snap_durations(self.selection.refs)
        if n:
            self._commit("snap-duration")
        return n

    # ------------------------------------------------------------------
    def summary(self) -> Dict[str, object]:
        """What the status line shows for the current selection."""
        refs = [r for r in self.selection if r.alive]
        if not refs:
            return {"count": 0}
        if len(refs) == 1:
            r = refs[0]
            return {"count": 1, "start": r.start, "end": r.end, "pitch": r.pitch,
                    "name": note_name(r.pitch), "velocity": r.velocity, "instrument": r.instrument}
        return {
            "count": len(refs),
            "start": min(r.start for r in refs),
            "end": max((r.end if r.end is not None else r.start) for r in refs),
        }
