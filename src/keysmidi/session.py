# src/keysmidi/session.py
"""
Session controller: owns one instance of every component, routes host
input (pointer, wheel, keys) to them and exposes the state a view needs.
"""
from __future__ import annotations
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from . import persistence
from .audio import AudioEngine, SafeAudio
from .config import Settings, load_config
from .coords import CoordinateMapper
from .editor import EditingEngine, KeyEvent, Modifiers, Selection
from .errors import ExternalFailure, InvalidFileFormat, NothingToExport, ValidationError
from .export import export_filename, export_smf
from .history import HistoryManager, Snapshot
from .instruments import InstrumentCatalog
from .keymap import KeyMapper
from .model import Track
from .persistence import SessionData
from .recorder import DEFAULT_INSTRUMENT, Recorder
from .smf_import import import_smf
from .snap import SnapEngine
from .store import TrackStore
from .transport import Transport

log = logging.getLogger(__name__)

PEDAL_KEY = " "


class Session:
    def __init__(self,
                 config: Optional[Dict[str, Any]] = None,
                 audio: Optional[AudioEngine] = None,
                 catalog: Optional[InstrumentCatalog] = None,
                 loader: Optional[Callable[[str, Callable[[bool], None]], None]] = None,
                 clock: Callable[[], float] = time.monotonic):
        cfg = load_config() if config is None else config
        self.settings = s = Settings.from_config(cfg)
        self.catalog = catalog or InstrumentCatalog.from_mapping(
            cfg.get("instruments") or {}, cfg.get("percussion_patterns"))
        self._loader = loader

        self.store = TrackStore()
        self.audio = SafeAudio(audio)
        self.mapper = CoordinateMapper(
            bpm=s.bpm, pixels_per_second=s.pixels_per_second, canvas_height=s.canvas_height,
            min_pps=s.min_pps, max_pps=s.max_pps, zoom_factor=s.zoom_factor,
            min_canvas_height=s.min_canvas_height, height_step=s.height_step)
        self.snap = SnapEngine(precision=s.snap_precision, sensitivity=s.snap_sensitivity,
                               enabled=s.snap_enabled)
        self.transport = Transport(self.store, self.audio, bpm=s.bpm,
                                   beats_per_measure=s.beats_per_measure,
                                   tick_hz=s.tick_hz, clock=clock)
        self.transport.metronome_enabled = s.metronome
        self.history = HistoryManager(self._capture, self._restore,
                                      capacity=s.history_capacity,
                                      merge_cooldown=s.merge_cooldown, clock=clock)
        self.editor = EditingEngine(self.store, self.mapper, self.snap, self.transport,
                                    self.commit, s)
        self.recorder = Recorder(self.store, self.audio, self.commit)
        self.keymap = KeyMapper()
        self.scroll_x = 0.0
        self._held_keys: Dict[str, int] = {}
        self.history.reset()
        self.set_instrument(self.catalog.ids()[0] if self.catalog.ids() else DEFAULT_INSTRUMENT)

    # ---------- history wiring ----------
    def _capture(self) -> Snapshot:
        return Snapshot(self.store.copy_tracks(), self.transport.bpm, self.transport.beats_per_measure)

    def _restore(self, snap: Snapshot):
        self.store.replace_tracks(snap.tracks)
        self.transport.set_bpm(snap.bpm)
        self.transport.set_beats_per_measure(snap.beats_per_measure)
        self.mapper.bpm = snap.bpm
        self.editor.clear_selection()

    def commit(self, tag: str) -> bool:
        return self.history.commit(tag)

    def undo(self) -> bool:
        return self.history.undo()

    def redo(self) -> bool:
        return self.history.redo()

    # ---------- exposed state ----------
    @property
    def tracks(self) -> List[Track]:
        return self.store.tracks

    @property
    def visible(self):
        return set(self.store.visible)

    @property
    def selection(self) -> Selection:
        return self.editor.selection

    @property
    def can_undo(self) -> bool:
        return self.history.can_undo

    @property
    def can_redo(self) -> bool:
        return self.history.can_redo

    @property
    def playhead(self) -> float:
        return self.transport.playhead

    @property
    def bpm(self) -> float:
        return self.transport.bpm

    @property
    def beats_per_measure(self) -> int:
        return self.transport.beats_per_measure

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.transport.state.value,
            "playhead": self.transport.playhead,
            "bpm": self.transport.bpm,
            "beats_per_measure": self.transport.beats_per_measure,
            "tracks": len(self.store),
            "notes": self.store.total_note_count(),
            "selection": self.editor.summary(),
            "can_undo": self.can_undo,
            "can_redo": self.can_redo,
            "instrument": self.recorder.instrument,
            "instrument_status": self.catalog.status(self.recorder.instrument),
            "octave_shift": self.keymap.octave_shift,
            "semitone_shift": self.keymap.semitone_shift,
            "snap": {"enabled": self.snap.enabled, "precision": self.snap.precision,
                     "sensitivity": self.snap.sensitivity},
            "pixels_per_second": self.mapper.pixels_per_second,
            "metronome": self.transport.metronome_enabled,
        }

    # ---------- settings ----------
    def set_bpm(self, bpm: float):
        self.transport.set_bpm(bpm)
        self.mapper.bpm = self.transport.bpm
        self.commit("tempo")

    def set_beats_per_measure(self, n: int):
        self.transport.set_beats_per_measure(n)
        self.commit("meter")

    def set_snap(self, enabled: Optional[bool] = None, precision: Optional[int] = None,
                 sensitivity: Optional[float] = None):
        if enabled is not None:
            self.snap.enabled = bool(enabled)
        self.snap.configure(precision, sensitivity)

    def set_instrument(self, instrument: str):
        if not instrument:
            raise ValidationError("instrument id required")
        self.recorder.instrument = instrument
        if self._loader is not None:
            self.catalog.request_load(instrument, self._loader)

    def toggle_metronome(self) -> bool:
        self.transport.metronome_enabled = not self.transport.metronome_enabled
        return self.transport.metronome_enabled

    def toggle_track(self, instrument: str) -> bool:
        return self.store.toggle_visible(instrument)

    # ---------- transport ----------
    def play(self) -> bool:
        if self.transport.is_recording:
            self.stop_recording()
        return self.transport.play()

    def pause(self):
        if self.transport.is_recording:
            self.stop_recording()
        self.transport.pause()

    def stop(self):
        if self.transport.is_recording:
            self.stop_recording()
        self.transport.stop()

    def start_recording(self):
        self.editor.pointer_leave()
        self.transport.start_recording()
        self.recorder.start()

    def stop_recording(self) -> int:
        n = self.recorder.stop(self.transport.current_beat())
        self.transport.stop_recording()
        return n

    def pump(self, now: Optional[float] = None) -> int:
        return self.transport.pump(now)

    # ---------- pointer ----------
    def pointer_down(self, x: float, y: float, mods: Optional[Modifiers] = None) -> bool:
        if self.transport.is_running:
            return False
        self.editor.pointer_down(x, y, mods)
        return True

    def pointer_move(self, x: float, y: float):
        if self.transport.is_running:
            return
        self.editor.pointer_move(x, y)

    def pointer_up(self, x: float, y: float):
        if self.transport.is_running:
            return
        self.editor.pointer_up(x, y)

    def pointer_leave(self):
        self.editor.pointer_leave()

    def wheel(self, x: float, y: float, dy: float, mods: Optional[Modifiers] = None) -> bool:
        mods = mods or Modifiers()
        steps = -1 if dy > 0 else 1
        if mods.additive and mods.shift:
            self.mapper.resize_rows(steps)
            return True
        if mods.additive:
            self.scroll_x = max(0.0, self.scroll_x + self.mapper.zoom_at(steps, x))
            return True
        if self.transport.is_running:
            return False
        return self.editor.wheel(x, y, dy)

    # ---------- keyboard ----------
    def key_down(self, ev: KeyEvent) -> bool:
        k = ev.name
        if ev.command and k == "z":
            return self.redo() if ev.shift else self.undo()
        if ev.command and k == "y":
            return self.redo()
        if ev.key == PEDAL_KEY:
            if not ev.repeat:
                self.recorder.pedal_down()
            return True
        if ev.repeat:
            return False
        if not self.transport.is_running and self.editor.handle_key(ev):
            return True
        if self.editor.selection and k.startswith("arrow"):
            return True
        if k == "arrowup":
            self.keymap.shift_octave(1)
            return True
        if k == "arrowdown":
            self.keymap.shift_octave(-1)
            return True
        if k == "arrowleft":
            self.keymap.shift_semitone(-1)
            return True
        if k == "arrowright":
            self.keymap.shift_semitone(1)
            return True
        if ev.command or k in self._held_keys:
            return False
        pitch = self.keymap.pitch_for(k)
        if pitch is None:
            return False
        self._held_keys[k] = pitch
        self.recorder.key_on(pitch, self.transport.current_beat())
        return True

    def key_up(self, ev: KeyEvent) -> bool:
        if ev.key == PEDAL_KEY:
            self.recorder.pedal_up(self.transport.current_beat())
            return True
        pitch = self._held_keys.pop(ev.name, None)
        if pitch is None:
            return False
        self.recorder.key_off(pitch, self.transport.current_beat())
        return True

    # ---------- files ----------
    def _apply(self, data: SessionData, tag: str):
        self.transport.stop()
        self.editor.clear_selection()
        self.store.replace_tracks(data.tracks)
        self.transport.set_bpm(data.bpm)
        self.transport.set_beats_per_measure(data.beats_per_measure)
        self.mapper.bpm = data.bpm
        self.commit(tag)

    def save(self, path=None, directory=".") -> Path:
        p = Path(path) if path else Path(directory) / persistence.save_filename()
        try:
            return persistence.save(p, self.store.tracks, self.transport.bpm,
                                    self.transport.beats_per_measure)
        except OSError as e:
            raise ExternalFailure(f"cannot write {p}: {e}") from e

    def load(self, path) -> bool:
        """Load a saved session. On any error the current state is left untouched."""
        try:
            data = persistence.load(path)
        except (OSError, InvalidFileFormat) as e:
            log.error("load %s failed: %s", path, e)
            return False
        self._apply(data, "import")
        log.info("loaded %s: %d tracks", path, len(self.store))
        return True

    def import_midi(self, path) -> bool:
        try:
            data = import_smf(path, self.catalog)
        except InvalidFileFormat as e:
            log.error("MIDI import %s failed: %s", path, e)
            return False
        self._apply(data, "import")
        return True

    def export_bytes(self) -> bytes:
        return export_smf(self.store.tracks, self.transport.bpm,
                          self.transport.beats_per_measure, self.catalog, self.settings.ppqn)

    def export_midi(self, path=None, directory=".") -> Optional[Path]:
        """Write a .mid file; returns None (and logs) when there is nothing to export."""
        try:
            data = self.export_bytes()
        except NothingToExport as e:
            log.info("export skipped: %s", e)
            return None
        p = Path(path) if path else Path(directory) / export_filename()
        try:
            p.write_bytes(data)
        except OSError as e:
            raise ExternalFailure(f"cannot write {p}: {e}") from e
        log.info("exported %s (%d bytes)", p, len(data))
        return p
