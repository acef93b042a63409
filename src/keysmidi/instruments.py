# src/keysmidi/instruments.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import yaml

from .errors import ExternalFailure

log = logging.getLogger(__name__)

# General-MIDI Fallback, wenn die Konfiguration kein Programm nennt
DEFAULT_PROGRAMS: Dict[str, int] = {
    "sampledPiano": 0,        # Acoustic Grand Piano
    "sampledOldPiano": 0,
    "sampledGuitar": 24,      # Nylon Guitar
    "sampledGuitar2": 24,
    "sampledMutedGuitar": 25,
    "sampledBass": 32,        # Acoustic Bass
    "sampledPercussion": 0,   # läuft ohnehin auf Kanal 10
    "piano": 0,
    "guitar": 24,
    "electricGuitar": 27,     # Electric Guitar (clean)
    "bass": 32,
    "strings": 48,            # String Ensemble 1
    "synth": 80,              # Square Lead
    "pad": 89,                # Pad 2 (warm)
    "lead": 80,
    "fx": 103,                # FX 8 (sci-fi)
}

DEFAULT_PERCUSSION_PATTERNS = ("percussion", "drum")

LOADING, LOADED, FAILED = "loading", "loaded", "failed"


@dataclass
class InstrumentInfo:
    id: str
    name: str
    midi_program: Optional[int] = None
    color: str = "#00ccff"


class InstrumentCatalog:
    """
    Instrument metadata (id -> name, MIDI program, colour) plus the
    loading state of each instrument's sound. Sound loading itself is an
    external concern; the catalog only tracks what the loader reported.
    """

    def __init__(self, instruments: Optional[Iterable[InstrumentInfo]] = None,
                 percussion_patterns: Iterable[str] = DEFAULT_PERCUSSION_PATTERNS):
        self._items: Dict[str, InstrumentInfo] = {}
        for info in instruments or ():
            self._items[info.id] = info
        self.percussion_patterns = tuple(p.lower() for p in percussion_patterns)
        self._status: Dict[str, str] = {}

    # ---------- construction ----------
    @classmethod
    def from_mapping(cls, data: Dict[str, Any],
                     percussion_patterns: Optional[Iterable[str]] = None) -> "InstrumentCatalog":
        """`data` is the `instruments` mapping: {id: {name, midi_program|midiProgram, color}}."""
        items: List[InstrumentInfo] = []
        for iid, spec in (data or {}).items():
            spec = spec or {}
            prog = spec.get("midi_program", spec.get("midiProgram"))
            items.append(InstrumentInfo(
                id=str(iid),
                name=str(spec.get("name") or iid),
                midi_program=int(prog) if prog is not None else None,
                color=str(spec.get("color", "#00ccff")),
            ))
        pats = percussion_patterns if percussion_patterns is not None else DEFAULT_PERCUSSION_PATTERNS
        return cls(items, pats)

    @classmethod
    def from_file(cls, path) -> "InstrumentCatalog":
        """Load an instruments file (YAML or JSON, top-level key `instruments`)."""
        p = Path(path)
        try:
            raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ExternalFailure(f"cannot load instrument config {p}: {e}") from e
        return cls.from_mapping(raw.get("instruments") or {}, raw.get("percussion_patterns"))

    # ---------- lookups ----------
    def ids(self) -> List[str]:
        return list(self._items.keys())

    def get(self, instrument_id: str) -> Optional[InstrumentInfo]:
        return self._items.get(instrument_id)

    def name(self, instrument_id: str) -> str:
        info = self._items.get(instrument_id)
        return info.name if info else instrument_id

    def color(self, instrument_id: str) -> str:
        info = self._items.get(instrument_id)
        return info.color if info else "#00ccff"

    def program(self, instrument_id: str) -> int:
        info = self._items.get(instrument_id)
        if info is not None and info.midi_program is not None:
            return max(0, min(127, int(info.midi_program)))
        return DEFAULT_PROGRAMS.get(instrument_id, 0)

    def is_percussion(self, instrument_id: str) -> bool:
        low = (instrument_id or "").lower()
        return any(p in low for p in self.percussion_patterns)

    def find_by_name(self, name: str) -> Optional[str]:
        for info in self._items.values():
            if info.name == name:
                return info.id
        return None

    def find_by_program(self, program: int) -> Optional[str]:
        for info in self._items.values():
            if info.midi_program == program and not self.is_percussion(info.id):
                return info.id
        for iid, prog in DEFAULT_PROGRAMS.items():
            if prog == program and not self.is_percussion(iid):
                return iid
        return None

    # ---------- load status ----------
    def status(self, instrument_id: str) -> Optional[str]:
        return self._status.get(instrument_id)

    def is_ready(self, instrument_id: str) -> bool:
        return self._status.get(instrument_id) == LOADED

    def request_load(self, instrument_id: str,
                     loader: Callable[[str, Callable[[bool], None]], None]) -> None:
        """
        Fire-and-forget: hand the id to `loader(id, done)`; the loader calls
        `done(ok)` whenever the sound is ready. Loader errors are logged and
        the instrument stays usable without sound.
        """
        if self._status.get(instrument_id) in (LOADING, LOADED):
            return
        self._status[instrument_id] = LOADING

        def done(ok: bool = True):
            self._status[instrument_id] = LOADED if ok else FAILED
            if ok:
                log.info("instrument loaded: %s", instrument_id)
            else:
                log.warning("instrument failed to load: %s (continuing without sound)", instrument_id)

        try:
            loader(instrument_id, done)
        except Exception as e:
            self._status[instrument_id] = FAILED
            log.warning("instrument loader raised for %s: %s", instrument_id, e)
