# src/keysmidi/persistence.py
from __future__ import annotations
import datetime as _dt
import json
import logging
import math
import numbers
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .errors import InvalidFileFormat
from .model import (DEFAULT_BEATS_PER_MEASURE, DEFAULT_BPM, DEFAULT_VELOCITY,
                    Note, Track)
from .util.time import file_stamp

log = logging.getLogger(__name__)

# Instrument für Dateien im alten Ein-Spur-Format ({"recordedNotes": [...]})
LEGACY_INSTRUMENT = "piano"


@dataclass
class SessionData:
    tracks: List[Track]
    bpm: float = DEFAULT_BPM
    beats_per_measure: int = DEFAULT_BEATS_PER_MEASURE
    timestamp: Optional[str] = None


def to_document(tracks: Sequence[Track], bpm: float, beats_per_measure: int,
                now: Optional[_dt.datetime] = None) -> Dict[str, Any]:
    now = now or _dt.datetime.now(_dt.timezone.utc)
    doc_tracks = []
    for t in tracks:
        if not t.notes:
            continue
        doc_tracks.append({
            "instrument": t.instrument,
            "notes": [{
                "midiNote": n.pitch,
                "startTime": n.start,
                # noch gehaltene Noten werden als Nulllänge gespeichert
                "endTime": n.end if n.end is not None else n.start,
                "velocity": n.velocity,
            } for n in t.notes],
        })
    return {
        "tracks": doc_tracks,
        "bpm": bpm,
        "beatsPerMeasure": int(beats_per_measure),
        "timestamp": now.isoformat(),
    }

def dumps(tracks: Sequence[Track], bpm: float, beats_per_measure: int, now=None) -> str:
    return json.dumps(to_document(tracks, bpm, beats_per_measure, now), indent=2)

def save(path, tracks: Sequence[Track], bpm: float, beats_per_measure: int) -> Path:
    p = Path(path)
    p.write_text(dumps(tracks, bpm, beats_per_measure), encoding="utf-8")
    log.info("saved %s", p)
    return p

def save_filename(now: Optional[_dt.datetime] = None) -> str:
    return f"midi-recording-{file_stamp(now)}.json"

# ---------- Laden & Validierung ----------

def _num(obj: Dict[str, Any], key: str, where: str, default=None) -> float:
    v = obj.get(key, default)
    if isinstance(v, bool) or not isinstance(v, numbers.Real):
        raise InvalidFileFormat(f"{where}: '{key}' must be a number")
    if not math.isfinite(v):
        raise InvalidFileFormat(f"{where}: '{key}' must be finite")
    return v

def _parse_note(raw: Any, where: str, pitch_key: str) -> Note:
    if not isinstance(raw, dict):
        raise InvalidFileFormat(f"{where}: note must be an object")
    pitch = _num(raw, pitch_key, where)
    start = _num(raw, "startTime", where)
    end = raw.get("endTime")
    if end is not None:
        end = _num(raw, "endTime", where)
    vel = raw.get("velocity")
    if vel is None:
        vel = DEFAULT_VELOCITY
    else:
        vel = _num(raw, "velocity", where)
    if end is not None and end < start:
        end = start
    return Note(pitch=pitch, start=start, end=end, velocity=vel)

def from_document(doc: Any) -> SessionData:
    """Validate and convert a parsed document; raises InvalidFileFormat."""
    if not isinstance(doc, dict):
        raise InvalidFileFormat("top level must be an object")

    if "tracks" not in doc and isinstance(doc.get("recordedNotes"), list):
        notes = [_parse_note(n, f"recordedNotes[{i}]", "note")
                 for i, n in enumerate(doc["recordedNotes"])]
        tracks = [Track(LEGACY_INSTRUMENT, notes)] if notes else []
        return SessionData(tracks, timestamp=doc.get("timestamp"))

    raw_tracks = doc.get("tracks")
    if not isinstance(raw_tracks, list):
        raise InvalidFileFormat("'tracks' missing or not a list")

    merged: Dict[str, Track] = {}
    for ti, rt in enumerate(raw_tracks):
        where = f"tracks[{ti}]"
        if not isinstance(rt, dict):
            raise InvalidFileFormat(f"{where}: must be an object")
        inst = rt.get("instrument")
        if not isinstance(inst, str) or not inst:
            raise InvalidFileFormat(f"{where}: 'instrument' must be a non-empty string")
        raw_notes = rt.get("notes")
        if not isinstance(raw_notes, list):
            raise InvalidFileFormat(f"{where}: 'notes' must be a list")
        notes = [_parse_note(n, f"{where}.notes[{i}]", "midiNote") for i, n in enumerate(raw_notes)]
        if not notes:
            continue
        merged.setdefault(inst, Track(inst)).notes.extend(notes)

    bpm = _num(doc, "bpm", "document", DEFAULT_BPM)
    if bpm <= 0:
        raise InvalidFileFormat("'bpm' must be positive")
    bpmeasure = _num(doc, "beatsPerMeasure", "document", DEFAULT_BEATS_PER_MEASURE)
    if int(bpmeasure) != bpmeasure or bpmeasure < 1:
        raise InvalidFileFormat("'beatsPerMeasure' must be a positive integer")
    return SessionData(list(merged.values()), float(bpm), int(bpmeasure), doc.get("timestamp"))

def loads(text: str) -> SessionData:
    try:
        doc = json.loads(text)
    except (TypeError, ValueError) as e:
        raise InvalidFileFormat(f"not JSON ({e})") from e
    return from_document(doc)

def load(path) -> SessionData:
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise InvalidFileFormat(f"not UTF-8 ({e})") from e
    return loads(text)
