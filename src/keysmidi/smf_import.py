# src/keysmidi/smf_import.py
from __future__ import annotations
import logging
from typing import Dict, Optional, Tuple

import mido

from .errors import InvalidFileFormat
from .export import DRUM_CHANNEL, DRUM_TRACK_NAME
from .instruments import InstrumentCatalog
from .model import DEFAULT_BEATS_PER_MEASURE, DEFAULT_BPM, Note, Track
from .persistence import SessionData

log = logging.getLogger(__name__)

DEFAULT_IMPORT_INSTRUMENT = "piano"
DRUM_INSTRUMENT = "percussion"

def _instrument_for(name: Optional[str], program: Optional[int], channel: Optional[int],
                    catalog: InstrumentCatalog) -> str:
    if channel == DRUM_CHANNEL or name == DRUM_TRACK_NAME:
        return DRUM_INSTRUMENT
    if name:
        iid = catalog.find_by_name(name)
        if iid:
            return iid
        if name in catalog.ids():
            return name
    if program is not None:
        iid = catalog.find_by_program(program)
        if iid:
            return iid
    return name or DEFAULT_IMPORT_INSTRUMENT

def import_smf(path_or_file, catalog: Optional[InstrumentCatalog] = None) -> SessionData:
    """
    Read a Standard MIDI File into tracks. Tempo/meter come from the first
    set_tempo / time_signature seen; notes are keyed per MIDI track.
    """
    catalog = catalog or InstrumentCatalog()
    try:
        if hasattr(path_or_file, "read"):
            mid = mido.MidiFile(file=path_or_file)
        else:
            mid = mido.MidiFile(str(path_or_file))
    except (OSError, EOFError, ValueError, KeyError) as e:
        raise InvalidFileFormat(f"not a MIDI file ({e})") from e

    tpb = mid.ticks_per_beat or 480
    bpm: Optional[float] = None
    beats_per_measure: Optional[int] = None
    merged: Dict[str, Track] = {}

    for mt in mid.tracks:
        abs_tick = 0
        name: Optional[str] = None
        program: Optional[int] = None
        channel: Optional[int] = None
        active: Dict[Tuple[int, int], Tuple[int, int]] = {}   # (ch, pitch) -> (tick, vel)
        notes = []
        for msg in mt:
            abs_tick += msg.time
            if msg.is_meta:
                if msg.type == "set_tempo" and bpm is None:
                    bpm = mido.tempo2bpm(msg.tempo)
                elif msg.type == "time_signature" and beats_per_measure is None:
                    beats_per_measure = int(msg.numerator)
                elif msg.type == "track_name":
                    name = msg.name
                continue
            if msg.type == "program_change":
                program = msg.program
            elif msg.type == "note_on" and msg.velocity > 0:
                channel = msg.channel
                active[(msg.channel, msg.note)] = (abs_tick, msg.velocity)
            elif msg.type == "note_off" or (msg.type == "note_on" and msg.velocity == 0):
                key = (msg.channel, msg.note)
                if key in active:
                    st, vel = active.pop(key)
                    notes.append(Note(pitch=msg.note, start=st / tpb, end=abs_tick / tpb, velocity=vel))
        # offene Noten am Spurende schließen
        for (ch, pitch), (st, vel) in active.items():
            notes.append(Note(pitch=pitch, start=st / tpb, end=abs_tick / tpb, velocity=vel))
        if not notes:
            continue
        iid = _instrument_for(name, program, channel, catalog)
        notes.sort(key=lambda n: (n.start, n.pitch))
        merged.setdefault(iid, Track(iid)).notes.extend(notes)

    log.info("SMF import: %d tracks, %d notes", len(merged), sum(len(t.notes) for t in merged.values()))
    return SessionData(
        tracks=list(merged.values()),
        bpm=round(bpm, 3) if bpm else DEFAULT_BPM,
        beats_per_measure=beats_per_measure or DEFAULT_BEATS_PER_MEASURE,
    )
