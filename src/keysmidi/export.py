# src/keysmidi/export.py
from __future__ import annotations
import logging
import math
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .errors import NothingToExport
from .instruments import InstrumentCatalog
from .model import DEFAULT_BEATS_PER_MEASURE, Note, Track
from .util.time import DEFAULT_PPQN, beats_to_ticks, bpm_to_micro, file_stamp

log = logging.getLogger(__name__)

DRUM_CHANNEL = 9          # 0-basiert, MIDI-Kanal 10
DRUM_TRACK_NAME = "Drums"

# Sortierrang bei gleichem Tick: Setup, dann Note-Off, dann Note-On
_RANK_SETUP, _RANK_OFF, _RANK_ON, _RANK_OFF_ZERO = 0, 1, 2, 3

# ---------- interne Helfer ----------

def encode_vlq(value: int) -> bytes:
    """MIDI variable-length quantity (7 bits per byte, high bit = more follows)."""
    value = int(value)
    if value < 0 or value > 0x0FFFFFFF:
        raise ValueError(f"VLQ out of range: {value}")
    out = [value & 0x7F]
    value >>= 7
    while value:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    return bytes(reversed(out))

def meta_event(meta_type: int, data: bytes) -> bytes:
    return bytes((0xFF, meta_type & 0x7F)) + encode_vlq(len(data)) + bytes(data)

def tempo_event(bpm: float) -> bytes:
    return meta_event(0x51, bpm_to_micro(bpm).to_bytes(3, "big"))

def time_signature_event(numerator: int, denominator: int = 4) -> bytes:
    # Nenner als Zweierpotenz, 24 MIDI-Clocks pro Klick, 8 Zweiunddreißigstel pro Viertel
    exp = int(round(math.log2(max(1, denominator))))
    return meta_event(0x58, bytes((max(1, min(255, int(numerator))), exp, 24, 8)))

def track_name_event(name: str) -> bytes:
    return meta_event(0x03, name.encode("utf-8"))

def end_of_track_event() -> bytes:
    return meta_event(0x2F, b"")

def program_change_event(channel: int, program: int) -> bytes:
    return bytes((0xC0 | (channel & 0x0F), program & 0x7F))

def note_on_event(channel: int, pitch: int, velocity: int) -> bytes:
    return bytes((0x90 | (channel & 0x0F), pitch & 0x7F, velocity & 0x7F))

def note_off_event(channel: int, pitch: int) -> bytes:
    return bytes((0x80 | (channel & 0x0F), pitch & 0x7F, 0))


@dataclass
class TimedEvent:
    tick: int
    rank: int
    data: bytes


def encode_track_chunk(events: Iterable[TimedEvent]) -> bytes:
    """Sort, delta-encode, append End-of-Track and wrap as an MTrk chunk."""
    evs = sorted(events, key=lambda e: (e.tick, e.rank))   # stabil
    body = bytearray()
    last = 0
    for ev in evs:
        body += encode_vlq(ev.tick - last)
        body += ev.data
        last = ev.tick
    body += encode_vlq(0) + end_of_track_event()
    return b"MTrk" + struct.pack(">I", len(body)) + bytes(body)

def header_chunk(track_count: int, ppqn: int = DEFAULT_PPQN, fmt: int = 1) -> bytearray:
    return bytearray(b"MThd" + struct.pack(">IHHH", 6, fmt, track_count, ppqn))

def _note_events(notes: Iterable[Note], channel: int, ppqn: int) -> List[TimedEvent]:
    out: List[TimedEvent] = []
    for n in notes:
        if n.end is None:
            log.debug("skip unfinished note pitch=%s start=%s", n.pitch, n.start)
            continue
        on = beats_to_ticks(n.start, ppqn)
        off = beats_to_ticks(n.end, ppqn)
        out.append(TimedEvent(on, _RANK_ON, note_on_event(channel, n.pitch, n.velocity)))
        out.append(TimedEvent(off, _RANK_OFF if off > on else _RANK_OFF_ZERO, note_off_event(channel, n.pitch)))
    return out

def melodic_channels(count: int) -> List[int]:
    """Channels 0..15 in order, skipping the drum channel, wrapping around."""
    usable = [c for c in range(16) if c != DRUM_CHANNEL]
    return [usable[i % len(usable)] for i in range(count)]

# ---------- Chunks ----------

def build_tempo_track(bpm: float, beats_per_measure: int) -> bytes:
    return encode_track_chunk([
        TimedEvent(0, _RANK_SETUP, tempo_event(bpm)),
        TimedEvent(0, _RANK_SETUP, time_signature_event(beats_per_measure, 4)),
    ])

def build_instrument_track(track: Track, channel: int, catalog: InstrumentCatalog,
                           ppqn: int = DEFAULT_PPQN) -> bytes:
    evs = [
        TimedEvent(0, _RANK_SETUP, program_change_event(channel, catalog.program(track.instrument))),
        TimedEvent(0, _RANK_SETUP, track_name_event(catalog.name(track.instrument))),
    ]
    evs.extend(_note_events(track.notes, channel, ppqn))
    return encode_track_chunk(evs)

def build_drum_track(tracks: Sequence[Track], ppqn: int = DEFAULT_PPQN) -> bytes:
    evs = [TimedEvent(0, _RANK_SETUP, track_name_event(DRUM_TRACK_NAME))]
    for t in tracks:
        evs.extend(_note_events(t.notes, DRUM_CHANNEL, ppqn))
    return encode_track_chunk(evs)

# ---------- öffentliche API ----------

def export_smf(tracks: Sequence[Track], bpm: float,
               beats_per_measure: int = DEFAULT_BEATS_PER_MEASURE,
               catalog: Optional[InstrumentCatalog] = None,
               ppqn: int = DEFAULT_PPQN) -> bytes:
    """
    Encode the tracks as a format-1 Standard MIDI File:
    tempo track, one track per melodic instrument, one merged drum track.
    Raises NothingToExport when there are no tracks.
    """
    tracks = [t for t in tracks if t.notes]
    if not tracks:
        raise NothingToExport()
    catalog = catalog or InstrumentCatalog()

    drums = [t for t in tracks if catalog.is_percussion(t.instrument)]
    melodic = [t for t in tracks if not catalog.is_percussion(t.instrument)]

    chunks = [build_tempo_track(bpm, beats_per_measure)]
    for t, ch in zip(melodic, melodic_channels(len(melodic))):
        chunks.append(build_instrument_track(t, ch, catalog, ppqn))
    if drums:
        chunks.append(build_drum_track(drums, ppqn))

    header = header_chunk(0, ppqn)
    struct.pack_into(">H", header, 10, len(chunks))  # Trackanzahl nachtragen
    log.info("SMF export: %d chunks (%d melodic, %d drum instruments)",
             len(chunks), len(melodic), len(drums))
    return bytes(header) + b"".join(chunks)

def export_filename(now=None) -> str:
    return f"keys-midi-export-{file_stamp(now)}.mid"

def write_smf(path, tracks: Sequence[Track], bpm: float,
              beats_per_measure: int = DEFAULT_BEATS_PER_MEASURE,
              catalog: Optional[InstrumentCatalog] = None) -> Path:
    data = export_smf(tracks, bpm, beats_per_measure, catalog)
    p = Path(path)
    p.write_bytes(data)
    return p
