from __future__ import annotations
import datetime as _dt
import math
from typing import Optional

DEFAULT_PPQN = 480

def round_half_up(x: float) -> int:
    # Python's round() rundet auf gerade Zahlen; hier immer .5 -> nach oben
    return int(math.floor(float(x) + 0.5))

def beats_to_ticks(beats: float, ppqn: int = DEFAULT_PPQN) -> int:
    if ppqn <= 0:
        ppqn = DEFAULT_PPQN
    return round_half_up(float(beats) * ppqn)

def ticks_to_beats(ticks: int, ppqn: int = DEFAULT_PPQN) -> float:
    if ppqn <= 0:
        ppqn = DEFAULT_PPQN
    return float(ticks) / float(ppqn)

def beats_to_seconds(beats: float, bpm: float) -> float:
    return float(beats) * 60.0 / max(1e-6, float(bpm))

def seconds_to_beats(seconds: float, bpm: float) -> float:
    return float(seconds) * max(1e-6, float(bpm)) / 60.0

def bpm_to_micro(bpm: float) -> int:
    return round_half_up(60_000_000 / max(1e-6, float(bpm)))

def file_stamp(now: Optional[_dt.datetime] = None) -> str:
    """ISO timestamp trimmed to seconds, ':' replaced so it is filename-safe."""
    now = now or _dt.datetime.now()
    return now.isoformat(timespec="seconds")[:19].replace(":", "-")
