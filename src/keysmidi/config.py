# src/keysmidi/config.py
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
import copy
import logging
import yaml

log = logging.getLogger(__name__)

# Paket-Root: .../src/keysmidi
PKG_ROOT = Path(__file__).resolve().parent
DEFAULT_CFG_PATH = PKG_ROOT / "config.default.yaml"
USER_CFG_PATH = Path.home() / ".config" / "keysmidi" / "config.yaml"

def _safe_load(path: Path) -> Dict[str, Any]:
    try:
        if path.exists():
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
            if isinstance(data, dict):
                return data
            log.warning("config %s: top level is not a mapping, ignored", path)
    except (OSError, yaml.YAMLError) as e:
        # lieber Defaults als einen abgestürzten Editor
        log.warning("config %s unreadable: %s", path, e)
    return {}

def _deep_merge(a: Dict[str, Any], b: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(a)
    for k, v in (b or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out

def load_config(
    user_path: Optional[Path] = None,
    default_path: Optional[Path] = None,
) -> Dict[str, Any]:
    """
    Packaged defaults merged with the user's overrides. A missing or broken
    user file simply yields the defaults.
    """
    dpath = Path(default_path) if default_path else DEFAULT_CFG_PATH
    upath = Path(user_path) if user_path else USER_CFG_PATH

    cfg = _deep_merge(_safe_load(dpath), _safe_load(upath))
    cfg.setdefault("ppqn", 480)
    return cfg


@dataclass
class Settings:
    ppqn: int = 480
    bpm: float = 120.0
    beats_per_measure: int = 4
    snap_enabled: bool = True
    snap_precision: int = 4
    snap_sensitivity: float = 0.3
    history_capacity: int = 50
    merge_cooldown: float = 1.0
    edge_margin_px: float = 5.0
    click_threshold_px: float = 5.0
    nudge_beats: float = 0.25
    nudge_beats_fast: float = 0.5
    velocity_step: int = 5
    pixels_per_second: float = 100.0
    min_pps: float = 20.0
    max_pps: float = 500.0
    zoom_factor: float = 1.1
    canvas_height: float = 1600.0
    min_canvas_height: float = 400.0
    height_step: float = 50.0
    tick_hz: float = 60.0
    metronome: bool = False

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "Settings":
        s = cls()
        tempo = cfg.get("tempo") or {}
        snap = cfg.get("snap") or {}
        hist = cfg.get("history") or {}
        ed = cfg.get("editor") or {}
        view = cfg.get("view") or {}
        tr = cfg.get("transport") or {}
        s.ppqn = int(cfg.get("ppqn", s.ppqn))
        s.bpm = float(tempo.get("bpm", s.bpm))
        s.beats_per_measure = int(tempo.get("beats_per_measure", s.beats_per_measure))
        s.snap_enabled = bool(snap.get("enabled", s.snap_enabled))
        s.snap_precision = int(snap.get("precision", s.snap_precision))
        s.snap_sensitivity = float(snap.get("sensitivity", s.snap_sensitivity))
        s.history_capacity = int(hist.get("capacity", s.history_capacity))
        s.merge_cooldown = float(hist.get("merge_cooldown_s", s.merge_cooldown))
        s.edge_margin_px = float(ed.get("edge_margin_px", s.edge_margin_px))
        s.click_threshold_px = float(ed.get("click_threshold_px", s.click_threshold_px))
        s.nudge_beats = float(ed.get("nudge_beats", s.nudge_beats))
        s.nudge_beats_fast = float(ed.get("nudge_beats_fast", s.nudge_beats_fast))
        s.velocity_step = int(ed.get("velocity_step", s.velocity_step))
        s.pixels_per_second = float(view.get("pixels_per_second", s.pixels_per_second))
        s.min_pps = float(view.get("min_pps", s.min_pps))
        s.max_pps = float(view.get("max_pps", s.max_pps))
        s.zoom_factor = float(view.get("zoom_factor", s.zoom_factor))
        s.canvas_height = float(view.get("canvas_height", s.canvas_height))
        s.min_canvas_height = float(view.get("min_canvas_height", s.min_canvas_height))
        s.height_step = float(view.get("height_step", s.height_step))
        s.tick_hz = float(tr.get("tick_hz", s.tick_hz))
        s.metronome = bool(tr.get("metronome", s.metronome))
        return s
