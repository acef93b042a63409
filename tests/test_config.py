"""Tests for configuration loading, the instrument catalog and the key map."""

from __future__ import annotations

import pytest

from keysmidi import config
from keysmidi.errors import ExternalFailure
from keysmidi.instruments import FAILED, LOADED, LOADING, InstrumentCatalog
from keysmidi.keymap import KeyMapper


class TestConfig:
    def test_packaged_defaults(self, tmp_path):
        cfg = config.load_config(user_path=tmp_path / "none.yaml")
        s = config.Settings.from_config(cfg)
        assert s.ppqn == 480
        assert s.bpm == 120.0
        assert s.snap_precision == 4
        assert s.merge_cooldown == 1.0
        assert "sampledPiano" in cfg["instruments"]

    def test_user_override_is_deep_merged(self, tmp_path):
        user = tmp_path / "user.yaml"
        user.write_text("snap:\n  precision: 8\nview:\n  max_pps: 800\n")
        s = config.Settings.from_config(config.load_config(user_path=user))
        assert s.snap_precision == 8
        assert s.snap_sensitivity == 0.3
        assert s.max_pps == 800.0
        assert s.min_pps == 20.0

    def test_broken_user_file_yields_defaults(self, tmp_path):
        user = tmp_path / "user.yaml"
        user.write_text("snap: [unclosed\n")
        cfg = config.load_config(user_path=user)
        assert cfg["snap"]["precision"] == 4

    def test_non_mapping_ignored(self, tmp_path):
        user = tmp_path / "user.yaml"
        user.write_text("- just\n- a list\n")
        assert config.load_config(user_path=user)["ppqn"] == 480

    def test_deep_merge_does_not_mutate(self):
        a = {"x": {"y": 1, "z": 2}}
        out = config._deep_merge(a, {"x": {"y": 5}})
        assert out == {"x": {"y": 5, "z": 2}}
        assert a["x"]["y"] == 1

    def test_settings_from_empty(self):
        assert config.Settings.from_config({}) == config.Settings()


class TestInstrumentCatalog:
    @pytest.fixture
    def cat(self):
        return InstrumentCatalog.from_mapping({
            "sampledGuitar": {"name": "Guitar", "midi_program": 24, "color": "#ffaa00"},
            "synth": {"name": "Lead", "midiProgram": 81},
            "mystery": {},
        })

    def test_lookups(self, cat):
        assert cat.name("sampledGuitar") == "Guitar"
        assert cat.name("nope") == "nope"
        assert cat.color("sampledGuitar") == "#ffaa00"
        assert cat.program("synth") == 81
        assert cat.program("mystery") == 0
        assert cat.program("bass") == 32
        assert cat.find_by_name("Lead") == "synth"
        assert cat.find_by_program(24) == "sampledGuitar"

    def test_percussion_detection(self, cat):
        assert cat.is_percussion("sampledPercussion")
        assert cat.is_percussion("DrumKit")
        assert not cat.is_percussion("sampledGuitar")

    def test_from_file(self, tmp_path):
        p = tmp_path / "inst.yaml"
        p.write_text("instruments:\n  kit: {name: Kit}\npercussion_patterns: [kit]\n")
        cat = InstrumentCatalog.from_file(p)
        assert cat.is_percussion("kit")
        assert not cat.is_percussion("drums")

    def test_from_missing_file(self, tmp_path):
        with pytest.raises(ExternalFailure):
            InstrumentCatalog.from_file(tmp_path / "missing.yaml")

    def test_load_status(self, cat):
        calls = []
        cat.request_load("synth", lambda iid, done: calls.append(done))
        assert cat.status("synth") == LOADING
        cat.request_load("synth", lambda iid, done: calls.append(done))
        assert len(calls) == 1
        calls[0](False)
        assert cat.status("synth") == FAILED
        cat.request_load("synth", lambda iid, done: done(True))
        assert cat.status("synth") == LOADED


class TestKeyMapper:
    def test_base_layout(self):
        km = KeyMapper()
        assert km.pitch_for("q") == 36
        assert km.pitch_for("Q") == 36
        assert km.pitch_for("c") == 60
        assert km.pitch_for("/") == 72
        assert km.pitch_for("F1") is None

    def test_shifts_and_reset(self):
        km = KeyMapper()
        km.shift_octave(1)
        km.shift_semitone(-2)
        assert km.pitch_for("q") == 46
        km.reset()
        assert km.pitch_for("q") == 36

    def test_out_of_range(self):
        km = KeyMapper({"x": 120})
        km.shift_octave(1)
        assert km.pitch_for("x") is None
