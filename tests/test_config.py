"""Tests for projforge.config module."""

from pathlib import Path

import pytest

from projforge.config import Config, IntronConfig


class TestDefaults:
    """Tests for default configuration values."""

    def test_defaults(self):
        config = Config()
        assert config.scoring.gap_open == 11
        assert config.scoring.gap_extend == 1
        assert config.scoring.matrix == "BLOSUM62"
        assert config.intron.max_intron_length == 15000
        assert config.intron.static_intron_length
        assert config.intron.intron_gain_loss_penalty == 25
        assert config.thresholds.contig_threshold == 0.9
        assert config.thresholds.region_threshold == 0.9
        assert config.thresholds.hit_threshold == 0.9
        assert config.search.predictions == 1
        assert config.search.max_new_hits_per_part == 20000
        assert config.runtime.timeout == 3600
        assert config.runtime.cancel_grace == 5
        assert config.runtime.threads == 1

    def test_load_none_returns_defaults(self):
        assert Config.load(None) == Config()

    def test_to_dict(self):
        data = Config().to_dict()
        assert set(data) == {"scoring", "intron", "thresholds", "search", "runtime"}
        assert data["search"]["predictions"] == 1


class TestLoad:
    """Tests for loading TOML files."""

    def test_load_file(self, tmp_path: Path):
        path = tmp_path / "projforge.toml"
        path.write_text(
            "[intron]\nmax_intron_length = 5000\n\n"
            "[search]\npredictions = 3\napproximate = false\n\n"
            "[runtime]\nthreads = 4\n"
        )
        config = Config.load(path)
        assert config.intron.max_intron_length == 5000
        assert config.search.predictions == 3
        assert not config.search.approximate
        assert config.runtime.threads == 4
        # Untouched sections keep their defaults
        assert config.thresholds.hit_threshold == 0.9

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            Config.load(tmp_path / "missing.toml")

    def test_invalid_toml(self, tmp_path: Path):
        path = tmp_path / "bad.toml"
        path.write_text("[intron\nmax_intron_length = \n")
        with pytest.raises(ValueError, match="Invalid configuration"):
            Config.load(path)


class TestFromDict:
    """Tests for Config.from_dict validation."""

    def test_unknown_section(self):
        with pytest.raises(ValueError, match="Unknown configuration section"):
            Config.from_dict({"output": {}})

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="max_intron"):
            Config.from_dict({"intron": {"max_intron": 10}})

    def test_section_not_table(self):
        with pytest.raises(ValueError, match="must be a table"):
            Config.from_dict({"search": 3})

    @pytest.mark.parametrize(
        "data",
        [
            {"thresholds": {"hit_threshold": 1.5}},
            {"thresholds": {"region_threshold": -0.1}},
            {"search": {"predictions": 0}},
            {"runtime": {"timeout": 0}},
            {"runtime": {"threads": 0}},
            {"scoring": {"ambiguity": "guess"}},
        ],
    )
    def test_invalid_values(self, data):
        """Test out-of-range values are rejected."""
        with pytest.raises(ValueError):
            Config.from_dict(data)


class TestOverrides:
    """Tests for Config.with_overrides."""

    def test_override(self):
        config = Config().with_overrides("runtime", threads=8, timeout=None)
        assert config.runtime.threads == 8
        assert config.runtime.timeout == 3600

    def test_none_values_keep_config(self):
        """Test unset options leave the configuration unchanged."""
        config = Config()
        assert config.with_overrides("search", predictions=None) is config

    def test_original_unchanged(self):
        config = Config()
        config.with_overrides("search", predictions=5)
        assert config.search.predictions == 1

    def test_override_validated(self):
        with pytest.raises(ValueError):
            Config().with_overrides("search", predictions=0)


class TestIntronLimit:
    """Tests for IntronConfig.limit_for."""

    def test_static(self):
        assert IntronConfig().limit_for(100) == 15000

    def test_dynamic(self):
        intron = IntronConfig(static_intron_length=False)
        assert intron.limit_for(1000) == 2000
        assert intron.limit_for(None) == 15000

    def test_dynamic_bounds(self):
        """Test the dynamic limit is clamped to the configured range."""
        intron = IntronConfig(static_intron_length=False, max_intron_length=5000)
        assert intron.limit_for(100) == 500
        assert intron.limit_for(10000) == 5000
