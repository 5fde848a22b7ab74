# tests/config/test_config_loading.py
"""
Tests for layered context configuration models and loading.

Covers defaults, validation bounds, TOML files, dictionaries and
environment overrides.
"""

import sys
from pathlib import Path

import pytest
from pydantic import ValidationError

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from llmcontext.config import (
    DEFAULT_TOPIC_THRESHOLDS,
    LayeredContextConfig,
    LoggingSettings,
    RetrievalSettings,
    StorageSettings,
    TopicThresholds,
    _dotted,
    load_config,
)
from llmcontext.exceptions import ConfigError


class TestDefaults:
    def test_retrieval_defaults(self):
        retrieval = LayeredContextConfig().retrieval
        assert retrieval.max_prompt_tokens == 32000
        assert (retrieval.layer_thresholds.l0, retrieval.layer_thresholds.l1) == (0.6, 0.5)
        assert retrieval.selection_threshold == 0.25
        assert retrieval.blend_alpha == 0.5
        assert (retrieval.bm25_k1, retrieval.bm25_b) == (1.2, 0.75)
        assert retrieval.candidate_limit is None

    def test_topic_defaults_keep_ordering(self):
        t = DEFAULT_TOPIC_THRESHOLDS
        assert t.enter_threshold <= t.exit_threshold <= t.temp_stay_threshold

    def test_compaction_defaults(self):
        compaction = LayeredContextConfig().compaction
        assert compaction.tool_result_file_threshold == 2000
        assert compaction.keep_recent_tool_pairs == 3

    def test_summary_and_indexing_defaults(self):
        config = LayeredContextConfig()
        assert (config.summary.l0_target_tokens, config.summary.l1_target_tokens) == (120, 1200)
        assert config.indexing.segment_size == 8
        assert config.indexing.max_archives == 12
        assert config.indexing.root_summary is True


class TestValidation:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"blend_alpha": 1.5},
            {"selection_threshold": -0.1},
            {"max_prompt_tokens": -1},
            {"candidate_limit": 0},
            {"layer_thresholds": {"l0": 2.0}},
            {"dense_timeout_seconds": 0},
        ],
    )
    def test_retrieval_bounds(self, kwargs):
        with pytest.raises(ValidationError):
            RetrievalSettings(**kwargs)

    def test_topic_hysteresis(self):
        with pytest.raises(ValidationError):
            TopicThresholds(enter_threshold=0.8, exit_threshold=0.5)

    def test_temp_stay_not_below_exit(self):
        with pytest.raises(ValidationError, match="temp_stay_threshold"):
            TopicThresholds(enter_threshold=0.5, exit_threshold=0.7, temp_stay_threshold=0.6)

    def test_equal_topic_thresholds_allowed(self):
        t = TopicThresholds(enter_threshold=0.6, exit_threshold=0.6, temp_stay_threshold=0.6)
        assert t.exit_threshold == 0.6

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"selection_threshold": 0.7},
            {"layer_thresholds": {"l1": 0.2}},
            {"selection_threshold": 0.4, "layer_thresholds": {"l0": 0.3, "l1": 0.5}},
        ],
    )
    def test_selection_threshold_above_layer_threshold(self, kwargs):
        with pytest.raises(ValidationError, match="selection_threshold"):
            RetrievalSettings(**kwargs)

    def test_selection_threshold_equal_to_layer_threshold(self):
        settings = RetrievalSettings(selection_threshold=0.5)
        assert settings.selection_threshold == settings.layer_thresholds.l1

    def test_log_level_normalized(self):
        assert LoggingSettings(console_level="debug").console_level == "DEBUG"

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            LoggingSettings(file_level="LOUD")

    def test_storage_path_expanded(self, monkeypatch):
        monkeypatch.setenv("LLMCONTEXT_TEST_ROOT", "/data")
        assert StorageSettings(path="$LLMCONTEXT_TEST_ROOT/ctx").path == "/data/ctx"
        assert not StorageSettings(path="~/ctx").path.startswith("~")

    def test_logging_dict(self):
        assert LayeredContextConfig().logging_dict()["file_mode"] == "per_run"


class TestLoadConfig:
    def test_defaults(self):
        assert load_config(env_prefix=None) == LayeredContextConfig()

    def test_dict_with_section(self):
        config = load_config({"layered_context": {"retrieval": {"blend_alpha": 0.3}}}, env_prefix=None)
        assert config.retrieval.blend_alpha == 0.3

    def test_dict_without_section(self):
        config = load_config({"compaction": {"keep_recent_tool_pairs": 5}}, env_prefix=None)
        assert config.compaction.keep_recent_tool_pairs == 5

    def test_nested_dict_keeps_siblings(self):
        config = load_config({"retrieval": {"layer_thresholds": {"l0": 0.7}}}, env_prefix=None)
        assert config.retrieval.layer_thresholds.l0 == 0.7
        assert config.retrieval.layer_thresholds.l1 == 0.5
        assert config.retrieval.max_prompt_tokens == 32000

    def test_dotted_flattens_leaves_only(self):
        assert _dotted({"retrieval": {"blend_alpha": 0.3, "layer_thresholds": {"l1": 0.4}}, "storage": {}}) == {
            "retrieval.blend_alpha": 0.3,
            "retrieval.layer_thresholds.l1": 0.4,
            "storage": {},
        }

    def test_toml_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text(
            "[retrieval]\n"
            "max_prompt_tokens = 8000\n"
            "[retrieval.layer_thresholds]\n"
            "l0 = 0.7\n"
            "[other]\n"
            "ignored = true\n",
            encoding="utf-8",
        )
        config = load_config(config_path=path, env_prefix=None)
        assert config.retrieval.max_prompt_tokens == 8000
        assert config.retrieval.layer_thresholds.l0 == 0.7
        assert config.retrieval.layer_thresholds.l1 == 0.5

    def test_dict_overrides_file(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("[indexing]\nsegment_size = 6\nmax_keywords = 10\n", encoding="utf-8")
        config = load_config({"indexing": {"segment_size": 12}}, config_path=path, env_prefix=None)
        assert config.indexing.segment_size == 12
        assert config.indexing.max_keywords == 10

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(config_path=tmp_path / "absent.toml")

    def test_unreadable_toml(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("this is = = not toml", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config(config_path=path)

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.toml"
        path.write_text("[retrieval]\nblend_alpha = 0.2\n", encoding="utf-8")
        monkeypatch.setenv("LLMCONTEXT_RETRIEVAL_BLEND__ALPHA", "0.8")
        monkeypatch.setenv("LLMCONTEXT_RETRIEVAL_LAYER__THRESHOLDS_L1", "0.4")
        monkeypatch.setenv("LLMCONTEXT_STORAGE_PATH", "/srv/ctx")

        config = load_config(config_path=path)

        assert config.retrieval.blend_alpha == 0.8
        assert config.retrieval.layer_thresholds.l1 == 0.4
        assert config.storage.path == "/srv/ctx"

    def test_dict_overrides_env(self, monkeypatch):
        monkeypatch.setenv("LLMCONTEXT_RETRIEVAL_BLEND__ALPHA", "0.8")
        config = load_config({"retrieval": {"blend_alpha": 0.2}})
        assert config.retrieval.blend_alpha == 0.2

    def test_env_disabled(self, monkeypatch):
        monkeypatch.setenv("LLMCONTEXT_RETRIEVAL_BLEND__ALPHA", "0.8")
        config = load_config(env_prefix=None)
        assert config.retrieval.blend_alpha == 0.5

    def test_invalid_value_raises_config_error(self):
        with pytest.raises(ConfigError, match="blend_alpha"):
            load_config({"retrieval": {"blend_alpha": 7}}, env_prefix=None)

    def test_cross_field_rule_raises_config_error(self):
        with pytest.raises(ConfigError, match="selection_threshold"):
            load_config({"retrieval": {"selection_threshold": 0.55}}, env_prefix=None)
