"""Tests for settings loading and model-name parsing."""

import pytest

from prompter.model_props import DEFAULT_SETTINGS, is_openai_model, load_settings, parse_model_name


class TestParseModelName:
    def test_plain_name(self):
        assert parse_model_name("gpt-5.1") == ("gpt-5.1", {})

    def test_preset(self):
        base, params = parse_model_name("gpt-5.1_fast")
        assert base == "gpt-5.1"
        assert params == {
            "text": {"verbosity": "low"},
            "reasoning": {"effort": "none"},
            "service_tier": "default",
        }

    def test_flex_preset(self):
        _, params = parse_model_name("gpt-5.1_deep-flex")
        assert params["reasoning"] == {"effort": "high"}
        assert params["service_tier"] == "flex"

    def test_explicit_tokens(self):
        _, params = parse_model_name("gpt-5_high_medium_priority")
        assert params["text"] == {"verbosity": "high"}
        assert params["reasoning"] == {"effort": "medium"}
        assert params["service_tier"] == "priority"

    def test_unknown_token(self):
        with pytest.raises(ValueError):
            parse_model_name("gpt-5_turbo")

    def test_preset_with_unknown_tail(self):
        with pytest.raises(ValueError):
            parse_model_name("gpt-5_fast-priority")

    def test_bare_tier_token(self):
        _, params = parse_model_name("gpt-5_flex")
        assert params == {"service_tier": "flex"}

    def test_empty(self):
        with pytest.raises(ValueError):
            parse_model_name("  ")

    def test_provider_detection(self):
        assert is_openai_model("gpt-5.1_fast")
        assert not is_openai_model("gemini-3-flash-preview")


class TestLoadSettings:
    def test_defaults_without_file(self, monkeypatch):
        monkeypatch.delenv("PROMPTER_CONFIG_PATH", raising=False)
        assert load_settings() == DEFAULT_SETTINGS

    def test_jsonc_overrides(self, tmp_path):
        cfg = tmp_path / "prompter.jsonc"
        cfg.write_text('{\n  // faster polling for demos\n  "poll_interval_seconds": 5,\n  "max_sources": 3\n}\n')
        settings = load_settings(str(cfg))
        assert settings["poll_interval_seconds"] == 5
        assert settings["max_sources"] == 3
        assert settings["history_points"] == DEFAULT_SETTINGS["history_points"]

    def test_path_from_environment(self, tmp_path, monkeypatch):
        cfg = tmp_path / "prompter.jsonc"
        cfg.write_text('{"history_points": 5}')
        monkeypatch.setenv("PROMPTER_CONFIG_PATH", str(cfg))
        assert load_settings()["history_points"] == 5

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(str(tmp_path / "nope.jsonc"))

    @pytest.mark.parametrize("body", [
        '{"unknown_key": 1}',
        '{"max_sources": "five"}',
        '{"max_sources": true}',
        '{"llm_retries": 0}',
        '[1, 2]',
    ])
    def test_invalid_config(self, tmp_path, body):
        cfg = tmp_path / "prompter.jsonc"
        cfg.write_text(body)
        with pytest.raises(ValueError):
            load_settings(str(cfg))
