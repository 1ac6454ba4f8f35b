"""Tests for config module."""

import os
import tempfile
from pathlib import Path

import yaml

from capture_router.config import (
    Config,
    _parse_bool,
    load_config,
    load_settings,
    save_settings,
)
from capture_router.models import DEFAULT_ROUTING_PROMPT, InboxSettings

ENV_KEYS = [
    "CAPTURE_VAULT_DIR",
    "CAPTURE_SETTINGS_PATH",
    "GATEWAY_MODEL",
    "GATEWAY_URL",
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "OPENROUTER_API_KEY",
    "GEMINI_API_KEY",
    "ROUTING_PROMPT",
    "VERBOSE",
]


class TestConfigDefaults:
    """Test default configuration values."""

    def test_default_config_values(self):
        """Verify default Config dataclass values."""
        config = Config()
        assert config.vault_dir == "./vault/"
        assert config.settings_path == ""
        assert config.gateway_model == ""
        assert config.gateway_url == "https://api.openai.com/v1"
        assert config.routing_prompt == DEFAULT_ROUTING_PROMPT
        assert config.verbose is False

    def test_api_keys_mapping(self):
        """Verify api_keys maps provider names to credentials."""
        config = Config(openai_api_key="sk-1", gemini_api_key="g-1")
        assert config.api_keys == {
            "openai": "sk-1",
            "anthropic": "",
            "openrouter": "",
            "gemini": "g-1",
        }


class TestLoadConfig:
    """Test load_config() against environment variables."""

    def test_load_config_default_values(self, monkeypatch):
        """Verify load_config() uses defaults when env vars not set."""
        for key in ENV_KEYS:
            monkeypatch.delenv(key, raising=False)

        config = load_config()
        assert isinstance(config, Config)
        assert config.vault_dir == "./vault/"
        assert config.routing_prompt == DEFAULT_ROUTING_PROMPT

    def test_vault_dir_override(self, monkeypatch):
        """Verify CAPTURE_VAULT_DIR env var overrides default."""
        monkeypatch.setenv("CAPTURE_VAULT_DIR", "/notes/vault")
        assert load_config().vault_dir == "/notes/vault"

    def test_gateway_overrides(self, monkeypatch):
        """Verify GATEWAY_MODEL and GATEWAY_URL env vars override defaults."""
        monkeypatch.setenv("GATEWAY_MODEL", "gpt-4o-mini")
        monkeypatch.setenv("GATEWAY_URL", "http://localhost:8800/v1")
        config = load_config()
        assert config.gateway_model == "gpt-4o-mini"
        assert config.gateway_url == "http://localhost:8800/v1"

    def test_api_key_overrides(self, monkeypatch):
        """Verify provider keys are read from their standard env vars."""
        monkeypatch.setenv("ANTHROPIC_API_KEY", "ak")
        monkeypatch.setenv("OPENROUTER_API_KEY", "ok")
        config = load_config()
        assert config.api_keys["anthropic"] == "ak"
        assert config.api_keys["openrouter"] == "ok"

    def test_routing_prompt_from_file(self, monkeypatch):
        """Verify routing prompt loaded from file if path exists."""
        with tempfile.NamedTemporaryFile(mode="w", delete=False, suffix=".txt") as f:
            f.write("Classify: {content}")
            temp_path = f.name

        try:
            monkeypatch.setenv("ROUTING_PROMPT", temp_path)
            assert load_config().routing_prompt == "Classify: {content}"
        finally:
            os.unlink(temp_path)

    def test_routing_prompt_inline_string(self, monkeypatch):
        """Verify routing prompt used as inline string if not a file."""
        monkeypatch.setenv("ROUTING_PROMPT", "/nonexistent/prompt.txt")
        assert load_config().routing_prompt == "/nonexistent/prompt.txt"

    def test_verbose_override(self, monkeypatch):
        """Verify VERBOSE env var is parsed as a boolean."""
        monkeypatch.setenv("VERBOSE", "yes")
        assert load_config().verbose is True


class TestBoolParsing:
    """Test boolean environment variable parsing."""

    def test_truthy_values(self):
        """Verify accepted truthy spellings."""
        for value in ["true", "TRUE", "1", "yes", "On"]:
            assert _parse_bool(value) is True

    def test_falsy_values(self):
        """Verify everything else is False."""
        for value in [None, "", "false", "0", "no", "off", "maybe"]:
            assert _parse_bool(value) is False


class TestLoadSettings:
    """Test YAML inbox settings loading and its fallbacks."""

    def test_empty_path_returns_defaults(self):
        """Verify an empty path gives built-in defaults."""
        settings = load_settings("")
        assert settings == InboxSettings()
        assert [rule.id for rule in settings.routing.rules][:2] == ["task-type-meeting", "task-type"]

    def test_missing_file_returns_defaults(self, tmp_path, caplog):
        """Verify a missing file logs a warning and falls back."""
        settings = load_settings(str(tmp_path / "nope.yml"))
        assert settings == InboxSettings()
        assert "Settings file not found" in caplog.text

    def test_malformed_yaml_returns_defaults(self, tmp_path, caplog):
        """Verify malformed YAML logs a warning and falls back."""
        path = tmp_path / "settings.yml"
        path.write_text("routing: [unclosed\n")
        assert load_settings(str(path)) == InboxSettings()
        assert "Error parsing settings" in caplog.text

    def test_non_mapping_returns_defaults(self, tmp_path):
        """Verify a list document is rejected."""
        path = tmp_path / "settings.yml"
        path.write_text("- one\n- two\n")
        assert load_settings(str(path)) == InboxSettings()

    def test_invalid_schema_returns_defaults(self, tmp_path, caplog):
        """Verify a schema-invalid document falls back to defaults."""
        path = tmp_path / "settings.yml"
        path.write_text("routing:\n  default_destination: somewhere_else\n")
        assert load_settings(str(path)) == InboxSettings()
        assert "Invalid settings" in caplog.text

    def test_partial_settings_fill_defaults(self, tmp_path):
        """Verify missing fields take defaults and set fields are kept."""
        path = tmp_path / "settings.yml"
        path.write_text(
            "thoughts_section: '## Inbox'\n"
            "formatting:\n"
            "  default_due_date_offset: 3\n"
        )
        settings = load_settings(str(path))
        assert settings.thoughts_section == "## Inbox"
        assert settings.formatting.default_due_date_offset == 3
        assert settings.formatting.due_date_emoji == "📅"
        assert settings.triggers.followup_phrases == ["follow up", "follow-up", "followup"]

    def test_unknown_fields_ignored(self, tmp_path):
        """Verify fields from newer versions don't break loading."""
        path = tmp_path / "settings.yml"
        path.write_text("enabled: true\nfuture_feature: 42\nrouting:\n  shiny: yes\n")
        settings = load_settings(str(path))
        assert settings.enabled is True
        assert len(settings.routing.rules) == 9

    def test_nested_inbox_key(self, tmp_path):
        """Verify settings nested under an inbox key are accepted."""
        path = tmp_path / "settings.yml"
        path.write_text("inbox:\n  meeting_window_minutes: 5\n")
        assert load_settings(str(path)).meeting_window_minutes == 5

    def test_custom_rules(self, tmp_path):
        """Verify user rules replace the built-in list in the given order."""
        path = tmp_path / "settings.yml"
        path.write_text(
            yaml.safe_dump(
                {
                    "routing": {
                        "rules": [
                            {
                                "id": "ideas",
                                "name": "Ideas",
                                "match": {"content_starts_with": ["idea:"]},
                                "action": {"destination": "daily_end", "format": "thought"},
                            }
                        ]
                    }
                }
            )
        )
        rules = load_settings(str(path)).routing.rules
        assert [rule.id for rule in rules] == ["ideas"]
        assert rules[0].action.destination == "daily_end"


class TestSaveSettings:
    """Test settings persistence."""

    def test_save_then_load(self, tmp_path):
        """Verify saved settings load back unchanged."""
        settings = InboxSettings(thoughts_section="## Notes", exclude_titles=["Focus time"])
        path = tmp_path / "conf" / "settings.yml"
        save_settings(settings, str(path))

        assert path.exists()
        assert not Path(str(path.with_suffix(".tmp"))).exists()
        assert load_settings(str(path)) == settings
