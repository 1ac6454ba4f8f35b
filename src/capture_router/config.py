"""Configuration management for capture-router."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import ValidationError

from capture_router.models import DEFAULT_ROUTING_PROMPT, InboxSettings

logger = logging.getLogger(__name__)


def _resolve_prompt(env_var_name: str, default: str) -> str:
    """
    Resolve a prompt value from environment variable.

    If env var is set to a file path that exists, read its contents.
    Otherwise use the string value directly.
    If unset, use the provided default.
    """
    value = os.getenv(env_var_name)
    if value is None:
        return default

    path = Path(value).expanduser()
    if path.exists() and path.is_file():
        return path.read_text()

    return value


def _parse_bool(value: str | None) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return False
    return value.lower() in ("true", "1", "yes", "on")


@dataclass
class Config:
    """Process-level configuration for capture-router."""

    vault_dir: str = "./vault/"
    settings_path: str = ""
    gateway_model: str = ""
    gateway_url: str = "https://api.openai.com/v1"
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    openrouter_api_key: str = ""
    gemini_api_key: str = ""
    routing_prompt: str = DEFAULT_ROUTING_PROMPT
    verbose: bool = False

    @property
    def api_keys(self) -> dict[str, str]:
        """Provider name to credential, as consumed by has_api_key_for_model."""
        return {
            "openai": self.openai_api_key,
            "anthropic": self.anthropic_api_key,
            "openrouter": self.openrouter_api_key,
            "gemini": self.gemini_api_key,
        }


def load_config() -> Config:
    """
    Load configuration from environment variables and .env file.

    Returns:
        Config instance with all settings loaded.
    """
    load_dotenv()

    config = Config(
        vault_dir=os.getenv("CAPTURE_VAULT_DIR", "./vault/"),
        settings_path=os.getenv("CAPTURE_SETTINGS_PATH", ""),
        gateway_model=os.getenv("GATEWAY_MODEL", ""),
        gateway_url=os.getenv("GATEWAY_URL", "https://api.openai.com/v1"),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
        openrouter_api_key=os.getenv("OPENROUTER_API_KEY", ""),
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        verbose=_parse_bool(os.getenv("VERBOSE")),
    )

    config.routing_prompt = _resolve_prompt("ROUTING_PROMPT", DEFAULT_ROUTING_PROMPT)

    return config


def load_settings(path: str) -> InboxSettings:
    """
    Load inbox routing settings from a YAML file.

    Args:
        path: Path to YAML settings file (empty string means built-in defaults)

    Returns:
        InboxSettings instance. Falls back to defaults if the file doesn't
        exist, is malformed, or fails validation.
    """
    if not path:
        return InboxSettings()

    filepath = Path(path).expanduser()

    if not filepath.exists():
        logger.warning(f"Settings file not found: {path}")
        return InboxSettings()

    try:
        with open(filepath, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.warning(f"Error parsing settings from {path}: {e}")
        return InboxSettings()

    if data is None:
        return InboxSettings()

    if not isinstance(data, dict):
        logger.warning(f"Settings file {path} must contain a mapping")
        return InboxSettings()

    # Allow the whole document to be nested under an "inbox" key
    if isinstance(data.get("inbox"), dict):
        data = data["inbox"]

    try:
        return InboxSettings.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Invalid settings in {path}: {e}")
        return InboxSettings()


def save_settings(settings: InboxSettings, path: str) -> None:
    """Write settings to YAML using temp file + rename."""
    filepath = Path(path).expanduser()
    filepath.parent.mkdir(parents=True, exist_ok=True)
    tmp = filepath.with_suffix(".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        yaml.safe_dump(
            settings.model_dump(exclude_none=True), f, sort_keys=False, allow_unicode=True
        )
    tmp.replace(filepath)
