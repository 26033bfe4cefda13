"""
Configuration management and loading.

Reads the user's ~/.bmadrc (YAML or JSON) into validated, immutable
dataclasses. Strict validation: unknown keys and wrong types are errors.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from bmad_chat.core.cost_policy import CostLimitConfig
from bmad_chat.core.pricing import DEFAULT_MODEL

CONFIG_ENV_VAR = "BMAD_CHAT_CONFIG"
API_KEY_ENV_VAR = "OPENAI_API_KEY"
DEFAULT_EXPORT_DIR = "./exports"


def default_config_path() -> Path:
    """Config path from BMAD_CHAT_CONFIG, else ~/.bmadrc."""
    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        return Path(env)
    return Path.home() / ".bmadrc"


@dataclass(frozen=True)
class OpenAIConfig:
    """Live backend settings."""
    enabled: bool = False
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    max_tokens: int = 2000
    temperature: float = 0.7
    stream_response: bool = True
    show_costs: bool = True
    cost_limit: Optional[CostLimitConfig] = None

    def __post_init__(self):
        """Validate numeric settings."""
        if self.max_tokens <= 0:
            raise ValueError("openai.maxTokens must be > 0")
        if not 0 <= self.temperature <= 2:
            raise ValueError("openai.temperature must be between 0 and 2")
        if self.enabled and not self.api_key:
            raise ValueError(
                f"OpenAI is enabled but no API key is configured "
                f"(set openai.apiKey or {API_KEY_ENV_VAR})"
            )


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    bmad_path: str
    enabled_packs: Tuple[str, ...]
    export_dir: str = DEFAULT_EXPORT_DIR
    auto_save: bool = True
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)

    def __post_init__(self):
        """Validate required settings."""
        if not self.bmad_path:
            raise ValueError("bmadPath is required")
        if not self.enabled_packs:
            raise ValueError("enabledPacks must name at least one pack")

    @property
    def live_enabled(self) -> bool:
        return self.openai.enabled

    @property
    def cost_limit(self) -> Optional[CostLimitConfig]:
        return self.openai.cost_limit


_TOP_KEYS = {"bmadPath", "enabledPacks", "exportDir", "autoSave", "openai"}
_OPENAI_KEYS = {
    "enabled", "apiKey", "model", "maxTokens", "temperature",
    "streamResponse", "showCosts", "costLimit",
}
_LIMIT_KEYS = {"perConversation", "daily"}


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load and validate the configuration file.

    Args:
        path: Config file path; defaults to default_config_path()

    Returns:
        Validated AppConfig

    Raises:
        FileNotFoundError: If the config file doesn't exist
        yaml.YAMLError: If the file cannot be parsed
        ValueError: If the configuration is invalid
    """
    config_path = Path(path) if path else default_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {config_path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")

    return parse_config(raw_config)


def parse_config(raw_config: Any) -> AppConfig:
    """Validate a raw configuration mapping."""
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    unknown_keys = set(raw_config.keys()) - _TOP_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'bmadPath' not in raw_config:
        raise ValueError("Missing required 'bmadPath'")
    bmad_path = raw_config['bmadPath']
    if not isinstance(bmad_path, str):
        raise ValueError("'bmadPath' must be a string")

    packs = raw_config.get('enabledPacks')
    if not isinstance(packs, list) or not all(isinstance(p, str) for p in packs):
        raise ValueError("'enabledPacks' must be a list of pack names")

    export_dir = raw_config.get('exportDir', DEFAULT_EXPORT_DIR)
    if not isinstance(export_dir, str):
        raise ValueError("'exportDir' must be a string")

    auto_save = raw_config.get('autoSave', True)
    if not isinstance(auto_save, bool):
        raise ValueError("'autoSave' must be true or false")

    openai_data = raw_config.get('openai') or {}
    if not isinstance(openai_data, dict):
        raise ValueError("'openai' must be a dictionary")

    return AppConfig(
        bmad_path=bmad_path,
        enabled_packs=tuple(packs),
        export_dir=export_dir,
        auto_save=auto_save,
        openai=_parse_openai_config(openai_data),
    )


def _parse_openai_config(data: Dict) -> OpenAIConfig:
    """Parse and validate the openai section.

    Raises:
        ValueError: If the section is invalid
    """
    unknown_keys = set(data.keys()) - _OPENAI_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown keys in openai: {unknown_keys}")

    for key in ("enabled", "streamResponse", "showCosts"):
        if key in data and not isinstance(data[key], bool):
            raise ValueError(f"'openai.{key}' must be true or false")

    api_key = data.get('apiKey') or os.environ.get(API_KEY_ENV_VAR)
    if api_key is not None and not isinstance(api_key, str):
        raise ValueError("'openai.apiKey' must be a string")

    model = data.get('model', DEFAULT_MODEL)
    if not isinstance(model, str) or not model:
        raise ValueError("'openai.model' must be a non-empty string")

    max_tokens = data.get('maxTokens', 2000)
    if isinstance(max_tokens, bool) or not isinstance(max_tokens, int):
        raise ValueError("'openai.maxTokens' must be an integer")

    temperature = data.get('temperature', 0.7)
    if isinstance(temperature, bool) or not isinstance(temperature, (int, float)):
        raise ValueError("'openai.temperature' must be a number")

    cost_limit = None
    if data.get('costLimit') is not None:
        cost_limit = _parse_cost_limit(data['costLimit'])

    return OpenAIConfig(
        enabled=data.get('enabled', False),
        api_key=api_key,
        model=model,
        max_tokens=max_tokens,
        temperature=float(temperature),
        stream_response=data.get('streamResponse', True),
        show_costs=data.get('showCosts', True),
        cost_limit=cost_limit,
    )


def _parse_cost_limit(data: Any) -> CostLimitConfig:
    if not isinstance(data, dict):
        raise ValueError("'openai.costLimit' must be a dictionary")

    unknown_keys = set(data.keys()) - _LIMIT_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown keys in openai.costLimit: {unknown_keys}")

    values = {}
    for key in _LIMIT_KEYS:
        value = data.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"'openai.costLimit.{key}' must be a non-negative number")
        values[key] = float(value)

    return CostLimitConfig(
        per_conversation=values.get('perConversation'),
        daily=values.get('daily'),
    )


def config_to_dict(config: AppConfig) -> Dict[str, Any]:
    """Camel-case document for writing back to disk."""
    openai_data: Dict[str, Any] = {
        "enabled": config.openai.enabled,
        "model": config.openai.model,
        "maxTokens": config.openai.max_tokens,
        "temperature": config.openai.temperature,
        "streamResponse": config.openai.stream_response,
        "showCosts": config.openai.show_costs,
    }
    # keys taken from the environment stay there
    if config.openai.api_key and config.openai.api_key != os.environ.get(API_KEY_ENV_VAR):
        openai_data["apiKey"] = config.openai.api_key
    if config.openai.cost_limit:
        limit = {}
        if config.openai.cost_limit.per_conversation is not None:
            limit["perConversation"] = config.openai.cost_limit.per_conversation
        if config.openai.cost_limit.daily is not None:
            limit["daily"] = config.openai.cost_limit.daily
        openai_data["costLimit"] = limit

    return {
        "bmadPath": config.bmad_path,
        "enabledPacks": list(config.enabled_packs),
        "exportDir": config.export_dir,
        "autoSave": config.auto_save,
        "openai": openai_data,
    }


def save_config(config: AppConfig, path: Optional[str] = None) -> Path:
    """Write the configuration file and return its path."""
    config_path = Path(path) if path else default_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(config_to_dict(config), f, sort_keys=False)
    return config_path
