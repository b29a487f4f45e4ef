import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "provider": "openai",  # "openai" | "anthropic"
    "primary_model": None,  # None = provider default, see resolve_models
    "secondary_model": None,
    "temperature": 0.7,
    "max_tokens": 2000,
    "json_mode": True,
    "max_attempts": 3,  # per model
    "backoff_seconds": 1.0,  # wait = backoff_seconds * attempt
    "request_timeout": 60.0,
    "fetcher_timeout": 10.0,
    "history_turns": 5,  # conversation tail injected into the prompt
    "history_chars": 200,
    "memory_turns": 20,  # ring buffer of turn summaries per session
    "repetition_threshold": 0.7,
    "hallucination_threshold": 0.7,
    "relevance_threshold": 0.3,
    "max_files": 50,
    "patch_preview_chars": 1000,
    "max_comments": 50,
    "max_question_chars": 4000,
    "store": "sqlite",  # "sqlite" | "memory"
    "store_path": ".prtalk.db",
    "log_level": "WARNING",
}

# Cheaper model first, stronger model as the second tier.
PROVIDER_MODELS: dict[str, tuple[str, str]] = {
    "openai": ("gpt-4o-mini", "gpt-4o"),
    "anthropic": ("claude-3-5-haiku-20241022", "claude-sonnet-4-20250514"),
}


def load_config(config_path: str = ".prtalk.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prtalk.yml in the current directory
      3. CLI argument overrides
    """
    config = dict(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"{config_path} must contain a mapping, got {type(file_config).__name__}")
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    # Resolve credentials from environment variables
    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["anthropic_api_key"] = os.environ.get("ANTHROPIC_API_KEY")
    config["openai_api_key"] = os.environ.get("OPENAI_API_KEY")
    config["user"] = config.get("user") or os.environ.get("PRTALK_USER")

    return config


def resolve_models(config: dict) -> tuple[str, str]:
    """Return (primary, secondary) model names, filling provider defaults."""
    provider = config.get("provider", "openai")
    if provider not in PROVIDER_MODELS:
        raise ValueError(f"Unknown model provider: {provider!r}. Choose 'anthropic' or 'openai'.")
    default_primary, default_secondary = PROVIDER_MODELS[provider]
    return (
        config.get("primary_model") or default_primary,
        config.get("secondary_model") or default_secondary,
    )
