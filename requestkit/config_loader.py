"""Config Loader - Loads client profiles and turns them into base requests.

Handles loading YAML config files with environment variable substitution
and building the HttpRequest every request for a client starts from.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml

from requestkit.errors import ConfigurationError
from requestkit.models import ClientConfig, ClientProfile
from requestkit.request import HttpRequest
from requestkit.transport import Transport


class ConfigError(ConfigurationError):
    """Raised when configuration loading fails."""


_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def load_client_config(config_path: Path) -> ClientConfig:
    """Load client configuration from YAML with ${ENV_VAR} substitution."""
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file: {e}") from e

    if not isinstance(raw_config, dict):
        raise ConfigError("Config file must be a YAML mapping")

    raw_config = _substitute_env_vars(raw_config)

    try:
        return ClientConfig.model_validate(raw_config)
    except Exception as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def select_client(config: ClientConfig, name: str) -> ClientProfile:
    """Return the named client profile."""
    if name not in config.clients:
        available = ", ".join(config.clients.keys()) or "(none)"
        raise ConfigError(f"Client '{name}' not found in config. Available: {available}")
    return config.clients[name]


def build_request(profile: ClientProfile, transport: Transport | None = None) -> HttpRequest:
    """Build the base request for a client profile."""
    request = HttpRequest().with_url(profile.base_url)

    for name, value in profile.headers.items():
        request = request.with_header(name, value)

    if profile.basic_auth is not None:
        request = request.basic_auth(profile.basic_auth.username, profile.basic_auth.password)

    request = request.with_timeout(profile.timeout_ms).with_retries(profile.retries)

    if transport is not None:
        request = request.with_transport(transport)

    return request


def _substitute_env_vars(data: Any) -> Any:
    """Recursively substitute ${ENV_VAR} patterns in strings within data."""
    if isinstance(data, str):
        return _substitute_string(data)
    elif isinstance(data, dict):
        return {k: _substitute_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_substitute_env_vars(item) for item in data]
    return data


def _substitute_string(s: str) -> str:
    """Substitute ${ENV_VAR} patterns. Raises ConfigError if env var is not set."""

    def replacer(match: re.Match) -> str:
        var_name = match.group(1)
        value = os.environ.get(var_name)
        if value is None:
            raise ConfigError(f"Environment variable '{var_name}' is not set")
        return value

    return _ENV_VAR_PATTERN.sub(replacer, s)
