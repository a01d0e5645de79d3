"""Configuration models for devpulse."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from devpulse.exceptions import ConfigError

DEVPULSE_HOME = Path.home() / ".devpulse"
DEFAULT_DB_NAME = "data.db"
TOKEN_FILE_NAME = "github_token"
CONFIG_FILE_NAME = "config.yaml"


class ImportConfig(BaseModel):
    """Event import parameters."""
    months: int = 6
    batch_size: int = 500
    page_size: int = 100


class RateLimitConfig(BaseModel):
    """Rate-limit coordinator parameters."""
    threshold: int = 10
    max_jitter_ms: int = 2000


class HTTPConfig(BaseModel):
    """GitHub HTTP client parameters."""
    base_url: str = "https://api.github.com"
    timeout_seconds: float = 60.0


class ReputationConfig(BaseModel):
    """Reputation scoring and caching parameters."""
    stale_hours: int = 24
    window_months: int = 6
    distribution_limit: int = 20


class AffiliationConfig(BaseModel):
    """Affiliation roster sources."""
    url_template: str = (
        "https://raw.githubusercontent.com/cncf/gitdm/master/"
        "developers_affiliations{index}.txt"
    )
    noreply_domain: str = "users.noreply.github.com"
    max_files: int = 100

    def urls(self) -> list[str]:
        """Ordered roster URLs; downloading stops at the first 404."""
        return [
            self.url_template.format(index=i) for i in range(1, self.max_files + 1)
        ]


class QueryConfig(BaseModel):
    """Read-side query limits."""
    max_page_size: int = 500
    lookup_limit: int = 10
    percentage_top: int = 9


class ServerConfig(BaseModel):
    """Query surface server parameters."""
    host: str = "127.0.0.1"
    port: int = 8080
    timeout_seconds: int = 300


class DevpulseConfig(BaseModel):
    """Top-level configuration composing all sub-configs."""
    model_config = ConfigDict(populate_by_name=True)

    import_: ImportConfig = Field(default_factory=ImportConfig, alias="import")
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    http: HTTPConfig = Field(default_factory=HTTPConfig)
    reputation: ReputationConfig = Field(default_factory=ReputationConfig)
    affiliations: AffiliationConfig = Field(default_factory=AffiliationConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)


def load_config(path: str | Path | None = None) -> DevpulseConfig:
    """Load configuration from YAML file, environment variables, and defaults.

    Priority (highest to lowest):
    1. Environment variables (DEVPULSE_*)
    2. YAML config file
    3. Defaults
    """
    config_data: dict[str, Any] = {}

    config_path = Path(path) if path is not None else DEVPULSE_HOME / CONFIG_FILE_NAME
    if config_path.is_file():
        try:
            with open(config_path) as f:
                yaml_data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid config file {config_path}: {exc}") from exc
        if yaml_data:
            if not isinstance(yaml_data, dict):
                raise ConfigError(f"Config file {config_path} must contain a mapping")
            config_data = yaml_data

    env_mapping = {
        "DEVPULSE_MONTHS": ("import", "months", int),
        "DEVPULSE_BATCH_SIZE": ("import", "batch_size", int),
        "DEVPULSE_PAGE_SIZE": ("import", "page_size", int),
        "DEVPULSE_RATE_LIMIT_THRESHOLD": ("rate_limit", "threshold", int),
        "DEVPULSE_HTTP_TIMEOUT": ("http", "timeout_seconds", float),
        "DEVPULSE_GITHUB_URL": ("http", "base_url", str),
        "DEVPULSE_REPUTATION_STALE_HOURS": ("reputation", "stale_hours", int),
        "DEVPULSE_SERVER_PORT": ("server", "port", int),
    }

    for env_var, (section, key, type_fn) in env_mapping.items():
        value = os.environ.get(env_var)
        if value is not None:
            if section not in config_data:
                config_data[section] = {}
            try:
                config_data[section][key] = type_fn(value)
            except ValueError as exc:
                raise ConfigError(f"Invalid value for {env_var}: {value!r}") from exc

    try:
        return DevpulseConfig(**config_data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


def ensure_home(home: Path = DEVPULSE_HOME) -> Path:
    """Create the devpulse home directory (mode 0700) if missing."""
    home.mkdir(mode=0o700, parents=True, exist_ok=True)
    return home


def default_db_path(home: Path = DEVPULSE_HOME) -> Path:
    return home / DEFAULT_DB_NAME


def resolve_token(home: Path = DEVPULSE_HOME) -> str:
    """Return the GitHub token from ``GITHUB_TOKEN`` or the fallback token file.

    Raises:
        ConfigError: If neither source provides a token.
    """
    token = os.environ.get("GITHUB_TOKEN", "").strip()
    if token:
        return token
    token_file = home / TOKEN_FILE_NAME
    if token_file.exists():
        token = token_file.read_text().strip()
        if token:
            return token
    raise ConfigError(
        f"GitHub token required. Set GITHUB_TOKEN or write it to {token_file}."
    )
