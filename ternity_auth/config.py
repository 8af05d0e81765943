"""Configuration system for Ternity auth using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.ternity] section (project-level)
3. ./ternity.toml (project-level, explicit)
4. ~/.config/ternity/config.toml (user-level, overrides project)
5. Environment variables (highest priority)

Environment variables use TERNITY_ prefix with nested delimiter __.
Example: TERNITY_AUTH__CALLBACK_PORT, TERNITY_LOG__LEVEL
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import UnknownEnvironmentError


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


#: Id of the environment that bypasses the OIDC flow.
LOCAL_ENVIRONMENT_ID = "local"


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    ternity_toml = Path("ternity.toml")
    if ternity_toml.exists():
        files.append(ternity_toml)

    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "ternity" / "config.toml"
    else:
        user_config = Path("~/.config/ternity/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("TERNITY_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            continue  # invalid config files are ignored

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("ternity", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _default_config_dir() -> Path:
    """Platform user-data directory for the desktop app."""
    if sys.platform == "win32":
        base = Path(os.environ.get("APPDATA", "~"))
    elif sys.platform == "darwin":
        base = Path("~/Library/Application Support")
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", "~/.config"))
    return (base / "Ternity").expanduser()


class EnvironmentConfig(BaseModel):
    """One deployment target.

    Attributes
    ----------
    id : str
        Environment identifier (``local``, ``dev``, ``prod``).
    label : str
        Human-readable label.
    api_base_url : str
        First-party API base URL.
    issuer_url : str
        OIDC issuer; discovery reads ``{issuer_url}/.well-known/openid-configuration``.
    client_id : str
        OAuth client id of the native app.
    web_app_url : str
        Browser app URL, informational.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    api_base_url: str
    issuer_url: str
    client_id: str
    web_app_url: str = ""

    @field_validator("api_base_url", "issuer_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def is_local(self) -> bool:
        """Whether this environment bypasses the OIDC flow."""
        return self.id == LOCAL_ENVIRONMENT_ID


DEFAULT_ENVIRONMENTS: dict[str, EnvironmentConfig] = {
    "local": EnvironmentConfig(
        id="local",
        label="Local",
        api_base_url="http://localhost:3010",
        issuer_url="http://localhost:3001/oidc",
        client_id="zj3wpsadvjag9t2cz8hvt",
        web_app_url="http://localhost:5173",
    ),
    "dev": EnvironmentConfig(
        id="dev",
        label="Dev",
        api_base_url="https://dev.app.ternity.xyz",
        issuer_url="https://dev.auth.ternity.xyz/oidc",
        client_id="lc5kuqxtr6zcp5q4acw1e",
        web_app_url="https://dev.app.ternity.xyz",
    ),
    "prod": EnvironmentConfig(
        id="prod",
        label="Prod",
        api_base_url="https://app.ternity.xyz",
        issuer_url="https://auth.ternity.xyz/oidc",
        client_id="fon9httgns1fy1ghzbbjs",
        web_app_url="https://app.ternity.xyz",
    ),
}


class AuthSettings(BaseSettings):
    """Authentication settings.

    Environment prefix: TERNITY_AUTH__
    Example: TERNITY_AUTH__CALLBACK_PORT=21987

    TOML section: [tool.ternity.auth]
    """

    model_config = SettingsConfigDict(
        env_prefix="TERNITY_AUTH__",
        extra="ignore",
    )

    callback_host: str = Field(
        default="127.0.0.1",
        description="Loopback address the callback server binds to",
    )
    callback_port: int = Field(
        default=21987,
        ge=0,
        le=65535,
        description="Fixed loopback port registered as the redirect target",
    )
    callback_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Maximum seconds to wait for the sign-in redirect",
    )
    sign_out_page_ttl_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Seconds the sign-out pages stay served before the listener closes",
    )
    refresh_buffer_seconds: int = Field(
        default=60,
        ge=0,
        description="Refresh the access token when it expires within this many seconds",
    )
    max_refresh_failures: int = Field(
        default=3,
        ge=1,
        description="Consecutive refresh failures before the stored session is cleared",
    )
    local_token_lifetime_seconds: int = Field(
        default=365 * 24 * 60 * 60,
        gt=0,
        description="Validity of the synthesized token for the local environment",
    )
    api_resource: str = Field(
        default="https://api.ternity.xyz",
        description="API resource indicator used to mint resource-scoped tokens",
    )
    scopes: str = Field(
        default="openid profile phone email urn:logto:scope:roles admin offline_access",
        description="Space-separated OAuth2 scopes to request",
    )
    profile_path: str = Field(
        default="/api/me",
        description="First-party API path returning the signed-in user's profile",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for provider and API requests",
    )
    keyring_service: str = Field(
        default="ternity-desktop",
        description="OS keyring service holding the token encryption key",
    )
    config_dir: Path = Field(
        default_factory=_default_config_dir,
        description="Directory holding the persisted settings document and logs",
    )
    config_file_name: str = Field(
        default="config.json",
        description="File name of the persisted settings document",
    )

    @property
    def scope_list(self) -> list[str]:
        """Requested scopes as a list."""
        return [s for s in self.scopes.split() if s]

    @property
    def document_path(self) -> Path:
        """Path of the persisted settings document."""
        return self.config_dir / self.config_file_name

    def redirect_uri(self, path: str = "/callback") -> str:
        """Loopback URL for ``path`` on the callback server."""
        return f"http://{self.callback_host}:{self.callback_port}{path}"


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: TERNITY_LOG__
    Example: TERNITY_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="TERNITY_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: str = "%(name)s - %(levelname)s - %(message)s"
    to_file: bool = Field(
        default=True,
        description="Also write logs to <config_dir>/logs/app.log",
    )
    max_bytes: int = Field(default=2 * 1024 * 1024, ge=1024)
    backup_count: int = Field(default=2, ge=0)


class TernitySettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: TERNITY__

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.ternity] section
    3. ./ternity.toml (project-level)
    4. ~/.config/ternity/config.toml (user-level, overrides project)
    5. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="TERNITY__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    auth: AuthSettings = Field(default_factory=AuthSettings)
    log: LogSettings = Field(default_factory=LogSettings)
    environments: dict[str, EnvironmentConfig] = Field(
        default_factory=lambda: dict(DEFAULT_ENVIRONMENTS),
        description="Deployment targets keyed by id; TOML entries override built-ins",
    )

    _sections: ClassVar[list[tuple[str, str]]] = [
        ("Authentication", "auth"),
        ("Logging", "log"),
    ]

    def __init__(self, **data: Any) -> None:
        toml_config = _load_toml_config()
        merged = _deep_merge(toml_config, data)

        extra_envs = merged.get("environments")
        if isinstance(extra_envs, dict):
            envs: dict[str, Any] = dict(DEFAULT_ENVIRONMENTS)
            for env_id, value in extra_envs.items():
                if isinstance(value, dict):
                    value = {"id": env_id, **value}
                envs[env_id] = value
            merged["environments"] = envs

        super().__init__(**merged)

    def environment(self, env_id: str) -> EnvironmentConfig:
        """Look up an environment by id.

        Raises
        ------
        UnknownEnvironmentError
            If ``env_id`` is not configured.
        """
        try:
            return self.environments[env_id]
        except KeyError:
            raise UnknownEnvironmentError(env_id) from None

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["Ternity Auth Configuration", "=" * 60, ""]

        for display_name, attr_name in self._sections:
            section_data = getattr(self, attr_name).model_dump()
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in section_data.items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:28} = {value_str}")

        lines.append("\nEnvironments")
        lines.append("-" * 40)
        for env in self.environments.values():
            lines.append(f"  {env.id:10} {env.label:8} api={env.api_base_url} issuer={env.issuer_url}")

        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> TernitySettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return TernitySettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> TernitySettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
