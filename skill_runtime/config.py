"""Configuration with JSON file, optional config.yml and env variable support."""

import json
import logging
import os
import sys
from pathlib import Path

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

ENV_PREFIX = "SKILL_RUNTIME_"


def _find_repo_root(*, start: Path) -> Path:
    """Best-effort repository root discovery.

    Used to locate an optional ``config.yml`` next to ``pyproject.toml`` so the
    service can be launched from any working directory.
    """

    try:
        start = start.resolve()
        for p in [start, *start.parents]:
            if (p / "pyproject.toml").exists():
                return p
    except OSError:
        pass

    return Path.cwd()


class RuntimeConfig(BaseSettings):
    """Configuration with JSON file + config.yml + env var support.

    Load order (later overrides earlier):
    1. config.json - base configuration
    2. config.yml - repo-root overlay for non-secret settings
    3. Environment variables - runtime overrides

    Prefix: SKILL_RUNTIME_ (e.g., SKILL_RUNTIME_PIP_TIMEOUT_MS). The data root
    and bootstrap command also honour the unprefixed names used by the
    surrounding deployment (APP_DATA_DIR, DATA_DIR, PYTHON_BOOTSTRAP_COMMAND).
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Managed runtime location
    data_dir: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "data_dir",
            "SKILL_RUNTIME_DATA_DIR",
            "APP_DATA_DIR",
            "DATA_DIR",
        ),
        description=(
            "Root data directory. The managed venv lives under "
            "<data_dir>/python-runtime/venv. Defaults to ./data under the CWD."
        ),
    )
    python_bootstrap_command: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "python_bootstrap_command",
            "SKILL_RUNTIME_PYTHON_BOOTSTRAP_COMMAND",
            "PYTHON_BOOTSTRAP_COMMAND",
        ),
        description="Interpreter used first when creating the managed venv.",
    )
    platform: str = Field(
        default_factory=lambda: sys.platform,
        description="Host platform identifier (sys.platform style, e.g. 'linux', 'win32').",
    )

    # Subprocess limits
    operation_timeout_ms: int = Field(
        default=120_000,
        description="Timeout for venv creation and pip probes.",
    )
    pip_timeout_ms: int = Field(
        default=240_000,
        description="Timeout for pip install/uninstall/list/check.",
    )
    output_limit_bytes: int = Field(
        default=200_000,
        description="Per-stream capture ceiling for runtime management commands.",
    )

    # Snippet runner defaults
    snippet_timeout_ms: int = Field(default=30_000)
    snippet_max_output_chars: int = Field(default=20_000)
    snippet_max_source_chars: int = Field(default=20_000)

    # Database settings
    database_url: str = Field(default="sqlite+aiosqlite:///./skill_runtime.db")
    auto_create_tables: bool = Field(
        default=False,
        description=(
            "If true, the app calls Base.metadata.create_all() on startup. "
            "Keep false in production and rely on Alembic migrations."
        ),
    )

    # API settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8743)
    log_level: str = Field(default="INFO")
    prepare_runtime_on_startup: bool = Field(
        default=False,
        description=(
            "Create the managed venv and verify pip during startup instead of on "
            "the first runtime request. Failures are logged, not fatal."
        ),
    )

    @classmethod
    def from_json_file(cls, config_path: str = "config.json") -> "RuntimeConfig":
        """Load config from JSON + config.yml with env var overrides.

        Args:
            config_path: Path to JSON config file.

        Returns:
            Configured RuntimeConfig instance.
        """
        config_data: dict = {}

        json_path = Path(config_path)
        if json_path.exists():
            with open(json_path) as f:
                config_data = json.load(f)

        # Precedence: config.json < config.yml < env
        try:
            repo_root = _find_repo_root(start=Path(__file__))
            cfg_yml = repo_root / "config.yml"
            if cfg_yml.exists() and cfg_yml.is_file():
                with cfg_yml.open("r", encoding="utf-8") as f:
                    yml_data = yaml.safe_load(f) or {}
                if isinstance(yml_data, dict):
                    config_data.update(yml_data)
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Ignoring unreadable config.yml: %s", e)

        # Remove keys from config_data if corresponding env var is set so env
        # vars override file values.
        keys_to_remove = [
            key for key in config_data if f"{ENV_PREFIX}{key.upper()}" in os.environ
        ]
        for key in keys_to_remove:
            del config_data[key]

        return cls(**config_data)
