"""Configuration management using Pydantic.

Provides:
- Typed configuration models with validation
- YAML file loading with defaults
- Environment variable overrides (RTR_STORE_DIR, ...)
- Configuration initialization
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rtr.core.exceptions import ConfigurationError


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("/etc/rtr/config.yaml")
DEFAULT_STORE_DIR = Path("/etc/rtr/store")
DEFAULT_AUDIT_LOG = Path("/var/log/rtr/audit.log")


class StoreConfig(BaseModel):
    """Persisted snapshot store."""

    store_dir: Path = DEFAULT_STORE_DIR

    @field_validator("store_dir")
    @classmethod
    def validate_store_dir(cls, v: Path) -> Path:
        if not v.is_absolute():
            raise ValueError("store_dir must be an absolute path")
        return v


class ExecutionConfig(BaseModel):
    """External command execution."""

    # None leaves the bound to the caller's environment
    command_timeout: Optional[int] = None
    iptables_wait: bool = True

    @field_validator("command_timeout")
    @classmethod
    def validate_timeout(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("command_timeout must be a positive number of seconds")
        return v


class AuditConfig(BaseModel):
    """Audit sink configuration."""

    enabled: bool = True
    log_path: Path = DEFAULT_AUDIT_LOG


class MachineConfig(BaseModel):
    """Root configuration model, loaded from /etc/rtr/config.yaml."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @classmethod
    def load(cls, path: Path) -> "MachineConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: rtr config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Invalid configuration: {path} must contain a mapping",
            )

        try:
            return cls(**data)
        except Exception as e:
            raise ConfigurationError(
                f"Invalid configuration: {e}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "MachineConfig":
        """Load configuration, falling back to defaults if file doesn't exist."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class EnvOverrides(BaseSettings):
    """Overrides read from the environment.

    These win over the config file so a unit file or container can
    point the store somewhere else without editing YAML.
    """

    model_config = SettingsConfigDict(env_prefix="RTR_", extra="ignore")

    store_dir: Optional[Path] = None
    command_timeout: Optional[int] = None


class AppConfig:
    """Application configuration combining config file and environment.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[MachineConfig] = None,
        env: Optional[EnvOverrides] = None,
    ) -> None:
        """Initialize application configuration.

        Args:
            config_path: Path to config file (uses default if None)
            config: Pre-loaded config (skips file loading if provided)
            env: Pre-loaded environment overrides
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config or MachineConfig.load_or_default(self.config_path)
        self._env = env if env is not None else EnvOverrides()

    @property
    def config(self) -> MachineConfig:
        """Get the machine configuration."""
        return self._config

    @property
    def store_dir(self) -> Path:
        """Root of the persisted snapshot store."""
        return self._env.store_dir or self._config.store.store_dir

    @property
    def command_timeout(self) -> Optional[int]:
        """Per-command timeout in seconds, or None for no bound."""
        if self._env.command_timeout is not None:
            return self._env.command_timeout
        return self._config.execution.command_timeout

    @property
    def iptables_wait(self) -> bool:
        return self._config.execution.iptables_wait

    @property
    def audit(self) -> AuditConfig:
        """Shortcut to audit config."""
        return self._config.audit


def get_example_config() -> str:
    """Generate example configuration file content."""
    return """# Router configuration core
# Environment overrides: RTR_STORE_DIR, RTR_COMMAND_TIMEOUT

# Persisted snapshots (firewall dump, per-table routes, policy rules)
store:
  store_dir: /etc/rtr/store

# External command execution
execution:
  # command_timeout: 30  # seconds, unset = no bound
  iptables_wait: true    # pass -w so iptables waits for the xtables lock

# Audit trail of successful mutations
audit:
  enabled: true
  log_path: /var/log/rtr/audit.log
"""


def init_config(path: Path, force: bool = False) -> None:
    """Initialize a new configuration file.

    Args:
        path: Path to create config file
        force: Overwrite if exists

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())
    os.chmod(path, 0o600)
