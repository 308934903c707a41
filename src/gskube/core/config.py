"""Configuration management for gskube."""

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field

from gskube.core.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = "~/.config/gskube/config.yaml"
DEFAULT_ACCOUNT = "default"
DEFAULT_API_URL = "https://api.gridscale.io"


class AccountConfig(BaseModel):
    """gridscale API account."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    user_id: str = Field(..., alias="userId")
    token: str
    url: str = DEFAULT_API_URL


class LoggingConfig(BaseModel):
    """Logging configuration.

    Log output always goes to stderr; stdout belongs to kubectl.
    """

    level: str = "WARNING"
    format: str = "console"


class GsKubeConfig(BaseModel):
    """Main gskube configuration."""

    accounts: list[AccountConfig] = Field(default_factory=list)
    http_timeout: float = 30.0
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, path: str | Path) -> "GsKubeConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            GsKubeConfig instance

        Raises:
            ConfigurationError: If file cannot be loaded or parsed
        """
        config_path = Path(path).expanduser()

        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with config_path.open() as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load configuration: {e}") from e

        try:
            return cls(**(data or {}))
        except Exception as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def get_account(self, name: str) -> AccountConfig:
        """Get account configuration by name.

        Args:
            name: Account name as given by --account

        Returns:
            AccountConfig for the account

        Raises:
            ConfigurationError: If no account has that name
        """
        account = next((a for a in self.accounts if a.name == name), None)
        if account is None:
            raise ConfigurationError(f"Account not found in configuration: {name}")
        return account
