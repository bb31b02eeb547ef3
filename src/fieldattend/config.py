"""Manage configuration settings for the fieldattend client."""

import argparse
import dataclasses
import enum
import pathlib
import tomllib
from typing import Optional


DB_FILE_NAME = "fieldattend.db"
CONFIG_FILE_NAME = "fieldattend.toml"


class ConfigError(Exception):
    """Errors when setting or accessing settings."""

    class ErrorType(enum.Enum):
        NOT_A_FILE = 1
        PATH_DOES_NOT_EXIST = 2
        INVALID_VALUE = 3

    error_type: ErrorType

    def __init__(self, message: str, error_type: ErrorType) -> None:
        """Set error type."""
        super().__init__(message)
        self.error_type = error_type


@dataclasses.dataclass
class Settings:
    """Configuration data for the fieldattend client.

    Timeouts and pauses are in seconds. The batch size and timeouts match what
    the attendance server and rural uplinks were tuned for, so only change them
    for testing.
    """

    db_path: Optional[pathlib.Path] = None
    config_path: Optional[pathlib.Path] = None
    endpoint_url: str = "https://accionhonduras.org/participacion/admin/api_sync.php"
    reachability_url: str = "https://clients3.google.com/generate_204"
    request_timeout: float = 60.0
    reachability_timeout: float = 5.0
    reachability_status: int = 204
    gps_timeout: float = 4.0
    batch_size: int = 20
    batch_pause: float = 0.5
    retention_days: int = 50
    poll_interval: float = 10.0
    location_label: str = "Active teacher"

    def update_from_args(self, args: argparse.Namespace) -> None:
        """Read settings."""
        if getattr(args, "db_path", None) is not None:
            self.db_path = self._convert_path_to_absolute(args.db_path)
        elif self.db_path is None:
            self.db_path = pathlib.Path.cwd() / DB_FILE_NAME
        self.config_path = self._get_full_path(
            getattr(args, "config_path", None), CONFIG_FILE_NAME
        )
        if self.config_path is not None:
            self._read_config_file()

    @staticmethod
    def _convert_path_to_absolute(path: pathlib.Path | str) -> pathlib.Path:
        """Convert relative paths to absolute paths."""
        if isinstance(path, str):
            path = pathlib.Path(path)
        return path if path.is_absolute() else pathlib.Path.cwd() / path

    @staticmethod
    def _get_full_path(
        path: Optional[pathlib.Path], default_file_name: str
    ) -> Optional[pathlib.Path]:
        """Convert path arg to full filesystem path.

        If path is None, looks for file in current working directory and
        returns None when there is no such file. Otherwise converts relative
        paths to absolute paths.

        Raises:
            ConfigError: If an explicit path does not point to an existing file.
        """
        cwd = pathlib.Path.cwd()
        if path is None:
            full_path = cwd / default_file_name
            return full_path if full_path.is_file() else None
        full_path = path if path.is_absolute() else cwd / path
        if not full_path.exists():
            raise ConfigError(
                f"No file at {full_path}.", ConfigError.ErrorType.PATH_DOES_NOT_EXIST
            )
        if not full_path.is_file():
            raise ConfigError(
                f"{full_path} is not a file.", ConfigError.ErrorType.NOT_A_FILE
            )
        return full_path

    def _read_config_file(self) -> None:
        """Read TOML configuration file."""
        if self.config_path is None:
            return
        app_settings = dataclasses.asdict(self)
        with open(self.config_path, "rb") as toml_file:
            file_settings = tomllib.load(toml_file)
        for setting_name, value in file_settings.items():
            if setting_name not in app_settings:
                continue
            if setting_name == "db_path":
                self.db_path = self._convert_path_to_absolute(value)
            elif isinstance(value, str) and value.lower() in ["", "none", "null"]:
                continue
            else:
                setattr(self, setting_name, value)
        self._validate()

    def _validate(self) -> None:
        """Reject values the sync engine cannot work with."""
        if self.batch_size < 1:
            raise ConfigError(
                f"batch_size must be at least 1, got {self.batch_size}.",
                ConfigError.ErrorType.INVALID_VALUE,
            )
        for name in ["request_timeout", "reachability_timeout", "gps_timeout"]:
            if getattr(self, name) <= 0:
                raise ConfigError(
                    f"{name} must be positive.",
                    ConfigError.ErrorType.INVALID_VALUE,
                )


# Store settings in a module-level variable, which will be available from any
# other module that imports fieldattend.config.
settings = Settings()
