"""Test command-line args and settings."""
import argparse
import pathlib

import pytest

from fieldattend import config


DATA_PATH = pathlib.Path(__file__).parent / "data"


def test_read_config() -> None:
    """Read the configuration from a TOML file."""
    # Arrange
    settings = config.Settings()
    args = argparse.Namespace(config_path=DATA_PATH / "fieldattend.toml")
    # Act
    settings.update_from_args(args)
    # Assert
    assert settings.endpoint_url == "https://example.org/api_sync.php"
    assert settings.batch_size == 10
    assert settings.batch_pause == 0.0
    assert settings.retention_days == 30
    assert settings.location_label == "Field office"
    # "none" leaves the default in place.
    assert settings.gps_timeout == 4.0


def test_defaults_without_config(
    tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Without a config file the database goes in the working directory."""
    # Arrange
    monkeypatch.chdir(tmp_path)
    settings = config.Settings()
    # Act
    settings.update_from_args(argparse.Namespace())
    # Assert
    assert settings.config_path is None
    assert settings.db_path == tmp_path / config.DB_FILE_NAME
    assert settings.batch_size == 20
    assert settings.request_timeout == 60.0


def test_relative_db_path(
    tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Relative database paths are resolved against the working directory."""
    # Arrange
    monkeypatch.chdir(tmp_path)
    settings = config.Settings()
    # Act
    settings.update_from_args(argparse.Namespace(db_path="data/att.db"))
    # Assert
    assert settings.db_path == tmp_path / "data" / "att.db"


def test_missing_config_file() -> None:
    """An explicit config path must exist."""
    # Arrange
    args = argparse.Namespace(config_path=DATA_PATH / "missing.toml")
    # Act, Assert
    with pytest.raises(config.ConfigError) as excinfo:
        config.Settings().update_from_args(args)
    assert excinfo.value.error_type == config.ConfigError.ErrorType.PATH_DOES_NOT_EXIST


def test_config_path_is_folder() -> None:
    """An explicit config path must be a file."""
    # Arrange
    args = argparse.Namespace(config_path=DATA_PATH)
    # Act, Assert
    with pytest.raises(config.ConfigError) as excinfo:
        config.Settings().update_from_args(args)
    assert excinfo.value.error_type == config.ConfigError.ErrorType.NOT_A_FILE


@pytest.mark.parametrize(
    "line", ["batch_size = 0", "request_timeout = -1", "gps_timeout = 0"]
)
def test_invalid_values(tmp_path: pathlib.Path, line: str) -> None:
    """Values the sync engine cannot use are rejected."""
    # Arrange
    config_file = tmp_path / "bad.toml"
    config_file.write_text(line + "\n")
    args = argparse.Namespace(config_path=config_file)
    # Act, Assert
    with pytest.raises(config.ConfigError) as excinfo:
        config.Settings().update_from_args(args)
    assert excinfo.value.error_type == config.ConfigError.ErrorType.INVALID_VALUE
