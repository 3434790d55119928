"""Tests for environment-driven settings."""
from pathlib import Path

from statement_import.config import Settings
from statement_import.models import SignConvention


def test_defaults(monkeypatch, tmp_path):
    for name in (
        "IMPORT_MAX_FILE_BYTES",
        "IMPORT_MAX_ROWS",
        "IMPORT_PREVIEW_ROWS",
        "IMPORT_SIGN_CONVENTION",
        "IMPORT_DATA_DIR",
        "IMPORT_JOB_RETENTION_SECONDS",
        "IMPORT_JOB_MAX_FINISHED",
        "CORS_ORIGINS",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env(env_file=tmp_path / "missing.env")

    assert settings.max_file_bytes == 25 * 1024 * 1024
    assert settings.max_rows == 50_000
    assert settings.preview_rows == 20
    assert settings.sign_convention == SignConvention.NEGATIVE_IS_INCOME
    assert settings.data_dir is None
    assert settings.job_retention_seconds == 3600
    assert settings.job_max_finished == 500
    assert settings.cors_origins == ["http://localhost:13030"]
    assert settings.log_level == "INFO"


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("IMPORT_MAX_FILE_BYTES", "1024")
    monkeypatch.setenv("IMPORT_MAX_ROWS", "")
    monkeypatch.setenv("IMPORT_PREVIEW_ROWS", "5")
    monkeypatch.setenv("IMPORT_SIGN_CONVENTION", "negative_is_expense")
    monkeypatch.setenv("IMPORT_DATA_DIR", str(tmp_path / "store"))
    monkeypatch.setenv("IMPORT_JOB_RETENTION_SECONDS", "60")
    monkeypatch.setenv("IMPORT_JOB_MAX_FINISHED", "10")
    monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test,")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env(env_file=tmp_path / "missing.env")

    assert settings.max_file_bytes == 1024
    assert settings.max_rows == 50_000
    assert settings.preview_rows == 5
    assert settings.sign_convention == SignConvention.NEGATIVE_IS_EXPENSE
    assert settings.data_dir == Path(tmp_path / "store")
    assert settings.job_retention_seconds == 60
    assert settings.job_max_finished == 10
    assert settings.cors_origins == ["http://a.test", "http://b.test"]
    assert settings.log_level == "DEBUG"
