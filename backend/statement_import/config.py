"""
Runtime configuration for the import service.

Values come from environment variables; a ``.env`` file in the backend
directory is loaded first when present.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .models import SignConvention

BACKEND_DIR = Path(__file__).parent.parent


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


@dataclass
class Settings:
    max_file_bytes: int = 25 * 1024 * 1024
    max_rows: int = 50_000
    preview_rows: int = 20
    max_preview_rows: int = 100
    duplicate_window: int = 5_000
    sign_convention: SignConvention = SignConvention.NEGATIVE_IS_INCOME
    data_dir: Optional[Path] = None
    job_workers: int = 2
    job_retention_seconds: int = 3600
    job_max_finished: int = 500
    cors_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:13030"]
    )
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        load_dotenv(env_file or BACKEND_DIR / ".env")

        data_dir = os.getenv("IMPORT_DATA_DIR")
        origins = os.getenv("CORS_ORIGINS")
        return cls(
            max_file_bytes=_int_env("IMPORT_MAX_FILE_BYTES", cls.max_file_bytes),
            max_rows=_int_env("IMPORT_MAX_ROWS", cls.max_rows),
            preview_rows=_int_env("IMPORT_PREVIEW_ROWS", cls.preview_rows),
            max_preview_rows=_int_env(
                "IMPORT_MAX_PREVIEW_ROWS", cls.max_preview_rows
            ),
            duplicate_window=_int_env(
                "IMPORT_DUPLICATE_WINDOW", cls.duplicate_window
            ),
            sign_convention=SignConvention(
                os.getenv("IMPORT_SIGN_CONVENTION", cls.sign_convention.value)
            ),
            data_dir=Path(data_dir) if data_dir else None,
            job_workers=_int_env("IMPORT_JOB_WORKERS", cls.job_workers),
            job_retention_seconds=_int_env(
                "IMPORT_JOB_RETENTION_SECONDS", cls.job_retention_seconds
            ),
            job_max_finished=_int_env("IMPORT_JOB_MAX_FINISHED", cls.job_max_finished),
            cors_origins=(
                [o.strip() for o in origins.split(",") if o.strip()]
                if origins
                else ["http://localhost:13030"]
            ),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )
