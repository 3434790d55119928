"""Pytest configuration and fixtures for testing the Statement Import API."""
import io

import pytest
from fastapi.testclient import TestClient
from openpyxl import Workbook

from statement_import.config import Settings
from statement_import.coordinator import ImportCoordinator, UploadedFile
from statement_import.jobs import ImportJobQueue
from statement_import.main import create_app
from statement_import.models import ColumnMapping
from statement_import.repository import JsonPresetStore, JsonRecordRepository, JsonRuleStore

ACCOUNT_ID = "acct-123"


@pytest.fixture
def settings(tmp_path):
    """Settings pointing the JSON store at a temporary directory."""
    return Settings(data_dir=tmp_path / "data")


@pytest.fixture
def repository(settings):
    return JsonRecordRepository(settings.data_dir)


@pytest.fixture
def job_queue():
    queue = ImportJobQueue(max_workers=1)
    yield queue
    queue.shutdown()


@pytest.fixture
def coordinator(repository, settings, job_queue):
    return ImportCoordinator(
        repository,
        settings=settings,
        job_queue=job_queue,
        presets=JsonPresetStore(settings.data_dir),
        rules=JsonRuleStore(settings.data_dir),
    )


@pytest.fixture
def client(settings, repository, job_queue):
    """Create a test client for the FastAPI application."""
    app = create_app(settings=settings, repository=repository, job_queue=job_queue)
    with TestClient(app, headers={"X-Account-Id": ACCOUNT_ID}) as test_client:
        yield test_client


@pytest.fixture
def mapping():
    return ColumnMapping(date="Date", description="Description", amount="Amount")


@pytest.fixture
def sample_csv_content():
    """Sample CSV content for testing."""
    return """Date,Description,Amount
2024-01-01,Grocery Store,50.00
2024-01-02,Gas Station,30.00
2024-01-03,Restaurant,25.00"""


@pytest.fixture
def sample_upload(sample_csv_content):
    return UploadedFile(
        filename="statement.csv",
        content=sample_csv_content.encode("utf-8"),
        content_type="text/csv",
    )


@pytest.fixture
def make_xlsx():
    """Build an in-memory workbook; ``sheets`` maps sheet title to rows."""

    def _make(sheets):
        workbook = Workbook()
        workbook.remove(workbook.active)
        for title, rows in sheets.items():
            sheet = workbook.create_sheet(title)
            for row in rows:
                sheet.append(row)
        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    return _make
