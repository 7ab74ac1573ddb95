"""
Tests for application settings validation.
"""

import pytest
from pydantic import ValidationError

from src.core.config import Settings


class TestSettingsValidation:
    """Test settings validators."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.attachment_storage_backend == "local"
        assert settings.transaction_scan_window == 1000
        assert settings.attachment_allowed_extensions == [".pdf", ".jpg", ".jpeg", ".png"]
        assert settings.is_sqlite is False

    def test_rejects_unknown_database_scheme(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, database_url="mysql://localhost/db")

    def test_accepts_sqlite(self):
        settings = Settings(
            _env_file=None, database_url="sqlite+aiosqlite:///./engine.db"
        )

        assert settings.is_sqlite is True

    def test_s3_backend_requires_bucket(self):
        with pytest.raises(ValidationError, match="S3_BUCKET"):
            Settings(_env_file=None, attachment_storage_backend="s3")

    def test_s3_backend_with_bucket(self):
        settings = Settings(
            _env_file=None, attachment_storage_backend="s3", s3_bucket="docs"
        )

        assert settings.s3_bucket == "docs"

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("pdf, PNG", [".pdf", ".png"]),
            (".PDF,,.jpg", [".pdf", ".jpg"]),
            (["JPEG", ".Png"], [".jpeg", ".png"]),
        ],
    )
    def test_extension_parsing(self, value, expected):
        settings = Settings(_env_file=None, attachment_allowed_extensions=value)

        assert settings.attachment_allowed_extensions == expected

    def test_cors_origins_from_string(self):
        settings = Settings(
            _env_file=None, cors_origins="http://a.test, http://b.test"
        )

        assert settings.cors_origins == ["http://a.test", "http://b.test"]

    @pytest.mark.parametrize(
        "field,value",
        [
            ("status_commit_retries", 0),
            ("extraction_confidence_threshold", 1.5),
            ("transaction_scan_window", 0),
            ("attachment_upload_timeout_seconds", 0),
        ],
    )
    def test_bounds(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})
