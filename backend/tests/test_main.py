"""
Test suite for the FastAPI application.

Tests cover health endpoints, the correlation ID middleware and the
translation of engine errors to HTTP responses.
"""

import pytest
from fastapi import status
from httpx import AsyncClient

from src.api.errors import status_code_for
from src.core.exceptions import (
    ConflictError,
    EngineError,
    NotFoundError,
    PersistenceError,
    PreconditionError,
    ScanTimeoutError,
    StorageError,
    ValidationError,
)


# ============================================================================
# Health Endpoints
# ============================================================================


class TestHealthEndpoints:
    """Test suite for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check_returns_200(self, client: AsyncClient):
        response = await client.get("/health")

        data = response.json()
        assert response.status_code == status.HTTP_200_OK
        assert data["status"] == "healthy"
        assert all(key in data for key in ["service", "version", "environment"])


# ============================================================================
# Middleware
# ============================================================================


class TestCorrelationIdMiddleware:
    """Test correlation ID propagation."""

    @pytest.mark.asyncio
    async def test_generates_correlation_id(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.headers["X-Correlation-ID"]

    @pytest.mark.asyncio
    async def test_echoes_given_correlation_id(self, client: AsyncClient):
        response = await client.get(
            "/health", headers={"X-Correlation-ID": "req-123"}
        )

        assert response.headers["X-Correlation-ID"] == "req-123"

    @pytest.mark.asyncio
    async def test_error_body_carries_correlation_id(self, client: AsyncClient):
        response = await client.get(
            "/api/v1/orders/NOPE", headers={"X-Correlation-ID": "req-404"}
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["correlation_id"] == "req-404"


# ============================================================================
# Error Translation
# ============================================================================


class TestStatusCodeMapping:
    """Test engine error to HTTP status mapping."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (ValidationError("bad"), 422),
            (PreconditionError("not yet"), 409),
            (ConflictError("taken"), 409),
            (NotFoundError("gone"), 404),
            (StorageError("blob"), 502),
            (PersistenceError("db"), 503),
            (ScanTimeoutError("slow"), 504),
            (EngineError("other"), 500),
        ],
    )
    def test_status_code_for(self, error, expected):
        assert status_code_for(error) == expected

    def test_error_body_shape(self):
        error = ConflictError("taken", step="commit_attachment", order_number="O1")

        body = error.to_dict()

        assert body["error"] == "taken"
        assert body["error_type"] == "ConflictError"
        assert body["step"] == "commit_attachment"
        assert body["context"]["order_number"] == "O1"
