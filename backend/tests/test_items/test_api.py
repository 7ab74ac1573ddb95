"""
Integration tests for the inventory item API endpoints.
"""

import pytest
from fastapi import status
from httpx import AsyncClient

API = "/api/v1/items"


def stock_in_body(serial: str, **overrides) -> dict:
    body = {
        "serial_number": serial,
        "equipment_category": "Ultrasound",
        "model": "US-200",
    }
    body.update(overrides)
    return body


class TestStockInEndpoint:
    """Test POST /items/stock-in."""

    @pytest.mark.asyncio
    async def test_stock_in(self, client: AsyncClient) -> None:
        response = await client.post(
            f"{API}/stock-in", json=stock_in_body("SN-1", location="Warehouse B")
        )

        body = response.json()
        assert response.status_code == status.HTTP_201_CREATED
        assert body["serial_number"] == "SN-1"
        assert body["transaction"]["type"] == "Stock_In"
        assert body["transaction"]["status"] == "Active"
        assert body["transaction"]["location"] == "Warehouse B"

    @pytest.mark.asyncio
    async def test_duplicate_is_409(self, client: AsyncClient) -> None:
        await client.post(f"{API}/stock-in", json=stock_in_body("SN-1"))

        response = await client.post(f"{API}/stock-in", json=stock_in_body("sn-1"))

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error_type"] == "ConflictError"

    @pytest.mark.asyncio
    async def test_blank_serial_is_422(self, client: AsyncClient) -> None:
        response = await client.post(f"{API}/stock-in", json=stock_in_body("   "))

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestProjectionEndpoints:
    """Test read-only views over item state."""

    @pytest.mark.asyncio
    async def test_state_of_selected_items(self, client: AsyncClient, stock) -> None:
        await stock("SN-1", "SN-2")

        response = await client.get(f"{API}/state", params={"serial": ["SN-1"]})

        body = response.json()
        assert body["degraded"] is False
        assert [item["serial_number"] for item in body["items"]] == ["SN-1"]
        assert body["items"][0]["is_available"] is True

    @pytest.mark.asyncio
    async def test_available_and_summary(self, client: AsyncClient, stock) -> None:
        await stock("SN-1", "SN-2")
        await client.post(
            "/api/v1/orders",
            json={
                "order_number": "O1",
                "customer_dealer": "Dealer A",
                "serial_numbers": ["SN-1"],
            },
        )

        available = (await client.get(f"{API}/available")).json()
        summary = (await client.get(f"{API}/summary")).json()

        assert [item["serial_number"] for item in available["items"]] == ["SN-2"]
        assert summary["total"] == 2
        assert summary["available"] == 1
        assert summary["by_status"] == {"Reserved": 1, "Active": 1}

    @pytest.mark.asyncio
    async def test_history(self, client: AsyncClient, stock) -> None:
        await stock("SN-1")

        response = await client.get(f"{API}/SN-1/history")

        assert response.status_code == status.HTTP_200_OK
        assert [event["source"] for event in response.json()] == ["stock_in"]

    @pytest.mark.asyncio
    async def test_history_of_unknown_item_is_404(self, client: AsyncClient) -> None:
        response = await client.get(f"{API}/SN-404/history")

        assert response.status_code == status.HTTP_404_NOT_FOUND
