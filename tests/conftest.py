"""
Shared pytest fixtures for all tests.

This module provides common fixtures including:
- Plot record factory (metric coordinates)
- Grouping parameters
- Farm management API rows
- Mock API client
- FastAPI test client
"""
import pytest
from datetime import datetime
from typing import Callable
from uuid import UUID
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from shapely.geometry import box

from app.main import app
from app.domain.models import GroupingParameters, PlotRecord
from app.infrastructure.external_api_client import (
    CultivationData,
    ExternalAPIClient,
    FarmerData,
    PlotData,
)

VARIETY_A = UUID(int=0xA1)
VARIETY_B = UUID(int=0xB2)

# First day of a 2-day planting window (epoch day 19784 is even)
BASE_DATE = datetime(2024, 3, 2)

CLUSTER_ID = UUID("11111111-1111-1111-1111-111111111111")
OTHER_CLUSTER_ID = UUID("22222222-2222-2222-2222-222222222222")
SEASON_ID = UUID("33333333-3333-3333-3333-333333333333")
OTHER_SEASON_ID = UUID("44444444-4444-4444-4444-444444444444")


def make_plot_record(
    index: int,
    x: float,
    y: float,
    planting_date: datetime = BASE_DATE,
    area: float = 1.0,
    variety: UUID = VARIETY_A,
    side: float = 20.0,
) -> PlotRecord:
    """Square plot centred on (x, y); ids derive from index so ordering is predictable."""
    half = side / 2
    return PlotRecord(
        plot_id=UUID(int=index),
        boundary=box(x - half, y - half, x + half, y + half),
        area=area,
        cultivation_id=UUID(int=10_000 + index),
        rice_variety_id=variety,
        planting_date=planting_date,
    )


# ============================================================
# Sample Data Fixtures
# ============================================================

@pytest.fixture
def make_plot() -> Callable[..., PlotRecord]:
    """Factory for square plots in a metric CRS."""
    return make_plot_record


@pytest.fixture
def make_parameters() -> Callable[..., GroupingParameters]:
    """Factory for grouping parameters with permissive test defaults."""
    def _make(**overrides) -> GroupingParameters:
        values = {
            "proximity_threshold": 100.0,
            "planting_date_tolerance_days": 2,
            "min_group_area": 1.0,
            "max_group_area": 50.0,
            "min_plots_per_group": 3,
            "max_plots_per_group": 10,
            "border_buffer": 10.0,
        }
        values.update(overrides)
        return GroupingParameters(**values)
    return _make


@pytest.fixture
def compact_cluster(make_plot) -> list[PlotRecord]:
    """Three touching-distance plots planted the same day, 1 ha each."""
    return [
        make_plot(1, 0.0, 0.0),
        make_plot(2, 50.0, 0.0),
        make_plot(3, 100.0, 0.0),
    ]


def square_geojson(lon: float, lat: float, size: float = 0.001) -> dict:
    """GeoJSON polygon with its south-west corner at (lon, lat)."""
    return {
        "type": "Polygon",
        "coordinates": [[
            [lon, lat],
            [lon + size, lat],
            [lon + size, lat + size],
            [lon, lat + size],
            [lon, lat],
        ]],
    }


@pytest.fixture
def sample_farmers() -> list[FarmerData]:
    """Two farmers in the requested cluster, one outside it."""
    return [
        FarmerData(id=UUID(int=901), cluster_id=CLUSTER_ID),
        FarmerData(id=UUID(int=902), cluster_id=CLUSTER_ID),
        FarmerData(id=UUID(int=903), cluster_id=OTHER_CLUSTER_ID),
    ]


@pytest.fixture
def sample_plots() -> list[PlotData]:
    """Plots in the Mekong delta (UTM zone 48N)."""
    return [
        PlotData(id=UUID(int=1), farmer_id=UUID(int=901), area=1.2,
                 boundary=square_geojson(105.600, 10.300)),
        PlotData(id=UUID(int=2), farmer_id=UUID(int=901), area=1.1,
                 boundary=None),
        PlotData(id=UUID(int=3), farmer_id=UUID(int=903), area=1.0,
                 boundary=square_geojson(105.602, 10.300)),
        PlotData(id=UUID(int=4), farmer_id=UUID(int=902), area=0.9,
                 boundary=square_geojson(105.604, 10.300)),
        PlotData(id=UUID(int=5), farmer_id=UUID(int=902), area=1.3,
                 boundary="POLYGON ((105.601 10.301, 105.602 10.301, 105.602 10.302, "
                          "105.601 10.302, 105.601 10.301))"),
        PlotData(id=UUID(int=6), farmer_id=UUID(int=902), area=0.8,
                 boundary="not a geometry"),
    ]


@pytest.fixture
def sample_cultivations() -> list[CultivationData]:
    """Cultivations for the sample plots; plot 4 has none in the season."""
    return [
        CultivationData(id=UUID(int=101), plot_id=UUID(int=1), planting_date=datetime(2024, 3, 1),
                        rice_variety_id=VARIETY_A, season_id=SEASON_ID),
        CultivationData(id=UUID(int=102), plot_id=UUID(int=1), planting_date=datetime(2024, 3, 5),
                        rice_variety_id=VARIETY_B, season_id=SEASON_ID),
        CultivationData(id=UUID(int=103), plot_id=UUID(int=2), planting_date=datetime(2024, 3, 2),
                        rice_variety_id=VARIETY_A, season_id=SEASON_ID),
        CultivationData(id=UUID(int=104), plot_id=UUID(int=3), planting_date=datetime(2024, 3, 2),
                        rice_variety_id=VARIETY_A, season_id=SEASON_ID),
        CultivationData(id=UUID(int=105), plot_id=UUID(int=4), planting_date=datetime(2024, 3, 2),
                        rice_variety_id=VARIETY_A, season_id=OTHER_SEASON_ID),
        CultivationData(id=UUID(int=106), plot_id=UUID(int=5), planting_date=datetime(2024, 3, 2),
                        rice_variety_id=VARIETY_A, season_id=SEASON_ID),
        CultivationData(id=UUID(int=107), plot_id=UUID(int=6), planting_date=datetime(2024, 3, 3),
                        rice_variety_id=VARIETY_A, season_id=SEASON_ID),
    ]


# ============================================================
# Mock API Client Fixtures
# ============================================================

@pytest.fixture
def mock_api_client(sample_plots, sample_cultivations, sample_farmers):
    """Create a mock farm management API client."""
    mock_client = AsyncMock(spec=ExternalAPIClient)
    mock_client.get_plots.return_value = sample_plots
    mock_client.get_cultivations.return_value = sample_cultivations
    mock_client.get_farmers.return_value = sample_farmers
    mock_client.parse_boundary.side_effect = ExternalAPIClient.parse_boundary
    return mock_client


# ============================================================
# FastAPI Test Client Fixtures
# ============================================================

@pytest.fixture
def test_client() -> TestClient:
    """Create a synchronous test client for FastAPI."""
    return TestClient(app)
