"""
Domain models for plots and production groups.

These models represent the core domain entities and should be independent
of any infrastructure concerns (API clients, databases, etc.).
Geometries are shapely objects expressed in a projected (metric) CRS.
"""
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator
from shapely.geometry import Point, Polygon
from shapely.geometry.base import BaseGeometry

from app.config import settings


class PlotRecord(BaseModel):
    """A farmer plot with the cultivation it carries in the requested season."""
    plot_id: UUID
    boundary: BaseGeometry = Field(description="Plot boundary polygon in the working CRS")
    centroid: Optional[Point] = Field(
        default=None,
        description="Boundary centroid, derived from the boundary when omitted"
    )
    area: float = Field(gt=0, description="Plot area in hectares")
    cultivation_id: UUID
    rice_variety_id: UUID
    season_id: Optional[UUID] = None
    cluster_id: Optional[UUID] = None
    planting_date: datetime

    class Config:
        arbitrary_types_allowed = True
        frozen = True

    @model_validator(mode="before")
    @classmethod
    def _derive_centroid(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("centroid") is None:
            boundary = data.get("boundary")
            if isinstance(boundary, BaseGeometry) and not boundary.is_empty:
                data = {**data, "centroid": boundary.centroid}
        return data

    @property
    def has_valid_geometry(self) -> bool:
        """True when the boundary is a non-empty, valid, simple polygon."""
        return (
            isinstance(self.boundary, Polygon)
            and not self.boundary.is_empty
            and self.boundary.is_valid
            and self.centroid is not None
        )


class GroupingParameters(BaseModel):
    """Thresholds controlling group formation."""
    proximity_threshold: float = Field(
        default_factory=lambda: settings.grouping_proximity_threshold,
        gt=0,
        description="Maximum centroid distance (CRS units) for two plots to be reachable",
    )
    planting_date_tolerance_days: int = Field(
        default_factory=lambda: settings.grouping_planting_date_tolerance_days,
        ge=1,
        description="Width of a planting date bucket in days",
    )
    min_group_area: float = Field(
        default_factory=lambda: settings.grouping_min_group_area,
        ge=0,
        description="Minimum total group area in hectares",
    )
    max_group_area: float = Field(
        default_factory=lambda: settings.grouping_max_group_area,
        gt=0,
        description="Maximum total group area in hectares",
    )
    min_plots_per_group: int = Field(
        default_factory=lambda: settings.grouping_min_plots_per_group,
        ge=1,
        description="Minimum number of plots in a group",
    )
    max_plots_per_group: int = Field(
        default_factory=lambda: settings.grouping_max_plots_per_group,
        ge=1,
        description="Maximum number of plots in a group",
    )
    border_buffer: float = Field(
        default_factory=lambda: settings.grouping_border_buffer,
        ge=0,
        description="Outward buffer (CRS units) applied to group boundaries",
    )

    class Config:
        frozen = True

    @model_validator(mode="after")
    def _check_bounds(self) -> "GroupingParameters":
        if self.min_group_area > self.max_group_area:
            raise ValueError(
                f"min_group_area ({self.min_group_area}) must not exceed "
                f"max_group_area ({self.max_group_area})"
            )
        if self.min_plots_per_group > self.max_plots_per_group:
            raise ValueError(
                f"min_plots_per_group ({self.min_plots_per_group}) must not exceed "
                f"max_plots_per_group ({self.max_plots_per_group})"
            )
        return self


class UngroupedReason(str, Enum):
    """Why a plot did not end up in a proposed group."""
    INVALID_GEOMETRY = "InvalidGeometry"
    ISOLATED_LOCATION = "IsolatedLocation"
    TOO_SPREAD_OUT = "TooSpreadOut"
    PLANTING_DATE_TOO_FAR = "PlantingDateTooFar"
    NO_VALID_GROUP = "NoValidGroup"
    TOO_MANY_PLOTS = "TooManyPlots"
    TOO_FEW_PLOTS = "TooFewPlots"
    TOO_SMALL_AREA = "TooSmallArea"
    TOO_LARGE_AREA = "TooLargeArea"
    OTHER_REASON = "OtherReason"


class ProposedGroup(BaseModel):
    """A production group proposed by the formation engine."""
    group_number: int = Field(ge=1)
    rice_variety_id: UUID
    plot_count: int
    total_area: float = Field(description="Sum of member plot areas in hectares")
    planting_window_start: datetime
    planting_window_end: datetime
    median_planting_date: datetime
    plot_ids: List[UUID] = Field(description="Member plots ordered by planting date")
    cultivation_ids: List[UUID] = Field(description="Member cultivations, same order as plot_ids")
    group_boundary: BaseGeometry
    group_centroid: Point

    class Config:
        arbitrary_types_allowed = True
        frozen = True


class UngroupedPlotInfo(BaseModel):
    """A plot left out of every group, with the reason and nearest group."""
    plot_id: UUID
    cultivation_id: UUID
    rice_variety_id: UUID
    planting_date: datetime
    centroid: Optional[Point] = None
    area: float
    reason: UngroupedReason
    nearest_group_number: Optional[int] = None
    distance_to_nearest_group: Optional[float] = None

    class Config:
        arbitrary_types_allowed = True
        frozen = True


class GroupFormationResult(BaseModel):
    """Outcome of one group formation run."""
    groups: List[ProposedGroup] = Field(default_factory=list)
    ungrouped_plots: List[UngroupedPlotInfo] = Field(default_factory=list)
    crs: Optional[str] = Field(
        default=None,
        description="Identifier of the CRS the geometries are expressed in"
    )

    class Config:
        arbitrary_types_allowed = True


class PlotSnapshot(BaseModel):
    """Eligible plots loaded for one run, projected into a common CRS."""
    plots: List[PlotRecord] = Field(default_factory=list)
    crs: Optional[str] = None
