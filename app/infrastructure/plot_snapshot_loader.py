"""
Infrastructure layer: loads the plot snapshot a group formation run works on.

Joins plots, cultivations and farmers fetched from the farm management API and
projects every boundary into a shared metric (UTM) CRS.
"""
import asyncio
from typing import Optional
from uuid import UUID
import logging

from shapely.geometry import Polygon

from app.domain.models import PlotRecord, PlotSnapshot
from app.infrastructure.external_api_client import (
    CultivationData,
    ExternalAPIClient,
)
from app.utils.geo_projection import get_transformers, get_utm_crs, project_geometry

logger = logging.getLogger(__name__)


def latest_cultivations(
    cultivations: list[CultivationData],
    season_id: Optional[UUID] = None,
) -> dict[UUID, CultivationData]:
    """
    Pick one cultivation per plot.

    The latest planting date wins; ties go to the highest cultivation id.
    """
    latest: dict[UUID, CultivationData] = {}
    for cultivation in cultivations:
        if season_id is not None and cultivation.season_id != season_id:
            continue
        current = latest.get(cultivation.plot_id)
        if current is None or (cultivation.planting_date, cultivation.id) > (current.planting_date, current.id):
            latest[cultivation.plot_id] = cultivation
    return latest


class PlotSnapshotLoader:
    """Builds PlotSnapshot instances from the farm management API."""

    def __init__(self, api_client: ExternalAPIClient):
        """
        Initialize the loader.

        Args:
            api_client: Farm management API client
        """
        self.api_client = api_client

    async def load(
        self,
        cluster_id: Optional[UUID] = None,
        season_id: Optional[UUID] = None,
    ) -> PlotSnapshot:
        """
        Load eligible plots for a cluster/season filter.

        Plots without a boundary, without a matching cultivation or outside
        the requested cluster are left out of the snapshot.

        Args:
            cluster_id: Optional farmer cluster filter
            season_id: Optional season filter

        Returns:
            PlotSnapshot with boundaries in a UTM CRS

        Raises:
            ExternalAPIError: If any of the queries fails
        """
        plots, cultivations, farmers = await asyncio.gather(
            self.api_client.get_plots(cluster_id),
            self.api_client.get_cultivations(season_id),
            self.api_client.get_farmers(cluster_id),
        )
        logger.info(
            f"Fetched {len(plots)} plots, {len(cultivations)} cultivations, "
            f"{len(farmers)} farmers (cluster={cluster_id}, season={season_id})"
        )

        farmer_clusters = {farmer.id: farmer.cluster_id for farmer in farmers}
        cultivation_by_plot = latest_cultivations(cultivations, season_id)

        rows = []
        skipped_no_boundary = 0
        skipped_bad_area = 0
        for plot in sorted(plots, key=lambda p: p.id):
            if plot.boundary is None:
                skipped_no_boundary += 1
                continue

            plot_cluster = farmer_clusters.get(plot.farmer_id)
            if cluster_id is not None and plot_cluster != cluster_id:
                continue

            cultivation = cultivation_by_plot.get(plot.id)
            if cultivation is None:
                continue

            if plot.area <= 0:
                logger.warning(f"Skipping plot {plot.id} with non-positive area {plot.area}")
                skipped_bad_area += 1
                continue

            geometry = self.api_client.parse_boundary(plot.boundary)
            rows.append((plot, cultivation, plot_cluster, geometry))

        if skipped_no_boundary:
            logger.info(f"Excluded {skipped_no_boundary} plots without a boundary")
        if skipped_bad_area:
            logger.info(f"Excluded {skipped_bad_area} plots with a non-positive area")

        if not rows:
            return PlotSnapshot(plots=[], crs=None)

        crs = self._choose_crs([geometry for _, _, _, geometry in rows])
        forward, _ = get_transformers(crs)

        records = []
        for plot, cultivation, plot_cluster, geometry in rows:
            if geometry is None:
                boundary = Polygon()
            else:
                boundary = project_geometry(geometry, forward)

            records.append(PlotRecord(
                plot_id=plot.id,
                boundary=boundary,
                area=plot.area,
                cultivation_id=cultivation.id,
                rice_variety_id=cultivation.rice_variety_id,
                season_id=cultivation.season_id,
                cluster_id=plot_cluster,
                planting_date=cultivation.planting_date,
            ))

        logger.info(f"Loaded {len(records)} eligible plots in {crs}")
        return PlotSnapshot(plots=records, crs=crs)

    @staticmethod
    def _choose_crs(geometries: list) -> str:
        """UTM zone of the first usable boundary; all plots share it."""
        for geometry in geometries:
            if geometry is not None and not geometry.is_empty:
                point = geometry.centroid
                return get_utm_crs(point.x, point.y)
        # Nothing parseable: any metric CRS will do for empty geometries
        return get_utm_crs(0.0, 0.0)
