"""
Application service: Orchestration layer for group formation.
"""
import asyncio
from threading import Event
from typing import Optional
from uuid import UUID
import logging

from app.domain.models import GroupFormationResult, GroupingParameters
from app.infrastructure.plot_snapshot_loader import PlotSnapshotLoader
from app.services.domain.group_formation_engine import GroupFormationEngine

logger = logging.getLogger(__name__)


class GroupFormationService:
    """
    Application service for group formation.

    Orchestrates data loading and engine execution.
    Follows the application layer pattern - no business logic here,
    only coordination between infrastructure and domain layers.
    """

    def __init__(
        self,
        loader: PlotSnapshotLoader,
        engine: GroupFormationEngine,
    ):
        """
        Initialize the service with dependencies.

        Args:
            loader: Plot snapshot loader for data fetching
            engine: Group formation engine
        """
        self.loader = loader
        self.engine = engine

    async def form_groups(
        self,
        parameters: GroupingParameters,
        cluster_id: Optional[UUID] = None,
        season_id: Optional[UUID] = None,
    ) -> GroupFormationResult:
        """
        Propose production groups for a cluster and season.

        This method orchestrates:
        1. Loading the eligible plot snapshot
        2. Running the group formation engine off the event loop

        Cancelling the awaiting task cancels the load, or stops the engine
        at its next stage boundary.

        Args:
            parameters: Validated grouping thresholds
            cluster_id: Optional farmer cluster filter
            season_id: Optional season filter

        Returns:
            GroupFormationResult; nothing is persisted

        Raises:
            ExternalAPIError: If data loading fails
        """
        snapshot = await self.loader.load(cluster_id=cluster_id, season_id=season_id)

        if not snapshot.plots:
            logger.info(f"No eligible plots for cluster={cluster_id}, season={season_id}")
            return GroupFormationResult(crs=snapshot.crs)

        cancel_event = Event()
        try:
            return await asyncio.to_thread(
                self.engine.form_groups,
                snapshot.plots,
                parameters,
                cancel_event,
                snapshot.crs,
            )
        except asyncio.CancelledError:
            cancel_event.set()
            logger.info("Group formation cancelled by caller")
            raise
