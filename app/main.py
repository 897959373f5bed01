"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from app.config import settings
from app.domain.models import GroupingParameters
from app.middleware.error_handler import ErrorHandlerMiddleware
from app.api.v1.routers import groups

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

# Rate limiter
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_requests}/minute"],
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log the effective configuration on startup and release the farm API client on shutdown."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version} (log level {settings.log_level})")
    logger.info(f"Grouping defaults: proximity={settings.grouping_proximity_threshold}m, "
                f"tolerance={settings.grouping_planting_date_tolerance_days}d, "
                f"area={settings.grouping_min_group_area}-{settings.grouping_max_group_area}ha, "
                f"plots={settings.grouping_min_plots_per_group}-{settings.grouping_max_plots_per_group}, "
                f"buffer={settings.grouping_border_buffer}m")
    logger.info(f"Rate limit: {settings.rate_limit_requests} requests/minute")

    yield

    from app.infrastructure.external_api_client import get_api_client
    await get_api_client().close()
    logger.info("Farm API client closed")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Production Group Formation API for rice farming clusters

    This API proposes production groups: sets of nearby plots growing the same
    rice variety, planted within a few days of each other, whose combined area
    and plot count fall within configured bounds.

    ## Features

    - **Group Preview**: Propose groups for a cluster and season without persisting them
    - **Ungrouped Explanations**: Every plot left out gets a reason, the nearest
      group and suggested actions
    - **Robust Error Handling**: Configurable retries with exponential backoff for
      farm management API calls
    - **Rate Limiting**: Protects the API from abuse

    ## Formation Algorithm

    For each rice variety:
    1. Clusters plot centroids with DBSCAN (eps = proximity threshold)
    2. Rejects clusters whose diameter exceeds twice the proximity threshold
    3. Splits clusters into fixed planting date windows
    4. Keeps candidates within the area and plot count bounds
    5. Buffers the union of member boundaries into the group boundary
    6. Classifies every remaining plot with an ungrouped reason
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Default limit applies to every route; slowapi answers with 429
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Added last so it wraps everything above
app.add_middleware(ErrorHandlerMiddleware)

app.include_router(groups.router, prefix="/api/v1")


@app.get("/", tags=["health"])
async def root():
    """Service identity and where to start."""
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": app.docs_url,
        "preview": "/api/v1/groups/preview",
    }


@app.get("/health", tags=["health"])
async def health_check():
    """
    Liveness probe.

    Also reports the grouping defaults applied when a request omits parameters.
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "grouping_defaults": GroupingParameters().model_dump(),
    }
