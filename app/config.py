"""
Service settings, read from the environment or a local .env file.

Every field can be overridden by the upper-cased variable of the same name,
e.g. GROUPING_PROXIMITY_THRESHOLD=150.
"""
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Runtime configuration of the plot group formation service."""

    # Farm management API (source of plots, cultivations and farmers)
    external_api_base_url: str = Field(
        default="https://api.example.com",
        description="Root URL the farming endpoints are resolved against"
    )
    external_api_key: str = Field(default="", description="Bearer token sent with every farm API call")
    external_api_timeout: float = Field(default=30.0, description="Per-request timeout in seconds")

    # One attempt by default: a failed load fails the preview and the caller retries it
    max_retry_attempts: int = Field(default=1, ge=1, description="Attempts per farm API call on 5xx or transport errors")
    retry_backoff_multiplier: int = Field(default=1, description="Exponential backoff multiplier between attempts")
    retry_min_wait: int = Field(default=4, description="Shortest backoff in seconds")
    retry_max_wait: int = Field(default=10, description="Longest backoff in seconds")

    # Defaults for requests that omit grouping parameters
    grouping_proximity_threshold: float = Field(
        default=100.0,
        description="Maximum centroid distance in meters for two plots to be reachable"
    )
    grouping_planting_date_tolerance_days: int = Field(
        default=2,
        description="Width of a planting date bucket in days"
    )
    grouping_min_group_area: float = Field(default=5.0, description="Smallest total group area in hectares")
    grouping_max_group_area: float = Field(default=50.0, description="Largest total group area in hectares")
    grouping_min_plots_per_group: int = Field(default=3, description="Fewest plots a group may hold")
    grouping_max_plots_per_group: int = Field(default=10, description="Most plots a group may hold")
    grouping_border_buffer: float = Field(
        default=10.0,
        description="Outward buffer in meters applied to group boundaries"
    )
    grouping_max_workers: int = Field(
        default=4,
        description="Worker threads used to process rice varieties in parallel"
    )

    # HTTP surface
    log_level: str = Field(default="INFO", description="Root logger level name")
    cors_origins: list[str] = Field(default=["*"], description="Origins allowed to call the preview endpoint")
    rate_limit_requests: int = Field(default=100, description="Requests per minute allowed per client address")
    app_name: str = Field(default="Plot Group Formation Service", description="Name reported by health checks")
    app_version: str = Field(default="1.0.0", description="Version reported by the root endpoint")

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
