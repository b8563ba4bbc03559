"""
Configuration for the SheAid HTTP gateway.

Uses pydantic-settings for environment variable loading. Engine settings
(chain, store, bridge) stay in EngineConfig; these only cover the HTTP side.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Gateway configuration loaded from environment."""

    # Gateway settings
    host: str = Field(default="0.0.0.0", description="Gateway bind host")
    port: int = Field(default=8090, description="Gateway bind port")

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Background event polling while the gateway runs
    run_bridge: bool = Field(default=True, description="Run the event bridge loop")

    model_config = {"env_prefix": "API_"}
