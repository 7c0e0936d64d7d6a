# app/core/config.py
# Settings for the location service, loaded from the environment / .env

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional

class Settings(BaseSettings):
    PROJECT_NAME: str = "Single Location Service"
    VERSION: str = "0.1.0"
    BRIEF_DESCRIPTION: str = "Request router for one-shot device location fixes and reverse geocoding."

    ENV: str = Field("development", description="Application environment (e.g., production, development)")
    API_PREFIX: str = Field("/api", description="Mount point of the location routers")

    # --- Location provider ---
    LOCATION_PROVIDER: str = Field("simulated", description="Location provider backend: 'simulated' or 'ip'")
    LOCATION_ACQUISITION_TIMEOUT: Optional[float] = Field(
        None,
        description="Seconds to wait for permission and a fix. None waits indefinitely."
    )

    # Simulated device (LOCATION_PROVIDER=simulated)
    SIMULATED_AUTHORIZATION_STATUS: str = Field("not_determined", description="Authorization status reported before any prompt")
    SIMULATED_PERMISSION_RESPONSE: str = Field("authorized_when_in_use", description="Status delivered after a permission request")
    SIMULATED_LATITUDE: Optional[float] = Field(38.8977, description="Latitude of the simulated fix (None never delivers a fix)")
    SIMULATED_LONGITUDE: Optional[float] = Field(-77.0366, description="Longitude of the simulated fix")

    # IP geolocation (LOCATION_PROVIDER=ip)
    IP_GEOLOCATION_URL: str = "http://ip-api.com/json"
    IP_GEOLOCATION_TIMEOUT: int = 5 # seconds

    # --- Reverse geocoding (Mapbox) ---
    MAPBOX_TOKEN: Optional[str] = Field(None, description="Mapbox Geocoding API Token")
    MAPBOX_MAX_RETRIES: int = 2
    MAPBOX_INITIAL_BACKOFF: float = 1.0 # seconds
    MAPBOX_TIMEOUT: int = 8 # seconds

    # Pydantic configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

settings = Settings()
