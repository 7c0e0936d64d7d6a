# app/models/location.py
# Location fixes, authorization states and the one-shot acquisition results

from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field


class AuthorizationState(str, Enum):
    """Positioning permission as reported by the platform provider."""
    NOT_DETERMINED = "not_determined"
    AUTHORIZED_WHEN_IN_USE = "authorized_when_in_use"
    AUTHORIZED_ALWAYS = "authorized_always"
    DENIED = "denied"
    RESTRICTED = "restricted"
    OTHER = "other"

    @property
    def is_authorized(self) -> bool:
        return self in (AuthorizationState.AUTHORIZED_WHEN_IN_USE, AuthorizationState.AUTHORIZED_ALWAYS)

    @property
    def is_refused(self) -> bool:
        return self in (AuthorizationState.DENIED, AuthorizationState.RESTRICTED)

    @classmethod
    def parse(cls, value: str) -> "AuthorizationState":
        """Lenient lookup used for settings; unknown strings map to OTHER."""
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.OTHER


class LocationFix(BaseModel):
    """A single position produced by the location provider."""
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., description="Latitude in decimal degrees.")
    longitude: float = Field(..., description="Longitude in decimal degrees.")


# --- Acquisition results ---

class LocationSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    location: LocationFix


class LocationFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


AcquisitionResult = Union[LocationSuccess, LocationFailure]


# --- Distance results ---

class DistanceSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    location: LocationFix
    distance_km: float = Field(..., ge=0, description="Great-circle distance from the acquired fix.")


class DistanceFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


DistanceResult = Union[DistanceSuccess, DistanceFailure]
