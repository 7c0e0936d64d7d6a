# app/models/dto.py
# Address data and the public response shapes

from pydantic import BaseModel, ConfigDict, Field
from typing import Dict, Optional, Union

# --- Reverse geocoding ---

# Always serialized, as an empty string when the geocoder did not supply them.
CORE_ADDRESS_FIELDS = ("countryCode", "country", "postalCode", "state", "city", "street", "streetNumber")

# Only serialized when present.
EXTRA_ADDRESS_FIELDS = ("name", "subAdministrativeArea", "subLocality", "inlandWater", "ocean")


class AddressInfo(BaseModel):
    """Address components of a reverse-geocoded coordinate."""
    model_config = ConfigDict(frozen=True)

    countryCode: Optional[str] = Field(None, description="ISO country code.")
    country: Optional[str] = None
    postalCode: Optional[str] = None
    state: Optional[str] = Field(None, description="Administrative area.")
    city: Optional[str] = Field(None, description="Locality.")
    street: Optional[str] = Field(None, description="Thoroughfare.")
    streetNumber: Optional[str] = Field(None, description="Sub-thoroughfare.")

    name: Optional[str] = None
    subAdministrativeArea: Optional[str] = None
    subLocality: Optional[str] = None
    inlandWater: Optional[str] = None
    ocean: Optional[str] = None

    def serializable_dict(self) -> Dict[str, str]:
        data = {key: getattr(self, key) or "" for key in CORE_ADDRESS_FIELDS}
        for key in EXTRA_ADDRESS_FIELDS:
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


class GeocodeSuccess(BaseModel):
    model_config = ConfigDict(frozen=True)

    address: AddressInfo


class GeocodeFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


GeocodeResult = Union[GeocodeSuccess, GeocodeFailure]

# --- Public responses ---

class HealthResponse(BaseModel):
    status: str = "ok"
    location_provider: str = Field(..., description="Configured location provider backend.")

class ErrorResponse(BaseModel):
    """Standardized error response model."""
    error: str = Field(..., description="A machine-readable error code.")
    detail: str = Field(..., description="A human-readable explanation.")
