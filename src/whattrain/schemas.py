"""Request bodies for the HTTP API."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class NearestTrainsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    latitude: float
    longitude: float
    line_code: str = Field(alias="lineCode")
    direction: Optional[int] = None
    radius_meters: Optional[float] = Field(default=None, alias="radiusMeters")


class IdentifyTrainsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    line_code: str = Field(alias="lineCode")
    direction: int
    stop_id: str = Field(alias="stopId")
    limit: int = 2
    timestamp: Optional[float] = None  # Unix seconds; defaults to now
