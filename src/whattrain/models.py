"""Data models for the WhatTrain matcher."""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Tuple


class Direction(IntEnum):
    """Direction of travel, derived from the trip id (0 = uptown, 1 = downtown)."""
    UPTOWN = 0
    DOWNTOWN = 1


DIRECTION_NAMES = {
    Direction.UPTOWN: "Uptown & Bronx",
    Direction.DOWNTOWN: "Downtown & Brooklyn",
}


class VehicleStatus(IntEnum):
    """GTFS-Realtime VehicleStopStatus values."""
    INCOMING_AT = 0
    STOPPED_AT = 1
    IN_TRANSIT_TO = 2


STATUS_NAMES = {
    VehicleStatus.INCOMING_AT: "incoming",
    VehicleStatus.STOPPED_AT: "stopped",
    VehicleStatus.IN_TRANSIT_TO: "in_transit",
}


def status_name(status: Optional[int]) -> str:
    """Human-readable name for a vehicle status code."""
    if status is None:
        return "unknown"
    try:
        return STATUS_NAMES[VehicleStatus(int(status))]
    except (ValueError, TypeError):
        return "unknown"


# Static schedule


@dataclass
class Stop:
    """Represents a GTFS stop (station or platform)."""
    stop_id: str
    name: str
    latitude: float
    longitude: float
    location_type: Optional[int] = None
    parent_station: Optional[str] = None
    lines: List[str] = field(default_factory=list)  # Route IDs served at this stop


@dataclass
class Route:
    """Represents a subway route (line)."""
    route_id: str
    short_name: str
    long_name: str
    route_type: Optional[int] = None
    color: Optional[str] = None
    text_color: Optional[str] = None


@dataclass
class Trip:
    """Represents one scheduled trip from trips.txt."""
    trip_id: str
    route_id: str
    service_id: str
    headsign: Optional[str] = None
    direction_id: Optional[int] = None


@dataclass(frozen=True)
class StopTimeEntry:
    """One scheduled stop visit from stop_times.txt."""
    trip_id: str
    stop_id: str
    arrival_time: str  # HH:MM:SS, may exceed 24:00:00
    departure_time: str
    stop_sequence: int


@dataclass(frozen=True)
class SequencedStop:
    stop_id: str
    stop_sequence: int
    name: str


@dataclass
class StopSequence:
    """Ordered stops for one direction of a route."""
    route_id: str
    direction_id: int
    stops: List[SequencedStop] = field(default_factory=list)

    def sequence_for(self, stop_id: str) -> Optional[int]:
        for stop in self.stops:
            if stop.stop_id == stop_id:
                return stop.stop_sequence
        return None


@dataclass
class RouteInfo:
    route: Route
    stops: List[Stop]


@dataclass
class StationWithDistance:
    stop: Stop
    distance: float  # meters


# Real-time feed


@dataclass(frozen=True)
class VehicleSnapshot:
    """A live position report for one vehicle at one instant."""
    vehicle_id: str  # feed entity id
    trip_id: Optional[str]
    route_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    bearing: Optional[float] = None
    speed: Optional[float] = None
    stop_id: Optional[str] = None
    current_stop_sequence: Optional[int] = None
    status: Optional[int] = None
    timestamp: Optional[int] = None  # Unix timestamp
    label: Optional[str] = None

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class StopTimePrediction:
    """Predicted arrival/departure for one stop of a trip."""
    stop_id: Optional[str]
    stop_sequence: Optional[int] = None
    arrival_time: Optional[int] = None  # Unix timestamp
    departure_time: Optional[int] = None
    arrival_delay: Optional[int] = None  # seconds, positive = late
    departure_delay: Optional[int] = None

    @property
    def time(self) -> Optional[int]:
        return self.arrival_time or self.departure_time

    @property
    def delay(self) -> Optional[int]:
        if self.arrival_delay is not None:
            return self.arrival_delay
        return self.departure_delay


@dataclass(frozen=True)
class TripUpdateSnapshot:
    """Predicted stop-time sequence for one trip."""
    entity_id: str
    trip_id: str
    route_id: str
    stop_time_updates: Tuple[StopTimePrediction, ...] = ()
    timestamp: Optional[int] = None


@dataclass(frozen=True)
class FeedPayload:
    """Decoded contents of one upstream feed message."""
    vehicles: Tuple[VehicleSnapshot, ...]
    trip_updates: Tuple[TripUpdateSnapshot, ...]
    timestamp: Optional[int] = None


@dataclass(frozen=True)
class FeedCacheEntry:
    data: FeedPayload
    timestamp: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return now - self.timestamp < self.ttl


@dataclass
class CacheStats:
    size: int
    keys: List[str]


# Reconciled output


@dataclass
class ReconciledStop:
    """One stop of a reconciled trip, classified against the vehicle position."""
    stop_id: str
    name: str
    stop_sequence: int
    arrival_time: Optional[str]  # ISO-8601 for real-time, HH:MM:SS for static
    departure_time: Optional[str] = None
    delay: Optional[int] = None
    status: str = "future"  # "past", "current" or "future"


@dataclass
class CurrentStop:
    stop_id: str
    name: str
    stop_sequence: int
    status: Optional[int]
    status_name: str


@dataclass
class TripView:
    """Authoritative view of a trip combining real-time and static data."""
    trip_id: str
    route_id: str
    direction_id: Optional[int]
    direction_name: str
    arrival_time: str  # ISO-8601
    vehicle_id: str
    delay: Optional[int] = None
    current_stop: Optional[CurrentStop] = None
    realtime_stops: List[ReconciledStop] = field(default_factory=list)
    static_stops: List[ReconciledStop] = field(default_factory=list)
    static_trip_id: Optional[str] = None
    headsign: Optional[str] = None


@dataclass
class TrainCandidate:
    """A vehicle near the rider, with its reconciled trip."""
    vehicle: VehicleSnapshot
    distance: float  # meters, unrounded
    latitude: float
    longitude: float
    position_source: str  # "gps" or "stop"
    direction: Optional[int]
    trip: TripView

    @property
    def distance_meters(self) -> int:
        return int(round(self.distance))


@dataclass
class IdentifiedTrain:
    """A train predicted at the rider's stop."""
    trip_id: str
    route_id: str
    direction_id: int
    arrival_time: str  # ISO-8601
    arrival_timestamp: int
    vehicle_id: str
    status: Optional[int] = None
    delay: Optional[int] = None
    current_stop_id: Optional[str] = None
    current_stop_sequence: Optional[int] = None


@dataclass
class TrainIdentification:
    trains_before: List[IdentifiedTrain]
    trains_after: List[IdentifiedTrain]
    line_code: str
    direction: int
    stop_id: str
    reference_timestamp: str
    processed_at: str
    vehicles_considered: int
