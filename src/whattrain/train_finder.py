"""Find the trains of a line nearest to a rider."""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, List, Optional

from .errors import InvalidRequestError, WhatTrainError
from .feed_client import MTAFeedClient, direction_from_trip_id
from .geo import haversine_distance, in_service_region
from .gtfs_loader import GTFSLoader
from .models import Direction, TrainCandidate, VehicleSnapshot
from .trip_builder import TripBuilder

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_METERS = 500.0


@dataclass
class _NearbyVehicle:
    vehicle: VehicleSnapshot
    distance: float
    latitude: float
    longitude: float
    position_source: str
    direction: Optional[Direction]


def _is_finite_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


class TrainFinder:
    """
    Identifies which trains a rider may be on from their location.

    Algorithm:
    1. Get all live vehicles on the line from the feed client
    2. Drop vehicles not travelling in the requested direction
    3. Keep vehicles within the search radius (haversine distance)
    4. Reconcile each survivor's trip and rank by distance, nearest first
    """

    def __init__(
        self,
        feed_client: MTAFeedClient,
        gtfs_loader: GTFSLoader,
        trip_builder: Optional[TripBuilder] = None,
        default_radius_meters: float = DEFAULT_RADIUS_METERS,
    ):
        self.feed_client = feed_client
        self.gtfs_loader = gtfs_loader
        self.trip_builder = trip_builder or TripBuilder(feed_client, gtfs_loader)
        self.default_radius_meters = default_radius_meters

    async def find_nearest_trains(
        self,
        user_latitude: float,
        user_longitude: float,
        line_code: str,
        direction: Optional[int] = None,
        radius_meters: Optional[float] = None,
    ) -> List[TrainCandidate]:
        """
        Find nearby trains matching the rider's line and direction.

        Args:
            user_latitude: Rider latitude (WGS84).
            user_longitude: Rider longitude (WGS84).
            line_code: Subway line code (e.g., "6").
            direction: Optional direction (0 = uptown, 1 = downtown). Vehicles
                whose direction can't be derived are excluded when given.
            radius_meters: Search radius, inclusive.

        Returns:
            Candidates sorted by ascending distance. Empty when nothing is nearby.

        Raises:
            InvalidRequestError: If the request is malformed.
            UnknownLineError: If the line has no feed.
            NoDataError: If no vehicles are running on the line.
            FeedError: If the upstream feed is unavailable.
        """
        radius = self.default_radius_meters if radius_meters is None else radius_meters
        self.validate_request(user_latitude, user_longitude, line_code, direction, radius)

        vehicles = await self.feed_client.get_vehicle_positions(line_code)
        nearby = self._find_nearby_vehicles(vehicles, user_latitude, user_longitude, direction, radius)
        logger.debug(f"{len(nearby)} of {len(vehicles)} vehicles on line {line_code} within {radius}m")

        if not nearby:
            return []

        results = await asyncio.gather(*(self._build_candidate(item, line_code) for item in nearby))
        candidates = [c for c in results if c is not None]
        candidates.sort(key=lambda c: c.distance)
        return candidates

    @staticmethod
    def validate_request(
        user_latitude: Any,
        user_longitude: Any,
        line_code: Any,
        direction: Any = None,
        radius_meters: Any = DEFAULT_RADIUS_METERS,
    ) -> None:
        """Raise InvalidRequestError if the request can't be served."""
        if not _is_finite_number(user_latitude) or not _is_finite_number(user_longitude):
            raise InvalidRequestError("userLatitude and userLongitude must be finite numbers")

        if direction is not None and (isinstance(direction, bool) or direction not in (0, 1)):
            raise InvalidRequestError("direction must be 0 or 1")

        if not isinstance(line_code, str) or not line_code.strip():
            raise InvalidRequestError("lineCode must be a non-empty string")

        if not in_service_region(user_latitude, user_longitude):
            raise InvalidRequestError("Location appears to be outside NYC area")

        if not _is_finite_number(radius_meters) or radius_meters <= 0:
            raise InvalidRequestError("radiusMeters must be a positive number")

    def _find_nearby_vehicles(
        self,
        vehicles: List[VehicleSnapshot],
        user_latitude: float,
        user_longitude: float,
        direction: Optional[int],
        radius_meters: float,
    ) -> List[_NearbyVehicle]:
        nearby: List[_NearbyVehicle] = []

        for vehicle in vehicles:
            vehicle_direction = direction_from_trip_id(vehicle.trip_id)
            if direction is not None and vehicle_direction != direction:
                continue

            if vehicle.has_position:
                latitude, longitude, source = vehicle.latitude, vehicle.longitude, "gps"
            else:
                stop = self.gtfs_loader.get_stop(vehicle.stop_id) if vehicle.stop_id else None
                if stop is None:
                    logger.debug(f"Skipping vehicle {vehicle.vehicle_id} with no usable position")
                    continue
                latitude, longitude, source = stop.latitude, stop.longitude, "stop"

            distance = haversine_distance(user_latitude, user_longitude, latitude, longitude)
            if distance <= radius_meters:
                nearby.append(
                    _NearbyVehicle(
                        vehicle=vehicle,
                        distance=distance,
                        latitude=latitude,
                        longitude=longitude,
                        position_source=source,
                        direction=vehicle_direction,
                    )
                )

        return nearby

    async def _build_candidate(self, item: _NearbyVehicle, line_code: str) -> Optional[TrainCandidate]:
        vehicle_id = item.vehicle.vehicle_id
        try:
            trip = await self.trip_builder.build_trip(vehicle_id, line_code)
        except WhatTrainError as e:
            logger.warning(f"Dropping vehicle {vehicle_id}: {e}")
            return None

        if trip is None:
            logger.warning(f"Dropping vehicle {vehicle_id}: trip could not be reconciled")
            return None

        return TrainCandidate(
            vehicle=item.vehicle,
            distance=item.distance,
            latitude=item.latitude,
            longitude=item.longitude,
            position_source=item.position_source,
            direction=int(item.direction) if item.direction is not None else None,
            trip=trip,
        )
