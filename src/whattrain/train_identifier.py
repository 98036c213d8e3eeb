"""Identify the trains arriving at a rider's stop."""

import logging
import time
from typing import Callable, List, Optional, Tuple

from .errors import InvalidRequestError
from .feed_client import MTAFeedClient, direction_from_trip_id
from .models import IdentifiedTrain, TrainIdentification
from .trip_builder import format_timestamp

logger = logging.getLogger(__name__)


class TrainIdentifier:
    """
    Splits a line's trains around a stop.

    Trains whose predicted arrival at the stop is at or before the reference
    time are "before" (already there or passed), the rest are "after".
    """

    def __init__(self, feed_client: MTAFeedClient, clock: Callable[[], float] = time.time):
        self.feed_client = feed_client
        self._clock = clock

    async def identify_trains(
        self,
        line_code: str,
        direction: int,
        stop_id: str,
        limit: int = 2,
        reference_time: Optional[float] = None,
    ) -> TrainIdentification:
        """
        Get trains before and after a stop for one line and direction.

        Args:
            line_code: Subway line code (e.g., "6").
            direction: 0 = uptown, 1 = downtown.
            stop_id: GTFS stop id of the rider's platform (e.g., "127N").
            limit: Maximum trains returned on each side.
            reference_time: Unix timestamp to split around; defaults to now.
        """
        self.validate_request(line_code, direction, stop_id, limit)

        vehicles = await self.feed_client.get_vehicle_positions(line_code)
        trip_updates = await self.feed_client.get_trip_updates(line_code)
        updates_by_trip = {tu.trip_id: tu for tu in trip_updates}

        candidates = [v for v in vehicles if direction_from_trip_id(v.trip_id) == direction]

        trains: List[Tuple[int, IdentifiedTrain]] = []
        for vehicle in candidates:
            trip_update = updates_by_trip.get(vehicle.trip_id)
            if trip_update is None:
                continue

            prediction = next((p for p in trip_update.stop_time_updates if p.stop_id == stop_id), None)
            if prediction is None or not prediction.time:
                continue

            trains.append(
                (
                    prediction.time,
                    IdentifiedTrain(
                        trip_id=vehicle.trip_id,
                        route_id=vehicle.route_id,
                        direction_id=int(direction),
                        arrival_time=format_timestamp(prediction.time),
                        arrival_timestamp=prediction.time,
                        vehicle_id=vehicle.vehicle_id,
                        status=vehicle.status,
                        delay=prediction.delay,
                        current_stop_id=vehicle.stop_id,
                        current_stop_sequence=vehicle.current_stop_sequence,
                    ),
                )
            )

        trains.sort(key=lambda item: item[0])

        reference = self._clock() if reference_time is None else reference_time
        trains_before = [train for arrival, train in trains if arrival <= reference][:limit]
        trains_after = [train for arrival, train in trains if arrival > reference][:limit]

        logger.debug(
            f"Line {line_code} stop {stop_id}: {len(trains_before)} before, {len(trains_after)} after"
        )
        return TrainIdentification(
            trains_before=trains_before,
            trains_after=trains_after,
            line_code=line_code,
            direction=int(direction),
            stop_id=stop_id,
            reference_timestamp=format_timestamp(int(reference)),
            processed_at=format_timestamp(int(self._clock())),
            vehicles_considered=len(candidates),
        )

    @staticmethod
    def validate_request(line_code, direction, stop_id, limit) -> None:
        if not isinstance(line_code, str) or not line_code.strip():
            raise InvalidRequestError("lineCode must be a non-empty string")
        if isinstance(direction, bool) or direction not in (0, 1):
            raise InvalidRequestError("direction must be 0 or 1")
        if not isinstance(stop_id, str) or not stop_id.strip():
            raise InvalidRequestError("stopId must be a non-empty string")
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidRequestError("limit must be a positive integer")
