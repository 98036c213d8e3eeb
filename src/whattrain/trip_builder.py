"""Build a complete trip view from real-time and static schedule data."""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from .errors import NoDataError
from .feed_client import MTAFeedClient, direction_from_trip_id
from .gtfs_loader import GTFSLoader
from .models import (
    DIRECTION_NAMES,
    CurrentStop,
    Direction,
    ReconciledStop,
    StopSequence,
    StopTimePrediction,
    TripUpdateSnapshot,
    TripView,
    VehicleSnapshot,
    status_name,
)

logger = logging.getLogger(__name__)

PAST = "past"
CURRENT = "current"
FUTURE = "future"


def format_timestamp(epoch_seconds: int) -> str:
    """Unix timestamp -> ISO-8601 UTC string."""
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def find_static_trip_id(trip_ids: Iterable[str], realtime_trip_id: Optional[str]) -> Optional[str]:
    """
    Match a real-time trip id to a static one.

    Static trip ids carry a service prefix, e.g. "AFA23GEN-1037-Weekday-00_080500_N..N34R"
    for the real-time "080500_N..N34R". The first static id ending with the
    real-time id wins.
    """
    if not realtime_trip_id:
        return None
    for trip_id in trip_ids:
        if trip_id.endswith(realtime_trip_id):
            return trip_id
    return None


def classify_stop(stop_sequence: int, current_sequence: int, direction: Optional[int]) -> str:
    """
    Classify a stop relative to the vehicle's current sequence.

    Uptown trips run with increasing sequence numbers, downtown trips with
    decreasing ones. Trips with no known direction use the uptown ordering.
    """
    if stop_sequence == current_sequence:
        return CURRENT
    if direction == Direction.DOWNTOWN:
        return PAST if stop_sequence > current_sequence else FUTURE
    return PAST if stop_sequence < current_sequence else FUTURE


class TripBuilder:
    """Reconciles a live vehicle with its trip update and the static schedule."""

    def __init__(
        self,
        feed_client: MTAFeedClient,
        gtfs_loader: GTFSLoader,
        clock: Callable[[], float] = time.time,
    ):
        self.feed_client = feed_client
        self.gtfs_loader = gtfs_loader
        self._clock = clock

    async def build_trip(self, vehicle_id: str, line_code: str) -> Optional[TripView]:
        """
        Build a complete TripView for one vehicle.

        Args:
            vehicle_id: Feed entity id of the vehicle.
            line_code: Subway line code (e.g., "6").

        Returns:
            TripView, or None if the vehicle or its trip update is missing.

        Raises:
            UnknownLineError: If the line code has no feed.
            FeedError: If the upstream feed cannot be fetched.
        """
        try:
            vehicles = await self.feed_client.get_vehicle_positions(line_code)
        except NoDataError:
            return None

        vehicle = next((v for v in vehicles if v.vehicle_id == vehicle_id), None)
        if vehicle is None:
            logger.debug(f"Vehicle {vehicle_id} not found on line {line_code}")
            return None

        trip_updates = await self.feed_client.get_trip_updates(line_code)
        return self.build_trip_view(vehicle, trip_updates, line_code)

    def build_trip_view(
        self,
        vehicle: VehicleSnapshot,
        trip_updates: List[TripUpdateSnapshot],
        line_code: str,
    ) -> Optional[TripView]:
        """Assemble a TripView from snapshots already fetched."""
        if not vehicle.trip_id:
            return None

        trip_update = next((tu for tu in trip_updates if tu.trip_id == vehicle.trip_id), None)
        if trip_update is None:
            logger.debug(f"No trip update for trip {vehicle.trip_id}")
            return None

        # Arrival time is required downstream for ordering
        first_timed = next((p for p in trip_update.stop_time_updates if p.time), None)
        if first_timed is None:
            logger.debug(f"Trip {vehicle.trip_id} has no timed stop predictions")
            return None

        direction = direction_from_trip_id(vehicle.trip_id)
        direction_sequence = self._get_direction_sequence(line_code, direction)
        current_sequence = self.get_current_stop_sequence(vehicle, direction_sequence, first_timed)

        realtime_stops = self._build_realtime_stops(
            trip_update, vehicle.stop_id, current_sequence, direction, direction_sequence
        )

        static_trip_id = find_static_trip_id(self.gtfs_loader.get_all_trip_ids(), vehicle.trip_id)
        static_stops = self._build_static_stops(static_trip_id, current_sequence, direction)
        static_trip = self.gtfs_loader.get_trip(static_trip_id) if static_trip_id else None

        current_stop = None
        if vehicle.stop_id:
            stop = self.gtfs_loader.get_stop(vehicle.stop_id)
            current_stop = CurrentStop(
                stop_id=vehicle.stop_id,
                name=stop.name if stop else vehicle.stop_id,
                stop_sequence=current_sequence,
                status=vehicle.status,
                status_name=status_name(vehicle.status),
            )

        return TripView(
            trip_id=vehicle.trip_id,
            route_id=vehicle.route_id or line_code,
            direction_id=int(direction) if direction is not None else None,
            direction_name=DIRECTION_NAMES.get(direction, "Unknown Direction"),
            arrival_time=format_timestamp(first_timed.time),
            vehicle_id=vehicle.vehicle_id,
            delay=first_timed.delay,
            current_stop=current_stop,
            realtime_stops=realtime_stops,
            static_stops=static_stops,
            static_trip_id=static_trip_id,
            headsign=static_trip.headsign if static_trip else None,
        )

    def get_current_stop_sequence(
        self,
        vehicle: VehicleSnapshot,
        direction_sequence: Optional[StopSequence],
        first_timed: Optional[StopTimePrediction] = None,
    ) -> int:
        """
        Current stop sequence of a vehicle.

        Prefers the static schedule's sequence for the vehicle's stop so it
        lines up with the static stop list, then falls back to the real-time
        reported sequence.
        """
        if vehicle.stop_id and direction_sequence is not None:
            sequence = direction_sequence.sequence_for(vehicle.stop_id)
            if sequence:
                return sequence

        # NOTE: the fallback is in the real-time numbering, which need not match the static one
        if vehicle.current_stop_sequence:
            return vehicle.current_stop_sequence
        if first_timed is not None and first_timed.stop_sequence:
            return first_timed.stop_sequence
        return 0

    def _get_direction_sequence(self, line_code: str, direction: Optional[int]) -> Optional[StopSequence]:
        if direction is None:
            return None
        sequences = self.gtfs_loader.get_stop_sequences_for_route(line_code)
        return next((s for s in sequences if s.direction_id == direction), None)

    def _build_realtime_stops(
        self,
        trip_update: TripUpdateSnapshot,
        current_stop_id: Optional[str],
        current_sequence: int,
        direction: Optional[int],
        direction_sequence: Optional[StopSequence],
    ) -> List[ReconciledStop]:
        """
        Real-time stops ordered by stop sequence.

        When the feed no longer predicts the vehicle's current stop, it is
        added from the static direction sequence, stamped with the current time.
        """
        stops: List[ReconciledStop] = []

        for prediction in trip_update.stop_time_updates:
            if not prediction.stop_id or not prediction.time:
                continue

            stop_sequence = prediction.stop_sequence or 0
            if not stop_sequence and direction_sequence is not None:
                stop_sequence = direction_sequence.sequence_for(prediction.stop_id) or 0

            # Real-time and static numbering can disagree near the vehicle, the stop id decides
            if current_stop_id and prediction.stop_id == current_stop_id:
                status = CURRENT
            else:
                status = classify_stop(stop_sequence, current_sequence, direction)

            stop = self.gtfs_loader.get_stop(prediction.stop_id)
            stops.append(
                ReconciledStop(
                    stop_id=prediction.stop_id,
                    name=stop.name if stop else prediction.stop_id,
                    stop_sequence=stop_sequence,
                    arrival_time=format_timestamp(prediction.time),
                    departure_time=(
                        format_timestamp(prediction.departure_time) if prediction.departure_time else None
                    ),
                    delay=prediction.delay,
                    status=status,
                )
            )

        if current_stop_id and direction_sequence is not None:
            if not any(s.stop_id == current_stop_id for s in stops):
                current = self._build_missing_current_stop(current_stop_id, direction_sequence)
                if current is not None:
                    stops.append(current)

        stops.sort(key=lambda s: s.stop_sequence)
        return stops

    def _build_missing_current_stop(
        self, stop_id: str, direction_sequence: StopSequence
    ) -> Optional[ReconciledStop]:
        stop = self.gtfs_loader.get_stop(stop_id)
        stop_sequence = direction_sequence.sequence_for(stop_id)
        if stop is None or stop_sequence is None:
            return None

        logger.debug(f"Adding current stop {stop_id} missing from the trip update")
        return ReconciledStop(
            stop_id=stop_id,
            name=stop.name,
            stop_sequence=stop_sequence,
            arrival_time=format_timestamp(int(self._clock())),
            status=CURRENT,
        )

    def _build_static_stops(
        self,
        static_trip_id: Optional[str],
        current_sequence: int,
        direction: Optional[int],
    ) -> List[ReconciledStop]:
        if not static_trip_id:
            return []

        stops: List[ReconciledStop] = []
        for entry in self.gtfs_loader.get_stop_times_for_trip(static_trip_id):
            stop = self.gtfs_loader.get_stop(entry.stop_id)
            stops.append(
                ReconciledStop(
                    stop_id=entry.stop_id,
                    name=stop.name if stop else entry.stop_id,
                    stop_sequence=entry.stop_sequence,
                    arrival_time=entry.arrival_time or None,
                    departure_time=entry.departure_time or None,
                    status=classify_stop(entry.stop_sequence, current_sequence, direction),
                )
            )
        return stops
