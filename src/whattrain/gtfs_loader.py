"""GTFS static data loader for MTA subway data."""

import csv
import io
import logging
import zipfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set

import httpx
import pandas as pd

from .geo import haversine_distance
from .models import (
    Route,
    RouteInfo,
    SequencedStop,
    StationWithDistance,
    Stop,
    StopSequence,
    StopTimeEntry,
    Trip,
)

logger = logging.getLogger(__name__)

# MTA GTFS static data URL
MTA_GTFS_URL = "https://rrgtfsfeeds.s3.amazonaws.com/gtfs_subway.zip"

GTFS_FILES = ("stops.txt", "routes.txt", "trips.txt", "stop_times.txt")


def _optional_int(value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        return None


class GTFSLoader:
    """Loads and indexes MTA GTFS static data."""

    def __init__(self):
        """Initialize the GTFS loader."""
        self.stops: Dict[str, Stop] = {}
        self.routes: Dict[str, Route] = {}  # route_id -> Route
        self.trips: Dict[str, Trip] = {}  # trip_id -> Trip
        self.stop_times: Dict[str, List[StopTimeEntry]] = {}  # trip_id -> entries sorted by sequence
        self.stops_by_route: Dict[str, Set[str]] = {}  # route_id -> {stop_ids}
        self.parent_to_children: Dict[str, List[str]] = {}
        self._sequence_cache: Dict[str, List[StopSequence]] = {}

    @property
    def is_loaded(self) -> bool:
        return bool(self.stops) and bool(self.trips)

    def load_from_url(self, url: str = MTA_GTFS_URL, timeout: float = 60.0) -> None:
        """Download and load the GTFS zip."""
        logger.info(f"Downloading GTFS data from {url}")
        try:
            response = httpx.get(url, timeout=timeout, follow_redirects=True)
            response.raise_for_status()
            with zipfile.ZipFile(io.BytesIO(response.content)) as zip_file:
                self.load_tables(
                    zip_file.read("stops.txt").decode("utf-8-sig"),
                    zip_file.read("routes.txt").decode("utf-8-sig"),
                    zip_file.read("trips.txt").decode("utf-8-sig"),
                    zip_file.read("stop_times.txt").decode("utf-8-sig"),
                )
        except Exception as e:
            logger.error(f"Failed to load GTFS data: {e}")
            raise

    def load_from_directory(self, data_dir: str) -> None:
        """Load GTFS data from an extracted feed directory."""
        logger.info(f"Loading GTFS data from {data_dir}")
        base = Path(data_dir)
        contents = []
        for name in GTFS_FILES:
            path = base / name
            if not path.exists():
                raise FileNotFoundError(f"{name} not found at {path}")
            contents.append(path.read_text(encoding="utf-8-sig"))
        self.load_tables(*contents)

    def load_tables(self, stops_csv: str, routes_csv: str, trips_csv: str, stop_times_csv: str) -> None:
        """Parse the four GTFS tables from CSV text."""
        self.clear()
        self._load_stops(stops_csv)
        self._load_routes(routes_csv)
        self._load_trips(trips_csv)
        self._load_stop_times(stop_times_csv)
        logger.info(
            f"GTFS data loaded: {len(self.stops)} stops, {len(self.routes)} routes, "
            f"{len(self.trips)} trips"
        )

    def _load_stops(self, csv_content: str) -> None:
        """Parse stops.txt and create Stop objects."""
        reader = csv.DictReader(io.StringIO(csv_content))

        for row in reader:
            stop_id = row["stop_id"]
            try:
                latitude = float(row["stop_lat"])
                longitude = float(row["stop_lon"])
            except (TypeError, ValueError):
                logger.warning(f"Skipping stop {stop_id} with invalid coordinates")
                continue

            parent_station = row.get("parent_station") or None
            self.stops[stop_id] = Stop(
                stop_id=stop_id,
                name=row["stop_name"],
                latitude=latitude,
                longitude=longitude,
                location_type=_optional_int(row.get("location_type")),
                parent_station=parent_station,
            )

            if parent_station:
                self.parent_to_children.setdefault(parent_station, []).append(stop_id)

    def _load_routes(self, csv_content: str) -> None:
        """Parse routes.txt."""
        reader = csv.DictReader(io.StringIO(csv_content))
        for row in reader:
            route_id = row["route_id"]
            self.routes[route_id] = Route(
                route_id=route_id,
                short_name=row.get("route_short_name") or route_id,
                long_name=row.get("route_long_name", ""),
                route_type=_optional_int(row.get("route_type")),
                color=row.get("route_color") or None,
                text_color=row.get("route_text_color") or None,
            )
            self.stops_by_route[route_id] = set()

    def _load_trips(self, csv_content: str) -> None:
        """Parse trips.txt."""
        df = pd.read_csv(io.StringIO(csv_content), dtype=str, keep_default_na=False)
        for row in df.itertuples(index=False):
            record = row._asdict()
            trip_id = record["trip_id"]
            if not trip_id:
                continue
            self.trips[trip_id] = Trip(
                trip_id=trip_id,
                route_id=record["route_id"],
                service_id=record.get("service_id", ""),
                headsign=record.get("trip_headsign") or None,
                direction_id=_optional_int(record.get("direction_id")),
            )

    def _load_stop_times(self, csv_content: str) -> None:
        """Parse stop_times.txt, grouped per trip and sorted by stop_sequence."""
        df = pd.read_csv(
            io.StringIO(csv_content),
            dtype=str,
            keep_default_na=False,
            usecols=["trip_id", "arrival_time", "departure_time", "stop_id", "stop_sequence"],
        )
        df = df[df["trip_id"] != ""].copy()
        df["stop_sequence"] = pd.to_numeric(df["stop_sequence"], errors="coerce")
        df = df.dropna(subset=["stop_sequence"])
        df["stop_sequence"] = df["stop_sequence"].astype(int)
        df = df.sort_values(["trip_id", "stop_sequence"], kind="stable")

        for row in df.itertuples(index=False):
            entry = StopTimeEntry(
                trip_id=row.trip_id,
                stop_id=row.stop_id,
                arrival_time=row.arrival_time,
                departure_time=row.departure_time,
                stop_sequence=int(row.stop_sequence),
            )
            self.stop_times.setdefault(row.trip_id, []).append(entry)

            trip = self.trips.get(row.trip_id)
            if trip and trip.route_id in self.stops_by_route:
                self.stops_by_route[trip.route_id].add(row.stop_id)

        # Populate stops' lines from stops_by_route
        for route_id, stop_ids in self.stops_by_route.items():
            for stop_id in stop_ids:
                stop = self.stops.get(stop_id)
                if stop and route_id not in stop.lines:
                    stop.lines.append(route_id)

        # stop_times references child platforms (127N, 127S), copy their routes to the parent
        for parent_id, children in self.parent_to_children.items():
            parent = self.stops.get(parent_id)
            if not parent:
                continue
            for child_id in children:
                child = self.stops.get(child_id)
                if child:
                    for route_id in child.lines:
                        if route_id not in parent.lines:
                            parent.lines.append(route_id)

        logger.debug(f"Indexed stop times for {len(self.stop_times)} trips")

    def get_stop(self, stop_id: str) -> Optional[Stop]:
        """Get stop by stop_id, or None."""
        return self.stops.get(stop_id)

    def get_route(self, route_id: str) -> Optional[Route]:
        return self.routes.get(route_id)

    def get_all_routes(self) -> List[Route]:
        return list(self.routes.values())

    def get_trip(self, trip_id: str) -> Optional[Trip]:
        return self.trips.get(trip_id)

    def get_all_trip_ids(self) -> Iterable[str]:
        return self.trips.keys()

    def get_stop_times_for_trip(self, trip_id: str) -> List[StopTimeEntry]:
        """All scheduled stop visits for a trip, sorted by sequence."""
        return list(self.stop_times.get(trip_id, []))

    def get_route_by_line_code(self, line_code: str) -> Optional[RouteInfo]:
        """
        Get route information and all stops served by a line.

        Args:
            line_code: Rider-facing route short name (e.g., "6", "N").

        Returns:
            RouteInfo, or None if no route has that short name.
        """
        route = next((r for r in self.routes.values() if r.short_name == line_code), None)
        if route is None:
            return None

        stops = [
            self.stops[stop_id]
            for stop_id in sorted(self.stops_by_route.get(route.route_id, set()))
            if stop_id in self.stops
        ]
        return RouteInfo(route=route, stops=stops)

    def get_stop_sequences_for_route(self, route_id: str) -> List[StopSequence]:
        """
        Ordered stop sequence for each direction of a route.

        Each stop keeps the sequence number of the first trip it was seen on.
        Results are memoised until the next load.
        """
        if route_id in self._sequence_cache:
            return self._sequence_cache[route_id]

        sequences: Dict[int, StopSequence] = {}
        seen: Dict[int, Set[str]] = {}

        for trip in self.trips.values():
            if trip.route_id != route_id:
                continue
            direction_id = trip.direction_id or 0
            if direction_id not in sequences:
                sequences[direction_id] = StopSequence(route_id=route_id, direction_id=direction_id)
                seen[direction_id] = set()

            for entry in self.stop_times.get(trip.trip_id, []):
                stop = self.stops.get(entry.stop_id)
                if stop is None or entry.stop_id in seen[direction_id]:
                    continue
                seen[direction_id].add(entry.stop_id)
                sequences[direction_id].stops.append(
                    SequencedStop(stop_id=entry.stop_id, stop_sequence=entry.stop_sequence, name=stop.name)
                )

        for sequence in sequences.values():
            sequence.stops.sort(key=lambda s: s.stop_sequence)

        result = [sequences[d] for d in sorted(sequences)]
        self._sequence_cache[route_id] = result
        return result

    def find_nearest_stations(self, lat: float, lon: float, limit: int = 5) -> List[StationWithDistance]:
        """Find the stops closest to a coordinate, excluding entrances and nodes."""
        results = [
            StationWithDistance(stop=stop, distance=haversine_distance(lat, lon, stop.latitude, stop.longitude))
            for stop in self.stops.values()
            if not (stop.location_type and stop.location_type > 1)
        ]
        results.sort(key=lambda s: s.distance)
        return results[:limit]

    def get_stats(self) -> Dict[str, int]:
        return {
            "stops": len(self.stops),
            "routes": len(self.routes),
            "trips": len(self.trips),
            "stop_times": len(self.stop_times),
        }

    def clear(self) -> None:
        """Clear all loaded data to free memory."""
        self.stops.clear()
        self.routes.clear()
        self.trips.clear()
        self.stop_times.clear()
        self.stops_by_route.clear()
        self.parent_to_children.clear()
        self._sequence_cache.clear()
