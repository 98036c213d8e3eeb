"""MTA GTFS-Realtime feed fetcher and parser."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import httpx
from google.protobuf.message import DecodeError
from google.transit import gtfs_realtime_pb2

from .errors import FeedTimeoutError, FeedUnavailableError, NoDataError, UnknownLineError
from .models import (
    CacheStats,
    Direction,
    FeedCacheEntry,
    FeedPayload,
    StopTimePrediction,
    TripUpdateSnapshot,
    VehicleSnapshot,
)

logger = logging.getLogger(__name__)

# MTA GTFS-Realtime feed URLs (subway only), keyed by the lines each feed serves
MTA_FEEDS = {
    "1,2,3,4,5,6,7,S": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs",
    "A,C,E": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-ace",
    "B,D,F,M": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-bdfm",
    "G": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-g",
    "J,Z": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-jz",
    "L": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-l",
    "N,Q,R,W": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-nqrw",
    "SI": "https://api-endpoint.mta.info/Dataservice/mtagtfsfeeds/nyct%2Fgtfs-si",
}

DEFAULT_CACHE_TTL = 30.0  # seconds
DEFAULT_RATE_LIMIT = 1.0  # seconds between upstream requests
DEFAULT_TIMEOUT = 10.0


def build_line_url_map(feed_urls: Mapping[str, str]) -> Dict[str, str]:
    """Flatten the grouped feed table into line code -> feed URL."""
    line_to_url: Dict[str, str] = {}
    for lines, url in feed_urls.items():
        for line in lines.split(","):
            line = line.strip()
            if line:
                line_to_url[line] = url
    return line_to_url


def direction_from_trip_id(trip_id: Optional[str]) -> Optional[Direction]:
    """
    Derive the direction of travel from an MTA trip id.

    The feed's own direction_id is unreliable for the subway, so the trip id
    markers are the only source: ".N"/"..N" is uptown, ".S"/"..S" is downtown.

    Returns:
        Direction, or None when the trip id carries no marker.
    """
    if not trip_id:
        return None
    if "..N" in trip_id or ".N" in trip_id:
        return Direction.UPTOWN
    if "..S" in trip_id or ".S" in trip_id:
        return Direction.DOWNTOWN
    return None


def to_epoch_seconds(value: Any) -> Optional[int]:
    """
    Normalise a 64-bit feed timestamp to Unix epoch seconds.

    Accepts a plain integer or a split {high, low} pair (mapping or object).
    """
    if value is None:
        return None
    if isinstance(value, Mapping):
        high, low = value.get("high", 0), value.get("low", 0)
    elif hasattr(value, "high") and hasattr(value, "low"):
        high, low = value.high, value.low
    else:
        return int(value)
    return int(low) if high == 0 else int(high) * 2 ** 32 + int(low)


def _parse_vehicle(entity) -> VehicleSnapshot:
    vehicle = entity.vehicle
    has_trip = vehicle.HasField("trip")
    has_position = vehicle.HasField("position")
    position = vehicle.position

    return VehicleSnapshot(
        vehicle_id=entity.id,
        trip_id=(vehicle.trip.trip_id or None) if has_trip else None,
        route_id=vehicle.trip.route_id if has_trip else "",
        latitude=position.latitude if has_position else None,
        longitude=position.longitude if has_position else None,
        bearing=position.bearing if has_position and position.HasField("bearing") else None,
        speed=position.speed if has_position and position.HasField("speed") else None,
        stop_id=vehicle.stop_id or None,
        current_stop_sequence=(
            vehicle.current_stop_sequence if vehicle.HasField("current_stop_sequence") else None
        ),
        status=vehicle.current_status if vehicle.HasField("current_status") else None,
        timestamp=to_epoch_seconds(vehicle.timestamp) if vehicle.HasField("timestamp") else None,
        label=(vehicle.vehicle.label or None) if vehicle.HasField("vehicle") else None,
    )


def _parse_stop_time_update(stop_time_update) -> StopTimePrediction:
    arrival = stop_time_update.arrival if stop_time_update.HasField("arrival") else None
    departure = stop_time_update.departure if stop_time_update.HasField("departure") else None

    return StopTimePrediction(
        stop_id=stop_time_update.stop_id or None,
        stop_sequence=(
            stop_time_update.stop_sequence if stop_time_update.HasField("stop_sequence") else None
        ),
        arrival_time=to_epoch_seconds(arrival.time) if arrival and arrival.HasField("time") else None,
        departure_time=(
            to_epoch_seconds(departure.time) if departure and departure.HasField("time") else None
        ),
        arrival_delay=arrival.delay if arrival and arrival.HasField("delay") else None,
        departure_delay=departure.delay if departure and departure.HasField("delay") else None,
    )


def _parse_trip_update(entity) -> TripUpdateSnapshot:
    trip_update = entity.trip_update
    return TripUpdateSnapshot(
        entity_id=entity.id,
        trip_id=trip_update.trip.trip_id,
        route_id=trip_update.trip.route_id,
        stop_time_updates=tuple(_parse_stop_time_update(stu) for stu in trip_update.stop_time_update),
        timestamp=to_epoch_seconds(trip_update.timestamp) if trip_update.HasField("timestamp") else None,
    )


def parse_feed(feed_data: bytes) -> FeedPayload:
    """
    Decode a GTFS-Realtime FeedMessage into snapshots.

    Args:
        feed_data: Raw protobuf bytes.

    Raises:
        DecodeError: If the payload is not a valid FeedMessage.
    """
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.ParseFromString(feed_data)

    vehicles: List[VehicleSnapshot] = []
    trip_updates: List[TripUpdateSnapshot] = []

    for entity in feed.entity:
        if entity.is_deleted:
            continue
        if entity.HasField("vehicle"):
            vehicles.append(_parse_vehicle(entity))
        if entity.HasField("trip_update"):
            trip_updates.append(_parse_trip_update(entity))

    header_timestamp = feed.header.timestamp if feed.header.HasField("timestamp") else None
    logger.debug(f"Parsed {len(vehicles)} vehicles and {len(trip_updates)} trip updates")
    return FeedPayload(
        vehicles=tuple(vehicles),
        trip_updates=tuple(trip_updates),
        timestamp=to_epoch_seconds(header_timestamp),
    )


class MTAFeedClient:
    """
    Fetches, decodes and caches MTA GTFS-Realtime feeds.

    Several line codes share one upstream feed; the grouped table is flattened
    once at construction so each lookup is a dict access. Decoded feeds are
    cached per URL for ``cache_ttl`` seconds and outbound requests are spaced
    at least ``rate_limit`` seconds apart.
    """

    def __init__(
        self,
        feed_urls: Mapping[str, str] = MTA_FEEDS,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        rate_limit: float = DEFAULT_RATE_LIMIT,
        timeout: float = DEFAULT_TIMEOUT,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._line_to_url = build_line_url_map(feed_urls)
        self._cache: Dict[str, FeedCacheEntry] = {}  # feed_url -> entry
        self._cache_ttl = cache_ttl
        self._rate_limit = rate_limit
        self._last_request_time: Optional[float] = None
        self._rate_lock: Optional[asyncio.Lock] = None
        self._url_locks: Dict[str, asyncio.Lock] = {}
        self._clock = clock
        self._sleep = sleep

        if http_client is None:
            headers = {"x-api-key": api_key} if api_key else {}
            http_client = httpx.AsyncClient(timeout=timeout, headers=headers, follow_redirects=True)
            self._owns_http_client = True
        else:
            self._owns_http_client = False
        self._http = http_client

    @property
    def supported_lines(self) -> List[str]:
        return sorted(self._line_to_url)

    def get_feed_url(self, line_code: str) -> str:
        """Resolve a line code to its feed URL."""
        url = self._line_to_url.get(line_code)
        if url is None:
            raise UnknownLineError(line_code)
        return url

    async def get_vehicle_positions(self, line_code: str, direction: Optional[int] = None) -> List[VehicleSnapshot]:
        """
        Get live vehicle positions for a line.

        Args:
            line_code: Subway line code (e.g., "6", "N").
            direction: Optional direction filter (0 = uptown, 1 = downtown),
                matched against the trip-id-derived direction.

        Returns:
            Vehicles whose route id equals the line code.

        Raises:
            UnknownLineError: If the line code has no feed.
            NoDataError: If no vehicle survives filtering.
        """
        url = self.get_feed_url(line_code)
        payload = await self._fetch_feed(url)

        vehicles = [v for v in payload.vehicles if v.route_id == line_code]
        if direction is not None:
            vehicles = [v for v in vehicles if direction_from_trip_id(v.trip_id) == direction]

        if not vehicles:
            raise NoDataError(f"No vehicle position data found for line {line_code}")
        return vehicles

    async def get_trip_updates(self, line_code: str) -> List[TripUpdateSnapshot]:
        """Get all trip updates for a line, in every direction."""
        url = self.get_feed_url(line_code)
        payload = await self._fetch_feed(url)
        return [tu for tu in payload.trip_updates if tu.route_id == line_code]

    async def _fetch_feed(self, feed_url: str) -> FeedPayload:
        """
        Fetch, decode and cache a GTFS-Realtime feed.

        Args:
            feed_url: Full URL to the feed.

        Returns:
            Decoded feed payload.
        """
        cached = self._cache.get(feed_url)
        if cached is not None and cached.is_fresh(self._clock()):
            logger.debug(f"Using cached data for {feed_url}")
            return cached.data

        lock = self._url_locks.setdefault(feed_url, asyncio.Lock())
        async with lock:
            # Another task may have refreshed the entry while we waited
            cached = self._cache.get(feed_url)
            if cached is not None and cached.is_fresh(self._clock()):
                return cached.data

            await self._wait_for_rate_limit()
            payload = await self._download(feed_url)
            self._cache[feed_url] = FeedCacheEntry(data=payload, timestamp=self._clock(), ttl=self._cache_ttl)
            return payload

    async def _wait_for_rate_limit(self) -> None:
        if self._rate_lock is None:
            self._rate_lock = asyncio.Lock()

        async with self._rate_lock:
            if self._last_request_time is not None:
                elapsed = self._clock() - self._last_request_time
                if elapsed < self._rate_limit:
                    wait = self._rate_limit - elapsed
                    logger.debug(f"Rate limiting upstream request for {wait:.2f}s")
                    await self._sleep(wait)
            self._last_request_time = self._clock()

    async def _download(self, feed_url: str) -> FeedPayload:
        logger.debug(f"Fetching {feed_url}")
        try:
            response = await self._http.get(feed_url)
        except httpx.TimeoutException as e:
            logger.error(f"Timed out fetching {feed_url}: {e}")
            raise FeedTimeoutError(f"GTFS-RT request timed out for {feed_url}") from e
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch {feed_url}: {e}")
            raise FeedUnavailableError(f"Failed to fetch GTFS-RT data from {feed_url}: {e}") from e

        if not response.is_success:
            logger.error(f"Failed to fetch {feed_url}: HTTP {response.status_code}")
            raise FeedUnavailableError(
                f"{feed_url}: {response.status_code} {response.reason_phrase}",
                upstream_status=response.status_code,
            )

        try:
            return parse_feed(response.content)
        except DecodeError as e:
            logger.error(f"Failed to decode feed {feed_url}: {e}")
            raise FeedUnavailableError(f"Invalid GTFS-RT payload from {feed_url}") from e

    def clear_cache(self) -> None:
        """Manually clear the cache."""
        self._cache.clear()

    def get_cache_stats(self) -> CacheStats:
        return CacheStats(size=len(self._cache), keys=list(self._cache))

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http_client:
            await self._http.aclose()

    async def __aenter__(self) -> "MTAFeedClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
