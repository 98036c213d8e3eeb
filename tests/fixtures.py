"""Shared test data: a small 6-line GTFS schedule and GTFS-Realtime feed builders."""

import sys
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import httpx

# Add src to path so we can import whattrain
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from google.transit import gtfs_realtime_pb2

from whattrain.feed_client import MTAFeedClient
from whattrain.gtfs_loader import GTFSLoader

BASE_TIME = 1700000000

# Rider standing in Times Square
TIMES_SQUARE = (40.7589, -73.9851)
METERS_PER_DEGREE_LAT = 111194.9266

UPTOWN_TRIP = "080500_6..N01R"
DOWNTOWN_TRIP = "081000_6..S01R"
STATIC_UPTOWN_TRIP = "AFA23GEN-6045-Weekday-00_080500_6..N01R"
STATIC_DOWNTOWN_TRIP = "AFA23GEN-6045-Weekday-00_081000_6..S01R"

STOPS_CSV = """stop_id,stop_name,stop_lat,stop_lon,location_type,parent_station
629,59 St,40.762526,-73.967967,1,
629N,59 St,40.762526,-73.967967,,629
629S,59 St,40.762526,-73.967967,,629
630,51 St,40.757107,-73.97192,1,
630N,51 St,40.757107,-73.97192,,630
630S,51 St,40.757107,-73.97192,,630
631,Grand Central-42 St,40.751776,-73.976848,1,
631N,Grand Central-42 St,40.751776,-73.976848,,631
631S,Grand Central-42 St,40.751776,-73.976848,,631
632,33 St,40.746081,-73.982076,1,
632N,33 St,40.746081,-73.982076,,632
632S,33 St,40.746081,-73.982076,,632
633,28 St,40.74307,-73.984264,1,
633N,28 St,40.74307,-73.984264,,633
633S,28 St,40.74307,-73.984264,,633
E631,Grand Central Entrance,40.751900,-73.976800,2,631
"""

ROUTES_CSV = """route_id,agency_id,route_short_name,route_long_name,route_type,route_color,route_text_color
6,MTA NYCT,6,Lexington Avenue Local,1,00933C,
N,MTA NYCT,N,Broadway Express,1,FCCC0A,000000
"""

TRIPS_CSV = f"""route_id,trip_id,service_id,trip_headsign,direction_id,shape_id
6,{STATIC_UPTOWN_TRIP},Weekday,Pelham Bay Park,0,6..N01R
6,{STATIC_DOWNTOWN_TRIP},Weekday,Brooklyn Bridge-City Hall,1,6..S01R
"""

# Downtown sequences decrease along the direction of travel
STOP_TIMES_CSV = f"""trip_id,arrival_time,departure_time,stop_id,stop_sequence
{STATIC_UPTOWN_TRIP},08:05:00,08:05:00,633N,1
{STATIC_UPTOWN_TRIP},08:07:00,08:07:00,632N,2
{STATIC_UPTOWN_TRIP},08:09:30,08:09:30,631N,3
{STATIC_UPTOWN_TRIP},08:11:00,08:11:00,630N,4
{STATIC_UPTOWN_TRIP},08:12:30,08:12:30,629N,5
{STATIC_DOWNTOWN_TRIP},08:10:00,08:10:00,629S,5
{STATIC_DOWNTOWN_TRIP},08:11:30,08:11:30,630S,4
{STATIC_DOWNTOWN_TRIP},08:13:00,08:13:00,631S,3
{STATIC_DOWNTOWN_TRIP},08:14:30,08:14:30,632S,2
{STATIC_DOWNTOWN_TRIP},08:16:00,08:16:00,633S,1
"""


def make_loader() -> GTFSLoader:
    loader = GTFSLoader()
    loader.load_tables(STOPS_CSV, ROUTES_CSV, TRIPS_CSV, STOP_TIMES_CSV)
    return loader


def north_of(origin, meters: float):
    """Point the given number of meters due north of origin."""
    lat, lon = origin
    return (round(lat + meters / METERS_PER_DEGREE_LAT, 9), lon)


def vehicle(entity_id: str, trip_id: Optional[str], route_id: str = "6", position=None,
            stop_id: Optional[str] = None, stop_sequence: Optional[int] = None,
            status: Optional[int] = None, timestamp: Optional[int] = BASE_TIME) -> Dict:
    return {
        "entity_id": entity_id,
        "trip_id": trip_id,
        "route_id": route_id,
        "position": position,
        "stop_id": stop_id,
        "stop_sequence": stop_sequence,
        "status": status,
        "timestamp": timestamp,
    }


def trip_update(entity_id: str, trip_id: str, stops: Iterable, route_id: str = "6") -> Dict:
    """stops: (stop_id, arrival, departure, stop_sequence, delay) tuples; trailing items optional."""
    return {"entity_id": entity_id, "trip_id": trip_id, "route_id": route_id, "stops": list(stops)}


def build_feed(vehicles: List[Dict] = (), trip_updates: List[Dict] = ()) -> bytes:
    """Serialize a GTFS-Realtime FeedMessage."""
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"
    feed.header.timestamp = BASE_TIME

    for tu in trip_updates:
        entity = feed.entity.add()
        entity.id = tu["entity_id"]
        entity.trip_update.trip.trip_id = tu["trip_id"]
        entity.trip_update.trip.route_id = tu["route_id"]
        for stop in tu["stops"]:
            stop_id, arrival, departure, sequence, delay = (tuple(stop) + (None,) * 5)[:5]
            stu = entity.trip_update.stop_time_update.add()
            stu.stop_id = stop_id
            if sequence is not None:
                stu.stop_sequence = sequence
            if arrival is not None:
                stu.arrival.time = arrival
                if delay is not None:
                    stu.arrival.delay = delay
            if departure is not None:
                stu.departure.time = departure

    for v in vehicles:
        entity = feed.entity.add()
        entity.id = v["entity_id"]
        position = entity.vehicle
        if v["trip_id"] is not None:
            position.trip.trip_id = v["trip_id"]
        position.trip.route_id = v["route_id"]
        if v["position"] is not None:
            position.position.latitude = v["position"][0]
            position.position.longitude = v["position"][1]
        if v["stop_id"] is not None:
            position.stop_id = v["stop_id"]
        if v["stop_sequence"] is not None:
            position.current_stop_sequence = v["stop_sequence"]
        if v["status"] is not None:
            position.current_status = v["status"]
        if v["timestamp"] is not None:
            position.timestamp = v["timestamp"]

    return feed.SerializeToString()


def standard_feed() -> bytes:
    """One uptown and one downtown 6 train, plus a 4 train on the same feed."""
    return build_feed(
        vehicles=[
            vehicle("000001", UPTOWN_TRIP, stop_id="631N", stop_sequence=17, status=1,
                    position=north_of(TIMES_SQUARE, 450)),
            vehicle("000002", DOWNTOWN_TRIP, stop_id="631S", status=2,
                    position=north_of(TIMES_SQUARE, 80)),
            vehicle("000003", "082000_4..N05R", route_id="4", stop_id="631N"),
        ],
        trip_updates=[
            trip_update("000001", UPTOWN_TRIP, [
                ("632N", BASE_TIME - 120, BASE_TIME - 100),
                ("631N", BASE_TIME, BASE_TIME + 30, None, 60),
                ("630N", BASE_TIME + 120, BASE_TIME + 150),
                ("629N", BASE_TIME + 240, None),
            ]),
            trip_update("000002", DOWNTOWN_TRIP, [
                ("630S", BASE_TIME - 90, BASE_TIME - 60),
                ("631S", BASE_TIME + 60, BASE_TIME + 90),
                ("632S", BASE_TIME + 180, BASE_TIME + 200),
                ("633S", BASE_TIME + 300, None),
            ]),
            trip_update("000003", "082000_4..N05R", [("631N", BASE_TIME + 60, None)], route_id="4"),
        ],
    )


class FakeClock:
    """Injectable clock; sleeping advances it."""

    def __init__(self, now: float = float(BASE_TIME)):
        self.now = now
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)


class FeedServer:
    """httpx MockTransport handler serving one payload and recording requests."""

    def __init__(self, payload: bytes = b"", status_code: int = 200, error: Optional[Exception] = None):
        self.payload = payload
        self.status_code = status_code
        self.error = error
        self.requests: List[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, content=self.payload)


def make_client(server: FeedServer, clock: Optional[FakeClock] = None, **kwargs) -> MTAFeedClient:
    clock = clock or FakeClock()
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    return MTAFeedClient(http_client=http_client, clock=clock, sleep=clock.sleep, **kwargs)
