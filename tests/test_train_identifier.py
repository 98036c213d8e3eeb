"""
Unit tests for the stop-based train identifier
"""

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from fixtures import BASE_TIME, FakeClock, FeedServer, build_feed, make_client, trip_update, vehicle

from whattrain.errors import InvalidRequestError
from whattrain.train_identifier import TrainIdentifier
from whattrain.trip_builder import format_timestamp


def arrivals_feed() -> bytes:
    """Four uptown trains heading for 631N at staggered times, one downtown."""
    trains = [
        ("A", "080000_6..N01R", -120),
        ("B", "080300_6..N01R", 0),
        ("C", "080600_6..N01R", 90),
        ("D", "080900_6..N01R", 300),
    ]
    vehicles = [vehicle(vid, trip, stop_id="632N") for vid, trip, _ in trains]
    updates = [trip_update(vid, trip, [("631N", BASE_TIME + offset)]) for vid, trip, offset in trains]

    vehicles.append(vehicle("E", "080100_6..S01R", stop_id="630S"))
    updates.append(trip_update("E", "080100_6..S01R", [("631S", BASE_TIME + 60)]))

    # Uptown train that doesn't stop at 631N
    vehicles.append(vehicle("F", "081200_6..N01R", stop_id="630N"))
    updates.append(trip_update("F", "081200_6..N01R", [("629N", BASE_TIME + 30)]))
    return build_feed(vehicles=vehicles, trip_updates=updates)


class TestTrainIdentifier(unittest.IsolatedAsyncioTestCase):
    """Test cases for TrainIdentifier"""

    def setUp(self):
        self.clock = FakeClock()
        self.server = FeedServer(arrivals_feed())
        self.client = make_client(self.server, self.clock)
        self.identifier = TrainIdentifier(self.client, clock=self.clock)

    async def asyncTearDown(self):
        await self.client._http.aclose()

    async def test_split_around_now(self):
        """Test that arrivals at or before now are 'before'"""
        result = await self.identifier.identify_trains("6", 0, "631N")

        self.assertEqual([t.vehicle_id for t in result.trains_before], ["A", "B"])
        self.assertEqual([t.vehicle_id for t in result.trains_after], ["C", "D"])
        self.assertEqual(result.reference_timestamp, format_timestamp(BASE_TIME))
        self.assertEqual(result.vehicles_considered, 5)

    async def test_limit(self):
        result = await self.identifier.identify_trains("6", 0, "631N", limit=1)

        self.assertEqual([t.vehicle_id for t in result.trains_before], ["A"])
        self.assertEqual([t.vehicle_id for t in result.trains_after], ["C"])

    async def test_reference_time(self):
        result = await self.identifier.identify_trains("6", 0, "631N", reference_time=BASE_TIME + 100)

        self.assertEqual([t.vehicle_id for t in result.trains_before], ["A", "B"])
        self.assertEqual([t.vehicle_id for t in result.trains_after], ["D"])

    async def test_train_details(self):
        result = await self.identifier.identify_trains("6", 0, "631N")

        train = result.trains_after[0]
        self.assertEqual(train.trip_id, "080600_6..N01R")
        self.assertEqual(train.route_id, "6")
        self.assertEqual(train.direction_id, 0)
        self.assertEqual(train.arrival_timestamp, BASE_TIME + 90)
        self.assertEqual(train.arrival_time, format_timestamp(BASE_TIME + 90))
        self.assertEqual(train.current_stop_id, "632N")

    async def test_downtown(self):
        result = await self.identifier.identify_trains("6", 1, "631S")

        self.assertEqual(result.trains_before, [])
        self.assertEqual([t.vehicle_id for t in result.trains_after], ["E"])

    def test_validation(self):
        for args in (("", 0, "631N"), ("6", 2, "631N"), ("6", 0, ""), ("6", 0, "631N", 0)):
            with self.assertRaises(InvalidRequestError):
                TrainIdentifier.validate_request(*(args + (2,))[:4])


if __name__ == "__main__":
    unittest.main()
