"""Example usage of TrainFinder: which train am I on?"""

import asyncio
import logging
import sys
from pathlib import Path

# Add src to path so we can import whattrain
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from whattrain import GTFSLoader, MTAFeedClient, TrainFinder, WhatTrainError

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


async def print_nearest_trains(latitude: float, longitude: float, line_code: str, direction=None):
    """
    Fetch and display the trains of a line closest to a location.

    Args:
        latitude: Rider latitude (e.g., 40.7589 for Times Square)
        longitude: Rider longitude (e.g., -73.9851)
        line_code: Subway line (e.g., "6")
        direction: Optional 0 (uptown) or 1 (downtown)
    """
    print(f"\n{'='*70}")
    print(f"Looking for {line_code} trains near ({latitude}, {longitude})")
    print(f"{'='*70}\n")

    # Downloads the static schedule (this may take a minute)
    loader = GTFSLoader()
    loader.load_from_url()

    async with MTAFeedClient() as feed_client:
        finder = TrainFinder(feed_client, loader)
        try:
            candidates = await finder.find_nearest_trains(latitude, longitude, line_code, direction=direction)
        except WhatTrainError as e:
            print(f"Error: {e.message}")
            sys.exit(1)

    if not candidates:
        print("  No trains found nearby")
        return

    for candidate in candidates:
        trip = candidate.trip
        print(f"Train {candidate.vehicle.vehicle_id} ({trip.direction_name}) - {candidate.distance_meters}m away")
        if trip.headsign:
            print(f"  To: {trip.headsign}")
        if trip.current_stop:
            print(f"  At: {trip.current_stop.name} [{trip.current_stop.status_name}]")
        upcoming = [s for s in trip.realtime_stops if s.status == "future"][:3]
        for stop in upcoming:
            print(f"  Next: {stop.name} at {stop.arrival_time}")
        print()


if __name__ == "__main__":
    if len(sys.argv) < 4:
        print("Usage: python example.py LATITUDE LONGITUDE LINE [DIRECTION]")
        print("Example: python example.py 40.7589 -73.9851 6 1")
        sys.exit(1)

    direction = int(sys.argv[4]) if len(sys.argv) > 4 else None
    asyncio.run(print_nearest_trains(float(sys.argv[1]), float(sys.argv[2]), sys.argv[3], direction))
