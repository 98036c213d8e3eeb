"""WhatTrain - find which NYC subway train a rider is on."""

__version__ = "0.1.0"

from .errors import (
    FeedError,
    FeedTimeoutError,
    FeedUnavailableError,
    InvalidRequestError,
    NoDataError,
    UnknownLineError,
    WhatTrainError,
)
from .models import Direction, TrainCandidate, TripView, VehicleSnapshot, TripUpdateSnapshot
from .gtfs_loader import GTFSLoader
from .feed_client import MTAFeedClient, direction_from_trip_id
from .trip_builder import TripBuilder
from .train_finder import TrainFinder
from .train_identifier import TrainIdentifier

__all__ = [
    "TrainFinder",
    "TripBuilder",
    "TrainIdentifier",
    "GTFSLoader",
    "MTAFeedClient",
    "direction_from_trip_id",
    "Direction",
    "VehicleSnapshot",
    "TripUpdateSnapshot",
    "TripView",
    "TrainCandidate",
    "WhatTrainError",
    "InvalidRequestError",
    "UnknownLineError",
    "NoDataError",
    "FeedError",
    "FeedUnavailableError",
    "FeedTimeoutError",
]
