"""Error taxonomy for train matching.

Every error carries the HTTP status the API layer reports it with.
"""

from typing import Optional


class WhatTrainError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(WhatTrainError):
    """Client input is malformed or outside the service area."""

    status_code = 400


class UnknownLineError(WhatTrainError):
    """The line code has no real-time feed mapping."""

    status_code = 400

    def __init__(self, line_code: str):
        super().__init__(f"Unknown line code: {line_code}")
        self.line_code = line_code


class NoDataError(WhatTrainError):
    """The line is valid but no live data matched."""

    status_code = 404


class FeedError(WhatTrainError):
    """Upstream real-time feed failure."""

    status_code = 503


class FeedUnavailableError(FeedError):
    """Upstream feed unreachable or returned a non-success status."""

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.upstream_status = upstream_status


class FeedTimeoutError(FeedError):
    """Upstream feed request exceeded its timeout."""

    status_code = 408
