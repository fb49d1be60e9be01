# deal_tracker/errors.py

"""Error kinds raised across the tracker.

User-facing actions convert these into failure results; the batch price
check converts them into per-product failure counts.
"""


class TrackerError(Exception):
    """Base class for every tracker error."""


class ValidationError(TrackerError):
    """Missing or malformed input."""


class AuthError(TrackerError):
    """No authenticated principal, or a credential mismatch."""


class ExtractionError(TrackerError):
    """A fetch yielded no usable product data."""


class StoreError(TrackerError):
    """Persistence-layer failure."""


class NotifyError(TrackerError):
    """Alert delivery failure (never fatal)."""
