"""
Client-side session tracker and its user-agent classifiers.
"""

from analytics_api.tracker.session import (  # noqa: F401
    ClientContext,
    ConsentStatus,
    MemoryStorage,
    SessionTracker,
    StoredConsent,
)
from analytics_api.tracker.transport import BeaconTransport  # noqa: F401
