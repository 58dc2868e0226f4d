"""External service integrations for the consultdesk backend."""

from .meeting_providers import (
    FakeMeetingProvider,
    GoogleMeetProvider,
    MeetingCredential,
    MeetingDetails,
    MeetingErrorKind,
    MeetingLink,
    MeetingProviderError,
    TeamsProvider,
    ZoomProvider,
)
from .razorpay_client import FakeRazorpayClient, RazorpayClient, RazorpayError

__all__ = [
    "FakeMeetingProvider",
    "FakeRazorpayClient",
    "GoogleMeetProvider",
    "MeetingCredential",
    "MeetingDetails",
    "MeetingErrorKind",
    "MeetingLink",
    "MeetingProviderError",
    "RazorpayClient",
    "RazorpayError",
    "TeamsProvider",
    "ZoomProvider",
]
