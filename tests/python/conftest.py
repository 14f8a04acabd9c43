"""Pytest configuration and fixtures."""

import os
import sys
import pytest

# Add python directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../python'))

from skillswap_rtc.core import (
    BookingStatus,
    CallSession,
    InMemoryBookingStore,
    SessionLifecycleBridge,
    SignalingMailbox,
)

TEST_SECRET = 'test-secret-key-for-signaling-tests-0123'


def pytest_configure(config):
    """Configure pytest."""
    os.environ['SKILLSWAP_LOG_LEVEL'] = 'WARNING'
    # Register asyncio marker
    config.addinivalue_line("markers", "asyncio: mark test as async")


@pytest.fixture
def bookings():
    """Booking store with an accepted session S1 and a pending session S2 (T teaches L)."""
    store = InMemoryBookingStore()
    store.add(CallSession(id='S1', teacher_id='T', learner_id='L', status=BookingStatus.ACCEPTED))
    store.add(CallSession(id='S2', teacher_id='T', learner_id='L', status=BookingStatus.PENDING))
    return store


@pytest.fixture
def lifecycle(bookings):
    """Lifecycle bridge listening to the booking store."""
    bridge = SessionLifecycleBridge(bookings)
    bookings.add_listener(bridge.on_status_changed)
    return bridge


@pytest.fixture
def mailbox(lifecycle):
    """Mailbox gated by the lifecycle bridge."""
    return SignalingMailbox(lifecycle)


@pytest.fixture
def offer():
    return {'type': 'offer', 'sdp': 'v=0 offer-A'}


@pytest.fixture
def answer():
    return {'type': 'answer', 'sdp': 'v=0 answer-B'}


@pytest.fixture
def auth():
    """Caller token issuer/verifier with a test secret."""
    from skillswap_rtc.api import CallerAuth
    return CallerAuth(TEST_SECRET)
