"""Pytest fixtures for the checkout tests."""

from typing import Dict, List

import pytest

from src.checkout.timers import RecurringTimer
from src.integrations.clients.mocks.applications import MockApplicationsClient
from src.integrations.clients.mocks.mpesa import MpesaMockClient
from src.integrations.contracts.interfaces import Application, ApplicationStatus


class ManualTimer(RecurringTimer):
    """Timer that only fires when a test tells it to."""

    def __init__(self, interval, callback, name):
        self.interval = interval
        self.name = name
        self._callback = callback
        self.started = False
        self.cancelled = False
        self.fires = 0

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    @property
    def active(self):
        return self.started and not self.cancelled

    async def fire(self, force=False):
        """Run the callback once. `force` simulates a callback that was already queued when the timer stopped."""
        if not self.active and not force:
            return False
        self.fires += 1
        await self._callback()
        return True


class ManualTimerFactory:
    def __init__(self):
        self.timers: List[ManualTimer] = []
        self.latest: Dict[str, ManualTimer] = {}

    def __call__(self, interval, callback, name):
        timer = ManualTimer(interval, callback, name)
        self.timers.append(timer)
        self.latest[name] = timer
        return timer

    def __getitem__(self, name):
        return self.latest[name]

    async def fire(self, name, times=1, force=False):
        for _ in range(times):
            await self.latest[name].fire(force=force)


@pytest.fixture
def timers():
    return ManualTimerFactory()


@pytest.fixture
def applications():
    return MockApplicationsClient()


@pytest.fixture
def payments():
    """Settles on the second poll with receipt QAX123."""
    return MpesaMockClient(status_script=["pending", "completed"], receipt_number="QAX123")


@pytest.fixture
def form_snapshot():
    return {
        "firstName": "Jane",
        "lastName": "Wanjiku",
        "mobileNumber": "0712345678",
        "emailAddress": "jane@example.com",
        "insuranceType": "travel",
        "destination": "Tanzania",
        "travelPurpose": "",
        "selectedPlan": {"id": "plan-gold", "name": "Gold"},
        "premiumAmount": 48000,
        "currentStep": 5,
    }


@pytest.fixture
def draft_application():
    return Application(
        application_id="app-1",
        application_number="APP-202601-00001",
        status=ApplicationStatus.PENDING_PAYMENT,
        premium_amount=48000,
        first_name="Jane",
        last_name="Wanjiku",
    )
