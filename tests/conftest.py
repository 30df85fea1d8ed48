"""
Shared fixtures for the admin console tests.
"""

import pytest

from vcs_admin.models import ServerStatus


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def status_payload():
    """Status snapshot as sent by the server."""
    return {
        "http": {"IsRunning": True, "Error": ""},
        "voice": {"IsRunning": True, "Error": ""},
        "control": {"IsRunning": False, "Error": "bind: address in use"},
    }


@pytest.fixture
def settings_payload():
    return {
        "General": {"MaxRadiosPerUser": 4},
        "Servers": {
            "HTTP": {"Host": "0.0.0.0", "Port": 80},
            "Voice": {"Host": "0.0.0.0", "Port": 5002},
            "Control": {"Host": "127.0.0.1", "Port": 5003},
        },
        "Frequencies": {
            "GlobalFrequencies": [243.0, 121.5],
            "TestFrequencies": [100.0],
        },
    }


@pytest.fixture
def roster_payload():
    return {
        "c-1": {"Name": "Viper", "UnitId": 11, "Coalition": "Blue"},
        "c-2": {"Name": "Cobra", "UnitId": 12, "Coalition": "Red"},
    }


@pytest.fixture
def coalitions_payload():
    return [
        {"Name": "Blue", "Description": "NATO", "Color": "#0000ff", "Password": "blue"},
        {"Name": "Red", "Description": "OPFOR", "Color": "#ff0000", "Password": "red"},
    ]


@pytest.fixture
def bans_payload():
    return [{"id": "c-9", "name": "Griefer", "ip_address": "10.0.0.9", "reason": "team killing"}]


@pytest.fixture
def running_status(status_payload):
    return ServerStatus.model_validate(status_payload)


@pytest.fixture
def stopped_status():
    return ServerStatus.model_validate(
        {
            "http": {"IsRunning": False},
            "voice": {"IsRunning": False},
            "control": {"IsRunning": False},
        }
    )
