"""Shared fixtures: a manually advanced time source and a manual-mode controller."""

import pytest

from temporal.core.controller import TemporalController


class FakeTime:
    """Wall-clock stand-in that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def controller(fake_time):
    """Controller without a scheduler thread; tests drive it with run_pending()."""
    ctrl = TemporalController(time_source=fake_time, autostart=False)
    yield ctrl
    ctrl.close()
