"""Shared fixtures for simulator tests."""

import asyncio

import pytest

from drone_simulator import CallbackSubscriber, SimulatorConfig, SimulatorEngine


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested durations."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def config():
    return SimulatorConfig()


@pytest.fixture
def engine(config, sleep):
    sim = SimulatorEngine(config, sleep=sleep)
    sim.start()
    return sim


@pytest.fixture
def notifications(engine):
    """Status messages broadcast by the engine, in order."""
    received = []
    engine.publisher.add_subscriber(CallbackSubscriber(received.append))
    return received


def fly(engine, vehicle_id, path, zones=None, connect=True):
    """Run one flight path to completion on a fresh event loop."""

    async def scenario():
        if connect and not engine.vehicles.require(vehicle_id).connected:
            engine.connect(vehicle_id)
        engine.submit_flight_path(vehicle_id, path, zones)
        return await engine.wait_for_flight(vehicle_id)

    return asyncio.run(scenario())


@pytest.fixture
def run_flight(engine):
    def _run(vehicle_id, path, zones=None, connect=True):
        return fly(engine, vehicle_id, path, zones=zones, connect=connect)
    return _run
