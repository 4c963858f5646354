"""HTTP and WebSocket surface tests."""

import asyncio
import time

import pytest
import requests
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketState
from kafka.errors import NoBrokersAvailable

import api_server
import kafka_integration


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("TELLO_SIM_COMMAND_INTERVAL", "0")
    monkeypatch.delenv("TELLO_SIM_KAFKA_SERVERS", raising=False)
    with TestClient(api_server.app) as test_client:
        yield test_client


def wait_until_complete(client, drone_id, attempts=200):
    for _ in range(attempts):
        info = client.get(f"/info/{drone_id}").json()['info']
        if info['status'] == 'complete':
            return info
        time.sleep(0.01)
    raise AssertionError(f"{drone_id} did not finish its flight")


class TestDroneEndpoints:

    def test_discovery(self, client):
        response = client.get("/discovery")
        assert response.status_code == 200
        drones = response.json()['drones']
        assert [d['id'] for d in drones] == ["tello-1", "tello-2", "tello-3", "tello-4"]
        assert drones[0]['ip'] == "127.0.0.101"

    def test_connect_and_disconnect(self, client):
        response = client.post("/connect", json={"id": "tello-1"})
        assert response.json() == {"message": "Connected to tello-1"}

        response = client.post("/disconnect", json={"id": "tello-1"})
        assert response.json() == {"message": "Disconnected from tello-1"}

    def test_unknown_drone_is_404(self, client):
        response = client.post("/connect", json={"id": "tello-9"})
        assert response.status_code == 404
        assert response.json() == {"error": "Drone not found: tello-9"}

    def test_connect_twice_is_400(self, client):
        client.post("/connect", json={"id": "tello-1"})
        response = client.post("/connect", json={"id": "tello-1"})
        assert response.status_code == 400
        assert response.json() == {"error": "Already connected"}

    def test_info_requires_connection(self, client):
        response = client.get("/info/tello-2")
        assert response.status_code == 400
        assert response.json() == {"error": "Drone not connected: tello-2"}

    def test_flightpath_requires_connection(self, client):
        response = client.post("/flightpath", json={"id": "tello-3", "commands": {"path": ["takeoff"]}})
        assert response.status_code == 400

    def test_flight(self, client):
        client.post("/connect", json={"id": "tello-1"})
        response = client.post("/flightpath", json={
            "id": "tello-1",
            "commands": {
                "path": ["takeoff", "cw 90", "forward 100", "action survey"],
                "zones": {"survey": {"script": "up 20"}}
            }
        })
        assert response.json() == {"message": "Flight path sent to tello-1"}

        info = wait_until_complete(client, "tello-1")
        assert info['yaw'] == 90
        assert info['position']['x'] == pytest.approx(100.0)
        assert info['position']['z'] == 100
        assert info['commandQueue'] == []
        assert info['inFlight'] is False

    def test_flight_without_commands(self, client):
        client.post("/connect", json={"id": "tello-2"})
        client.post("/flightpath", json={"id": "tello-2"})
        info = wait_until_complete(client, "tello-2")
        assert info['position'] == {'x': 0.0, 'y': 0.0, 'z': 0.0}


class TestWebSocket:

    def test_greeting_then_status_stream(self, client):
        with client.websocket_connect("/ws") as websocket:
            assert websocket.receive_json() == {
                'type': 'info',
                'message': 'Connected to Tello Mock Server'
            }

            client.post("/connect", json={"id": "tello-1"})
            client.post("/flightpath", json={"id": "tello-1", "commands": {"path": ["takeoff"]}})

            first = websocket.receive_json()
            assert first['type'] == 'status'
            assert first['drone']['status'] == 'takeoff'
            assert first['drone']['position']['z'] == 80

            last = websocket.receive_json()
            assert last['drone']['status'] == 'complete'
            assert last['drone']['inFlight'] is False


class FakeResponse:
    def __init__(self, payload):
        self.payload = payload

    def raise_for_status(self):
        pass

    def json(self):
        return self.payload


class TestLocationMetadata:

    def test_elevation(self, client):
        assert client.get("/elevation", params={"lat": 1.0, "lon": 2.0}).json() == {"elevation": 35.0}

    def test_location(self, client, monkeypatch):
        calls = []

        def fake_get(url, timeout=None):
            calls.append(url)
            return FakeResponse({"ip": "8.8.8.8", "country": "United States"})

        monkeypatch.setattr(api_server.requests, "get", fake_get)
        response = client.get("/location", params={"ip": "8.8.8.8"})

        assert response.status_code == 200
        assert response.json() == {"location": {"ip": "8.8.8.8", "country": "United States"}}
        assert calls == ["https://ipwho.is/8.8.8.8"]

    def test_location_failure_is_502(self, client, monkeypatch):
        def fake_get(url, timeout=None):
            raise requests.ConnectionError("offline")

        monkeypatch.setattr(api_server.requests, "get", fake_get)
        response = client.get("/location")
        assert response.status_code == 502


class TestServiceEndpoints:

    def test_root_and_health(self, client):
        assert client.get("/").json()['engine'] == 'running'
        health = client.get("/health").json()
        assert health['status'] == 'healthy'

    def test_metrics(self, client):
        client.post("/connect", json={"id": "tello-4"})
        client.post("/flightpath", json={"id": "tello-4", "commands": {"path": ["takeoff"]}})
        wait_until_complete(client, "tello-4")

        data = client.get("/metrics").json()
        assert data['metrics']['gauges']['fleet_vehicles_connected'] == 1

        text = client.get("/metrics/prometheus").text
        assert 'flights_completed_total{vehicle="tello-4"} 1' in text

    def test_kafka_outage_does_not_block_startup(self, monkeypatch):
        def unavailable(**kwargs):
            raise NoBrokersAvailable()

        monkeypatch.setenv("TELLO_SIM_KAFKA_SERVERS", "nowhere:9092")
        monkeypatch.setattr(kafka_integration, "KafkaProducer", unavailable)

        with TestClient(api_server.app) as test_client:
            assert test_client.get("/health").status_code == 200
        assert api_server.kafka_producer is None


class BrokenSocket:
    """WebSocket double whose receive fails with a non-disconnect error."""

    client_state = WebSocketState.CONNECTED
    application_state = WebSocketState.CONNECTED

    def __init__(self):
        self.sent = []

    async def accept(self):
        pass

    async def send_json(self, message):
        self.sent.append(message)

    async def receive_text(self):
        raise RuntimeError("connection reset")


def websocket_subscribers():
    return [s for s in api_server.engine.publisher.subscribers
            if isinstance(s, api_server.WebSocketSubscriber)]


class TestWebSocketCleanup:

    def test_closed_client_is_unsubscribed(self, client):
        with client.websocket_connect("/ws") as websocket:
            websocket.receive_json()
            assert len(websocket_subscribers()) == 1

        for _ in range(200):
            if not websocket_subscribers():
                break
            time.sleep(0.01)
        assert websocket_subscribers() == []

    def test_receive_error_unsubscribes(self, client):
        socket = BrokenSocket()

        with pytest.raises(RuntimeError):
            asyncio.run(api_server.websocket_endpoint(socket))

        assert socket.sent == [{'type': 'info', 'message': 'Connected to Tello Mock Server'}]
        assert websocket_subscribers() == []
