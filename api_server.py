# FastAPI Web Server for the Tello Fleet Simulator
# File: api_server.py

"""
Run with: uvicorn api_server:app --reload --port 3000
"""

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field
from starlette.websockets import WebSocketState
from typing import Any, Dict, List, Optional
from datetime import datetime
import logging

import requests
from kafka.errors import KafkaError

from drone_simulator import (
    InvalidStateError,
    SimulatorConfig,
    SimulatorEngine,
    StatusSubscriber,
    VehicleNotFoundError,
)
from kafka_integration import KafkaStatusProducer, KafkaStatusSubscriber
from monitoring import FlightMetrics

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Tello Mock Server",
    description="Simulated Tello fleet with live status streaming",
    version="2.0.0"
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialized on startup
engine: Optional[SimulatorEngine] = None
metrics: Optional[FlightMetrics] = None
kafka_producer: Optional[KafkaStatusProducer] = None

# WebSocket connection manager
class WebSocketSubscriber(StatusSubscriber):
    """Status subscriber backed by one WebSocket"""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    def is_ready(self) -> bool:
        return (self.websocket.client_state == WebSocketState.CONNECTED and
                self.websocket.application_state == WebSocketState.CONNECTED)

    async def send(self, message: Dict[str, Any]):
        await self.websocket.send_json(message)


class ConnectionManager:
    """Binds WebSocket clients to the engine's publisher"""

    async def connect(self, websocket: WebSocket) -> WebSocketSubscriber:
        await websocket.accept()
        subscriber = WebSocketSubscriber(websocket)
        await engine.publisher.connect(subscriber)
        return subscriber

    def disconnect(self, subscriber: WebSocketSubscriber):
        engine.publisher.disconnect(subscriber)

manager = ConnectionManager()

# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class DroneRequest(BaseModel):
    id: str

class FlightPathCommands(BaseModel):
    path: List[str] = Field(default_factory=list)
    zones: Dict[str, Any] = Field(default_factory=dict)

class FlightPathRequest(BaseModel):
    id: str
    commands: FlightPathCommands = Field(default_factory=FlightPathCommands)

# ============================================================================
# LIFECYCLE EVENTS
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Create the engine and seed the static roster"""
    global engine, metrics, kafka_producer

    config = SimulatorConfig.from_env()

    engine = SimulatorEngine(config)
    engine.start()

    metrics = FlightMetrics(engine)
    metrics.attach()

    if config.kafka_bootstrap_servers:
        try:
            kafka_producer = KafkaStatusProducer(config.kafka_bootstrap_servers)
            engine.publisher.add_subscriber(KafkaStatusSubscriber(kafka_producer))
            kafka_producer.publish_simulator_event('started', engine.get_status())
        except KafkaError as e:
            logger.error(f"Kafka forwarding disabled: {e}")
            kafka_producer = None

    logger.info("Tello Mock Server started")

@app.on_event("shutdown")
async def shutdown_event():
    global kafka_producer

    if engine:
        await engine.stop()
    if kafka_producer:
        kafka_producer.flush(timeout=5)
        kafka_producer.close()
        kafka_producer = None
    logger.info("Tello Mock Server stopped")

# ============================================================================
# ERROR MAPPING
# ============================================================================

@app.exception_handler(VehicleNotFoundError)
async def vehicle_not_found_handler(request: Request, exc: VehicleNotFoundError):
    logger.warning(f"{request.url.path}: {exc}")
    return JSONResponse(status_code=404, content={"error": str(exc)})

@app.exception_handler(InvalidStateError)
async def invalid_state_handler(request: Request, exc: InvalidStateError):
    logger.warning(f"{request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"error": str(exc)})

# ============================================================================
# DRONE ENDPOINTS
# ============================================================================

@app.get("/discovery")
async def discovery():
    """List available drones"""
    return {"drones": engine.list_vehicles()}

@app.post("/connect")
async def connect_drone(request: DroneRequest):
    engine.connect(request.id)
    return {"message": f"Connected to {request.id}"}

@app.post("/disconnect")
async def disconnect_drone(request: DroneRequest):
    engine.disconnect(request.id)
    return {"message": f"Disconnected from {request.id}"}

@app.get("/info/{drone_id}")
async def drone_info(drone_id: str):
    """Full state of a connected drone"""
    vehicle = engine.get_vehicle_info(drone_id)
    return {"info": vehicle.to_dict()}

@app.post("/flightpath")
async def send_flight_path(request: FlightPathRequest):
    """Replace zone scripts and start executing the path"""
    engine.submit_flight_path(
        request.id,
        request.commands.path,
        request.commands.zones
    )
    return {"message": f"Flight path sent to {request.id}"}

# ============================================================================
# LOCATION METADATA
# ============================================================================

@app.get("/elevation")
async def elevation(lat: Optional[float] = None, lon: Optional[float] = None):
    """Ground elevation; the simulator serves a fixed value"""
    return {"elevation": engine.config.elevation}

@app.get("/location")
def location(ip: Optional[str] = None):
    """Geolocate an IP (or the caller) via ipwho.is"""
    url = engine.config.location_url + (f"/{ip}" if ip else "")

    try:
        response = requests.get(url, timeout=engine.config.location_timeout)
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Location lookup failed for {url}: {e}")
        raise HTTPException(status_code=502, detail="Location lookup failed")

    return {"location": data}

# ============================================================================
# METRICS ENDPOINTS
# ============================================================================

@app.get("/metrics")
async def metrics_dashboard():
    return metrics.get_dashboard_data()

@app.get("/metrics/prometheus", response_class=PlainTextResponse)
async def metrics_prometheus():
    return metrics.export_prometheus()

# ============================================================================
# WEBSOCKET ENDPOINT
# ============================================================================

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Live status stream: greeting, then every drone's notifications"""
    subscriber = await manager.connect(websocket)

    try:
        while True:
            # Inbound messages are ignored; the loop detects disconnects
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("WebSocket client disconnected")
    finally:
        manager.disconnect(subscriber)

# ============================================================================
# HEALTH CHECK
# ============================================================================

@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "name": "Tello Mock Server",
        "version": "2.0.0",
        "status": "operational",
        "engine": engine.status if engine else "not_initialized",
        "docs": "/docs"
    }

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "engine": engine.status if engine else "not_initialized",
        "timestamp": datetime.now().isoformat()
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=3000)
