# Tello Fleet Simulator - Command Interpreter & Flight Engine
# File: drone_simulator.py

"""
Simulated Tello fleet: per-drone command queues, yaw-relative motion,
zone action scripts and live status notifications.

Run a local flight:
    python drone_simulator.py fly tello-1 takeoff "cw 90" "forward 100" land
"""

import asyncio
import inspect
import logging
import math
import os
import re
import shlex
import sys
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ============================================================================
# PART 1: CONFIGURATION
# ============================================================================

@dataclass
class SimulatorConfig:
    """Runtime settings for the simulated fleet"""
    drone_count: int = 4
    id_prefix: str = "tello-"
    ip_base: str = "127.0.0."
    ip_offset: int = 100
    drone_range: int = 4500
    battery: float = 100.0
    command_interval: float = 0.5  # seconds between queued commands
    default_wait_ms: int = 1000
    takeoff_altitude: int = 80
    return_speed: int = 50
    elevation: float = 35.0
    location_url: str = "https://ipwho.is"
    location_timeout: float = 5.0
    delivery_timeout: float = 0.5  # seconds per subscriber send
    kafka_bootstrap_servers: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> 'SimulatorConfig':
        """Build config from TELLO_SIM_* environment variables"""
        defaults = cls()
        env = os.environ

        servers = env.get('TELLO_SIM_KAFKA_SERVERS', '')

        return cls(
            drone_count=int(env.get('TELLO_SIM_DRONE_COUNT', defaults.drone_count)),
            id_prefix=env.get('TELLO_SIM_ID_PREFIX', defaults.id_prefix),
            ip_base=env.get('TELLO_SIM_IP_BASE', defaults.ip_base),
            ip_offset=int(env.get('TELLO_SIM_IP_OFFSET', defaults.ip_offset)),
            drone_range=int(env.get('TELLO_SIM_RANGE', defaults.drone_range)),
            battery=float(env.get('TELLO_SIM_BATTERY', defaults.battery)),
            command_interval=float(env.get('TELLO_SIM_COMMAND_INTERVAL', defaults.command_interval)),
            default_wait_ms=int(env.get('TELLO_SIM_DEFAULT_WAIT_MS', defaults.default_wait_ms)),
            takeoff_altitude=int(env.get('TELLO_SIM_TAKEOFF_ALTITUDE', defaults.takeoff_altitude)),
            return_speed=int(env.get('TELLO_SIM_RETURN_SPEED', defaults.return_speed)),
            elevation=float(env.get('TELLO_SIM_ELEVATION', defaults.elevation)),
            location_url=env.get('TELLO_SIM_LOCATION_URL', defaults.location_url),
            location_timeout=float(env.get('TELLO_SIM_LOCATION_TIMEOUT', defaults.location_timeout)),
            delivery_timeout=float(env.get('TELLO_SIM_DELIVERY_TIMEOUT', defaults.delivery_timeout)),
            kafka_bootstrap_servers=[s.strip() for s in servers.split(',') if s.strip()]
        )

# ============================================================================
# PART 2: ERRORS
# ============================================================================

class SimulatorError(Exception):
    """Base class for rejected fleet operations"""


class VehicleNotFoundError(SimulatorError):
    """Referenced drone id is not in the store"""

    def __init__(self, vehicle_id: str):
        super().__init__(f"Drone not found: {vehicle_id}")
        self.vehicle_id = vehicle_id


class InvalidStateError(SimulatorError):
    """Drone is not in the state the operation requires"""

    def __init__(self, vehicle_id: str, reason: str):
        super().__init__(reason)
        self.vehicle_id = vehicle_id
        self.reason = reason

# ============================================================================
# PART 3: CORE DATA MODELS
# ============================================================================

class CommandType(str, Enum):
    TAKEOFF = "takeoff"
    LAND = "land"
    CW = "cw"
    CCW = "ccw"
    FORWARD = "forward"
    BACK = "back"
    LEFT = "left"
    RIGHT = "right"
    UP = "up"
    DOWN = "down"
    GO = "go"
    CURVE = "curve"
    STREAMON = "streamon"
    STREAMOFF = "streamoff"
    RECORD = "record"
    CLEAR = "clear"
    RESET_DIR = "reset-dir"
    ACTION = "action"
    WAIT = "wait"
    UNKNOWN = "unknown"


DIRECTIONS = (
    CommandType.FORWARD,
    CommandType.BACK,
    CommandType.LEFT,
    CommandType.RIGHT,
    CommandType.UP,
    CommandType.DOWN,
)


def _json_number(value: float) -> Optional[float]:
    # NaN/Infinity have no JSON form; observers see null
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


@dataclass
class Position:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def copy(self) -> 'Position':
        return Position(self.x, self.y, self.z)

    def to_dict(self) -> Dict[str, Optional[float]]:
        return {
            'x': _json_number(self.x),
            'y': _json_number(self.y),
            'z': _json_number(self.z)
        }


@dataclass
class Vehicle:
    id: str
    ip: str = ""
    radio_range: int = 4500
    connected: bool = False
    stream_enabled: bool = False
    in_flight: bool = False
    battery: float = 100.0
    yaw: int = 0  # degrees, [0, 360)
    position: Position = field(default_factory=Position)
    status: str = "idle"
    command_queue: List[str] = field(default_factory=list)

    def snapshot(self) -> Dict[str, Any]:
        """Status notification payload"""
        return {
            'id': self.id,
            'connected': self.connected,
            'status': self.status,
            'battery': self.battery,
            'position': self.position.to_dict(),
            'yaw': _json_number(self.yaw),
            'inFlight': self.in_flight
        }

    def to_dict(self) -> Dict[str, Any]:
        """Full drone record as served by /info"""
        return {
            'id': self.id,
            'ip': self.ip,
            'connected': self.connected,
            'streamon': self.stream_enabled,
            'inFlight': self.in_flight,
            'range': self.radio_range,
            'battery': self.battery,
            'yaw': _json_number(self.yaw),
            'position': self.position.to_dict(),
            'status': self.status,
            'commandQueue': list(self.command_queue)
        }

    def discovery_entry(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'ip': self.ip,
            'range': self.radio_range,
            'streamon': self.stream_enabled,
            'connected': self.connected,
            'status': self.status
        }


@dataclass
class Command:
    """One parsed queue entry"""
    type: CommandType
    raw: str
    operator: str = ""
    operands: List[float] = field(default_factory=list)
    zone: Optional[str] = None


@dataclass
class FlightRun:
    """Executor-local state for one drain of a drone's queue"""
    vehicle_id: str
    zone: str = ""
    steps: int = 0
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None

    @property
    def duration(self) -> float:
        end = self.finished_at if self.finished_at is not None else time.monotonic()
        return end - self.started_at


@dataclass
class StepResult:
    command: Command
    suspend_for: Optional[float] = None  # seconds

# ============================================================================
# PART 4: COMMAND PARSING
# ============================================================================

_INT_PREFIX = re.compile(r'^\s*([+-]?\d+)')


def parse_int(token: Optional[str]) -> float:
    """Leading integer prefix of token ("90deg" -> 90), NaN if there is none"""
    if token is None:
        return math.nan
    match = _INT_PREFIX.match(token)
    if not match:
        return math.nan
    value = int(match.group(1))
    # Too large for a float: saturate like a JS Number would
    if abs(value) > sys.float_info.max:
        return math.inf if value > 0 else -math.inf
    return value


def parse_number(token: str) -> float:
    try:
        return float(token)
    except ValueError:
        return math.nan


def parse_command(raw: str) -> Command:
    """
    Decode a queued command string into a typed Command

    Unknown operators become CommandType.UNKNOWN. Operands that fail to
    parse are carried as NaN; go/curve with too few operands carry none.
    """
    parts = raw.split()
    operator = parts[0] if parts else ""

    try:
        command_type = CommandType(operator)
    except ValueError:
        command_type = CommandType.UNKNOWN

    command = Command(type=command_type, raw=raw, operator=operator)

    if command_type in (CommandType.CW, CommandType.CCW, CommandType.WAIT,
                        CommandType.RECORD) or command_type in DIRECTIONS:
        command.operands = [parse_int(parts[1] if len(parts) > 1 else None)]
    elif command_type == CommandType.GO:
        if len(parts) >= 5:
            command.operands = [parse_number(p) for p in parts[1:5]]
    elif command_type == CommandType.CURVE:
        if len(parts) >= 8:
            command.operands = [parse_number(p) for p in parts[1:8]]
    elif command_type == CommandType.ACTION:
        command.zone = parts[1] if len(parts) > 1 else None

    return command

# ============================================================================
# PART 5: COORDINATE / YAW TRANSFORM
# ============================================================================

def move_relative(position: Position, yaw: float, direction: CommandType,
                  distance: float) -> None:
    """
    Apply a body-relative move to position in place

    yaw 0 faces north (+y); x is the east component.
    """
    radians = yaw * (math.pi / 180)
    dx = math.sin(radians) * distance  # east
    dy = math.cos(radians) * distance  # north

    if direction == CommandType.FORWARD:
        position.x += dx
        position.y += dy
    elif direction == CommandType.BACK:
        position.x -= dx
        position.y -= dy
    elif direction == CommandType.LEFT:
        position.x -= dy
        position.y += dx
    elif direction == CommandType.RIGHT:
        position.x += dy
        position.y -= dx
    elif direction == CommandType.UP:
        position.z += distance
    elif direction == CommandType.DOWN:
        position.z -= distance

# ============================================================================
# PART 6: ZONE ACTION SCRIPTS
# ============================================================================

def normalize_zone_script(value: Any) -> List[str]:
    """
    Normalize a submitted zone definition to a list of commands

    Accepts {"script": ...}, a newline-delimited string or a list.
    Anything else is an empty script.
    """
    if isinstance(value, dict):
        value = value.get('script')

    if isinstance(value, str):
        return value.split('\n')
    if isinstance(value, (list, tuple)):
        return [str(cmd) for cmd in value]
    return []


class ZoneScriptStore:
    """Zone scripts keyed by (drone id, zone name)"""

    def __init__(self):
        self.scripts: Dict[str, Dict[str, List[str]]] = {}

    def replace(self, vehicle_id: str, zones: Optional[Dict[str, Any]]):
        """Replace every zone script of a drone"""
        self.scripts[vehicle_id] = {
            name: normalize_zone_script(value)
            for name, value in (zones or {}).items()
        }
        logger.debug(f"Zone scripts for {vehicle_id}: {list(self.scripts[vehicle_id])}")

    def get(self, vehicle_id: str, zone: str) -> Optional[List[str]]:
        return self.scripts.get(vehicle_id, {}).get(zone)

    def zones_for(self, vehicle_id: str) -> Dict[str, List[str]]:
        return dict(self.scripts.get(vehicle_id, {}))


def _return_offset(current: float, saved: float) -> str:
    delta = current - saved
    if not math.isfinite(delta):
        return str(delta)
    return str(-math.floor(delta + 0.5))


class ZoneActionExpander:
    """Splices a zone script plus a return leg into the front of the queue"""

    def __init__(self, scripts: ZoneScriptStore, return_speed: int = 50):
        self.scripts = scripts
        self.return_speed = return_speed

    def expand(self, vehicle: Vehicle, zone: Optional[str], run: FlightRun) -> bool:
        """
        Inject the zone script for `zone` ahead of the remaining queue

        Args:
            vehicle: Drone whose queue is modified
            zone: Zone name from the action command
            run: Active flight run, records the zone for `record`

        Returns:
            True if a script is registered for the zone
        """
        if zone is None:
            return False

        script = self.scripts.get(vehicle.id, zone)
        if script is None:
            logger.debug(f"{vehicle.id}: no script for zone '{zone}'")
            return False

        run.zone = zone

        if not script:
            return True

        saved_position = vehicle.position.copy()
        saved_yaw = vehicle.yaw

        # Return leg is measured before the script runs: translation is always 0
        dx = _return_offset(vehicle.position.x, saved_position.x)
        dy = _return_offset(vehicle.position.y, saved_position.y)
        dz = _return_offset(vehicle.position.z, saved_position.z)
        yaw_diff = (360 - saved_yaw) % 360

        return_script = [
            f"go {dx} {dy} {dz} {self.return_speed}",
            f"ccw {yaw_diff}"
        ]

        vehicle.command_queue[:0] = list(script) + return_script

        logger.info(f"{vehicle.id}: zone '{zone}' injected ({len(script)} commands)")
        return True

# ============================================================================
# PART 7: COMMAND INTERPRETER
# ============================================================================

class CommandInterpreter:
    """Applies one command string to one drone"""

    def __init__(self, zone_expander: ZoneActionExpander, config: SimulatorConfig):
        self.zone_expander = zone_expander
        self.config = config
        self.handlers: Dict[CommandType, Callable] = {
            CommandType.TAKEOFF: self._takeoff,
            CommandType.LAND: self._land,
            CommandType.CW: self._rotate,
            CommandType.CCW: self._rotate,
            CommandType.GO: self._go,
            CommandType.CURVE: self._curve,
            CommandType.STREAMON: self._streamon,
            CommandType.STREAMOFF: self._streamoff,
            CommandType.RECORD: self._record,
            CommandType.CLEAR: self._clear,
            CommandType.RESET_DIR: self._reset_dir,
            CommandType.ACTION: self._action,
            CommandType.WAIT: self._wait,
        }
        for direction in DIRECTIONS:
            self.handlers[direction] = self._move

    def execute(self, vehicle: Vehicle, raw: str, run: FlightRun) -> StepResult:
        """
        Apply `raw` to `vehicle`

        The status label is set before the effect, so commands that set
        their own phase (takeoff, land) override it.
        """
        vehicle.status = f"executing: {raw}"
        command = parse_command(raw)

        handler = self.handlers.get(command.type)
        if handler is None:
            logger.debug(f"{vehicle.id}: ignoring '{raw}'")
            return StepResult(command)

        suspend_for = handler(vehicle, command, run)
        return StepResult(command, suspend_for)

    def _takeoff(self, vehicle, command, run):
        vehicle.position.z = self.config.takeoff_altitude
        vehicle.status = 'takeoff'

    def _land(self, vehicle, command, run):
        vehicle.position.z = 0
        vehicle.status = 'landed'

    def _rotate(self, vehicle, command, run):
        angle = command.operands[0]
        if not math.isfinite(angle):
            logger.debug(f"{vehicle.id}: unparseable angle in '{command.raw}'")
            return

        if command.type == CommandType.CW:
            vehicle.yaw = (vehicle.yaw + angle) % 360
        else:
            vehicle.yaw = (vehicle.yaw - angle + 360) % 360

    def _move(self, vehicle, command, run):
        move_relative(vehicle.position, vehicle.yaw, command.type, command.operands[0])

    def _go(self, vehicle, command, run):
        if not command.operands:
            return
        x, y, z, _speed = command.operands
        vehicle.position.x += x
        vehicle.position.y += y
        vehicle.position.z += z

    def _curve(self, vehicle, command, run):
        # Only the end point is simulated
        if not command.operands:
            return
        _x1, _y1, _z1, x2, y2, z2, _speed = command.operands
        vehicle.position.x += x2
        vehicle.position.y += y2
        vehicle.position.z += z2

    def _streamon(self, vehicle, command, run):
        vehicle.stream_enabled = True

    def _streamoff(self, vehicle, command, run):
        vehicle.stream_enabled = False

    def _record(self, vehicle, command, run):
        if not vehicle.stream_enabled:
            return
        seconds = command.operands[0]
        logger.info(f"{vehicle.id}: record {seconds}s (zone '{run.zone}')")

    def _clear(self, vehicle, command, run):
        vehicle.command_queue.clear()

    def _reset_dir(self, vehicle, command, run):
        if vehicle.yaw > 0:
            vehicle.command_queue.insert(0, f"ccw {vehicle.yaw}")

    def _action(self, vehicle, command, run):
        self.zone_expander.expand(vehicle, command.zone, run)

    def _wait(self, vehicle, command, run) -> float:
        duration = command.operands[0]
        if not duration or not math.isfinite(duration):
            duration = self.config.default_wait_ms
        return max(duration, 0) / 1000.0

# ============================================================================
# PART 8: NOTIFICATION PUBLISHER
# ============================================================================

class StatusSubscriber:
    """Receiver of status notifications"""

    def is_ready(self) -> bool:
        return True

    async def send(self, message: Dict[str, Any]):
        raise NotImplementedError


class CallbackSubscriber(StatusSubscriber):
    """Wraps a plain or async callable"""

    def __init__(self, callback: Callable):
        self.callback = callback

    async def send(self, message: Dict[str, Any]):
        if inspect.iscoroutinefunction(self.callback):
            await self.callback(message)
        else:
            self.callback(message)


class NotificationPublisher:
    """Fan-out of drone snapshots to every subscriber"""

    GREETING = {'type': 'info', 'message': 'Connected to Tello Mock Server'}

    def __init__(self, delivery_timeout: float = 0.5):
        self.subscribers: List[StatusSubscriber] = []
        self.delivery_timeout = delivery_timeout
        self.delivered = 0
        self.skipped = 0

    def add_subscriber(self, subscriber: StatusSubscriber):
        self.subscribers.append(subscriber)

    async def connect(self, subscriber: StatusSubscriber):
        """Register an observer and greet it; no history is replayed"""
        self.add_subscriber(subscriber)
        await self._deliver(subscriber, dict(self.GREETING))
        logger.info(f"Subscriber connected ({len(self.subscribers)} total)")

    def disconnect(self, subscriber: StatusSubscriber):
        if subscriber in self.subscribers:
            self.subscribers.remove(subscriber)
            logger.info(f"Subscriber disconnected ({len(self.subscribers)} total)")

    async def broadcast(self, vehicle: Vehicle) -> int:
        """Send the drone's current snapshot to all ready subscribers"""
        return await self.publish({'type': 'status', 'drone': vehicle.snapshot()})

    async def publish(self, message: Dict[str, Any]) -> int:
        """Deliver to every subscriber concurrently; returns the delivered count"""
        results = await asyncio.gather(
            *(self._deliver(subscriber, message) for subscriber in list(self.subscribers))
        )
        return sum(1 for ok in results if ok)

    async def _deliver(self, subscriber: StatusSubscriber, message: Dict[str, Any]) -> bool:
        if not subscriber.is_ready():
            self.skipped += 1
            return False
        try:
            await asyncio.wait_for(subscriber.send(message), self.delivery_timeout)
        except asyncio.TimeoutError:
            logger.debug(f"Delivery timed out after {self.delivery_timeout}s, skipping subscriber")
            self.skipped += 1
            return False
        except Exception as e:
            # Best effort: a failed delivery is dropped, never retried
            logger.debug(f"Delivery failed, skipping subscriber: {e}")
            self.skipped += 1
            return False
        self.delivered += 1
        return True

# ============================================================================
# PART 9: FLIGHT EXECUTOR
# ============================================================================

class FlightExecutor:
    """Drains one drone's command queue, one command at a time"""

    def __init__(self, interpreter: CommandInterpreter, publisher: NotificationPublisher,
                 config: SimulatorConfig, sleep: Callable = asyncio.sleep):
        self.interpreter = interpreter
        self.publisher = publisher
        self.config = config
        self.sleep = sleep
        self.handlers: Dict[str, List[Callable]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: Callable):
        """Subscribe to 'step' (vehicle, command, run) or 'complete' (vehicle, run)"""
        self.handlers[event_type].append(handler)

    def _emit(self, event_type: str, *args):
        for handler in self.handlers.get(event_type, []):
            try:
                handler(*args)
            except Exception as e:
                logger.error(f"Executor {event_type} handler error: {e}")

    async def run(self, vehicle: Vehicle) -> FlightRun:
        """
        Execute the queue until it is empty

        The queue attribute is re-read every step, so a newer submission
        that replaces it is picked up by this same loop.
        """
        run = FlightRun(vehicle_id=vehicle.id)
        logger.info(f"{vehicle.id}: flight started ({len(vehicle.command_queue)} commands)")

        try:
            while vehicle.command_queue:
                raw = vehicle.command_queue.pop(0)
                try:
                    result = self.interpreter.execute(vehicle, raw, run)
                except Exception as e:
                    # A failing command degrades this step only
                    logger.error(f"{vehicle.id}: command '{raw}' failed: {e}")
                    result = StepResult(Command(type=CommandType.UNKNOWN, raw=raw))
                run.steps += 1
                logger.debug(f"{vehicle.id}: {vehicle.status}")
                self._emit('step', vehicle, result.command, run)

                if result.suspend_for is not None:
                    await self.sleep(result.suspend_for)
                    await self.publisher.broadcast(vehicle)
                    continue

                await self.publisher.broadcast(vehicle)
                await self.sleep(self.config.command_interval)
        finally:
            vehicle.command_queue.clear()
            vehicle.in_flight = False
            vehicle.status = 'complete'
            run.finished_at = time.monotonic()

        self._emit('complete', vehicle, run)

        await self.publisher.broadcast(vehicle)
        logger.info(f"{vehicle.id}: flight complete after {run.steps} steps")
        return run

# ============================================================================
# PART 10: VEHICLE STORE
# ============================================================================

class VehicleFactory:
    """Builds simulated drones"""

    @staticmethod
    def create_vehicle(vehicle_id: str, ip: str, config: SimulatorConfig) -> Vehicle:
        return Vehicle(
            id=vehicle_id,
            ip=ip,
            radio_range=config.drone_range,
            battery=config.battery
        )

    @staticmethod
    def create_roster(config: SimulatorConfig) -> List[Vehicle]:
        """Static roster: tello-1 at 127.0.0.101, tello-2 at .102, ..."""
        return [
            VehicleFactory.create_vehicle(
                f"{config.id_prefix}{i}",
                f"{config.ip_base}{config.ip_offset + i}",
                config
            )
            for i in range(1, config.drone_count + 1)
        ]


class VehicleStore:
    """Owns every drone's mutable simulation state"""

    def __init__(self):
        self.vehicles: Dict[str, Vehicle] = {}

    def register_vehicle(self, vehicle: Vehicle) -> bool:
        if vehicle.id in self.vehicles:
            return False
        self.vehicles[vehicle.id] = vehicle
        logger.info(f"Drone registered: {vehicle.id} ({vehicle.ip})")
        return True

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        return self.vehicles.get(vehicle_id)

    def require(self, vehicle_id: str) -> Vehicle:
        vehicle = self.vehicles.get(vehicle_id)
        if vehicle is None:
            raise VehicleNotFoundError(vehicle_id)
        return vehicle

    def require_connected(self, vehicle_id: str) -> Vehicle:
        vehicle = self.require(vehicle_id)
        if not vehicle.connected:
            raise InvalidStateError(vehicle_id, f"Drone not connected: {vehicle_id}")
        return vehicle

    def get_all_vehicles(self) -> List[Vehicle]:
        return list(self.vehicles.values())

# ============================================================================
# PART 11: SIMULATOR ENGINE
# ============================================================================

class SimulatorEngine:
    """Owns the stores and runs one flight task per drone"""

    def __init__(self, config: Optional[SimulatorConfig] = None,
                 sleep: Callable = asyncio.sleep):
        self.config = config or SimulatorConfig()
        self.status = "stopped"
        self.start_time = None

        self.vehicles = VehicleStore()
        self.zone_scripts = ZoneScriptStore()
        self.publisher = NotificationPublisher(self.config.delivery_timeout)
        self.zone_expander = ZoneActionExpander(self.zone_scripts, self.config.return_speed)
        self.interpreter = CommandInterpreter(self.zone_expander, self.config)
        self.executor = FlightExecutor(
            self.interpreter,
            self.publisher,
            self.config,
            sleep=sleep
        )

        self.runs: Dict[str, asyncio.Task] = {}

    def start(self):
        """Seed the static roster and mark the engine running"""
        if not self.vehicles.vehicles:
            for vehicle in VehicleFactory.create_roster(self.config):
                self.vehicles.register_vehicle(vehicle)

        self.status = "running"
        self.start_time = datetime.now()
        logger.info(f"Simulator engine started with {len(self.vehicles.vehicles)} drones")

    async def stop(self):
        """Cancel outstanding flight tasks at shutdown"""
        pending = [task for task in self.runs.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self.runs.clear()
        self.status = "stopped"
        logger.info("Simulator engine stopped")

    # -- boundary operations ------------------------------------------------

    def list_vehicles(self) -> List[Dict[str, Any]]:
        return [v.discovery_entry() for v in self.vehicles.get_all_vehicles()]

    def get_vehicle_info(self, vehicle_id: str) -> Vehicle:
        return self.vehicles.require_connected(vehicle_id)

    def connect(self, vehicle_id: str) -> Vehicle:
        vehicle = self.vehicles.require(vehicle_id)
        if vehicle.connected:
            raise InvalidStateError(vehicle_id, "Already connected")

        vehicle.connected = True
        vehicle.status = 'connected'
        logger.info(f"Connected to {vehicle_id}")
        return vehicle

    def disconnect(self, vehicle_id: str) -> Vehicle:
        vehicle = self.vehicles.require(vehicle_id)
        if not vehicle.connected:
            raise InvalidStateError(vehicle_id, "Not connected")

        vehicle.command_queue.clear()
        vehicle.connected = False
        vehicle.status = 'idle'
        logger.info(f"Disconnected from {vehicle_id}")
        return vehicle

    def is_flying(self, vehicle_id: str) -> bool:
        vehicle = self.vehicles.get_vehicle(vehicle_id)
        task = self.runs.get(vehicle_id)
        return bool(vehicle and vehicle.in_flight and task and not task.done())

    def submit_flight_path(self, vehicle_id: str, path: List[str],
                           zones: Optional[Dict[str, Any]] = None) -> asyncio.Task:
        """
        Replace zone scripts, reset the drone and start draining `path`

        Must be called from inside the running event loop. If a run is
        already active for the drone, its loop continues on the new queue
        and no second task is started.

        Raises:
            VehicleNotFoundError: unknown drone id
            InvalidStateError: drone not connected
        """
        vehicle = self.vehicles.require_connected(vehicle_id)
        already_flying = self.is_flying(vehicle_id)

        self.zone_scripts.replace(vehicle_id, zones)
        vehicle.command_queue = [str(cmd) for cmd in path]
        vehicle.position = Position()
        vehicle.yaw = 0
        vehicle.status = 'in-flight'
        vehicle.in_flight = True

        if already_flying:
            logger.info(f"{vehicle_id}: flight path replaced on active run")
            return self.runs[vehicle_id]

        task = asyncio.get_running_loop().create_task(
            self.executor.run(vehicle),
            name=f"flight-{vehicle_id}"
        )
        self.runs[vehicle_id] = task
        return task

    async def wait_for_flight(self, vehicle_id: str) -> Optional[FlightRun]:
        task = self.runs.get(vehicle_id)
        if task is None:
            return None
        return await task

    def get_status(self) -> Dict[str, Any]:
        uptime = (datetime.now() - self.start_time).total_seconds() if self.start_time else 0
        vehicles = self.vehicles.get_all_vehicles()

        return {
            'status': self.status,
            'uptime_seconds': uptime,
            'vehicles': len(vehicles),
            'connected': len([v for v in vehicles if v.connected]),
            'in_flight': len([v for v in vehicles if v.in_flight]),
            'subscribers': len(self.publisher.subscribers)
        }

# ============================================================================
# PART 12: CLI INTERFACE
# ============================================================================

class CLI:
    """Command Line Interface"""

    def __init__(self, engine: SimulatorEngine):
        self.engine = engine
        self.commands = {
            'list': self._list_cmd,
            'fly': self._fly_cmd,
            'help': self._help_cmd
        }

    def run(self, args: List[str]):
        if not args:
            self._help_cmd([])
            return

        command = args[0]
        if command in self.commands:
            self.commands[command](args[1:])
        else:
            print(f"Unknown command: {command}")
            self._help_cmd([])

    def _list_cmd(self, args: List[str]):
        print(f"\n{'='*70}")
        print(f"{'ID':<12} {'IP':<16} {'Range':<8} {'Stream':<8} {'Connected':<10} {'Status'}")
        print(f"{'='*70}")
        for d in self.engine.list_vehicles():
            print(f"{d['id']:<12} {d['ip']:<16} {d['range']:<8} "
                  f"{'on' if d['streamon'] else 'off':<8} "
                  f"{'yes' if d['connected'] else 'no':<10} {d['status']}")
        print(f"{'='*70}\n")

    def _fly_cmd(self, args: List[str]):
        """fly <id> [--zone NAME=cmd;cmd] <command>..."""
        if not args:
            print("Usage: fly <drone_id> [--zone NAME=cmd;cmd ...] <command> ...")
            return

        vehicle_id = args[0]
        zones: Dict[str, List[str]] = {}
        path: List[str] = []

        rest = iter(args[1:])
        for arg in rest:
            if arg == '--zone':
                name, _, script = next(rest, '').partition('=')
                zones[name] = [c.strip() for c in script.split(';') if c.strip()]
            else:
                path.append(arg)

        try:
            asyncio.run(self._fly(vehicle_id, path, zones))
        except SimulatorError as e:
            print(f"Rejected: {e}")

    async def _fly(self, vehicle_id: str, path: List[str], zones: Dict[str, List[str]]):
        def show(message):
            drone = message.get('drone')
            if drone:
                pos = drone['position']
                print(f"  {drone['id']:<10} yaw={drone['yaw']!s:<4} "
                      f"pos=({pos['x']}, {pos['y']}, {pos['z']}) {drone['status']}")

        printer = CallbackSubscriber(show)
        self.engine.publisher.add_subscriber(printer)

        try:
            vehicle = self.engine.vehicles.require(vehicle_id)
            if not vehicle.connected:
                self.engine.connect(vehicle_id)
            self.engine.submit_flight_path(vehicle_id, path, zones)
            await self.engine.wait_for_flight(vehicle_id)
        finally:
            self.engine.publisher.disconnect(printer)

    def _help_cmd(self, args: List[str]):
        print("\n" + "="*70)
        print("Tello Fleet Simulator - CLI")
        print("="*70)
        print("\nCommands:")
        print("  list                          - List simulated drones")
        print("  fly <id> [--zone N=a;b] cmds  - Fly a command sequence")
        print("  help                          - Show this help")
        print("="*70 + "\n")

# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    engine = SimulatorEngine(SimulatorConfig.from_env())
    engine.start()

    cli = CLI(engine)

    if len(sys.argv) > 1:
        cli.run(sys.argv[1:])
    else:
        print("\nType 'help' for commands, 'exit' to quit\n")

        while True:
            try:
                command = input("TELLO> ").strip()

                if command.lower() in ['exit', 'quit']:
                    break

                if command:
                    cli.run(shlex.split(command))

            except (KeyboardInterrupt, EOFError):
                print()
                break
