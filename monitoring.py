# Monitoring & Metrics for the Tello Fleet Simulator
# File: monitoring.py

"""
Flight metrics collection, health checks and Prometheus export
"""

import time
import psutil
import statistics
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Callable, Any
from collections import deque, defaultdict
from dataclasses import dataclass, field
import threading
import logging

from drone_simulator import CallbackSubscriber, Command, FlightRun, SimulatorEngine, Vehicle

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ============================================================================
# METRICS MODELS
# ============================================================================

@dataclass
class MetricPoint:
    """Single metric data point"""
    timestamp: datetime
    value: float
    labels: Dict[str, str] = field(default_factory=dict)

@dataclass
class HealthCheck:
    """Health check result"""
    component: str
    status: str  # healthy, degraded, unhealthy
    timestamp: datetime
    details: Dict = field(default_factory=dict)
    latency_ms: Optional[float] = None

    def to_dict(self):
        return {
            'component': self.component,
            'status': self.status,
            'timestamp': self.timestamp.isoformat(),
            'details': self.details,
            'latency_ms': self.latency_ms
        }

# ============================================================================
# METRICS COLLECTOR
# ============================================================================

class MetricsCollector:
    """Collect and aggregate simulator metrics"""

    def __init__(self):
        self.metrics: Dict[str, deque] = defaultdict(lambda: deque(maxlen=1000))
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = defaultdict(float)
        self.histograms: Dict[str, List[float]] = defaultdict(list)
        self.lock = threading.Lock()

    def record_counter(self, name: str, value: int = 1, labels: Dict = None):
        """
        Record counter metric (monotonically increasing)

        Args:
            name: Metric name
            value: Value to add (default 1)
            labels: Optional labels for grouping
        """
        with self.lock:
            key = self._make_key(name, labels)
            self.counters[key] += value

            self.metrics[key].append(MetricPoint(
                timestamp=datetime.now(),
                value=self.counters[key],
                labels=labels or {}
            ))

    def record_gauge(self, name: str, value: float, labels: Dict = None):
        """Record gauge metric (current value that can go up or down)"""
        with self.lock:
            key = self._make_key(name, labels)
            self.gauges[key] = value

            self.metrics[key].append(MetricPoint(
                timestamp=datetime.now(),
                value=value,
                labels=labels or {}
            ))

    def record_histogram(self, name: str, value: float, labels: Dict = None):
        """Record histogram metric (run durations, step counts)"""
        with self.lock:
            key = self._make_key(name, labels)
            self.histograms[key].append(value)

            # Keep last 1000 values
            if len(self.histograms[key]) > 1000:
                self.histograms[key] = self.histograms[key][-1000:]

            self.metrics[key].append(MetricPoint(
                timestamp=datetime.now(),
                value=value,
                labels=labels or {}
            ))

    def get_counter(self, name: str, labels: Dict = None) -> int:
        key = self._make_key(name, labels)
        return self.counters.get(key, 0)

    def get_gauge(self, name: str, labels: Dict = None) -> float:
        key = self._make_key(name, labels)
        return self.gauges.get(key, 0.0)

    def get_histogram_stats(self, name: str, labels: Dict = None) -> Dict:
        """
        Get histogram statistics (min, max, mean, median, percentiles)

        Args:
            name: Metric name, or an already labelled key
            labels: Optional labels filter
        """
        key = self._make_key(name, labels)
        values = self.histograms.get(key, [])

        if not values:
            return {
                'count': 0,
                'min': 0,
                'max': 0,
                'mean': 0,
                'median': 0,
                'p50': 0,
                'p95': 0,
                'p99': 0
            }

        sorted_values = sorted(values)
        count = len(sorted_values)

        return {
            'count': count,
            'min': sorted_values[0],
            'max': sorted_values[-1],
            'mean': statistics.mean(sorted_values),
            'median': statistics.median(sorted_values),
            'p50': sorted_values[count // 2],
            'p95': sorted_values[int(count * 0.95)] if count > 20 else sorted_values[-1],
            'p99': sorted_values[int(count * 0.99)] if count > 100 else sorted_values[-1]
        }

    def _make_key(self, name: str, labels: Dict = None) -> str:
        if not labels:
            return name

        label_str = ','.join(f'{k}="{v}"' for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def get_all_metrics(self) -> Dict:
        """Get all metrics summary"""
        with self.lock:
            counters = dict(self.counters)
            gauges = dict(self.gauges)
            histogram_keys = list(self.histograms.keys())

        return {
            'counters': counters,
            'gauges': gauges,
            'histograms': {
                key: self.get_histogram_stats(key)
                for key in histogram_keys
            },
            'timestamp': datetime.now().isoformat()
        }

# ============================================================================
# HEALTH MONITOR
# ============================================================================

class HealthMonitor:
    """Run registered health checks on demand"""

    def __init__(self):
        self.checks: Dict[str, Callable] = {}
        self.health_history: deque = deque(maxlen=100)

    def register_check(self, name: str, check_fn: Callable):
        """
        Register health check function

        Args:
            name: Check name
            check_fn: Function that returns HealthCheck or boolean
        """
        self.checks[name] = check_fn
        logger.debug(f"Registered health check: {name}")

    def run_checks(self) -> List[HealthCheck]:
        results = []

        for name, check_fn in self.checks.items():
            start_time = time.time()

            try:
                result = check_fn()
                latency = (time.time() - start_time) * 1000

                if isinstance(result, HealthCheck):
                    result.latency_ms = latency
                    results.append(result)
                else:
                    results.append(HealthCheck(
                        component=name,
                        status='healthy' if result else 'unhealthy',
                        timestamp=datetime.now(),
                        latency_ms=latency
                    ))

            except Exception as e:
                logger.error(f"Health check failed for {name}: {e}")
                results.append(HealthCheck(
                    component=name,
                    status='unhealthy',
                    timestamp=datetime.now(),
                    details={'error': str(e)}
                ))

        self.health_history.append({
            'timestamp': datetime.now().isoformat(),
            'results': [r.to_dict() for r in results]
        })
        return results

    def get_health_status(self) -> Dict:
        """
        Get current health status

        Returns:
            Dictionary with overall status and check results
        """
        results = self.run_checks()

        overall_status = 'healthy'
        if any(r.status == 'unhealthy' for r in results):
            overall_status = 'unhealthy'
        elif any(r.status == 'degraded' for r in results):
            overall_status = 'degraded'

        return {
            'overall_status': overall_status,
            'checks': [r.to_dict() for r in results],
            'timestamp': datetime.now().isoformat(),
            'check_count': len(results)
        }

    def get_health_history(self, limit: int = 10) -> List[Dict]:
        return list(self.health_history)[-limit:]

# ============================================================================
# SIMULATOR METRICS INTEGRATION
# ============================================================================

class FlightMetrics:
    """Record flight activity of a SimulatorEngine"""

    def __init__(self, engine: SimulatorEngine, collector: Optional[MetricsCollector] = None):
        """
        Args:
            engine: Engine whose publisher and executor are observed
            collector: Metrics store, a fresh one by default
        """
        self.engine = engine
        self.collector = collector or MetricsCollector()
        self.health_monitor = HealthMonitor()
        self.subscriber = CallbackSubscriber(self.record_notification)
        self.attached = False

        self._setup_health_checks()

    def attach(self):
        """Start observing notifications, executed commands and completed runs"""
        if self.attached:
            return

        self.engine.publisher.add_subscriber(self.subscriber)
        self.engine.executor.subscribe('step', self.record_step)
        self.engine.executor.subscribe('complete', self.record_completion)
        self.attached = True
        logger.info("Flight metrics attached")

    def record_notification(self, message: Dict[str, Any]):
        if message.get('type') != 'status':
            return
        drone = message['drone']
        self.collector.record_counter(
            'status_notifications_total',
            labels={'vehicle': drone['id']}
        )

    def record_step(self, vehicle: Vehicle, command: Command, run: FlightRun):
        self.collector.record_counter(
            'commands_executed_total',
            labels={'operator': command.type.value}
        )

    def record_completion(self, vehicle: Vehicle, run: FlightRun):
        self.collector.record_counter(
            'flights_completed_total',
            labels={'vehicle': vehicle.id}
        )
        self.collector.record_histogram('flight_duration_seconds', run.duration)
        self.collector.record_histogram('flight_steps', run.steps)

    def _setup_health_checks(self):
        self.health_monitor.register_check('engine', self._check_engine_health)
        self.health_monitor.register_check('publisher', self._check_publisher_health)
        self.health_monitor.register_check('system_resources', self._check_system_resources)

    def _check_engine_health(self) -> HealthCheck:
        status = self.engine.get_status()

        return HealthCheck(
            component='engine',
            status='healthy' if status['status'] == 'running' else 'unhealthy',
            timestamp=datetime.now(),
            details=status
        )

    def _check_publisher_health(self) -> HealthCheck:
        publisher = self.engine.publisher
        attempts = publisher.delivered + publisher.skipped

        # Mostly skipped deliveries means observers are dropping off
        status = 'healthy'
        if attempts > 20 and publisher.skipped > publisher.delivered:
            status = 'degraded'

        return HealthCheck(
            component='publisher',
            status=status,
            timestamp=datetime.now(),
            details={
                'subscribers': len(publisher.subscribers),
                'delivered': publisher.delivered,
                'skipped': publisher.skipped
            }
        )

    def _check_system_resources(self) -> HealthCheck:
        cpu_percent = psutil.cpu_percent(interval=None)
        memory = psutil.virtual_memory()

        status = 'healthy'
        if cpu_percent > 90 or memory.percent > 90:
            status = 'unhealthy'
        elif cpu_percent > 70 or memory.percent > 70:
            status = 'degraded'

        return HealthCheck(
            component='system_resources',
            status=status,
            timestamp=datetime.now(),
            details={
                'cpu_percent': cpu_percent,
                'memory_percent': memory.percent,
                'memory_available_gb': memory.available / (1024**3)
            }
        )

    def update_fleet_gauges(self):
        status = self.engine.get_status()
        self.collector.record_gauge('fleet_vehicles_total', status['vehicles'])
        self.collector.record_gauge('fleet_vehicles_connected', status['connected'])
        self.collector.record_gauge('fleet_vehicles_in_flight', status['in_flight'])
        self.collector.record_gauge('status_subscribers', status['subscribers'])

    def get_dashboard_data(self) -> Dict:
        """
        Get complete dashboard data

        Returns:
            Dictionary with health, metrics, and rates
        """
        self.update_fleet_gauges()
        health = self.health_monitor.get_health_status()
        metrics = self.collector.get_all_metrics()

        return {
            'health': health,
            'metrics': metrics,
            'rates': {
                'commands_per_second': self._calculate_rate('commands_executed_total'),
                'timestamp': datetime.now().isoformat()
            },
            'timestamp': datetime.now().isoformat()
        }

    def _calculate_rate(self, metric_name: str, window_seconds: int = 60) -> float:
        """Per-second rate of a counter summed over its label sets"""
        now = datetime.now()
        window_ago = now - timedelta(seconds=window_seconds)

        total = 0.0
        with self.collector.lock:
            keys = [k for k in self.collector.metrics if k.split('{')[0] == metric_name]
            series = [list(self.collector.metrics[k]) for k in keys]

        for points in series:
            recent_points = [p for p in points if p.timestamp > window_ago]
            if len(recent_points) < 2:
                continue

            value_diff = recent_points[-1].value - recent_points[0].value
            time_diff = (recent_points[-1].timestamp - recent_points[0].timestamp).total_seconds()
            if time_diff > 0:
                total += value_diff / time_diff

        return total

    def export_prometheus(self) -> str:
        """
        Export metrics in Prometheus format

        Returns:
            Prometheus-formatted metrics string
        """
        self.update_fleet_gauges()
        metrics = self.collector.get_all_metrics()
        output = []
        declared = set()

        def declare(name, kind):
            clean_name = name.split('{')[0]
            if clean_name not in declared:
                output.append(f"# TYPE {clean_name} {kind}")
                declared.add(clean_name)

        for name, value in metrics['counters'].items():
            declare(name, 'counter')
            output.append(f"{name} {value}")

        for name, value in metrics['gauges'].items():
            declare(name, 'gauge')
            output.append(f"{name} {value}")

        for name, stats in metrics['histograms'].items():
            if stats['count'] > 0:
                declare(name, 'summary')
                output.append(f"{name}_count {stats['count']}")
                output.append(f"{name}_sum {stats['mean'] * stats['count']}")
                output.append(f"{name}{{quantile=\"0.5\"}} {stats['p50']}")
                output.append(f"{name}{{quantile=\"0.95\"}} {stats['p95']}")
                output.append(f"{name}{{quantile=\"0.99\"}} {stats['p99']}")

        return "\n".join(output)
