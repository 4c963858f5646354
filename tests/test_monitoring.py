"""Tests for metrics collection and health checks."""

from types import SimpleNamespace

import pytest

import monitoring
from monitoring import FlightMetrics, HealthCheck, HealthMonitor, MetricsCollector


@pytest.fixture
def calm_system(monkeypatch):
    monkeypatch.setattr(monitoring.psutil, "cpu_percent", lambda interval=None: 12.0)
    monkeypatch.setattr(
        monitoring.psutil, "virtual_memory",
        lambda: SimpleNamespace(percent=40.0, available=8 * 1024**3)
    )


class TestMetricsCollector:

    def test_counter_with_labels(self):
        collector = MetricsCollector()
        collector.record_counter('commands_executed_total', labels={'operator': 'cw'})
        collector.record_counter('commands_executed_total', labels={'operator': 'cw'})
        collector.record_counter('commands_executed_total', labels={'operator': 'land'})
        assert collector.get_counter('commands_executed_total', {'operator': 'cw'}) == 2
        assert 'commands_executed_total{operator="land"}' in collector.counters

    def test_histogram_stats(self):
        collector = MetricsCollector()
        for value in [1, 2, 3, 4]:
            collector.record_histogram('flight_steps', value)
        stats = collector.get_histogram_stats('flight_steps')
        assert stats['count'] == 4
        assert stats['min'] == 1
        assert stats['max'] == 4
        assert stats['mean'] == 2.5

    def test_empty_histogram(self):
        assert MetricsCollector().get_histogram_stats('missing')['count'] == 0

    def test_collector_has_no_retention_api(self):
        collector = MetricsCollector()
        assert not hasattr(collector, 'get_metric')
        assert not hasattr(collector, 'reset')

    def test_gauge_overwrites(self):
        collector = MetricsCollector()
        collector.record_gauge('fleet_vehicles_total', 4)
        collector.record_gauge('fleet_vehicles_total', 3)
        assert collector.get_gauge('fleet_vehicles_total') == 3


class TestHealthMonitor:

    def test_failing_check_is_unhealthy(self):
        monitor = HealthMonitor()

        def broken():
            raise RuntimeError("down")

        monitor.register_check('broken', broken)
        monitor.register_check('ok', lambda: True)
        status = monitor.get_health_status()

        assert status['overall_status'] == 'unhealthy'
        assert status['check_count'] == 2
        assert len(monitor.get_health_history()) == 1

    def test_degraded_result(self):
        monitor = HealthMonitor()
        monitor.register_check('slow', lambda: HealthCheck(
            component='slow', status='degraded', timestamp=monitoring.datetime.now()
        ))
        assert monitor.get_health_status()['overall_status'] == 'degraded'


class TestFlightMetrics:

    def test_records_flight_activity(self, engine, run_flight):
        metrics = FlightMetrics(engine)
        metrics.attach()
        metrics.attach()

        run_flight("tello-1", ["takeoff", "cw 90", "land"])

        collector = metrics.collector
        assert collector.get_counter('commands_executed_total', {'operator': 'cw'}) == 1
        assert collector.get_counter('status_notifications_total', {'vehicle': 'tello-1'}) == 4
        assert collector.get_counter('flights_completed_total', {'vehicle': 'tello-1'}) == 1
        assert collector.get_histogram_stats('flight_steps')['max'] == 3

    def test_health_report(self, engine, calm_system):
        metrics = FlightMetrics(engine)
        health = metrics.health_monitor.get_health_status()
        assert health['overall_status'] == 'healthy'
        assert {c['component'] for c in health['checks']} == {
            'engine', 'publisher', 'system_resources'
        }

    def test_stopped_engine_is_unhealthy(self, engine, calm_system):
        engine.status = "stopped"
        health = FlightMetrics(engine).health_monitor.get_health_status()
        assert health['overall_status'] == 'unhealthy'

    def test_dashboard(self, engine, calm_system, run_flight):
        metrics = FlightMetrics(engine)
        metrics.attach()
        run_flight("tello-2", ["takeoff"])

        data = metrics.get_dashboard_data()
        assert data['metrics']['gauges']['fleet_vehicles_total'] == 4
        assert data['metrics']['gauges']['fleet_vehicles_connected'] == 1
        assert 'commands_per_second' in data['rates']

    def test_prometheus_export(self, engine, run_flight):
        metrics = FlightMetrics(engine)
        metrics.attach()
        run_flight("tello-1", ["takeoff", "land"])

        text = metrics.export_prometheus()
        lines = text.splitlines()
        assert lines.count("# TYPE commands_executed_total counter") == 1
        assert 'commands_executed_total{operator="takeoff"} 1' in lines
        assert "# TYPE fleet_vehicles_total gauge" in lines
        assert "flight_steps_count 1" in lines
