"""Unit tests for the body-relative motion transform."""

import math

import pytest
from pytest import approx

from drone_simulator import CommandType, Position, move_relative


class TestHeadingZero:
    """At yaw 0 the drone faces north (+y)."""

    def test_forward_moves_north(self):
        pos = Position()
        move_relative(pos, 0, CommandType.FORWARD, 100)
        assert (pos.x, pos.y, pos.z) == (0.0, 100.0, 0.0)

    def test_back_moves_south(self):
        pos = Position()
        move_relative(pos, 0, CommandType.BACK, 40)
        assert (pos.x, pos.y) == (0.0, -40.0)

    def test_left_moves_west(self):
        pos = Position()
        move_relative(pos, 0, CommandType.LEFT, 30)
        assert (pos.x, pos.y) == (-30.0, 0.0)

    def test_right_moves_east(self):
        pos = Position()
        move_relative(pos, 0, CommandType.RIGHT, 30)
        assert (pos.x, pos.y) == (30.0, 0.0)


class TestRotatedFrame:
    """Directional moves follow the current yaw."""

    def test_forward_at_90_moves_east(self):
        pos = Position()
        move_relative(pos, 90, CommandType.FORWARD, 100)
        assert pos.x == approx(100.0)
        assert pos.y == approx(0.0, abs=1e-9)

    def test_forward_at_180_moves_south(self):
        pos = Position()
        move_relative(pos, 180, CommandType.FORWARD, 50)
        assert pos.x == approx(0.0, abs=1e-9)
        assert pos.y == approx(-50.0)

    def test_left_at_90_moves_north(self):
        pos = Position()
        move_relative(pos, 90, CommandType.LEFT, 20)
        assert pos.x == approx(0.0, abs=1e-9)
        assert pos.y == approx(20.0)

    @pytest.mark.parametrize("yaw", [0, 45, 90, 270, 359])
    def test_vertical_moves_ignore_yaw(self, yaw):
        pos = Position(5.0, 6.0, 10.0)
        move_relative(pos, yaw, CommandType.UP, 25)
        assert (pos.x, pos.y, pos.z) == (5.0, 6.0, 35.0)
        move_relative(pos, yaw, CommandType.DOWN, 35)
        assert (pos.x, pos.y, pos.z) == (5.0, 6.0, 0.0)


class TestSymmetry:
    """Opposite moves of the same distance cancel out."""

    @pytest.mark.parametrize("yaw", [0, 17, 90, 135, 200, 333])
    def test_forward_then_back(self, yaw):
        pos = Position(12.5, -3.0, 80.0)
        move_relative(pos, yaw, CommandType.FORWARD, 137)
        move_relative(pos, yaw, CommandType.BACK, 137)
        assert pos.x == approx(12.5, abs=1e-9)
        assert pos.y == approx(-3.0, abs=1e-9)
        assert pos.z == 80.0

    @pytest.mark.parametrize("yaw", [0, 60, 180, 299])
    def test_left_then_right(self, yaw):
        pos = Position()
        move_relative(pos, yaw, CommandType.LEFT, 75)
        move_relative(pos, yaw, CommandType.RIGHT, 75)
        assert pos.x == approx(0.0, abs=1e-9)
        assert pos.y == approx(0.0, abs=1e-9)


class TestEdgeCases:

    def test_deterministic(self):
        a, b = Position(), Position()
        move_relative(a, 33, CommandType.FORWARD, 71)
        move_relative(b, 33, CommandType.FORWARD, 71)
        assert (a.x, a.y) == (b.x, b.y)

    def test_nan_distance_propagates(self):
        pos = Position()
        move_relative(pos, 0, CommandType.FORWARD, math.nan)
        assert math.isnan(pos.x)
        assert math.isnan(pos.y)
        assert pos.z == 0.0
