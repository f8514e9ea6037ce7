"""
Shared fixtures: sample element-set records and a deterministic fake
propagation model for driving failure paths.
"""

from datetime import datetime, timezone
from math import cos, pi, sin

import pytest

from orbit_tracker import Prediction, PropagationDivergence, PropagatorConstructionError

ISS_NAME = "ISS (ZARYA)"
ISS_LINE1 = "1 25544U 98067A   24001.50000000  .00016717  00000-0  30074-3 0  9991"
ISS_LINE2 = "2 25544  51.6416 247.4627 0006703 130.5360 325.0288 15.50380000430806"

GPS_NAME = "GPS BIIR-13 (PRN 02)"
GPS_LINE1 = "1 28474U 04045A   24001.50000000 -.00000034  00000-0  00000-0 0  9998"
GPS_LINE2 = "2 28474  54.9541 137.0383 0178218 260.4389  97.5436  2.00563498142030"

GEO_NAME = "INMARSAT 4-F2"
GEO_LINE1 = "1 28899U 05044A   24001.50000000  .00000092  00000-0  00000-0 0  9992"
GEO_LINE2 = "2 28899   3.1582  78.4411 0003452 171.9842 202.3216  1.00270522 66454"

# Epoch of all three records: 2024 day 1.5
EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def record(name, line1, line2):
    return f"{name}\n{line1}\n{line2}\n"


def with_epoch(line1, field):
    """Replace the 14-character epoch field (columns 19-32) of line 1."""
    assert len(field) == 14
    return line1[:18] + field + line1[32:]


class FakeModel:
    """Circular equatorial orbit with a fixed period, plus scripted failures."""

    def __init__(self, radius=7000.0, period=100.0, diverge_after=None, reject=()):
        self.radius = radius
        self.period = period
        self.diverge_after = diverge_after
        self.reject = set(reject)
        self.calls = 0

    def build(self, line1, line2):
        if line1[2:7].strip() in self.reject:
            raise PropagatorConstructionError("rejected by fake model")
        return {"line1": line1, "line2": line2}

    def propagate(self, handle, minutes):
        self.calls += 1
        if self.diverge_after is not None and minutes > self.diverge_after:
            raise PropagationDivergence(f"fake divergence at {minutes:.2f} min")
        angle = 2 * pi * minutes / self.period
        speed = 2 * pi * self.radius / (self.period * 60.0)
        return Prediction(
            (self.radius * cos(angle), self.radius * sin(angle), 0.0),
            (-speed * sin(angle), speed * cos(angle), 0.0),
        )


@pytest.fixture
def fake_model():
    return FakeModel()


@pytest.fixture
def iss_text():
    return record(ISS_NAME, ISS_LINE1, ISS_LINE2)


@pytest.fixture
def batch_text():
    return (record(ISS_NAME, ISS_LINE1, ISS_LINE2)
            + record(GPS_NAME, GPS_LINE1, GPS_LINE2)
            + record(GEO_NAME, GEO_LINE1, GEO_LINE2))


@pytest.fixture
def tle_file(tmp_path, batch_text):
    path = tmp_path / "elements.txt"
    path.write_text(batch_text, encoding="utf-8")
    return path
