"""
Orbit Tracker: element-set ingestion, cached orbit paths and per-frame
position queries for an orbital visualization.

Pipeline:
    raw TLE text  -> parse_batch()              -> [Satellite]
    Satellite     -> generate_path(res, base)   -> OrbitPath (one period)
    OrbitPath     -> position_at(t)             -> inertial km (per frame)
    position      -> cartesian_to_geodetic() / frame_remap()

Time-dependent calls take the simulated time explicitly; SimulationClock
owns that time and is advanced once per frame by a single writer.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from math import asin, atan2, cos, degrees, floor, isfinite, pi, sin, sqrt
from pathlib import Path
from typing import NamedTuple, Optional, Protocol, Tuple

import numpy as np
import requests
from sgp4.api import Satrec, jday

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PLANET_RADIUS_KM = 6_378.0
WGS84_A = 6_378.137
WGS84_F = 1 / 298.257223563
WGS84_B = WGS84_A * (1 - WGS84_F)
WGS84_E2 = 2 * WGS84_F - WGS84_F ** 2
WGS84_EP2 = WGS84_E2 / (1 - WGS84_E2)

J2000_JD = 2_451_545.0
DAYS_PER_CENTURY = 36_525.0
# GMST seconds as a polynomial in Julian centuries since J2000, highest power first
GMST_COEFFS = (-6.2e-6, 0.093104, 876_600 * 3600 + 8_640_184.812866, 67_310.54841)

MINUTES_PER_DAY = 1_440.0
SECONDS_PER_DAY = 86_400.0

# Upper mean-motion bound (rev/day) for each class; anything faster is LEO.
ORBIT_CLASSES = ((1.5, "GEO"), (6.0, "MEO"))

# Heuristic period for element sets with a non-positive mean motion.
FALLBACK_PERIOD_MIN = 90.0
DEFAULT_RESOLUTION = 256

TLE_LINE_LENGTH = 69
YEAR_PIVOT = 57

CELESTRAK_BASE = "https://celestrak.org/NORAD/elements/gp.php"
DEFAULT_GROUP = "gnss"
USER_AGENT = "orbit-tracker"
SOURCE_TIMEOUT = 30
SOURCE_MAX_AGE = 2 * 3600

MAX_SPEED = 4096.0
DEFAULT_START_TIME = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

ORIGIN = (0.0, 0.0, 0.0)

Vector = Tuple[float, float, float]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ElementParseError(ValueError):
    """Record failed structural validation (short line or bad numeric column)."""


class PropagatorConstructionError(ValueError):
    """Propagation model refused to build a handle from a record."""


class PropagationDivergence(RuntimeError):
    """Propagation model failed at a specific time (e.g. decayed orbit)."""


class EpochReconstructionError(ValueError):
    """Epoch year/day does not map to a valid calendar date."""


class SourceReadError(OSError):
    """Element-set source could not be read at all."""


# ---------------------------------------------------------------------------
# Coordinate transforms
# ---------------------------------------------------------------------------

def as_utc(dt):
    """Attach UTC to naive datetimes, convert aware ones."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def datetime_to_jd(dt):
    """Split Julian date (jd, fr) of a datetime, in the form sgp4 expects."""
    dt = as_utc(dt)
    return jday(dt.year, dt.month, dt.day, dt.hour, dt.minute,
                dt.second + dt.microsecond / 1e6)


def gmst_rad(dt):
    """Greenwich mean sidereal time (IAU 1982 polynomial), radians in [0, 2pi)."""
    jd, fr = datetime_to_jd(dt)
    centuries = ((jd - J2000_JD) + fr) / DAYS_PER_CENTURY
    seconds = np.polyval(GMST_COEFFS, centuries)
    return float(seconds % SECONDS_PER_DAY) / SECONDS_PER_DAY * 2 * pi


def earth_rotation(dt):
    """3x3 rotation taking inertial vectors into the earth-fixed frame at dt."""
    g = gmst_rad(dt)
    c, s = cos(g), sin(g)
    return np.array([[c, s, 0.0],
                     [-s, c, 0.0],
                     [0.0, 0.0, 1.0]])


def teme_to_ecef(position, dt):
    """Inertial (TEME) position -> earth-fixed position, both in km."""
    rotated = earth_rotation(dt) @ np.asarray(position, dtype=float)
    return tuple(float(v) for v in rotated)


def ecef_to_geodetic(position):
    """Earth-fixed position (km) -> WGS84 (lat deg, lon deg, alt km), Bowring."""
    x, y, z = position
    p = sqrt(x * x + y * y)
    if p == 0.0 and z == 0.0:
        return 0.0, 0.0, -WGS84_A
    theta = atan2(z * WGS84_A, p * WGS84_B)
    lat = atan2(z + WGS84_EP2 * WGS84_B * sin(theta) ** 3,
                p - WGS84_E2 * WGS84_A * cos(theta) ** 3)
    cos_lat = cos(lat)
    if abs(cos_lat) > 1e-10:
        prime_vertical = WGS84_A / sqrt(1 - WGS84_E2 * sin(lat) ** 2)
        alt = p / cos_lat - prime_vertical
    else:
        # on the polar axis
        alt = abs(z) - WGS84_B
    return degrees(lat), degrees(atan2(y, x)), alt


def cartesian_to_geodetic(x, y, z, planet_radius=PLANET_RADIUS_KM):
    """
    Inertial cartesian (km) to spherical (lat deg, lon deg, alt km).

    No sidereal rotation is applied, so longitude is measured in the
    inertial frame. The origin maps to (0, 0, -planet_radius).
    """
    distance = sqrt(x * x + y * y + z * z)
    altitude = distance - planet_radius
    if distance == 0.0:
        return 0.0, 0.0, altitude
    latitude = degrees(asin(max(-1.0, min(1.0, z / distance))))
    longitude = degrees(atan2(y, x))
    return latitude, longitude, altitude


def frame_remap(position):
    """Propagation frame (z up) to render frame (y up): swap 2nd and 3rd axis."""
    x, y, z = position
    return (x, z, y)


def classify_orbit(mean_motion):
    for limit, kind in ORBIT_CLASSES:
        if mean_motion < limit:
            return kind
    return "LEO"


def lerp(a, b, t):
    """Component-wise linear interpolation between two 3-vectors."""
    return tuple(p + (q - p) * t for p, q in zip(a, b))


# ---------------------------------------------------------------------------
# Propagation adapter
# ---------------------------------------------------------------------------

class Prediction(NamedTuple):
    position: Vector   # km, inertial
    velocity: Vector   # km/s, inertial


FALLBACK_PREDICTION = Prediction(ORIGIN, ORIGIN)


class PropagationModel(Protocol):
    """Two-operation capability the tracker needs from an orbit propagator."""

    def build(self, line1: str, line2: str):
        ...

    def propagate(self, handle, minutes: float) -> Prediction:
        ...


class SGP4Model:
    """SGP4 propagation backed by sgp4.api.Satrec."""

    def build(self, line1, line2):
        try:
            sat = Satrec.twoline2rv(line1, line2)
        except (ValueError, RuntimeError) as exc:
            raise PropagatorConstructionError(f"SGP4 rejected record: {exc}") from exc
        if sat.error != 0:
            raise PropagatorConstructionError(f"SGP4 init error code {sat.error}")
        return sat

    def propagate(self, handle, minutes):
        # Satrec measures tsince against its own (jdsatepoch, jdsatepochF).
        error, r, v = handle.sgp4(handle.jdsatepoch,
                                  handle.jdsatepochF + minutes / MINUTES_PER_DAY)
        if error != 0:
            raise PropagationDivergence(
                f"SGP4 error code {error} at {minutes:.2f} min from epoch")
        return Prediction(tuple(r), tuple(v))


# ---------------------------------------------------------------------------
# Element parser
# ---------------------------------------------------------------------------

def resolve_year(two_digit):
    """Expand a two-digit TLE year: 57-99 -> 1957-1999, 00-56 -> 2000-2056."""
    return 2000 + two_digit if two_digit < YEAR_PIVOT else 1900 + two_digit


@dataclass(frozen=True)
class OrbitalElementSet:
    name: str
    catalog_id: int
    intl_designator: str
    launch_year: int
    launch_number: int
    epoch_year: int
    epoch_day: float        # fractional day of year, 1-based
    inclination: float      # deg
    mean_motion: float      # rev/day
    line1: str
    line2: str

    @property
    def period_minutes(self):
        if self.mean_motion > 0:
            return MINUTES_PER_DAY / self.mean_motion
        return FALLBACK_PERIOD_MIN

    @property
    def launch(self):
        return f"{self.launch_year}-{self.launch_number:03d}"

    @property
    def epoch(self):
        """Absolute epoch rebuilt from epoch year and fractional day of year."""
        day = int(self.epoch_day)
        seconds = (self.epoch_day - day) * SECONDS_PER_DAY
        try:
            date = datetime(self.epoch_year, 1, 1, tzinfo=timezone.utc) + timedelta(days=day - 1)
        except (ValueError, OverflowError) as exc:
            raise EpochReconstructionError(
                f"{self.name}: epoch {self.epoch_year}/{self.epoch_day} invalid ({exc})") from exc
        if date.year != self.epoch_year:
            raise EpochReconstructionError(
                f"{self.name}: day {day} does not exist in {self.epoch_year}")
        return date + timedelta(seconds=seconds)

    def minutes_since_epoch(self, target_time):
        """Signed minutes from the epoch to target_time."""
        return (as_utc(target_time) - self.epoch).total_seconds() / 60.0


def _column(line, start, end, cast, label):
    raw = line[start:end]
    try:
        return cast(raw.strip())
    except ValueError:
        raise ElementParseError(f"bad {label} column {raw!r}") from None


def parse_elements(name, line1, line2):
    """Extract the fixed-column fields of one three-line record."""
    if len(line1) < TLE_LINE_LENGTH or len(line2) < TLE_LINE_LENGTH:
        raise ElementParseError(
            f"data lines must be at least {TLE_LINE_LENGTH} columns "
            f"(got {len(line1)} and {len(line2)})")

    epoch_day = _column(line1, 20, 32, float, "epoch day")
    if not 1.0 <= epoch_day < 367.0:
        raise ElementParseError(f"epoch day {epoch_day} outside [1, 367)")

    return OrbitalElementSet(
        name=name.strip(),
        catalog_id=_column(line1, 2, 7, int, "catalog number"),
        intl_designator=line1[9:17].strip(),
        launch_year=resolve_year(_column(line1, 9, 11, int, "launch year")),
        launch_number=_column(line1, 11, 14, int, "launch number"),
        epoch_year=resolve_year(_column(line1, 18, 20, int, "epoch year")),
        epoch_day=epoch_day,
        inclination=_column(line2, 8, 16, float, "inclination"),
        mean_motion=_column(line2, 52, 63, float, "mean motion"),
        line1=line1,
        line2=line2,
    )


def parse_record(name, line1, line2, model=None):
    """Parse one record and build its propagation handle."""
    model = model or SGP4Model()
    elements = parse_elements(name, line1, line2)
    handle = model.build(line1, line2)
    return Satellite(elements, handle, model)


def parse_batch(text, model=None):
    """
    Parse newline-delimited three-line records into satellites.

    Blank lines are ignored and a trailing incomplete group is dropped.
    Malformed records are skipped; an empty result is not an error.
    """
    model = model or SGP4Model()
    lines = [line for line in text.splitlines() if line.strip()]
    satellites = []
    skipped = 0
    for i in range(0, len(lines) - 2, 3):
        name, line1, line2 = lines[i:i + 3]
        try:
            satellites.append(parse_record(name, line1, line2, model))
        except (ElementParseError, PropagatorConstructionError) as exc:
            skipped += 1
            logger.debug(f"Skipping record {name.strip()!r}: {exc}")
    logger.info(f"Parsed {len(satellites)} satellites ({skipped} records skipped)")
    return satellites


# ---------------------------------------------------------------------------
# Orbit path cache + interpolator
# ---------------------------------------------------------------------------

class OrbitPoint(NamedTuple):
    time: datetime
    position: Vector   # km, inertial


@dataclass(frozen=True)
class OrbitPath:
    """One orbital period sampled at a fixed resolution, anchored at base_time."""

    points: Tuple[OrbitPoint, ...]
    base_time: datetime
    period: float   # minutes

    def __len__(self):
        return len(self.points)

    def position_at(self, target_time):
        """
        Interpolated inertial position at any time, wrapping by whole periods.

        Samples were taken P/N apart, but the cycle is spread over N - 1
        segments of P/(N-1) each. Only the first sample is reproduced
        exactly; at points[j].time for j > 0 the result lies between
        points[j - 1] and points[j], not on points[j]. The stored sample
        times record when each position was propagated, not where it sits
        on the interpolation timeline.
        """
        points = self.points
        if not points:
            return ORIGIN
        if len(points) == 1:
            return points[0].position

        elapsed = (as_utc(target_time) - points[0].time).total_seconds() / 60.0
        # float % with a positive divisor is already non-negative
        cycle_time = elapsed % self.period
        time_per_segment = self.period / (len(points) - 1)
        scaled = cycle_time / time_per_segment
        index = min(max(int(floor(scaled)), 0), len(points) - 2)
        t = min(max(scaled - index, 0.0), 1.0)
        return lerp(points[index].position, points[index + 1].position, t)


# ---------------------------------------------------------------------------
# Satellite
# ---------------------------------------------------------------------------

class Satellite:
    """Element set + propagation handle + optional cached orbit path."""

    def __init__(self, elements, handle, model):
        self.elements = elements
        self.handle = handle
        self.model = model
        self.path: Optional[OrbitPath] = None
        self.period = elements.period_minutes
        self.excluded = False

    def __repr__(self):
        return f"Satellite({self.name!r}, catalog_id={self.catalog_id})"

    @property
    def name(self):
        return self.elements.name

    @property
    def catalog_id(self):
        return self.elements.catalog_id

    @property
    def orbit_type(self):
        return classify_orbit(self.elements.mean_motion)

    def predict(self, target_time):
        """Propagate directly (no cache). Raises on divergence or a bad epoch."""
        minutes = self.elements.minutes_since_epoch(target_time)
        return self.model.propagate(self.handle, minutes)

    def generate_path(self, resolution=DEFAULT_RESOLUTION, base_time=None):
        """
        Sample `resolution` points evenly over [0, period) from base_time.

        The new path replaces the old one in a single assignment. Samples
        where the model diverges fall back to the origin. Raises
        EpochReconstructionError if the element set has no valid epoch and
        OverflowError if the sample times run past the datetime range.
        """
        if resolution < 2:
            raise ValueError(f"resolution must be >= 2 (got {resolution})")
        base_time = as_utc(base_time or datetime.now(timezone.utc))
        period = self.elements.period_minutes
        epoch = self.elements.epoch

        points = []
        diverged = 0
        for i in range(resolution):
            point_time = base_time + timedelta(minutes=period * i / resolution)
            minutes = (point_time - epoch).total_seconds() / 60.0
            try:
                prediction = self.model.propagate(self.handle, minutes)
            except PropagationDivergence as exc:
                if not diverged:
                    logger.warning(f"{self.name} ({self.catalog_id}): {exc}; "
                                   f"substituting fallback samples")
                diverged += 1
                prediction = FALLBACK_PREDICTION
            points.append(OrbitPoint(point_time, prediction.position))

        if diverged:
            logger.warning(f"{self.name} ({self.catalog_id}): "
                           f"{diverged}/{resolution} samples diverged")

        path = OrbitPath(tuple(points), base_time, period)
        self.path = path
        self.period = period
        self.excluded = False
        return path

    def position_at(self, target_time):
        """Inertial position (km) from the cached path; origin when no path exists."""
        if self.path is None:
            return ORIGIN
        return self.path.position_at(target_time)

    def render_position_at(self, target_time):
        return frame_remap(self.position_at(target_time))

    def geodetic_at(self, target_time):
        """(lat, lon, alt) from the cached path, without sidereal rotation."""
        return cartesian_to_geodetic(*self.position_at(target_time))

    def earth_fixed_geodetic_at(self, target_time):
        """WGS84 (lat, lon, alt) after rotating the cached position by GMST."""
        return ecef_to_geodetic(teme_to_ecef(self.position_at(target_time), target_time))

    def velocity_at(self, target_time):
        """Inertial velocity (km/s) from direct propagation."""
        return self.predict(target_time).velocity

    def speed_at(self, target_time):
        vx, vy, vz = self.velocity_at(target_time)
        return sqrt(vx * vx + vy * vy + vz * vz)

    def label_text(self, target_time):
        _, _, alt = self.geodetic_at(target_time)
        return f"{self.name}\nAlt: {alt:.0f}km"


# ---------------------------------------------------------------------------
# Simulation clock
# ---------------------------------------------------------------------------

@dataclass
class SimulationClock:
    """Simulated time, pause flag and signed speed multiplier."""

    sim_time: datetime = DEFAULT_START_TIME
    paused: bool = False
    speed: float = 1.0

    def __post_init__(self):
        self.sim_time = as_utc(self.sim_time)

    def tick(self, real_seconds):
        """Advance by real elapsed seconds times the speed multiplier."""
        if self.paused:
            return self.sim_time
        if not isfinite(real_seconds):
            logger.warning(f"Ignoring non-finite clock delta {real_seconds!r}")
            return self.sim_time
        try:
            self.sim_time += timedelta(seconds=real_seconds * self.speed)
        except OverflowError:
            logger.warning(f"Simulated time cannot advance past {self.sim_time.isoformat()}")
        return self.sim_time

    def set_time(self, dt):
        self.sim_time = as_utc(dt)

    def set_speed(self, speed):
        if not isfinite(speed):
            logger.warning(f"Ignoring non-finite clock speed {speed!r}")
            return
        self.speed = max(-MAX_SPEED, min(MAX_SPEED, float(speed)))

    def pause(self):
        self.paused = True

    def resume(self):
        self.paused = False

    def toggle_pause(self):
        self.paused = not self.paused

    def step_forward(self):
        """Double forward speed, or halve reverse speed; -1 jumps to +1."""
        self.paused = False
        if self.speed < -1.0:
            self.speed = self.speed / 2.0
        elif self.speed == -1.0:
            self.speed = 1.0
        else:
            self.speed = max(1.0, min(MAX_SPEED, self.speed * 2.0))

    def step_backward(self):
        """Halve forward speed, or double reverse speed; +1 jumps to -1."""
        self.paused = False
        if self.speed > 1.0:
            self.speed = self.speed / 2.0
        elif self.speed == 1.0:
            self.speed = -1.0
        else:
            self.speed = max(-MAX_SPEED, min(-1.0, self.speed * 2.0))

    def reset_to_normal(self):
        self.speed = 1.0
        self.paused = False

    def as_dict(self):
        return {
            "time": self.sim_time.isoformat(),
            "paused": self.paused,
            "speed": self.speed,
        }


# ---------------------------------------------------------------------------
# Element source
# ---------------------------------------------------------------------------

def celestrak_url(group=DEFAULT_GROUP):
    return f"{CELESTRAK_BASE}?GROUP={group}&FORMAT=tle"


class ElementSource:
    """Raw element-set text from a local file or an http(s) URL."""

    def __init__(self, location=None, max_age=SOURCE_MAX_AGE, session=None):
        self.location = str(location) if location else celestrak_url()
        self.max_age = max_age
        self.session = session or requests.Session()
        self._text = None
        self._fetched_at = None

    @property
    def is_remote(self):
        return self.location.startswith(("http://", "https://"))

    def _is_fresh(self):
        if self._text is None:
            return False
        return (time.monotonic() - self._fetched_at) < self.max_age

    def _fetch(self):
        r = self.session.get(self.location, headers={"User-Agent": USER_AGENT},
                             timeout=SOURCE_TIMEOUT)
        r.raise_for_status()
        return r.text

    def read(self, force=False):
        """Return the source text; reuse the last good copy if a re-read fails."""
        if not force and self._is_fresh():
            return self._text

        try:
            if self.is_remote:
                text = self._fetch()
            else:
                text = Path(self.location).read_text(encoding="utf-8")
        except (requests.RequestException, OSError, UnicodeDecodeError) as exc:
            if self._text is not None:
                logger.warning(f"Element source read failed ({exc}), using stale copy")
                return self._text
            raise SourceReadError(f"Cannot read element source {self.location}: {exc}") from exc

        self._text = text
        self._fetched_at = time.monotonic()
        logger.info(f"Read {len(text)} bytes from {self.location}")
        return text


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------

class SatelliteTracker:
    """Tracked satellite set, its simulation clock and its element source."""

    def __init__(self, source=None, model=None, clock=None, resolution=DEFAULT_RESOLUTION):
        self.source = source if isinstance(source, ElementSource) else ElementSource(source)
        self.model = model or SGP4Model()
        self.clock = clock or SimulationClock()
        self.resolution = resolution
        self.satellites = {}   # catalog_id -> Satellite
        self.loaded_at = None

    def _attach_path(self, sat, base_time):
        try:
            sat.generate_path(self.resolution, base_time)
        except (EpochReconstructionError, OverflowError) as exc:
            sat.path = None
            sat.excluded = True
            logger.warning(f"Excluding {sat.name} ({sat.catalog_id}) from time queries: {exc}")

    def build(self, text, base_time=None):
        """Parse text and generate every path. Returns a new catalog_id -> Satellite map."""
        base_time = base_time or self.clock.sim_time
        satellites = {}
        for sat in parse_batch(text, self.model):
            self._attach_path(sat, base_time)
            satellites[sat.catalog_id] = sat
        logger.info(f"Generated orbit paths for {len(satellites)} satellites "
                    f"at {self.resolution} points")
        return satellites

    def prepare(self, force=False, base_time=None):
        """Read the source and build a complete satellite set (worker-thread safe)."""
        return self.build(self.source.read(force=force), base_time)

    def publish(self, satellites):
        """Replace the tracked set as a whole."""
        removed = set(self.satellites) - set(satellites)
        self.satellites = satellites
        self.loaded_at = datetime.now(timezone.utc)
        if removed:
            logger.info(f"Dropped {len(removed)} satellites no longer in the source")
        return len(satellites)

    def load_text(self, text, base_time=None):
        return self.publish(self.build(text, base_time))

    def load(self, force=False):
        """Read, parse and publish synchronously. Returns the tracked count."""
        return self.publish(self.prepare(force=force))

    def refresh(self):
        return self.load(force=True)

    def start_ingest(self, force=False):
        """Kick off a background IngestionJob on the running event loop."""
        return IngestionJob(self, force=force).start()

    def reset_paths(self, base_time=None):
        """Regenerate every path from base_time (simulation reset)."""
        base_time = base_time or self.clock.sim_time
        for sat in list(self.satellites.values()):
            self._attach_path(sat, base_time)
        logger.info(f"Reset {len(self.satellites)} orbit paths to {as_utc(base_time).isoformat()}")
        return len(self.satellites)

    def active(self):
        """Satellites eligible for time queries."""
        return [sat for sat in self.satellites.values() if sat.path is not None]

    def get(self, catalog_id):
        sat = self.satellites.get(catalog_id)
        if sat is None:
            raise ValueError(f"Satellite {catalog_id} not tracked")
        return sat

    def find(self, query):
        """Search tracked satellites by name substring or catalog id."""
        try:
            cid = int(query)
            if cid in self.satellites:
                return [self.satellites[cid]]
        except ValueError:
            pass

        query_upper = query.upper()
        return [sat for sat in self.satellites.values() if query_upper in sat.name.upper()]

    def describe(self, sat, when=None):
        when = as_utc(when or self.clock.sim_time)
        lat, lon, alt = sat.geodetic_at(when)
        ground_lat, ground_lon, ground_alt = sat.earth_fixed_geodetic_at(when)
        try:
            speed = sat.speed_at(when)
        except (PropagationDivergence, EpochReconstructionError):
            speed = None
        if speed is not None and not isfinite(speed):
            speed = None
        e = sat.elements
        return {
            "catalog_id": sat.catalog_id,
            "name": sat.name,
            "intl_designator": e.intl_designator,
            "launch": e.launch,
            "time": when.isoformat(),
            "position_km": list(sat.position_at(when)),
            "render_position": list(sat.render_position_at(when)),
            "lat_deg": round(lat, 4),
            "lon_deg": round(lon, 4),
            "alt_km": round(alt, 2),
            "ground_lat_deg": round(ground_lat, 4),
            "ground_lon_deg": round(ground_lon, 4),
            "ground_alt_km": round(ground_alt, 2),
            "speed_km_s": None if speed is None else round(speed, 3),
            "inclination_deg": e.inclination,
            "mean_motion": e.mean_motion,
            "period_min": round(sat.period, 3),
            "orbit_type": sat.orbit_type,
            "excluded": sat.excluded,
        }

    def snapshot(self, when=None):
        """Describe every active satellite at one instant, sorted by name."""
        results = [self.describe(sat, when) for sat in self.active()]
        results.sort(key=lambda r: (r["name"], r["catalog_id"]))
        return results


# ---------------------------------------------------------------------------
# Background ingestion
# ---------------------------------------------------------------------------

class IngestionJob:
    """
    Read + parse + path generation on a worker thread.

    Completion is signalled through `done`; the satellite set is published
    on the event loop only after the worker has finished, so callers never
    see a partially built set. Cancelling discards the worker's result.
    """

    def __init__(self, tracker, force=False):
        self.tracker = tracker
        self.force = force
        self.done = asyncio.Event()
        self.error = None
        self.count = 0
        self._task = None

    def start(self):
        self._task = asyncio.create_task(self._run())
        # fires on success, failure and cancellation alike
        self._task.add_done_callback(lambda _: self.done.set())
        return self

    async def _run(self):
        base_time = self.tracker.clock.sim_time
        try:
            satellites = await asyncio.to_thread(self.tracker.prepare, self.force, base_time)
        except SourceReadError as exc:
            self.error = exc
            logger.error(f"Ingestion failed: {exc}")
        else:
            self.count = self.tracker.publish(satellites)
            logger.info(f"Loaded {self.count} satellites, ready to serve")

    @property
    def running(self):
        return self._task is not None and not self._task.done()

    def cancel(self):
        if self.running:
            self._task.cancel()

    async def wait(self):
        """Wait for completion; re-raise the source error if there was one."""
        await self.done.wait()
        if self.error is not None:
            raise self.error
        return self.count
