"""
Orbit Tracker: Web API

FastAPI app wrapping SatelliteTracker for a browser-based orbit renderer.
Element sets load in a background job at startup; the renderer calls
/api/frame once per frame with its camera and gets back satellite
positions and label placements.

Configuration comes from ORBIT_TRACKER_* environment variables
(SOURCE, RESOLUTION, START_TIME, LOG_LEVEL).
"""

import asyncio
import logging
import os
import time as time_mod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List

import numpy as np
from fastapi import FastAPI, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, FiniteFloat, field_validator

from orbit_labels import Camera, LabelBoard
from orbit_tracker import (
    DEFAULT_RESOLUTION,
    SatelliteTracker,
    SimulationClock,
    as_utc,
    celestrak_url,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class TrackerSettings(BaseModel):
    source: str = Field(default_factory=celestrak_url)
    resolution: int = Field(DEFAULT_RESOLUTION, ge=2)
    start_time: datetime | None = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None):
        environ = os.environ if environ is None else environ
        values = {}
        for key in cls.model_fields:
            raw = environ.get(f"ORBIT_TRACKER_{key.upper()}")
            if raw:
                values[key] = raw
        return cls(**values)


# ---------------------------------------------------------------------------
# Global tracker, loaded in the background at startup
# ---------------------------------------------------------------------------

tracker: SatelliteTracker | None = None
labels = LabelBoard()
ingest_job = None
_last_frame: float | None = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global tracker, labels, ingest_job, _last_frame
    settings = TrackerSettings.from_env()
    logging.basicConfig(level=settings.log_level.upper(),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    clock = SimulationClock()
    if settings.start_time:
        clock.set_time(settings.start_time)
    tracker = SatelliteTracker(settings.source, clock=clock, resolution=settings.resolution)
    labels = LabelBoard()
    _last_frame = None

    logger.info(f"Loading element sets from {settings.source}...")
    ingest_job = tracker.start_ingest()
    yield
    ingest_job.cancel()
    logger.info("Shutting down")


app = FastAPI(title="Orbit Tracker", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def parse_time(t: str | None) -> datetime:
    if not t:
        return tracker.clock.sim_time
    return as_utc(datetime.fromisoformat(t.replace("Z", "+00:00")))


def is_ready() -> bool:
    return tracker is not None and tracker.loaded_at is not None


def bad_time(value):
    return JSONResponse(status_code=422, content={"error": f"Invalid ISO time: {value}"})


def not_ready():
    error = str(ingest_job.error) if ingest_job and ingest_job.error else None
    return JSONResponse(
        status_code=503,
        content={"error": error or "Element sets still loading"},
    )


# ---------------------------------------------------------------------------
# API routes
# ---------------------------------------------------------------------------

@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "ready": is_ready(),
        "loading": bool(ingest_job and ingest_job.running),
        "satellites_loaded": len(tracker.satellites) if tracker else 0,
        "error": str(ingest_job.error) if ingest_job and ingest_job.error else None,
    }


@app.get("/api/clock")
async def clock():
    return tracker.clock.as_dict()


CLOCK_ACTIONS = {
    "pause": lambda c: c.pause(),
    "resume": lambda c: c.resume(),
    "toggle": lambda c: c.toggle_pause(),
    "forward": lambda c: c.step_forward(),
    "backward": lambda c: c.step_backward(),
    "normal": lambda c: c.reset_to_normal(),
}


@app.post("/api/clock/{action}")
async def clock_action(action: str, value: float | None = Query(None),
                       at: str | None = Query(None)):
    c = tracker.clock
    if action == "speed":
        if value is None:
            return JSONResponse(status_code=422, content={"error": "speed requires ?value="})
        c.set_speed(value)
    elif action == "set":
        if not at:
            return JSONResponse(status_code=422, content={"error": "set requires ?at="})
        try:
            c.set_time(parse_time(at))
        except (ValueError, OverflowError):
            return bad_time(at)
    elif action in CLOCK_ACTIONS:
        CLOCK_ACTIONS[action](c)
    else:
        return JSONResponse(
            status_code=404,
            content={"error": f"Unknown clock action: {action}"},
        )
    return c.as_dict()


@app.get("/api/satellites")
async def satellites(time: str | None = Query(None)):
    if not is_ready():
        return not_ready()
    try:
        dt = parse_time(time)
    except (ValueError, OverflowError):
        return bad_time(time)
    results = tracker.snapshot(dt)
    return {"time": dt.isoformat(), "count": len(results), "satellites": results}


@app.get("/api/satellite/{catalog_id}")
async def satellite(catalog_id: int, time: str | None = Query(None)):
    if not is_ready():
        return not_ready()
    try:
        sat = tracker.get(catalog_id)
    except ValueError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})
    try:
        when = parse_time(time)
    except (ValueError, OverflowError):
        return bad_time(time)
    return tracker.describe(sat, when)


@app.get("/api/search")
async def search(q: str = Query(..., min_length=1)):
    if not is_ready():
        return {"query": q, "count": 0, "results": []}
    matches = [
        {"catalog_id": sat.catalog_id, "name": sat.name, "orbit_type": sat.orbit_type}
        for sat in tracker.find(q)
    ]
    matches.sort(key=lambda m: m["name"])
    return {"query": q, "count": len(matches), "results": matches[:50]}


# ---------------------------------------------------------------------------
# Frame loop
# ---------------------------------------------------------------------------

class FrameRequest(BaseModel):
    camera_position: List[FiniteFloat] = Field(..., min_length=3, max_length=3)
    view_projection: List[List[FiniteFloat]]      # 4x4, row-major
    width: float = Field(..., gt=0, allow_inf_nan=False)
    height: float = Field(..., gt=0, allow_inf_nan=False)
    # seconds; measured server-side when omitted
    real_delta: float | None = Field(None, ge=0, allow_inf_nan=False)

    @field_validator("view_projection")
    @classmethod
    def check_matrix(cls, v):
        if len(v) != 4 or any(len(row) != 4 for row in v):
            raise ValueError("view_projection must be 4x4")
        return v


@app.post("/api/frame")
async def frame(req: FrameRequest):
    """Advance the clock once, then place every active satellite and its label."""
    global _last_frame
    if not is_ready():
        return not_ready()

    now = time_mod.monotonic()
    if req.real_delta is not None:
        delta = req.real_delta
    else:
        delta = now - _last_frame if _last_frame is not None else 0.0
    _last_frame = now

    when = tracker.clock.tick(delta)
    camera = Camera(np.array(req.camera_position, dtype=float),
                    np.array(req.view_projection, dtype=float),
                    req.width, req.height)
    active = tracker.active()
    board = labels.reconcile(active, when, camera)

    return {
        "clock": tracker.clock.as_dict(),
        "satellites": [
            {"catalog_id": sat.catalog_id, "position": list(sat.render_position_at(when))}
            for sat in active
        ],
        "labels": [label.as_dict() for label in board.values()],
    }


@app.post("/api/reset")
async def reset():
    """Regenerate every orbit path from the current simulated time."""
    if not is_ready():
        return not_ready()
    base = tracker.clock.sim_time
    count = await asyncio.to_thread(tracker.reset_paths, base)
    return {"status": "reset", "base_time": base.isoformat(), "count": count}


@app.post("/api/refresh")
async def refresh():
    """Re-read the element source in the background."""
    global ingest_job
    if ingest_job is not None and ingest_job.running:
        return {"status": "already running"}
    ingest_job = tracker.start_ingest(force=True)
    return {"status": "started"}
