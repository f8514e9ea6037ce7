"""
Planet occlusion, screen projection and per-frame label reconciliation.

All positions here are in the render frame (y up, km), planet at the
origin unless stated otherwise. Matrices follow the OpenGL convention:
column vectors, camera looking down -z, clip-space w = -z_view.
"""

import logging
from dataclasses import dataclass, field
from math import radians, tan

import numpy as np

from orbit_tracker import PLANET_RADIUS_KM

logger = logging.getLogger(__name__)

DEFAULT_CAMERA_POSITION = (-8_000.0, 8_000.0, 12_000.0)
DEFAULT_FOV_DEG = 45.0
DEFAULT_NEAR = 1.0
DEFAULT_FAR = 1_000_000.0
LABEL_OFFSET = (10.0, -10.0)   # px


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------

def is_visible(object_pos, camera_pos, planet_center=(0.0, 0.0, 0.0),
               planet_radius=PLANET_RADIUS_KM):
    """
    True unless the planet sphere blocks the camera -> object segment.

    If the planet center projects outside the segment the object is
    visible. Otherwise the object is hidden only when the ray passes strictly
    inside the sphere; a ray that just touches it counts as visible.
    """
    obj = np.asarray(object_pos, dtype=float)
    cam = np.asarray(camera_pos, dtype=float)
    center = np.asarray(planet_center, dtype=float)

    to_object = obj - cam
    distance = float(np.linalg.norm(to_object))
    if distance == 0.0:
        return True
    direction = to_object / distance

    projection = float(np.dot(center - cam, direction))
    if projection < 0.0 or projection > distance:
        return True

    closest = cam + direction * projection
    return float(np.linalg.norm(closest - center)) >= planet_radius


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------

def project_to_screen(world_pos, view_projection, width, height):
    """
    World position -> pixel (x, y) with the origin at the top-left.

    Returns None behind the camera (clip w <= 0) or outside the frustum
    (|ndc| > 1 on either axis).
    """
    clip = np.asarray(view_projection, dtype=float) @ np.append(
        np.asarray(world_pos, dtype=float), 1.0)
    w = clip[3]
    if w <= 0.0:
        return None

    ndc_x, ndc_y = clip[0] / w, clip[1] / w
    if abs(ndc_x) > 1.0 or abs(ndc_y) > 1.0:
        return None

    x = (ndc_x + 1.0) * 0.5 * width
    y = (1.0 - ndc_y) * 0.5 * height   # y flipped
    return float(x), float(y)


def look_at(eye, target, up=(0.0, 1.0, 0.0)):
    """Right-handed view matrix."""
    eye = np.asarray(eye, dtype=float)
    f = np.asarray(target, dtype=float) - eye
    f /= np.linalg.norm(f)
    s = np.cross(f, np.asarray(up, dtype=float))
    s /= np.linalg.norm(s)
    u = np.cross(s, f)

    view = np.identity(4)
    view[0, :3] = s
    view[1, :3] = u
    view[2, :3] = -f
    view[:3, 3] = [-np.dot(s, eye), -np.dot(u, eye), np.dot(f, eye)]
    return view


def perspective(fov_y_deg, aspect, near, far):
    """OpenGL-style perspective projection (clip z in [-w, w])."""
    f = 1.0 / tan(radians(fov_y_deg) / 2.0)
    proj = np.zeros((4, 4))
    proj[0, 0] = f / aspect
    proj[1, 1] = f
    proj[2, 2] = (far + near) / (near - far)
    proj[2, 3] = 2.0 * far * near / (near - far)
    proj[3, 2] = -1.0
    return proj


@dataclass
class Camera:
    position: np.ndarray
    view_projection: np.ndarray
    width: float
    height: float

    @classmethod
    def looking_at(cls, eye=DEFAULT_CAMERA_POSITION, target=(0.0, 0.0, 0.0),
                   width=1280, height=720, fov_y_deg=DEFAULT_FOV_DEG,
                   near=DEFAULT_NEAR, far=DEFAULT_FAR):
        vp = perspective(fov_y_deg, width / height, near, far) @ look_at(eye, target)
        return cls(np.asarray(eye, dtype=float), vp, width, height)


# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------

@dataclass
class LabelState:
    catalog_id: int
    text: str
    x: float
    y: float
    hidden: bool = False
    offset: tuple = field(default=LABEL_OFFSET)

    def as_dict(self):
        return {
            "catalog_id": self.catalog_id,
            "text": self.text,
            "x": round(self.x, 1),
            "y": round(self.y, 1),
            "offset": list(self.offset),
            "hidden": self.hidden,
        }


class LabelBoard:
    """
    Owns one LabelState per satellite and keeps it in step with the frame.

    A label is created the first time its satellite is both unoccluded and
    on screen, then only moved or hidden; it is destroyed once its
    satellite is no longer part of the pass.
    """

    def __init__(self, planet_center=(0.0, 0.0, 0.0), planet_radius=PLANET_RADIUS_KM):
        self.planet_center = planet_center
        self.planet_radius = planet_radius
        self.labels = {}   # catalog_id -> LabelState

    def place(self, render_pos, camera):
        """Pixel position for a render-frame point, or None if hidden/off-screen."""
        if not is_visible(render_pos, camera.position, self.planet_center, self.planet_radius):
            return None
        return project_to_screen(render_pos, camera.view_projection, camera.width, camera.height)

    def reconcile(self, satellites, when, camera):
        seen = set()
        for sat in satellites:
            seen.add(sat.catalog_id)
            screen = self.place(sat.render_position_at(when), camera)
            label = self.labels.get(sat.catalog_id)

            if screen is None:
                if label is not None:
                    label.hidden = True
                continue

            if label is None:
                self.labels[sat.catalog_id] = LabelState(
                    sat.catalog_id, sat.label_text(when), screen[0], screen[1])
            else:
                label.x, label.y = screen
                label.text = sat.label_text(when)
                label.hidden = False

        stale = [cid for cid in self.labels if cid not in seen]
        for cid in stale:
            del self.labels[cid]
        if stale:
            logger.debug(f"Removed {len(stale)} labels for departed satellites")
        return self.labels
