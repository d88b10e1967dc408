"""
Formation Planner

Computes the target slot of every agent from the formation centroid.

Layout rules (local formation axes: x forward, y left, rotated by the
centroid yaw):
- line:   agents spaced along local y, centred on the centroid
- circle: agents on a regular polygon of radius `spacing` around the centroid
- v:      chevron trailing behind a lead slot

Every layout is re-centred so the mean slot position is the centroid.
"""

import math
from typing import Callable, Dict, List, Tuple

from ..utils.geometry import Point, Pose, Transform

LAYOUTS = ("line", "circle", "v")


def _line_slots(n: int, spacing: float) -> List[Tuple[float, float]]:
    half = (n - 1) / 2.0
    return [(0.0, (i - half) * spacing) for i in range(n)]


def _circle_slots(n: int, spacing: float) -> List[Tuple[float, float]]:
    if n == 1:
        return [(0.0, 0.0)]
    step = 2.0 * math.pi / n
    return [(spacing * math.cos(i * step), spacing * math.sin(i * step)) for i in range(n)]


def _v_slots(n: int, spacing: float) -> List[Tuple[float, float]]:
    slots = [(0.0, 0.0)]
    rank = 1
    while len(slots) < n:
        slots.append((-rank * spacing, rank * spacing))
        if len(slots) < n:
            slots.append((-rank * spacing, -rank * spacing))
        rank += 1
    return slots


_LAYOUT_FUNCS: Dict[str, Callable[[int, float], List[Tuple[float, float]]]] = {
    "line": _line_slots,
    "circle": _circle_slots,
    "v": _v_slots,
}


def compute_offsets(centroid: Pose, n: int,
                    layout: str = "line", spacing: float = 1.0) -> List[Pose]:
    """
    Compute n formation slot poses around a centroid

    Args:
        centroid: Formation centroid pose
        n: Number of agents
        layout: One of LAYOUTS
        spacing: Distance between neighbouring slots in metres

    Returns:
        Exactly n poses, expressed in the centroid's frame, whose mean
        position is the centroid. Slots keep the centroid orientation.

    Raises:
        ValueError: If n is negative or the layout is unknown
    """
    if n < 0:
        raise ValueError(f"agent count cannot be negative, got {n}")
    if layout not in _LAYOUT_FUNCS:
        raise ValueError(f"unknown formation layout '{layout}'")
    if n == 0:
        return []

    local = _LAYOUT_FUNCS[layout](n, spacing)

    # Re-centre so the mean is exactly the centroid
    mean_x = sum(s[0] for s in local) / n
    mean_y = sum(s[1] for s in local) / n

    frame = Transform.from_pose(centroid)
    return [
        frame.apply(Pose(Point(x - mean_x, y - mean_y, 0.0)))
        for x, y in local
    ]


def relative_offsets(centroid: Pose, slots: List[Pose]) -> List[Pose]:
    """Express slot poses relative to the formation frame located at centroid"""
    to_formation = Transform.from_pose(centroid).inverse()
    return [to_formation.apply(slot) for slot in slots]


class FormationPlanner:
    """
    Formation slot planner bound to one layout and spacing
    """

    def __init__(self, layout: str = "line", spacing_m: float = 1.0):
        if layout not in _LAYOUT_FUNCS:
            raise ValueError(f"unknown formation layout '{layout}'")
        self.layout = layout
        self.spacing_m = spacing_m

    def compute_offsets(self, centroid: Pose, n: int) -> List[Pose]:
        """Slot poses around centroid (see module-level compute_offsets)"""
        return compute_offsets(centroid, n, self.layout, self.spacing_m)

    def formation_offsets(self, centroid: Pose, n: int) -> List[Pose]:
        """Slot poses relative to the formation frame, used for static frames"""
        return relative_offsets(centroid, self.compute_offsets(centroid, n))
