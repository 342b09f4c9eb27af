"""Geometry helpers: distances, line-of-sight against buildings, intersection zone"""

import numpy as np
from typing import List, Tuple
from .network import Building


def distance_2d(a, b) -> float:
    return float(np.hypot(a[0] - b[0], a[1] - b[1]))


def distance_3d(a, b, height_a: float, height_b: float) -> float:
    """Euclidean distance including antenna height difference"""
    return float(np.sqrt((a[0] - b[0])**2 + (a[1] - b[1])**2 + (height_a - height_b)**2))


def building_bounds(buildings: List[Building]) -> Tuple[np.ndarray, np.ndarray]:
    """Stacked footprint corners, shape (n, 2) each"""
    if not buildings:
        return np.zeros((0, 2)), np.zeros((0, 2))
    return (np.array([b.rect_min for b in buildings]),
            np.array([b.rect_max for b in buildings]))


def segment_blocked(p1, p2, rect_mins: np.ndarray, rect_maxs: np.ndarray) -> bool:
    """Slab test of one segment against many rectangles at once"""

    if len(rect_mins) == 0:
        return False

    p1 = np.asarray(p1, dtype=float)
    direction = np.asarray(p2, dtype=float) - p1

    t_min = np.zeros(len(rect_mins))
    t_max = np.ones(len(rect_mins))
    hit = np.ones(len(rect_mins), dtype=bool)

    for axis in range(2):
        if abs(direction[axis]) < 1e-12:
            hit &= (p1[axis] >= rect_mins[:, axis]) & (p1[axis] <= rect_maxs[:, axis])
            continue
        t1 = (rect_mins[:, axis] - p1[axis]) / direction[axis]
        t2 = (rect_maxs[:, axis] - p1[axis]) / direction[axis]
        t_min = np.maximum(t_min, np.minimum(t1, t2))
        t_max = np.minimum(t_max, np.maximum(t1, t2))

    return bool(np.any(hit & (t_min <= t_max)))


def determine_los(p1, p2, buildings: List[Building], bounds=None) -> bool:
    """Line of sight holds when no building footprint crosses the segment p1-p2"""
    rect_mins, rect_maxs = bounds if bounds is not None else building_bounds(buildings)
    return not segment_blocked(p1, p2, rect_mins, rect_maxs)


def at_intersection(position, radius: float = 50.0) -> bool:
    """Intersection zone is the square of half-width `radius` around the origin"""
    return abs(position[0]) < radius and abs(position[1]) < radius
