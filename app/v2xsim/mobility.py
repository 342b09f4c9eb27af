"""Vehicle mobility, traffic signals and PC5 neighbour clustering"""

import numpy as np
from typing import Dict, List, Tuple
from .network import Vehicle, Lane, TrafficSignals
from .scenario_loader import SimParams, PC5Params


def update_traffic_signals(signals: TrafficSignals, time_step: float) -> TrafficSignals:
    """Advance the two-phase NS/EW controller by one step"""

    signals.ns_timer -= time_step
    signals.ew_timer -= time_step

    if signals.ns_state == 'green' and signals.ns_timer <= 0:
        signals.ns_state, signals.ew_state = 'red', 'green'
        signals.ns_timer = signals.red_duration
        signals.ew_timer = signals.green_duration
    elif signals.ew_state == 'green' and signals.ew_timer <= 0:
        signals.ns_state, signals.ew_state = 'green', 'red'
        signals.ns_timer = signals.green_duration
        signals.ew_timer = signals.red_duration

    return signals


def update_vehicle_mobility(vehicles: List[Vehicle], lanes: List[Lane], signals: TrafficSignals,
                            time_step: float, sim_params: SimParams) -> List[Vehicle]:
    """Advance vehicle kinematics by one step"""

    lane_map = {lane.id: lane for lane in lanes}

    # Decide on the pre-step snapshot so results do not depend on processing order
    stop_flags = [_should_stop(v, vehicles, lane_map[v.lane], signals, sim_params) for v in vehicles]

    for vehicle, should_stop in zip(vehicles, stop_flags):
        _update_vehicle_kinematics(vehicle, lane_map[vehicle.lane], should_stop, time_step, sim_params)

    return vehicles


def _should_stop(vehicle: Vehicle, vehicles: List[Vehicle], lane: Lane,
                 signals: TrafficSignals, sim_params: SimParams) -> bool:
    return (_red_light_ahead(vehicle, lane, signals, sim_params)
            or _vehicle_ahead_too_close(vehicle, vehicles, lane, sim_params))


def _red_light_ahead(vehicle: Vehicle, lane: Lane, signals: TrafficSignals, sim_params: SimParams) -> bool:
    """Red phase and vehicle inside the approach zone before the crossing"""

    if signals.is_green(vehicle.direction):
        return False

    env = sim_params.environment
    # Distance along the lane still to travel before the intersection centre
    to_centre = float(np.dot(-vehicle.position, lane.unit))
    crossing_half_width = env.num_lanes * env.lane_width

    return crossing_half_width < to_centre <= env.stop_zone


def _vehicle_ahead_too_close(vehicle: Vehicle, vehicles: List[Vehicle], lane: Lane,
                             sim_params: SimParams) -> bool:
    """Car-following check against vehicles ahead in the same lane"""

    vp = sim_params.vehicle
    for other in vehicles:
        if other.id == vehicle.id or other.lane != vehicle.lane:
            continue

        rel = other.position - vehicle.position
        if np.dot(rel, lane.unit) <= 0:
            continue

        gap = float(np.linalg.norm(rel))
        if gap > vp.following_range:
            continue

        closing_speed = max(0.0, vehicle.speed - other.speed)
        if gap < vp.min_gap + vp.headway_time * closing_speed:
            return True

    return False


def _update_vehicle_kinematics(vehicle: Vehicle, lane: Lane, should_stop: bool,
                               time_step: float, sim_params: SimParams):
    vp = sim_params.vehicle
    old_velocity = vehicle.velocity
    speed = vehicle.speed

    if should_stop:
        new_speed = speed - vp.deceleration * time_step
        if new_speed <= 0:
            new_speed = 0.0
            vehicle.stopped = True
        else:
            vehicle.stopped = False
    else:
        new_speed = min(vp.max_speed, speed + vp.acceleration * time_step)
        vehicle.stopped = False

    new_speed = min(new_speed, vp.max_speed)
    vehicle.acceleration = (new_speed - speed) / time_step if time_step > 0 else 0.0
    vehicle.velocity = lane.unit * new_speed

    # Trapezoidal integration
    vehicle.position = vehicle.position + 0.5 * (old_velocity + vehicle.velocity) * time_step

    # Closed-loop road
    remaining = float(np.dot(lane.end - vehicle.position, lane.unit))
    if remaining < sim_params.environment.lane_wrap_distance:
        vehicle.position = lane.start.copy()


def calculate_pc5_reliability(distance: float, pc5: PC5Params) -> float:
    """Link reliability: flat inside the reliable range, exponential decay beyond"""
    if distance <= pc5.reliable_range:
        return float(pc5.in_range_reliability)
    excess = distance - pc5.reliable_range
    return float(pc5.in_range_reliability * np.exp(-pc5.reliability_decay * excess))


def identify_pc5_clusters(vehicles: List[Vehicle], sim_params: SimParams) -> Dict[int, List[int]]:
    """Recompute every vehicle's PC5 cluster from the current positions"""

    pc5 = sim_params.pc5
    if not vehicles:
        return {}

    positions = np.array([[v.x, v.y] for v in vehicles])
    diff = positions[:, np.newaxis, :] - positions[np.newaxis, :, :]
    distances = np.sqrt(np.sum(diff**2, axis=2))

    clusters = {}
    for i, vehicle in enumerate(vehicles):
        members = []
        for j, other in enumerate(vehicles):
            if i == j or distances[i, j] > pc5.max_range:
                continue
            if calculate_pc5_reliability(distances[i, j], pc5) > pc5.min_reliability:
                members.append(other.id)
        vehicle.cluster = members
        clusters[vehicle.id] = members

    return clusters


def check_cluster_symmetry(vehicles: List[Vehicle]) -> List[Tuple[int, int]]:
    """Return (a, b) pairs where b is in a's cluster but a is not in b's"""

    clusters = {v.id: set(v.cluster) for v in vehicles}
    violations = []
    for vid, members in clusters.items():
        for other in sorted(members):
            if vid not in clusters.get(other, set()):
                violations.append((vid, other))
    return violations
