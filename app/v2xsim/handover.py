"""Handover and link-selection decision engine"""

import logging
import numpy as np
from typing import List, Optional
from .network import (Cell, Vehicle, Building, HandoverRecord, HandoverStats, UU, PC5,
                      MACRO, SMALL, HO_MCG, HO_SCG_ADD, HO_SCG_REMOVE,
                      HO_SAFETY_TO_UU, HO_SAFETY_TO_PC5, HO_NONSAFETY_TO_UU,
                      HO_NONSAFETY_TO_PC5, ACTION_NO_OP, cells_of_type, find_cell)
from .cell_selection import find_best_cell_with_hysteresis
from .geometry import at_intersection
from .scenario_loader import SimParams

logger = logging.getLogger(__name__)


def handover_allowed(vehicle: Vehicle, current_time: float, sim_params: SimParams) -> bool:
    """Minimum-interval timer between cell-level transitions"""
    if vehicle.last_handover_time is None:
        return True
    return current_time - vehicle.last_handover_time >= sim_params.handover.min_interval


def is_ping_pong(vehicle: Vehicle, target_cell: int, current_time: float, sim_params: SimParams) -> bool:
    """True when the vehicle recently left `target_cell` with an MCG handover"""
    window = sim_params.handover.ping_pong_window
    for record in vehicle.recent_cells:
        if record.from_cell == target_cell and current_time - record.time < window:
            return True
    return False


def _record(vehicle: Vehicle, ho_type: int, from_cell: int, to_cell: int, current_time: float):
    record = HandoverRecord(time=current_time, type=ho_type, from_cell=from_cell, to_cell=to_cell)
    vehicle.handover_history.append(record)
    if ho_type == HO_MCG:
        vehicle.recent_cells.append(record)
    vehicle.last_handover_time = current_time


def execute_action(vehicle: Vehicle, action, cells: List[Cell], buildings: List[Building],
                   current_time: float, sim_params: SimParams,
                   rng: Optional[np.random.RandomState] = None) -> HandoverStats:
    """
    Apply one action code (1-8) to a vehicle's connectivity state

    Actions whose preconditions do not hold leave the vehicle unchanged and
    report type 0. Unknown action codes are treated as no-op.
    """

    if rng is None:
        rng = np.random.RandomState(sim_params.seed)

    try:
        action = int(action)
    except (TypeError, ValueError):
        action = -1

    near = at_intersection(vehicle.position, sim_params.environment.intersection_radius)

    if action == HO_MCG:
        return _mcg_handover(vehicle, cells, buildings, current_time, sim_params, rng, near)
    elif action == HO_SCG_ADD:
        return _scg_add(vehicle, cells, buildings, current_time, sim_params, rng, near)
    elif action == HO_SCG_REMOVE:
        return _scg_remove(vehicle, current_time, sim_params, near)
    elif action == HO_SAFETY_TO_UU:
        return _safety_to_uu(vehicle, current_time, sim_params, near)
    elif action == HO_SAFETY_TO_PC5:
        return _safety_to_pc5(vehicle, current_time, sim_params)
    elif action == HO_NONSAFETY_TO_UU:
        return _nonsafety_to_uu(vehicle, current_time, sim_params)
    elif action == HO_NONSAFETY_TO_PC5:
        return _nonsafety_to_pc5(vehicle, cells, current_time, sim_params)
    elif action == ACTION_NO_OP:
        return HandoverStats()

    logger.warning('Unknown action %r for vehicle %d, treating as no-op', action, vehicle.id)
    return HandoverStats()


def _mcg_handover(vehicle: Vehicle, cells: List[Cell], buildings: List[Building], current_time: float,
                  sim_params: SimParams, rng, near: bool) -> HandoverStats:
    if not handover_allowed(vehicle, current_time, sim_params):
        return HandoverStats()

    current = vehicle.serving_macro_cell
    best_id, estimate = find_best_cell_with_hysteresis(
        vehicle, cells_of_type(cells, MACRO), current, vehicle.rsrp_uu,
        buildings, sim_params, rng, near)

    if best_id == current or best_id == 0 or estimate is None:
        return HandoverStats()

    ping_pong = is_ping_pong(vehicle, best_id, current_time, sim_params)

    vehicle.serving_macro_cell = best_id
    vehicle.rsrp_uu, vehicle.sinr_uu = estimate.rsrp, estimate.sinr
    _record(vehicle, HO_MCG, current, best_id, current_time)

    logger.debug('t=%.1f vehicle %d MCG %d -> %d%s', current_time, vehicle.id, current, best_id,
                 ' (ping-pong)' if ping_pong else '')
    return HandoverStats(type=HO_MCG, is_ping_pong=ping_pong)


def _scg_add(vehicle: Vehicle, cells: List[Cell], buildings: List[Building], current_time: float,
             sim_params: SimParams, rng, near: bool) -> HandoverStats:
    hp = sim_params.handover

    # SCG requires an MCG
    if vehicle.serving_macro_cell <= 0 or vehicle.serving_small_cell > 0:
        return HandoverStats()
    if not handover_allowed(vehicle, current_time, sim_params):
        return HandoverStats()

    threshold = hp.scg_add_sinr_threshold + (hp.intersection_scg_add_bonus if near else 0.0)
    if vehicle.sinr_uu is None or vehicle.sinr_uu >= threshold:
        return HandoverStats()

    best_id, estimate = find_best_cell_with_hysteresis(
        vehicle, cells_of_type(cells, SMALL), 0, None, buildings, sim_params, rng, near)
    if best_id == 0 or estimate is None:
        return HandoverStats()

    min_sinr = hp.intersection_scg_min_sinr if near else hp.scg_min_sinr
    if estimate.sinr <= min_sinr:
        return HandoverStats()

    vehicle.serving_small_cell = best_id
    vehicle.sinr_scg = estimate.sinr
    _record(vehicle, HO_SCG_ADD, 0, best_id, current_time)
    return HandoverStats(type=HO_SCG_ADD)


def _scg_remove(vehicle: Vehicle, current_time: float, sim_params: SimParams, near: bool) -> HandoverStats:
    hp = sim_params.handover

    if vehicle.serving_small_cell <= 0:
        return HandoverStats()
    if not handover_allowed(vehicle, current_time, sim_params):
        return HandoverStats()

    threshold = hp.scg_remove_sinr_threshold + (hp.intersection_scg_remove_margin if near else 0.0)
    if vehicle.sinr_uu is None or vehicle.sinr_uu <= threshold:
        return HandoverStats()

    removed = vehicle.serving_small_cell
    vehicle.serving_small_cell = 0
    vehicle.sinr_scg = None
    _record(vehicle, HO_SCG_REMOVE, removed, 0, current_time)
    return HandoverStats(type=HO_SCG_REMOVE)


def _interface_switch(vehicle: Vehicle, ho_type: int, current_time: float) -> HandoverStats:
    cell = vehicle.serving_macro_cell
    _record(vehicle, ho_type, cell, cell, current_time)
    return HandoverStats(type=ho_type, interface_switch=True)


def _safety_to_uu(vehicle: Vehicle, current_time: float, sim_params: SimParams, near: bool) -> HandoverStats:
    hp = sim_params.handover

    if vehicle.safety_interface == UU or vehicle.serving_macro_cell <= 0:
        return HandoverStats()

    avg_pc5 = vehicle.average_pc5_sinr()
    poor_threshold = hp.intersection_pc5_poor_sinr if near else hp.pc5_poor_sinr
    pc5_poor = avg_pc5 is None or avg_pc5 < poor_threshold

    min_uu = hp.intersection_safety_uu_min_sinr if near else hp.safety_uu_min_sinr
    uu_adequate = vehicle.sinr_uu is not None and vehicle.sinr_uu > min_uu

    if not (pc5_poor and uu_adequate):
        return HandoverStats()

    vehicle.safety_interface = UU
    return _interface_switch(vehicle, HO_SAFETY_TO_UU, current_time)


def _safety_to_pc5(vehicle: Vehicle, current_time: float, sim_params: SimParams) -> HandoverStats:
    if vehicle.safety_interface == PC5:
        return HandoverStats()

    avg_pc5 = vehicle.average_pc5_sinr()
    if avg_pc5 is None or avg_pc5 <= sim_params.handover.pc5_good_sinr:
        return HandoverStats()

    vehicle.safety_interface = PC5
    return _interface_switch(vehicle, HO_SAFETY_TO_PC5, current_time)


def _nonsafety_to_uu(vehicle: Vehicle, current_time: float, sim_params: SimParams) -> HandoverStats:
    hp = sim_params.handover

    if vehicle.nonsafety_interface == UU or vehicle.serving_macro_cell <= 0:
        return HandoverStats()
    if vehicle.sinr_uu is None or vehicle.sinr_uu < hp.nonsafety_uu_min_sinr:
        return HandoverStats()

    # Safety traffic already on Uu: only share the link when it is strong
    if vehicle.safety_interface == UU and vehicle.sinr_uu <= hp.dual_traffic_sinr:
        return HandoverStats()

    vehicle.nonsafety_interface = UU
    return _interface_switch(vehicle, HO_NONSAFETY_TO_UU, current_time)


def _nonsafety_to_pc5(vehicle: Vehicle, cells: List[Cell], current_time: float,
                      sim_params: SimParams) -> HandoverStats:
    hp = sim_params.handover

    if vehicle.nonsafety_interface == PC5:
        return HandoverStats()

    avg_pc5 = vehicle.average_pc5_sinr()
    if avg_pc5 is None or not vehicle.cluster:
        return HandoverStats()

    macro = find_cell(cells, vehicle.serving_macro_cell)
    congested = macro is not None and macro.load > hp.congestion_load

    if not (congested or avg_pc5 > hp.nonsafety_pc5_sinr):
        return HandoverStats()

    vehicle.nonsafety_interface = PC5
    return _interface_switch(vehicle, HO_NONSAFETY_TO_PC5, current_time)

