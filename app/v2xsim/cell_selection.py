"""Candidate cell evaluation with speed- and context-aware hysteresis"""

import numpy as np
from typing import List, Optional, Tuple
from .network import Cell, Vehicle, Building, ChannelResult, UU
from .channel import safe_channel_model
from .geometry import determine_los
from .scenario_loader import SimParams


def estimate_cell_performance(vehicle: Vehicle, cell: Cell, buildings: List[Building],
                              sim_params: SimParams, rng: np.random.RandomState) -> ChannelResult:
    """Estimate RSRP/SINR the vehicle would see from a candidate cell"""

    is_los = vehicle.los_to_cells.get(cell.id)
    if is_los is None and sim_params.channel.use_geometric_los:
        is_los = determine_los(cell.position, vehicle.position, buildings)

    return safe_channel_model(
        UU, cell.position, cell.height, vehicle.position, sim_params.network.ue_height,
        cell.tx_power, sim_params, rng, is_los=is_los, load=cell.load)


def hysteresis_margin(vehicle: Vehicle, sim_params: SimParams, near_intersection: bool) -> float:
    """Margin (dB) favouring the current cell"""

    hp = sim_params.handover
    speed = vehicle.speed

    if speed > hp.high_speed:
        margin = hp.high_speed_hysteresis
    elif speed > hp.medium_speed:
        margin = hp.medium_speed_hysteresis
    else:
        margin = hp.base_hysteresis

    # Degrading link: react faster
    if vehicle.sinr_uu is not None and vehicle.previous_sinr_uu is not None:
        if vehicle.sinr_uu - vehicle.previous_sinr_uu < -hp.sinr_drop_threshold:
            margin = max(hp.min_hysteresis, margin - hp.sinr_drop_reduction)

    if near_intersection:
        margin = max(hp.intersection_min_hysteresis, margin - hp.intersection_reduction)

    return margin


def find_best_cell_with_hysteresis(vehicle: Vehicle, candidates: List[Cell], current_cell_id: int,
                                   current_rsrp: Optional[float], buildings: List[Building],
                                   sim_params: SimParams, rng: np.random.RandomState,
                                   near_intersection: bool = False) -> Tuple[int, Optional[ChannelResult]]:
    """
    Select the best candidate by RSRP, biased towards the current cell

    Returns:
        (cell_id, estimate). cell_id equals current_cell_id (possibly 0) when no
        candidate beats the current cell by more than the hysteresis margin.
    """

    hp = sim_params.handover
    margin = hysteresis_margin(vehicle, sim_params, near_intersection)
    min_sinr = hp.intersection_min_candidate_sinr if near_intersection else hp.min_candidate_sinr

    best_id, best_estimate, best_score = current_cell_id, None, -np.inf

    for cell in candidates:
        estimate = estimate_cell_performance(vehicle, cell, buildings, sim_params, rng)

        if cell.id == current_cell_id:
            if current_rsrp is None:
                current_rsrp = estimate.rsrp
            score = estimate.rsrp + margin
        else:
            if estimate.sinr < min_sinr:
                continue
            score = estimate.rsrp

        if score > best_score:
            best_id, best_estimate, best_score = cell.id, estimate, score

    if best_id == current_cell_id or best_estimate is None:
        return current_cell_id, best_estimate

    if current_rsrp is not None and best_estimate.rsrp <= current_rsrp + margin:
        return current_cell_id, None

    return best_id, best_estimate
