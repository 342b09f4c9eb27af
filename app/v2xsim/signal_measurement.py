"""Signal measurements update: serving Uu links and PC5 neighbour links"""

import logging
from typing import List, Dict, Optional, Tuple
from .network import (Cell, Vehicle, Building, PC5LinkMetrics, UU, PC5, VEHICLE_ERRORS,
                      find_cell, vehicle_index)
from .channel import safe_channel_model, derive_rng, CHANNEL_STREAM, PC5_STREAM
from .geometry import building_bounds, determine_los, distance_2d
from .mobility import calculate_pc5_reliability
from .scenario_loader import SimParams

logger = logging.getLogger(__name__)


def update_los_map(vehicle: Vehicle, cells: List[Cell], buildings: List[Building],
                   bounds=None) -> Dict[int, bool]:
    if bounds is None:
        bounds = building_bounds(buildings)
    vehicle.los_to_cells = {cell.id: determine_los(cell.position, vehicle.position, buildings, bounds)
                            for cell in cells}
    return vehicle.los_to_cells


def update_signal_measurements(vehicles: List[Vehicle], cells: List[Cell], buildings: List[Building],
                               step: int, sim_params: SimParams):
    """Measure serving MCG/SCG quality and per-neighbour PC5 metrics for every vehicle"""

    by_id = vehicle_index(vehicles)
    bounds = building_bounds(buildings)
    # Building LoS between two vehicles, keyed by (low id, high id)
    pair_los: Dict[Tuple[int, int], bool] = {}

    for vehicle in vehicles:
        try:
            measure_vehicle(vehicle, cells, buildings, by_id, step, sim_params, bounds, pair_los)
        except VEHICLE_ERRORS as e:
            logger.warning('Vehicle %d: measurement failed (%s), readings cleared', vehicle.id, e)
            vehicle.rsrp_uu, vehicle.sinr_uu, vehicle.sinr_scg = None, None, None
            vehicle.pc5_metrics = {}


def measure_vehicle(vehicle: Vehicle, cells: List[Cell], buildings: List[Building],
                    by_id: Dict[int, Vehicle], step: int, sim_params: SimParams,
                    bounds=None, pair_los: Optional[Dict[Tuple[int, int], bool]] = None):
    if bounds is None:
        bounds = building_bounds(buildings)

    if sim_params.channel.use_geometric_los:
        update_los_map(vehicle, cells, buildings, bounds)

    vehicle.previous_sinr_uu = vehicle.sinr_uu

    rng = derive_rng(sim_params.seed, CHANNEL_STREAM, step, vehicle.id)

    macro = find_cell(cells, vehicle.serving_macro_cell)
    if macro is not None:
        result = _measure_cell(vehicle, macro, rng, sim_params)
        vehicle.rsrp_uu, vehicle.sinr_uu = result.rsrp, result.sinr
    else:
        vehicle.rsrp_uu, vehicle.sinr_uu = None, None

    small = find_cell(cells, vehicle.serving_small_cell)
    if small is not None:
        vehicle.sinr_scg = _measure_cell(vehicle, small, rng, sim_params).sinr
    else:
        vehicle.sinr_scg = None

    _update_pc5_metrics(vehicle, by_id, buildings, step, sim_params, bounds, pair_los)


def _measure_cell(vehicle: Vehicle, cell: Cell, rng, sim_params: SimParams):
    return safe_channel_model(
        UU, cell.position, cell.height, vehicle.position, sim_params.network.ue_height,
        cell.tx_power, sim_params, rng,
        is_los=vehicle.los_to_cells.get(cell.id), load=cell.load)


def _update_pc5_metrics(vehicle: Vehicle, by_id: Dict[int, Vehicle], buildings: List[Building],
                        step: int, sim_params: SimParams, bounds=None,
                        pair_los: Optional[Dict[Tuple[int, int], bool]] = None):
    """Per-neighbour PC5 SINR and reliability for every cluster member"""

    metrics = {}
    ue_height = sim_params.network.ue_height
    if pair_los is None:
        pair_los = {}

    # One stream per vehicle, neighbours drawn in id order
    rng = derive_rng(sim_params.seed, PC5_STREAM, step, vehicle.id)

    for neighbor_id in sorted(vehicle.cluster):
        neighbor = by_id.get(neighbor_id)
        if neighbor is None:
            continue

        is_los = None
        if sim_params.channel.use_geometric_los:
            key = (min(vehicle.id, neighbor_id), max(vehicle.id, neighbor_id))
            if key not in pair_los:
                pair_los[key] = determine_los(neighbor.position, vehicle.position, buildings, bounds)
            is_los = pair_los[key]

        result = safe_channel_model(
            PC5, neighbor.position, ue_height, vehicle.position, ue_height,
            sim_params.pc5.tx_power, sim_params, rng,
            is_los=is_los, num_neighbors=len(vehicle.cluster))

        distance = distance_2d(neighbor.position, vehicle.position)
        metrics[neighbor_id] = PC5LinkMetrics(
            sinr=result.sinr,
            reliability=calculate_pc5_reliability(distance, sim_params.pc5),
            distance=distance)

    vehicle.pc5_metrics = metrics
