"""Data transmission model: safety/non-safety delivery over Uu and PC5"""

import numpy as np
from collections import defaultdict
from typing import Dict, List, Sequence, Tuple
from .network import Cell, Vehicle, TransmissionStats, UU, PC5, find_cell
from .scenario_loader import SimParams, DataParams

SPEED_OF_LIGHT = 3e8


def _step_lookup(table: Sequence[Sequence[float]], floor: float, sinr: float) -> float:
    """Map SINR through a (threshold, value) step table, highest threshold first"""
    for threshold, value in sorted(table, key=lambda row: row[0], reverse=True):
        if sinr >= threshold:
            return float(value)
    return float(floor)


def pc5_bler(sinr: float, data: DataParams) -> float:
    return _step_lookup(data.pc5_bler_table, data.pc5_bler_floor, sinr)


def uu_success_probability(sinr: float, data: DataParams) -> float:
    return _step_lookup(data.uu_success_table, data.uu_success_floor, sinr)


def pc5_link_latency(distance: float, sinr: float, data: DataParams) -> float:
    channel_delay = _step_lookup(data.pc5_channel_delay_table, data.pc5_channel_delay_floor, sinr)
    return distance / SPEED_OF_LIGHT + data.pc5_processing_delay + channel_delay


def safety_messages_per_step(time_step: float, data: DataParams) -> int:
    return max(1, int(round(time_step / data.safety_interval)))


def data_transmission(vehicle: Vehicle, cells: List[Cell], time_step: float, sim_params: SimParams,
                      rng: np.random.RandomState) -> Tuple[TransmissionStats, Dict[int, float]]:
    """
    Model one step of safety and non-safety traffic for a vehicle

    Cell loads are only read here; the load increments this vehicle causes are
    returned as {cell_id: delta} so the caller can apply all of them at once.
    """

    stats = TransmissionStats()
    load_deltas = defaultdict(float)
    num_msgs = safety_messages_per_step(time_step, sim_params.data)

    if vehicle.safety_interface == PC5:
        _safety_over_pc5(vehicle, num_msgs, sim_params, rng, stats)
    else:
        _safety_over_uu(vehicle, cells, num_msgs, sim_params, rng, stats, load_deltas)

    if vehicle.nonsafety_interface == UU:
        _nonsafety_over_uu(vehicle, cells, sim_params, stats, load_deltas)
    else:
        _nonsafety_over_pc5(vehicle, sim_params, stats)

    stats.nonsafety_sent = sim_params.data.nonsafety_rate * time_step
    stats.nonsafety_received = stats.throughput * time_step

    return stats, dict(load_deltas)


def _safety_over_pc5(vehicle: Vehicle, num_msgs: int, sim_params: SimParams,
                     rng: np.random.RandomState, stats: TransmissionStats):
    data = sim_params.data

    total_possible = 0
    total_received = 0
    weighted_latency = 0.0

    for neighbor_id in vehicle.cluster:
        link = vehicle.pc5_metrics.get(neighbor_id)
        if link is None:
            continue

        received = int(rng.binomial(num_msgs, 1.0 - pc5_bler(link.sinr, data)))
        total_possible += num_msgs
        total_received += received
        weighted_latency += received * pc5_link_latency(link.distance, link.sinr, data)

    stats.safety_sent = total_possible
    stats.safety_received = total_received

    if total_possible == 0:
        stats.safety_pdr = 0.0
        stats.latency = data.no_link_latency
        return

    stats.safety_pdr = total_received / total_possible
    stats.latency = weighted_latency / total_received if total_received > 0 else data.no_link_latency


def _safety_over_uu(vehicle: Vehicle, cells: List[Cell], num_msgs: int, sim_params: SimParams,
                    rng: np.random.RandomState, stats: TransmissionStats, load_deltas: Dict[int, float]):
    data = sim_params.data
    macro = find_cell(cells, vehicle.serving_macro_cell)

    stats.safety_sent = num_msgs
    if macro is None or vehicle.sinr_uu is None:
        stats.safety_pdr = 0.0
        stats.latency = data.no_link_latency
        return

    sinr = vehicle.sinr_uu
    load = min(max(macro.load, 0.0), sim_params.network.max_load) / sim_params.network.max_load

    load_factor = max(data.uu_min_load_factor, 1.0 - data.uu_load_impact * load)
    success = float(np.clip(uu_success_probability(sinr, data) * load_factor, 0.0, 1.0))

    received = int(rng.binomial(num_msgs, success))
    stats.safety_received = received
    stats.safety_pdr = received / num_msgs

    sinr_deficit = np.clip((data.uu_sinr_latency_ref - sinr) / data.uu_sinr_latency_span, 0.0, 1.0)
    stats.latency = float(data.uu_base_latency + data.uu_load_latency * load
                          + data.uu_sinr_latency * sinr_deficit)

    load_deltas[macro.id] += data.safety_load_increment


def _nonsafety_over_uu(vehicle: Vehicle, cells: List[Cell], sim_params: SimParams,
                       stats: TransmissionStats, load_deltas: Dict[int, float]):
    data = sim_params.data
    stats.max_throughput = data.nonsafety_rate

    macro = find_cell(cells, vehicle.serving_macro_cell)
    if macro is None or vehicle.sinr_uu is None:
        stats.throughput = 0.0
        return

    # Carry the traffic on the secondary cell when it offers the better link
    cell, sinr = macro, vehicle.sinr_uu
    small = find_cell(cells, vehicle.serving_small_cell)
    if small is not None and vehicle.sinr_scg is not None and vehicle.sinr_scg > sinr:
        cell, sinr = small, vehicle.sinr_scg

    load = min(max(cell.load, 0.0), sim_params.network.max_load) / sim_params.network.max_load
    spectral_eff = min(data.uu_max_spectral_efficiency, np.log2(1 + 10**(sinr / 10)))
    capacity = (sim_params.network.bandwidth * data.uu_bandwidth_fraction * spectral_eff
                * data.uu_overhead * data.uu_impl_efficiency
                * max(data.min_available_capacity, 1.0 - load))

    stats.throughput = float(min(data.nonsafety_rate, max(0.0, capacity)))
    load_deltas[cell.id] += stats.throughput * data.throughput_load_per_bps


def _nonsafety_over_pc5(vehicle: Vehicle, sim_params: SimParams, stats: TransmissionStats):
    data = sim_params.data
    stats.max_throughput = data.nonsafety_rate * data.pc5_rate_fraction

    avg_sinr = vehicle.average_pc5_sinr()
    if not vehicle.cluster or avg_sinr is None:
        stats.throughput = 0.0
        return

    spectral_eff = min(data.pc5_max_spectral_efficiency, np.log2(1 + 10**(avg_sinr / 10)))
    capacity = data.pc5_data_bandwidth * spectral_eff * data.pc5_overhead * data.pc5_impl_efficiency

    # Shared medium across the cluster
    stats.throughput = float(max(0.0, min(stats.max_throughput, capacity)) / len(vehicle.cluster))


def apply_load_deltas(cells: List[Cell], deltas: Sequence[Dict[int, float]], max_load: float = 100.0):
    """Sum per-vehicle load contributions and apply them to the shared cells"""

    totals = defaultdict(float)
    for delta in deltas:
        for cell_id, value in delta.items():
            totals[cell_id] += value

    for cell in cells:
        if cell.id in totals:
            cell.add_load(totals[cell.id], max_load)


def update_message_queues(vehicle: Vehicle, stats: TransmissionStats, time_step: float,
                          sim_params: SimParams):
    """Grow queues by generated traffic, drain by delivered traffic, floor at 0"""

    data = sim_params.data
    generated = safety_messages_per_step(time_step, data)
    delivered = min(generated, stats.safety_received)
    vehicle.safety_queue = max(0.0, vehicle.safety_queue + generated - delivered)

    packet_bits = data.nonsafety_size * 8
    arrivals = data.nonsafety_rate * time_step / packet_bits
    departures = stats.throughput * time_step / packet_bits
    vehicle.nonsafety_queue = max(0.0, vehicle.nonsafety_queue + arrivals - departures)
