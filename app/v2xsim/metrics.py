"""Flat per-vehicle step records and run-level aggregates"""

import numpy as np
from dataclasses import dataclass, asdict
from typing import List, Dict, Any
from .network import (Vehicle, HandoverStats, TransmissionStats, HANDOVER_TYPE_NAMES,
                      HO_NONE, HO_MCG)


@dataclass
class StepRecord:
    time: float
    vehicle_id: int
    action: int
    handover_type: int
    is_ping_pong: bool
    interface_switch: bool
    safety_pdr: float
    latency: float
    throughput: float
    max_throughput: float
    reward: float
    serving_macro_cell: int
    serving_small_cell: int
    safety_interface: str
    nonsafety_interface: str
    cluster_size: int


class MetricsRecorder:
    """Collects one StepRecord per vehicle per step for external consumers"""

    def __init__(self):
        self.records: List[StepRecord] = []

    def record(self, time: float, vehicle: Vehicle, action: int, ho: HandoverStats,
               tx: TransmissionStats, reward: float) -> StepRecord:
        rec = StepRecord(
            time=time,
            vehicle_id=vehicle.id,
            action=action,
            handover_type=ho.type,
            is_ping_pong=ho.is_ping_pong,
            interface_switch=ho.interface_switch,
            safety_pdr=tx.safety_pdr,
            latency=tx.latency,
            throughput=tx.throughput,
            max_throughput=tx.max_throughput,
            reward=reward,
            serving_macro_cell=vehicle.serving_macro_cell,
            serving_small_cell=vehicle.serving_small_cell,
            safety_interface=vehicle.safety_interface,
            nonsafety_interface=vehicle.nonsafety_interface,
            cluster_size=len(vehicle.cluster),
        )
        self.records.append(rec)
        return rec

    def as_dicts(self) -> List[Dict[str, Any]]:
        return [asdict(r) for r in self.records]

    def time_series(self, field: str) -> Dict[str, np.ndarray]:
        """Per-step mean of one record field, for plotting"""
        by_time = {}
        for r in self.records:
            by_time.setdefault(r.time, []).append(getattr(r, field))
        times = np.array(sorted(by_time))
        values = np.array([np.mean(by_time[t]) for t in times]) if len(times) else np.array([])
        return {'time': times, 'value': values}

    def clear(self):
        self.records = []


def calculate_aggregate_metrics(records: List[StepRecord]) -> Dict[str, Any]:
    """Run-level KPIs over the flat record stream"""

    if not records:
        return {
            'num_records': 0,
            'avg_throughput': 0.0,
            'avg_pdr': 0.0,
            'avg_latency': 0.0,
            'avg_reward': 0.0,
            'total_handovers': 0,
            'handover_counts': {name: 0 for name in HANDOVER_TYPE_NAMES.values()},
            'ping_pong_count': 0,
            'ping_pong_ratio': 0.0,
        }

    counts = {name: 0 for name in HANDOVER_TYPE_NAMES.values()}
    for r in records:
        if r.handover_type != HO_NONE:
            counts[HANDOVER_TYPE_NAMES[r.handover_type]] += 1

    ping_pongs = sum(1 for r in records if r.is_ping_pong)
    mcg_count = counts[HANDOVER_TYPE_NAMES[HO_MCG]]

    return {
        'num_records': len(records),
        'avg_throughput': float(np.mean([r.throughput for r in records])),
        'avg_pdr': float(np.mean([r.safety_pdr for r in records])),
        'avg_latency': float(np.mean([r.latency for r in records])),
        'avg_reward': float(np.mean([r.reward for r in records])),
        'total_handovers': int(sum(counts.values())),
        'handover_counts': counts,
        'ping_pong_count': ping_pongs,
        'ping_pong_ratio': ping_pongs / mcg_count if mcg_count > 0 else 0.0,
    }
