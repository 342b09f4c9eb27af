"""Observation vector construction for the handover policy"""

import numpy as np
from typing import List, Optional
from .network import Cell, Vehicle, TrafficSignals, find_cell

NEUTRAL = 0.5


class StateVectorBuilder:
    """
    Map per-vehicle radio, traffic and kinematic quantities to a fixed-length
    vector in [0, 1] using min-max scaling against fixed bounds.

    Missing quantities (no serving cell yet, no PC5 neighbours) are encoded as
    0.5 so an untrained policy sees them as neither good nor bad.
    """

    def __init__(self, max_speed: float = 14.0):
        # Feature order is the observation layout
        self.bounds = {
            'rsrpUu': [-140, -44],  # dBm, reporting range
            'sinrUu': [-10, 40],  # dB
            'avgSinrPc5': [-5, 25],  # dB
            'clusterSize': [0, 10],
            'servingLoad': [0, 100],  # percent
            'speed': [0, max_speed],  # m/s
            'safetyQueue': [0, 10],  # messages
            'nonsafetyQueue': [0, 20],  # packets
            'signalGreen': [0, 1],
            'stopped': [0, 1],
        }
        self.state_dim = len(self.bounds)

    def _normalize_value(self, value, min_val, max_val):
        if value is None or max_val == min_val or not np.isfinite(value):
            return NEUTRAL
        return float(np.clip((value - min_val) / (max_val - min_val), 0.0, 1.0))

    def raw_features(self, vehicle: Vehicle, cells: List[Cell], signals: Optional[TrafficSignals]) -> list:
        macro = find_cell(cells, vehicle.serving_macro_cell)
        return [
            vehicle.rsrp_uu,
            vehicle.sinr_uu,
            vehicle.average_pc5_sinr(),
            len(vehicle.cluster),
            macro.load if macro is not None else None,
            vehicle.speed,
            vehicle.safety_queue,
            vehicle.nonsafety_queue,
            (1.0 if signals.is_green(vehicle.direction) else 0.0) if signals is not None else None,
            1.0 if vehicle.stopped else 0.0,
        ]

    def build(self, vehicle: Vehicle, cells: List[Cell], signals: Optional[TrafficSignals] = None) -> np.ndarray:
        """Normalized observation for one vehicle"""
        raw = self.raw_features(vehicle, cells, signals)
        state = np.full(self.state_dim, NEUTRAL, dtype=np.float32)
        for i, (value, (min_val, max_val)) in enumerate(zip(raw, self.bounds.values())):
            state[i] = self._normalize_value(value, min_val, max_val)
        return state

    def build_all(self, vehicles: List[Vehicle], cells: List[Cell],
                  signals: Optional[TrafficSignals] = None) -> np.ndarray:
        if not vehicles:
            return np.zeros((0, self.state_dim), dtype=np.float32)
        return np.stack([self.build(v, cells, signals) for v in vehicles])
