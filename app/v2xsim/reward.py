"""Reward function: safety, throughput and signalling-overhead trade-off"""

import logging
import numpy as np
from typing import Any
from .network import (HO_MCG, HO_SCG_ADD, HO_SCG_REMOVE, HO_SAFETY_TO_UU, HO_NONSAFETY_TO_PC5,
                      HandoverStats, TransmissionStats)
from .scenario_loader import RewardParams

logger = logging.getLogger(__name__)


def _as_scalar(value: Any, default: float) -> float:
    """Coerce possibly missing, array-valued or non-finite input to a float"""
    if value is None:
        return default
    arr = np.asarray(value, dtype=float).ravel()
    arr = arr[np.isfinite(arr)]
    if arr.size == 0:
        return default
    return float(np.mean(arr))


def latency_reward(latency: float, params: RewardParams) -> float:
    if latency <= params.latency_target:
        return 1.0
    return float(np.exp(-params.latency_decay * (1 - params.latency_target / latency)))


def pdr_reward(pdr: float, params: RewardParams) -> float:
    """Piecewise-linear reward, steep just below the reliability target"""
    top = params.safety_threshold
    if pdr >= top:
        return 1.0
    if pdr >= top - 0.1:
        return 0.7 + 3 * (pdr - (top - 0.1))
    if pdr >= top - 0.2:
        return 0.4 + 3 * (pdr - (top - 0.2))
    return 0.4 * max(0.0, pdr) / max(top - 0.2, 1e-6)


def normalized_throughput(throughput: float, max_throughput: float, params: RewardParams) -> float:
    max_tp = max(max_throughput, params.min_max_throughput)
    tp = max(0.0, throughput)
    if params.throughput_scaling == 'linear':
        return min(1.0, tp / max_tp)
    return min(1.0, np.log10(max(1.0, tp)) / np.log10(max_tp))


def handover_penalty(ho_type: int, params: RewardParams) -> float:
    if ho_type == HO_MCG:
        return params.mcg_penalty
    if ho_type in (HO_SCG_ADD, HO_SCG_REMOVE):
        return params.scg_penalty
    if HO_SAFETY_TO_UU <= ho_type <= HO_NONSAFETY_TO_PC5:
        return params.interface_penalty
    return 0.0


def calculate_reward(safety_pdr, latency, throughput, max_throughput, ho_type,
                     is_ping_pong, interface_switch, params: RewardParams) -> float:
    """Bounded scalar reward in [-1, 1]; any internal failure yields 0"""

    try:
        pdr = float(np.clip(_as_scalar(safety_pdr, 0.0), 0.0, 1.0))
        lat = max(1e-6, _as_scalar(latency, 1.0))
        tp = _as_scalar(throughput, 0.0)
        max_tp = _as_scalar(max_throughput, params.min_max_throughput)
        ho = int(round(_as_scalar(ho_type, 0.0)))
        ping_pong = bool(_as_scalar(is_ping_pong, 0.0))
        switch = bool(_as_scalar(interface_switch, 0.0))

        w_safety, w_tp, w_overhead = params.w_safety, params.w_throughput, params.w_overhead
        # Emphasise safety while it is failing
        if pdr < params.poor_pdr or lat > params.poor_latency:
            w_safety += params.safety_boost
            w_tp = max(0.0, w_tp - params.safety_boost / 2)
            w_overhead = max(0.0, w_overhead - params.safety_boost / 2)

        split = params.pdr_latency_split
        safety = split * pdr_reward(pdr, params) + (1 - split) * latency_reward(lat, params)

        overhead = handover_penalty(ho, params)
        if ping_pong:
            overhead += params.pingpong_penalty
        if switch:
            overhead += params.switch_penalty

        reward = w_safety * safety + w_tp * normalized_throughput(tp, max_tp, params) - w_overhead * overhead
    except (ValueError, TypeError, ArithmeticError) as e:
        logger.warning('Reward computation failed, using 0: %s', e)
        return 0.0

    if not np.isfinite(reward):
        return 0.0
    return float(np.clip(reward, -1.0, 1.0))


def reward_from_stats(tx: TransmissionStats, ho: HandoverStats, params: RewardParams) -> float:
    return calculate_reward(tx.safety_pdr, tx.latency, tx.throughput, tx.max_throughput,
                            ho.type, ho.is_ping_pong, ho.interface_switch, params)
