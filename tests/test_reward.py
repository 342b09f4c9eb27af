import itertools

import numpy as np
import pytest

from v2xsim.reward import (calculate_reward, reward_from_stats, latency_reward, pdr_reward,
                           normalized_throughput, handover_penalty)
from v2xsim.network import HandoverStats, TransmissionStats, HO_MCG, HO_SCG_ADD, HO_SAFETY_TO_PC5
from v2xsim.scenario_loader import params_from_dict

DEGENERATE = [None, float('nan'), float('inf'), -float('inf'), -1e12, 0.0, 1e12,
              [], [0.2, np.nan, 0.8], np.array([[1.0, 2.0]]), 'bad', {'a': 1}]


@pytest.fixture
def rp(params):
    return params.reward


def test_good_link_scores_high(rp):
    r = calculate_reward(1.0, 0.01, 5e6, 5e6, 0, False, False, rp)
    assert 0.8 < r <= 1.0


def test_penalties_lower_reward(rp):
    base = calculate_reward(0.95, 0.05, 1e6, 5e6, 0, False, False, rp)
    mcg = calculate_reward(0.95, 0.05, 1e6, 5e6, HO_MCG, False, False, rp)
    ping_pong = calculate_reward(0.95, 0.05, 1e6, 5e6, HO_MCG, True, False, rp)
    assert base > mcg > ping_pong


@pytest.mark.parametrize('pdr,latency,throughput', list(itertools.product(DEGENERATE[:7], repeat=3)))
def test_bounded_for_degenerate_scalars(rp, pdr, latency, throughput):
    for ho_type, pp, sw in ((0, False, False), (HO_MCG, True, True), (99, 1, 1)):
        r = calculate_reward(pdr, latency, throughput, 5e6, ho_type, pp, sw, rp)
        assert -1.0 <= r <= 1.0


@pytest.mark.parametrize('value', DEGENERATE)
def test_bounded_for_any_single_input(rp, value):
    for position in range(7):
        args = [0.9, 0.05, 1e6, 5e6, 0, False, False]
        args[position] = value
        r = calculate_reward(*args, rp)
        assert isinstance(r, float)
        assert -1.0 <= r <= 1.0


def test_uncoercible_input_gives_zero(rp):
    assert calculate_reward('bad', 0.05, 1e6, 5e6, 0, False, False, rp) == 0.0


def test_array_inputs_use_mean(rp):
    as_array = calculate_reward([0.8, 1.0], 0.05, 1e6, 5e6, 0, False, False, rp)
    as_scalar = calculate_reward(0.9, 0.05, 1e6, 5e6, 0, False, False, rp)
    assert as_array == pytest.approx(as_scalar)


def test_latency_reward_shape(rp):
    assert latency_reward(0.05, rp) == 1.0
    assert latency_reward(0.1, rp) == 1.0
    assert 0.0 < latency_reward(0.5, rp) < latency_reward(0.2, rp) < 1.0


def test_pdr_reward_monotone(rp):
    values = [pdr_reward(p, rp) for p in np.linspace(0, 1, 101)]
    assert all(a <= b + 1e-12 for a, b in zip(values, values[1:]))
    assert pdr_reward(0.95, rp) == 1.0


def test_throughput_normalization(rp):
    assert normalized_throughput(0.0, 5e6, rp) == 0.0
    assert normalized_throughput(5e6, 5e6, rp) == pytest.approx(1.0)
    assert normalized_throughput(1e9, 5e6, rp) == 1.0

    linear = params_from_dict({'reward': {'throughputScaling': 'linear'}}).reward
    assert normalized_throughput(2.5e6, 5e6, linear) == pytest.approx(0.5)


def test_handover_penalty_by_type(rp):
    assert handover_penalty(0, rp) == 0.0
    assert handover_penalty(HO_MCG, rp) > handover_penalty(HO_SCG_ADD, rp) > handover_penalty(HO_SAFETY_TO_PC5, rp)


def test_reward_from_stats(rp):
    tx = TransmissionStats(throughput=1e6, max_throughput=5e6, safety_pdr=0.95, latency=0.02)
    ho = HandoverStats(type=HO_SAFETY_TO_PC5, interface_switch=True)
    r = reward_from_stats(tx, ho, rp)
    assert r == calculate_reward(0.95, 0.02, 1e6, 5e6, HO_SAFETY_TO_PC5, False, True, rp)
