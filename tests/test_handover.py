import logging

import numpy as np
import pytest

from v2xsim.handover import execute_action, handover_allowed, is_ping_pong
from v2xsim.cell_selection import hysteresis_margin, find_best_cell_with_hysteresis
from v2xsim.network import (HandoverHistory, HandoverRecord, PC5LinkMetrics, UU, PC5,
                            HO_NONE, HO_MCG, HO_SCG_ADD, HO_SCG_REMOVE, HO_SAFETY_TO_UU,
                            HO_SAFETY_TO_PC5, HO_NONSAFETY_TO_UU, HO_NONSAFETY_TO_PC5)

from conftest import make_vehicle, make_macro, make_small

CELL_A = 1
CELL_B = 2


@pytest.fixture
def macros():
    return [make_macro(CELL_A, 0.0, 0.0), make_macro(CELL_B, 1000.0, 0.0)]


def _returning_vehicle(t_prev=0.0):
    """Serving B near A, having left A at t_prev"""
    record = HandoverRecord(time=t_prev, type=HO_MCG, from_cell=CELL_A, to_cell=CELL_B)
    history, recent = HandoverHistory(5), HandoverHistory(5)
    history.append(record)
    recent.append(record)
    return make_vehicle(x=0.0, y=20.0, serving_macro_cell=CELL_B, rsrp_uu=-110.0, sinr_uu=-3.0,
                        handover_history=history, recent_cells=recent, last_handover_time=t_prev)


def _snapshot(v):
    return (v.serving_macro_cell, v.serving_small_cell, v.safety_interface,
            v.nonsafety_interface, len(v.handover_history), v.last_handover_time)


def test_return_within_window_is_ping_pong(params, rng, macros):
    vehicle = _returning_vehicle()
    stats = execute_action(vehicle, HO_MCG, macros, [], 10.0, params, rng)

    assert stats.type == HO_MCG
    assert stats.is_ping_pong
    assert vehicle.serving_macro_cell == CELL_A
    assert vehicle.handover_history.latest() == HandoverRecord(10.0, HO_MCG, CELL_B, CELL_A)
    assert vehicle.last_handover_time == 10.0


def test_return_outside_window_is_not_ping_pong(params, rng, macros):
    vehicle = _returning_vehicle()
    stats = execute_action(vehicle, HO_MCG, macros, [], 40.0, params, rng)

    assert stats.type == HO_MCG
    assert not stats.is_ping_pong
    assert vehicle.serving_macro_cell == CELL_A


def test_interface_switches_do_not_hide_ping_pong(params, rng, macros):
    vehicle = _returning_vehicle()
    vehicle.sinr_uu = 12.0
    vehicle.cluster = [2]
    vehicle.pc5_metrics = {2: PC5LinkMetrics(sinr=-10.0, reliability=1.0)}

    for i, action in enumerate([HO_SAFETY_TO_UU, HO_SAFETY_TO_PC5] * 2 + [HO_SAFETY_TO_UU]):
        vehicle.pc5_metrics[2].sinr = -10.0 if action == HO_SAFETY_TO_UU else 12.0
        assert execute_action(vehicle, action, macros, [], 0.1 * (i + 1), params, rng).interface_switch

    # the A -> B record has left the general history but not the MCG ring
    assert all(r.type != HO_MCG for r in vehicle.handover_history)
    assert len(vehicle.recent_cells) == 1

    vehicle.sinr_uu = -3.0
    stats = execute_action(vehicle, HO_MCG, macros, [], 6.0, params, rng)
    assert stats.type == HO_MCG
    assert stats.is_ping_pong
    assert vehicle.recent_cells.latest() == HandoverRecord(6.0, HO_MCG, CELL_B, CELL_A)


def test_ping_pong_window_is_configurable(rng, macros):
    from v2xsim.scenario_loader import params_from_dict
    params = params_from_dict({'handover': {'pingPongWindow': 15}})
    vehicle = _returning_vehicle()
    stats = execute_action(vehicle, HO_MCG, macros, [], 20.0, params, rng)
    assert stats.type == HO_MCG
    assert not stats.is_ping_pong


def test_second_handover_within_interval_rejected(params, rng, macros):
    vehicle = make_vehicle(x=0.0, y=20.0, serving_macro_cell=CELL_B, rsrp_uu=-110.0)
    first = execute_action(vehicle, HO_MCG, macros, [], 100.0, params, rng)
    assert first.type == HO_MCG
    assert vehicle.serving_macro_cell == CELL_A

    # Now parked next to B with a collapsed A link
    vehicle.position = (1000.0, 20.0)
    vehicle.rsrp_uu = -125.0
    before = _snapshot(vehicle)

    second = execute_action(vehicle, HO_MCG, macros, [], 102.0, params, rng)
    assert second.type == HO_NONE
    assert _snapshot(vehicle) == before

    third = execute_action(vehicle, HO_MCG, macros, [], 106.0, params, rng)
    assert third.type == HO_MCG
    assert vehicle.serving_macro_cell == CELL_B
    assert len(vehicle.handover_history) == 2


def test_mcg_stays_when_current_is_best(params, rng, macros):
    vehicle = make_vehicle(x=0.0, y=20.0, serving_macro_cell=CELL_A, rsrp_uu=-70.0)
    stats = execute_action(vehicle, HO_MCG, macros, [], 0.0, params, rng)
    assert stats.type == HO_NONE
    assert vehicle.serving_macro_cell == CELL_A
    assert len(vehicle.handover_history) == 0


def test_scg_add_rejected_without_mcg(params, rng):
    cells = [make_macro(1, 0.0, 0.0), make_small(2, 150.0, 0.0)]
    vehicle = make_vehicle(x=150.0, y=10.0, serving_macro_cell=0, sinr_uu=0.0)
    before = _snapshot(vehicle)

    stats = execute_action(vehicle, HO_SCG_ADD, cells, [], 0.0, params, rng)

    assert stats.type == HO_NONE
    assert vehicle.serving_small_cell == 0
    assert _snapshot(vehicle) == before


def test_scg_add_then_remove(params, rng):
    cells = [make_macro(1, 0.0, 0.0), make_small(2, 150.0, 0.0), make_small(3, -150.0, 0.0)]
    vehicle = make_vehicle(x=150.0, y=10.0, serving_macro_cell=1, sinr_uu=5.0)

    added = execute_action(vehicle, HO_SCG_ADD, cells, [], 0.0, params, rng)
    assert added.type == HO_SCG_ADD
    assert vehicle.serving_small_cell == 2
    assert vehicle.sinr_scg is not None

    # Already attached
    again = execute_action(vehicle, HO_SCG_ADD, cells, [], 10.0, params, rng)
    assert again.type == HO_NONE

    # Macro not yet strong enough
    vehicle.sinr_uu = 18.0
    assert execute_action(vehicle, HO_SCG_REMOVE, cells, [], 10.0, params, rng).type == HO_NONE

    vehicle.sinr_uu = 25.0
    removed = execute_action(vehicle, HO_SCG_REMOVE, cells, [], 10.0, params, rng)
    assert removed.type == HO_SCG_REMOVE
    assert vehicle.serving_small_cell == 0
    assert vehicle.handover_history.latest().from_cell == 2


def test_scg_add_needs_weak_macro(params, rng):
    cells = [make_macro(1, 0.0, 0.0), make_small(2, 150.0, 0.0)]
    vehicle = make_vehicle(x=150.0, y=10.0, serving_macro_cell=1, sinr_uu=30.0)
    assert execute_action(vehicle, HO_SCG_ADD, cells, [], 0.0, params, rng).type == HO_NONE
    assert vehicle.serving_small_cell == 0


def test_safety_interface_switches(params, rng, macros):
    vehicle = make_vehicle(x=500.0, y=20.0, serving_macro_cell=CELL_A, sinr_uu=10.0)

    to_uu = execute_action(vehicle, HO_SAFETY_TO_UU, macros, [], 0.0, params, rng)
    assert to_uu.type == HO_SAFETY_TO_UU
    assert to_uu.interface_switch
    assert vehicle.safety_interface == UU

    # Weak PC5 keeps safety on Uu
    vehicle.pc5_metrics = {2: PC5LinkMetrics(sinr=3.0, reliability=1.0)}
    vehicle.cluster = [2]
    assert execute_action(vehicle, HO_SAFETY_TO_PC5, macros, [], 0.5, params, rng).type == HO_NONE

    # Interface switches are not held back by the handover timer
    vehicle.pc5_metrics = {2: PC5LinkMetrics(sinr=12.0, reliability=1.0)}
    to_pc5 = execute_action(vehicle, HO_SAFETY_TO_PC5, macros, [], 0.5, params, rng)
    assert to_pc5.type == HO_SAFETY_TO_PC5
    assert vehicle.safety_interface == PC5
    assert len(vehicle.handover_history) == 2
    assert vehicle.last_handover_time == 0.5


def test_safety_to_uu_requires_adequate_uu(params, rng, macros):
    vehicle = make_vehicle(x=500.0, y=20.0, serving_macro_cell=CELL_A, sinr_uu=2.0)
    assert execute_action(vehicle, HO_SAFETY_TO_UU, macros, [], 0.0, params, rng).type == HO_NONE
    assert vehicle.safety_interface == PC5


def test_nonsafety_to_pc5_needs_cluster(params, rng, macros):
    vehicle = make_vehicle(x=500.0, y=20.0, serving_macro_cell=CELL_A, sinr_uu=10.0)
    assert execute_action(vehicle, HO_NONSAFETY_TO_PC5, macros, [], 0.0, params, rng).type == HO_NONE


def test_nonsafety_to_pc5_on_congestion_then_back(params, rng, macros):
    macros[0].load = 85.0
    vehicle = make_vehicle(x=500.0, y=20.0, serving_macro_cell=CELL_A, sinr_uu=10.0, cluster=[2],
                           pc5_metrics={2: PC5LinkMetrics(sinr=0.0, reliability=1.0)})

    to_pc5 = execute_action(vehicle, HO_NONSAFETY_TO_PC5, macros, [], 0.0, params, rng)
    assert to_pc5.type == HO_NONSAFETY_TO_PC5
    assert vehicle.nonsafety_interface == PC5

    vehicle.sinr_uu = -1.0
    assert execute_action(vehicle, HO_NONSAFETY_TO_UU, macros, [], 1.0, params, rng).type == HO_NONE

    vehicle.sinr_uu = 3.0
    to_uu = execute_action(vehicle, HO_NONSAFETY_TO_UU, macros, [], 1.0, params, rng)
    assert to_uu.type == HO_NONSAFETY_TO_UU
    assert vehicle.nonsafety_interface == UU


def test_nonsafety_to_uu_avoids_loaded_shared_link(params, rng, macros):
    vehicle = make_vehicle(x=500.0, y=20.0, serving_macro_cell=CELL_A, sinr_uu=8.0,
                           safety_interface=UU, nonsafety_interface=PC5)
    assert execute_action(vehicle, HO_NONSAFETY_TO_UU, macros, [], 0.0, params, rng).type == HO_NONE

    vehicle.sinr_uu = 20.0
    assert execute_action(vehicle, HO_NONSAFETY_TO_UU, macros, [], 0.0, params, rng).type == HO_NONSAFETY_TO_UU


@pytest.mark.parametrize('action', [0, 9, 99, -3, 'abc', None])
def test_unknown_action_is_noop(params, rng, macros, caplog, action):
    vehicle = _returning_vehicle()
    before = _snapshot(vehicle)

    with caplog.at_level(logging.WARNING, logger='v2xsim.handover'):
        stats = execute_action(vehicle, action, macros, [], 10.0, params, rng)

    assert stats.type == HO_NONE
    assert _snapshot(vehicle) == before
    assert 'Unknown action' in caplog.text


def test_noop_action(params, rng, macros):
    vehicle = _returning_vehicle()
    before = _snapshot(vehicle)
    assert execute_action(vehicle, 8, macros, [], 10.0, params, rng).type == HO_NONE
    assert _snapshot(vehicle) == before


def test_history_is_bounded(params, rng, macros):
    vehicle = make_vehicle(x=500.0, y=20.0, serving_macro_cell=CELL_A, sinr_uu=10.0,
                           cluster=[2], pc5_metrics={2: PC5LinkMetrics(sinr=12.0, reliability=1.0)})
    for i in range(8):
        action = HO_SAFETY_TO_UU if i % 2 == 0 else HO_SAFETY_TO_PC5
        vehicle.pc5_metrics[2].sinr = -10.0 if i % 2 == 0 else 12.0
        assert execute_action(vehicle, action, macros, [], float(i), params, rng).interface_switch

    times = [r.time for r in vehicle.handover_history]
    assert times == [3.0, 4.0, 5.0, 6.0, 7.0]


def test_handover_allowed_and_ping_pong_helpers(params):
    vehicle = _returning_vehicle(t_prev=0.0)
    assert not handover_allowed(vehicle, 4.9, params)
    assert handover_allowed(vehicle, 5.0, params)
    assert is_ping_pong(vehicle, CELL_A, 29.9, params)
    assert not is_ping_pong(vehicle, CELL_A, 30.0, params)
    assert not is_ping_pong(vehicle, CELL_B, 10.0, params)


def test_hysteresis_margin_context(params):
    slow = make_vehicle(x=500.0, y=20.0)
    fast = make_vehicle(x=500.0, y=20.0, vx=12.0)
    assert hysteresis_margin(fast, params, False) > hysteresis_margin(slow, params, False)
    assert hysteresis_margin(slow, params, True) < hysteresis_margin(slow, params, False)

    dropping = make_vehicle(x=500.0, y=20.0, sinr_uu=5.0, previous_sinr_uu=10.0)
    assert hysteresis_margin(dropping, params, False) < hysteresis_margin(slow, params, False)
    assert hysteresis_margin(dropping, params, True) >= params.handover.intersection_min_hysteresis


def test_best_cell_without_current(params, rng):
    cells = [make_small(2, 150.0, 0.0), make_small(3, -150.0, 0.0)]
    vehicle = make_vehicle(x=140.0, y=10.0)
    best_id, estimate = find_best_cell_with_hysteresis(vehicle, cells, 0, None, [], params, rng)
    assert best_id == 2
    assert np.isfinite(estimate.rsrp)
