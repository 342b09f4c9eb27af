import numpy as np
import pytest

from v2xsim.scenario_loader import params_from_dict
from v2xsim.network import Cell, Vehicle, HandoverHistory, MACRO, SMALL


@pytest.fixture
def params():
    return params_from_dict({'seed': 42})


@pytest.fixture
def rng():
    return np.random.RandomState(1234)


def make_vehicle(vid=1, x=0.0, y=20.0, vx=0.0, vy=0.0, lane=1, direction='NS', **kwargs):
    history = kwargs.pop('handover_history', None)
    if history is None:
        history = HandoverHistory(5)
    return Vehicle(id=vid, x=x, y=y, vx=vx, vy=vy, lane=lane, direction=direction,
                   handover_history=history, **kwargs)


def make_macro(cid, x, y, load=0.0):
    return Cell(id=cid, type=MACRO, x=x, y=y, height=25.0, tx_power=46.0, load=load)


def make_small(cid, x, y, load=0.0):
    return Cell(id=cid, type=SMALL, x=x, y=y, height=10.0, tx_power=33.0, load=load)
