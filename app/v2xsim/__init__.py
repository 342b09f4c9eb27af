"""V2X dual-connectivity handover simulation"""

from .scenario_loader import SimParams, load_scenario_config, params_from_dict
from .environment import V2XEnvironment, run_episode
from .state_builder import StateVectorBuilder

__all__ = [
    'SimParams',
    'load_scenario_config',
    'params_from_dict',
    'V2XEnvironment',
    'run_episode',
    'StateVectorBuilder',
]
