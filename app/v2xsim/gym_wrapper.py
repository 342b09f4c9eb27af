"""Gymnasium wrapper for V2XEnvironment"""

import gymnasium as gym
import numpy as np
from typing import Optional, Dict, Tuple

from .environment import V2XEnvironment


class V2XGymWrapper(gym.Env):
    """
    Gymnasium view of V2XEnvironment

    Actions are 0-based per vehicle (MultiDiscrete) and mapped to the 1..8
    action codes; the scalar reward is the mean over vehicles.
    """

    metadata = {'render_modes': []}

    def __init__(self, scenario: str = 'urban_intersection', seed: Optional[int] = None,
                 scenarios_dir: Optional[str] = None, sim_params=None):
        super().__init__()

        self.env = V2XEnvironment(scenario=scenario, seed=seed, scenarios_dir=scenarios_dir,
                                  sim_params=sim_params)

        self.action_space = gym.spaces.MultiDiscrete([self.env.action_dim] * self.env.n_vehicles)
        self.observation_space = gym.spaces.Box(
            low=0.0,
            high=1.0,
            shape=(self.env.n_vehicles, self.env.state_dim),
            dtype=np.float32
        )

        self.scenario = scenario

    def reset(self, seed: Optional[int] = None, options: Optional[Dict] = None) -> Tuple[np.ndarray, Dict]:
        super().reset(seed=seed)
        obs, info = self.env.reset(seed=seed, options=options)
        return obs.astype(np.float32), info

    def step(self, action: np.ndarray) -> Tuple[np.ndarray, float, bool, bool, Dict]:
        codes = np.asarray(action, dtype=np.int64) + 1
        obs, rewards, done, truncated, info = self.env.step(codes)
        info['vehicle_rewards'] = rewards
        reward = float(np.mean(rewards)) if len(rewards) else 0.0
        return obs.astype(np.float32), reward, done, truncated, info


def make_env(scenario: str, seed: int):
    """Environment factory for vectorised runners"""
    def _init():
        return V2XGymWrapper(scenario=scenario, seed=seed)
    return _init
