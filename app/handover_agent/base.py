"""Policy capability interface and simple stand-in agents"""

import numpy as np
from typing import Callable, Sequence, Union

NUM_ACTIONS = 8


class Agent:
    """Anything that picks an action code 1..8 from a vehicle observation"""

    def select_action(self, observation) -> int:
        raise NotImplementedError

    def observe(self, observation, action, reward, next_observation, done=False):
        """Feedback hook; stateless agents ignore it"""
        pass

    def end_episode(self):
        pass


class RandomAgent(Agent):
    """Uniformly random baseline"""

    def __init__(self, seed=None, num_actions: int = NUM_ACTIONS):
        self.rng = np.random.RandomState(seed)
        self.num_actions = num_actions

    def select_action(self, observation) -> int:
        return int(self.rng.randint(1, self.num_actions + 1))


class ScriptedAgent(Agent):
    """Deterministic agent replaying a fixed action, a cyclic sequence, or a callable"""

    def __init__(self, script: Union[int, Sequence[int], Callable]):
        self.script = script
        self.calls = 0
        self.observed = []

    def select_action(self, observation) -> int:
        if callable(self.script):
            action = self.script(observation)
        elif isinstance(self.script, int):
            action = self.script
        else:
            action = self.script[self.calls % len(self.script)]
        self.calls += 1
        return int(action)

    def observe(self, observation, action, reward, next_observation, done=False):
        self.observed.append((action, reward, done))
