# handover_agent/transition.py
import random
from collections import namedtuple, deque

import numpy as np

Transition = namedtuple('Transition', ['state', 'action', 'reward', 'next_state', 'done'])


class ReplayBuffer:
    """Fixed-capacity experience replay for off-policy learning (oldest dropped first)."""
    def __init__(self, capacity=50000, seed=None):
        self.memory = deque(maxlen=capacity)
        self.rng = random.Random(seed)

    def add(self, transition: Transition):
        """Save a transition."""
        self.memory.append(transition)

    def sample(self, batch_size):
        """Uniform random batch as stacked arrays."""
        batch = self.rng.sample(list(self.memory), batch_size)

        states = np.array([t.state for t in batch], dtype=np.float32)
        actions = np.array([t.action for t in batch], dtype=np.int64)
        rewards = np.array([t.reward for t in batch], dtype=np.float32)
        next_states = np.array([t.next_state for t in batch], dtype=np.float32)
        dones = np.array([t.done for t in batch], dtype=np.float32)

        return states, actions, rewards, next_states, dones

    def clear(self):
        self.memory.clear()

    def __len__(self):
        return len(self.memory)
