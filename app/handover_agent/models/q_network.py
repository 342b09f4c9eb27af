# handover_agent/models/q_network.py

import torch.nn as nn


class QNetwork(nn.Module):
    """
    MLP mapping an observation to one Q-value per action.
    """
    def __init__(self, state_dim, action_dim, hidden_dims=(128, 128)):
        super().__init__()
        layers = []
        in_dim = state_dim
        for hidden_dim in hidden_dims:
            layers += [nn.Linear(in_dim, hidden_dim), nn.ReLU()]
            in_dim = hidden_dim
        layers.append(nn.Linear(in_dim, action_dim))
        self.net = nn.Sequential(*layers)

    def forward(self, state):
        return self.net(state)
