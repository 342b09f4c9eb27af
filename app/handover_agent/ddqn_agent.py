import numpy as np
import torch
import torch.nn as nn
import torch.optim as optim
import logging
import os
from datetime import datetime
import yaml
import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

from .base import Agent, NUM_ACTIONS
from .transition import Transition, ReplayBuffer
from .models import QNetwork

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'config.yaml')


def load_agent_config(path=None):
    """Read agent hyperparameters from YAML"""
    path = path or DEFAULT_CONFIG_PATH
    with open(path, 'r') as f:
        return yaml.safe_load(f)


class DDQNAgent(Agent):
    def __init__(self, state_dim=10, action_dim=NUM_ACTIONS, config=None, config_path=None):
        """
        Double DQN agent choosing one handover action per vehicle observation

        Args:
            state_dim (int): Observation length
            action_dim (int): Number of action codes (agent outputs 1..action_dim)
            config (dict): Hyperparameters; read from config_path when None
            config_path (str): YAML file with hyperparameters
        """
        if config is None:
            config = load_agent_config(config_path)

        self.state_dim = int(state_dim)
        self.action_dim = int(action_dim)
        self.use_gpu = bool(config.get('use_gpu', False)) and torch.cuda.is_available()
        self.device = torch.device('cuda' if self.use_gpu else 'cpu')

        seed = int(config.get('seed', 42))
        torch.manual_seed(seed)
        self.rng = np.random.RandomState(seed)

        # DDQN hyperparameters
        self.gamma = float(config['gamma'])
        self.learning_rate = float(config['learning_rate'])
        self.epsilon = float(config['epsilon'])
        self.epsilon_decay = float(config['epsilon_decay'])
        self.epsilon_min = float(config['epsilon_min'])
        self.batch_size = int(config['batch_size'])
        self.target_update = int(config['target_update'])
        self.update_frequency = int(config.get('update_frequency', 1))
        self.hidden_dims = tuple(config.get('hidden_dims', [128, 128]))

        self.q_network = QNetwork(self.state_dim, self.action_dim, self.hidden_dims).to(self.device)
        self.target_network = QNetwork(self.state_dim, self.action_dim, self.hidden_dims).to(self.device)
        self.target_network.load_state_dict(self.q_network.state_dict())
        self.target_network.eval()

        self.optimizer = optim.Adam(self.q_network.parameters(), lr=self.learning_rate)
        self.loss_fn = nn.SmoothL1Loss()

        self.buffer = ReplayBuffer(int(config['buffer_size']), seed=seed)

        self.training_mode = bool(config.get('training_mode', True))
        self.checkpoint_load_path = config.get('checkpoint_load_path')
        self.checkpoint_save_path = config.get('checkpoint_save_path')

        # Counters and metrics
        self.total_steps = 0
        self.train_steps = 0
        self.total_episodes = 0
        self.episode_reward = 0.0
        self.metrics = {'loss': [], 'episode_reward': [], 'epsilon': []}

        self.setup_logging()
        self.logger.info(f"DDQN Agent initialized: state dim {self.state_dim}, action dim {self.action_dim}")
        self.logger.info(f"Device: {self.device}")

        if self.checkpoint_load_path and os.path.exists(self.checkpoint_load_path):
            self.load_model(self.checkpoint_load_path)

    def setup_logging(self):
        """Setup logging configuration"""
        self.logger = logging.getLogger('DDQNAgent')
        self.logger.setLevel(logging.INFO)

        # Clear existing handlers
        self.logger.handlers.clear()

        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.INFO)

        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        console_handler.setFormatter(formatter)

        self.logger.addHandler(console_handler)

    def select_action(self, observation) -> int:
        """Epsilon-greedy action code in 1..action_dim"""
        if self.training_mode and self.rng.rand() < self.epsilon:
            return int(self.rng.randint(self.action_dim)) + 1

        state = torch.as_tensor(np.asarray(observation, dtype=np.float32), device=self.device).unsqueeze(0)
        with torch.no_grad():
            q_values = self.q_network(state)
        return int(q_values.argmax(dim=1).item()) + 1

    def observe(self, observation, action, reward, next_observation, done=False):
        """Store a transition and train on schedule"""
        index = int(action) - 1
        if not 0 <= index < self.action_dim:
            return

        self.buffer.add(Transition(np.asarray(observation, dtype=np.float32), index, float(reward),
                                   np.asarray(next_observation, dtype=np.float32), bool(done)))
        self.total_steps += 1
        self.episode_reward += float(reward)

        if not self.training_mode:
            return

        if self.total_steps % self.update_frequency == 0 and len(self.buffer) >= self.batch_size:
            self.train()

        if self.total_steps % self.target_update == 0:
            self.target_network.load_state_dict(self.q_network.state_dict())

    def train(self):
        """One Double-DQN gradient step on a replay batch"""
        states, actions, rewards, next_states, dones = self.buffer.sample(self.batch_size)

        states = torch.as_tensor(states, device=self.device)
        actions = torch.as_tensor(actions, device=self.device).unsqueeze(1)
        rewards = torch.as_tensor(rewards, device=self.device)
        next_states = torch.as_tensor(next_states, device=self.device)
        dones = torch.as_tensor(dones, device=self.device)

        q_values = self.q_network(states).gather(1, actions).squeeze(1)

        with torch.no_grad():
            # Online network picks, target network evaluates
            next_actions = self.q_network(next_states).argmax(dim=1, keepdim=True)
            next_q = self.target_network(next_states).gather(1, next_actions).squeeze(1)
            targets = rewards + self.gamma * (1.0 - dones) * next_q

        loss = self.loss_fn(q_values, targets)

        self.optimizer.zero_grad()
        loss.backward()
        nn.utils.clip_grad_norm_(self.q_network.parameters(), 10.0)
        self.optimizer.step()

        self.train_steps += 1
        self.metrics['loss'].append(float(loss.item()))
        return float(loss.item())

    def end_episode(self):
        self.total_episodes += 1
        self.metrics['episode_reward'].append(self.episode_reward)
        self.metrics['epsilon'].append(self.epsilon)
        self.logger.info(f"Episode {self.total_episodes} finished: reward {self.episode_reward:.2f}, "
                         f"epsilon {self.epsilon:.3f}, buffer {len(self.buffer)}")

        if self.training_mode:
            self.epsilon = max(self.epsilon_min, self.epsilon * self.epsilon_decay)
        self.episode_reward = 0.0

    def save_model(self, filepath=None):
        """Save model parameters"""
        if filepath is None:
            filepath = self.checkpoint_save_path
        if filepath is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filepath = f"ddqn_model_{timestamp}.pth"

        # Create parent directory if it doesn't exist
        parent_dir = os.path.dirname(filepath)
        if parent_dir and not os.path.exists(parent_dir):
            os.makedirs(parent_dir, exist_ok=True)
            self.logger.info(f"Created directory: {parent_dir}")

        checkpoint = {
            'q_network_state_dict': self.q_network.state_dict(),
            'target_network_state_dict': self.target_network.state_dict(),
            'optimizer_state_dict': self.optimizer.state_dict(),
            'epsilon': self.epsilon,
            'episodes_trained': self.total_episodes,
        }

        torch.save(checkpoint, filepath)
        self.logger.info(f"Model saved to {filepath}")
        return filepath

    def load_model(self, filepath):
        """Load model parameters"""
        checkpoint = torch.load(filepath, map_location=self.device, weights_only=True)

        self.q_network.load_state_dict(checkpoint['q_network_state_dict'])
        self.target_network.load_state_dict(checkpoint['target_network_state_dict'])
        self.optimizer.load_state_dict(checkpoint['optimizer_state_dict'])
        self.epsilon = float(checkpoint.get('epsilon', self.epsilon))
        self.total_episodes = int(checkpoint.get('episodes_trained', 0))

        self.logger.info(f"Model loaded from {filepath}")

    def set_training_mode(self, training):
        """Set training mode"""
        self.training_mode = training
        self.q_network.train(training)
        self.logger.info(f"Training mode set to {training}")

    def save_plots(self, out_dir='plots'):
        """Save training curves"""
        if not any(self.metrics.values()):
            return None

        def ma(data, window=10):
            if len(data) < window:
                return data
            return np.convolve(data, np.ones(window)/window, mode='valid')

        fig, axes = plt.subplots(1, 3, figsize=(16, 4))
        fig.suptitle(f'Episode {self.total_episodes} - DDQN Metrics', fontsize=14)

        if self.metrics['episode_reward']:
            axes[0].plot(self.metrics['episode_reward'], alpha=0.6, label='Reward')
            axes[0].set_title('Episode Reward')
            axes[0].grid(True, alpha=0.3)
            axes[0].legend(fontsize=8)

        if self.metrics['loss']:
            axes[1].plot(self.metrics['loss'], alpha=0.4, label='Loss')
            if len(self.metrics['loss']) >= 10:
                axes[1].plot(ma(self.metrics['loss']), label='Loss MA', linewidth=2)
            axes[1].set_title('TD Loss')
            axes[1].grid(True, alpha=0.3)
            axes[1].legend(fontsize=8)

        if self.metrics['epsilon']:
            axes[2].plot(self.metrics['epsilon'], color='purple', label='Epsilon')
            axes[2].set_title('Exploration Rate')
            axes[2].grid(True, alpha=0.3)
            axes[2].legend(fontsize=8)

        plt.tight_layout()
        os.makedirs(out_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        out_path = os.path.join(out_dir, f'ddqn_{timestamp}.png')
        plt.savefig(out_path, dpi=150, bbox_inches='tight')
        plt.close()
        self.logger.info(f"Metrics plot saved to {out_path}")
        return out_path
