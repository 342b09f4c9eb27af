"""Handover policies for the V2X simulation"""

from .base import Agent, RandomAgent, ScriptedAgent
from .ddqn_agent import DDQNAgent, load_agent_config

__all__ = ['Agent', 'RandomAgent', 'ScriptedAgent', 'DDQNAgent', 'load_agent_config']
