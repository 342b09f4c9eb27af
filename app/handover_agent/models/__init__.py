from .q_network import QNetwork

__all__ = ['QNetwork']
