"""V2X dual-connectivity environment - step loop over all vehicles"""

import logging
import numpy as np
from pathlib import Path
from typing import List, Dict, Any, Tuple, Optional

from .network import HandoverStats, TransmissionStats, ACTION_NO_OP, VEHICLE_ERRORS
from .scenario_loader import SimParams, load_scenario_config
from .network_init import World, create_world
from .mobility import update_traffic_signals, update_vehicle_mobility, identify_pc5_clusters
from .signal_measurement import update_signal_measurements
from .channel import derive_rng, SELECTION_STREAM, TRANSMISSION_STREAM
from .handover import execute_action
from .transmission import data_transmission, apply_load_deltas, update_message_queues
from .reward import reward_from_stats
from .state_builder import StateVectorBuilder
from .metrics import MetricsRecorder, calculate_aggregate_metrics

logger = logging.getLogger(__name__)


class V2XEnvironment:
    """Multi-vehicle handover simulation (one action and one reward per vehicle per step)"""

    def __init__(self, scenario: str = 'urban_intersection', seed: Optional[int] = None,
                 scenarios_dir: Optional[str] = None, sim_params: Optional[SimParams] = None):
        self.scenario_name = scenario

        # Load scenario configuration
        if sim_params is None:
            sim_params = load_scenario_config(scenario, scenarios_dir=Path(scenarios_dir) if scenarios_dir else None)
        self.sim_params = sim_params
        self.seed_value = sim_params.seed if seed is None else seed
        self.sim_params.seed = self.seed_value

        self.world = World()
        self.state_builder = StateVectorBuilder(max_speed=self.sim_params.vehicle.max_speed)
        self.metrics = MetricsRecorder()

        # Simulation state
        self.current_step = 0
        self.current_time = 0.0

        self.n_vehicles = self.sim_params.vehicle.count
        self.state_dim = self.state_builder.state_dim
        self.action_dim = 8

    @property
    def vehicles(self):
        return self.world.vehicles

    @property
    def cells(self):
        return self.world.cells

    def reset(self, seed: Optional[int] = None, options: Optional[Dict] = None) -> Tuple[np.ndarray, Dict]:
        """Rebuild the world and return the first observation, shape (n_vehicles, state_dim)"""

        if seed is not None:
            self.seed_value = seed
            self.sim_params.seed = seed

        self.world = create_world(self.sim_params, self.seed_value)
        self.metrics.clear()

        self.current_step = 0
        self.current_time = 0.0

        # Initial clusters and measurements
        identify_pc5_clusters(self.world.vehicles, self.sim_params)
        update_signal_measurements(self.world.vehicles, self.world.cells, self.world.buildings,
                                   self.current_step, self.sim_params)

        obs = self.state_builder.build_all(self.world.vehicles, self.world.cells, self.world.signals)
        info = {
            'step': self.current_step,
            'time': self.current_time,
        }
        return obs, info

    def step(self, actions) -> Tuple[np.ndarray, np.ndarray, bool, bool, Dict]:
        """
        Apply one action per vehicle, transmit, score and advance time

        Args:
            actions: Action codes 1..8, one per vehicle in id order (a scalar applies to all)

        Returns:
            next observation, per-vehicle rewards, done, truncated, info
        """

        sp = self.sim_params
        vehicles = self.world.vehicles
        cells = self.world.cells
        actions = self._coerce_actions(actions)

        # Connectivity decisions
        ho_stats: List[HandoverStats] = []
        for vehicle, action in zip(vehicles, actions):
            rng = derive_rng(self.seed_value, SELECTION_STREAM, self.current_step, vehicle.id)
            try:
                ho = execute_action(vehicle, action, cells, self.world.buildings,
                                    self.current_time, sp, rng)
            except VEHICLE_ERRORS as e:
                logger.warning('Vehicle %d: action %s failed (%s), no change applied', vehicle.id, action, e)
                ho = HandoverStats()
            ho_stats.append(ho)

        # Cell load relaxation
        if sp.network.load_decay < 1.0:
            for cell in cells:
                cell.load *= sp.network.load_decay

        # Transmission reads the same load snapshot for every vehicle, increments are applied afterwards
        tx_stats: List[TransmissionStats] = []
        load_deltas = []
        for vehicle in vehicles:
            rng = derive_rng(self.seed_value, TRANSMISSION_STREAM, self.current_step, vehicle.id)
            try:
                tx, delta = data_transmission(vehicle, cells, sp.time_step, sp, rng)
            except VEHICLE_ERRORS as e:
                logger.warning('Vehicle %d: transmission model failed (%s), using defaults', vehicle.id, e)
                tx, delta = TransmissionStats(safety_pdr=0.0, latency=sp.data.no_link_latency), {}
            try:
                update_message_queues(vehicle, tx, sp.time_step, sp)
            except VEHICLE_ERRORS as e:
                logger.warning('Vehicle %d: queue update failed (%s), queues left unchanged', vehicle.id, e)
            tx_stats.append(tx)
            load_deltas.append(delta)
        apply_load_deltas(cells, load_deltas, sp.network.max_load)

        rewards = np.array([reward_from_stats(tx, ho, sp.reward) for tx, ho in zip(tx_stats, ho_stats)],
                           dtype=np.float32)

        for vehicle, action, ho, tx, r in zip(vehicles, actions, ho_stats, tx_stats, rewards):
            self.metrics.record(self.current_time, vehicle, action, ho, tx, float(r))

        # Advance time
        self.current_step += 1
        self.current_time = self.current_step * sp.time_step
        self._advance_world()

        next_obs = self.state_builder.build_all(vehicles, cells, self.world.signals)

        if sp.log_interval > 0 and self.current_step % sp.log_interval == 0:
            logger.info('Step %d/%d: mean reward %.3f, mean PDR %.3f, handovers %d',
                        self.current_step, sp.total_steps, float(np.mean(rewards)) if len(rewards) else 0.0,
                        float(np.mean([t.safety_pdr for t in tx_stats])) if tx_stats else 0.0,
                        sum(1 for h in ho_stats if h.type != 0))

        done = self.current_step >= sp.total_steps
        truncated = False

        info = {
            'step': self.current_step,
            'time': self.current_time,
            'handover_stats': ho_stats,
            'transmission_stats': tx_stats,
            'cell_loads': {c.id: c.load for c in cells},
        }
        return next_obs, rewards, done, truncated, info

    def _advance_world(self):
        sp = self.sim_params
        update_traffic_signals(self.world.signals, sp.time_step)
        try:
            update_vehicle_mobility(self.world.vehicles, self.world.lanes, self.world.signals, sp.time_step, sp)
            identify_pc5_clusters(self.world.vehicles, sp)
        except VEHICLE_ERRORS as e:
            logger.warning('Step %d: mobility update failed (%s), clusters may be stale', self.current_step, e)
        update_signal_measurements(self.world.vehicles, self.world.cells, self.world.buildings,
                                   self.current_step, sp)

    def _coerce_actions(self, actions) -> List[int]:
        n = len(self.world.vehicles)
        arr = np.atleast_1d(np.asarray(actions)).ravel()
        if arr.size == 1 and n > 1:
            arr = np.full(n, arr[0])
        if arr.size != n:
            logger.warning('Expected %d actions, got %d; padding with no-op', n, arr.size)
            padded = np.full(n, ACTION_NO_OP, dtype=object)
            padded[:min(n, arr.size)] = arr[:n]
            arr = padded
        return list(arr)

    def get_results(self) -> Dict[str, Any]:
        """Aggregate KPIs over everything recorded since reset"""
        results = calculate_aggregate_metrics(self.metrics.records)
        results['scenario'] = self.sim_params.name
        results['steps'] = self.current_step
        return results


def run_episode(env: V2XEnvironment, agent, train: bool = False, max_steps: Optional[int] = None) -> Dict[str, Any]:
    """Drive one episode with an agent exposing select_action/observe"""

    obs, info = env.reset()
    done = False
    steps = 0

    while not done:
        actions = [agent.select_action(o) for o in obs]
        next_obs, rewards, done, truncated, info = env.step(actions)

        if train:
            for o, a, r, n in zip(obs, actions, rewards, next_obs):
                agent.observe(o, a, float(r), n, done=done)

        obs = next_obs
        steps += 1
        if max_steps is not None and steps >= max_steps:
            break

    if train:
        agent.end_episode()
    return env.get_results()
