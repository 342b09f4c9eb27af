"""Scenario configuration loader"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class EnvironmentParams:
    area_width: float = 500.0
    area_height: float = 500.0
    num_lanes: int = 2  # per direction
    lane_width: float = 3.5
    lane_half_length: float = 250.0
    lane_wrap_distance: float = 10.0  # wrap to lane start within this distance of the end
    building_density: float = 0.3
    green_duration: float = 30.0
    red_duration: float = 30.0
    intersection_radius: float = 50.0
    stop_zone: float = 50.0  # approach zone half-width around the stop line


@dataclass
class VehicleParams:
    count: int = 50
    max_speed: float = 14.0  # m/s (~50 km/h)
    acceleration: float = 2.5  # m/s^2
    deceleration: float = 3.5  # m/s^2
    following_range: float = 25.0  # look-ahead distance in lane (m)
    min_gap: float = 10.0  # standstill safety distance (m)
    headway_time: float = 1.5  # safety distance growth per m/s of closing speed
    initial_nonsafety_queue_max: int = 10


@dataclass
class NetworkParams:
    macro_count: int = 1
    small_count: int = 4
    macro_power: float = 46.0  # dBm
    small_power: float = 33.0  # dBm
    macro_height: float = 25.0
    small_height: float = 10.0
    ue_height: float = 1.5
    carrier_frequency: float = 3.5e9
    bandwidth: float = 100e6
    macro_ring_radius: float = 300.0
    small_ring_radius: float = 150.0
    max_load: float = 100.0
    load_decay: float = 0.98  # per-step relaxation of cell load, 1.0 disables


@dataclass
class ChannelParams:
    pathloss_exponent_los: float = 2.2
    pathloss_exponent_nlos: float = 3.5
    shadow_std_los: float = 3.0
    shadow_std_nlos: float = 6.0
    noise_figure: float = 7.0
    thermal_noise: float = -174.0  # dBm/Hz
    min_distance: float = 10.0
    rb_bandwidth: float = 180e3
    k_factor_los: float = 10.0
    k_factor_reference: float = 15.0
    k_factor_slope: float = 0.2  # per metre
    k_factor_distance: float = 50.0  # K stays at k_factor_los up to this distance
    k_factor_min: float = 1.0
    uu_interference_base: float = 5.0  # I/N at zero load (dB)
    uu_interference_load: float = 5.0  # additional I/N at full load (dB)
    default_load: float = 50.0  # percent, used when no cell load is supplied
    use_geometric_los: bool = True


@dataclass
class PC5Params:
    frequency: float = 5.9e9
    bandwidth: float = 20e6
    tx_power: float = 23.0
    max_range: float = 400.0
    reliable_range: float = 250.0
    in_range_reliability: float = 1.0
    reliability_decay: float = 0.01  # per metre beyond reliable range
    min_reliability: float = 0.5
    sensing_gain: float = 3.0
    density_per_neighbor: float = 2.0
    los_decay_distance: float = 80.0


@dataclass
class DataParams:
    safety_interval: float = 0.1
    nonsafety_size: float = 1500.0  # bytes
    nonsafety_rate: float = 5e6  # bps
    no_link_latency: float = 1.0
    # PC5 safety
    pc5_bler_table: List[List[float]] = field(default_factory=lambda: [
        [20.0, 0.001], [10.0, 0.01], [0.0, 0.1], [-5.0, 0.5]])
    pc5_bler_floor: float = 0.9
    pc5_processing_delay: float = 0.01
    pc5_channel_delay_table: List[List[float]] = field(default_factory=lambda: [
        [10.0, 0.005], [0.0, 0.02]])
    pc5_channel_delay_floor: float = 0.05
    # Uu safety
    uu_success_table: List[List[float]] = field(default_factory=lambda: [
        [15.0, 0.99], [10.0, 0.95], [5.0, 0.9], [0.0, 0.8], [-5.0, 0.6]])
    uu_success_floor: float = 0.3
    uu_load_impact: float = 0.4
    uu_min_load_factor: float = 0.6
    uu_base_latency: float = 0.04
    uu_load_latency: float = 0.06
    uu_sinr_latency: float = 0.05
    uu_sinr_latency_ref: float = 15.0
    uu_sinr_latency_span: float = 20.0
    safety_load_increment: float = 0.01  # per message batch
    # Uu non-safety
    uu_bandwidth_fraction: float = 0.1
    uu_max_spectral_efficiency: float = 7.8
    uu_overhead: float = 0.8
    uu_impl_efficiency: float = 0.75
    min_available_capacity: float = 0.2
    throughput_load_per_bps: float = 4e-9  # 0.02 per step at the 5 Mb/s cap
    # PC5 non-safety
    pc5_data_bandwidth: float = 10e6
    pc5_max_spectral_efficiency: float = 4.8
    pc5_overhead: float = 0.7
    pc5_impl_efficiency: float = 0.6
    pc5_rate_fraction: float = 0.5


@dataclass
class HandoverParams:
    min_interval: float = 5.0
    ping_pong_window: float = 30.0
    history_capacity: int = 5
    base_hysteresis: float = 3.0
    medium_speed: float = 5.0
    medium_speed_hysteresis: float = 3.5
    high_speed: float = 10.0
    high_speed_hysteresis: float = 4.0
    sinr_drop_threshold: float = 2.0
    sinr_drop_reduction: float = 1.0
    min_hysteresis: float = 1.0
    intersection_reduction: float = 1.0
    intersection_min_hysteresis: float = 1.5
    min_candidate_sinr: float = -5.0
    intersection_min_candidate_sinr: float = 0.0
    scg_add_sinr_threshold: float = 15.0
    intersection_scg_add_bonus: float = 3.0
    scg_min_sinr: float = 5.0
    intersection_scg_min_sinr: float = 3.0
    scg_remove_sinr_threshold: float = 20.0
    intersection_scg_remove_margin: float = 5.0
    safety_uu_min_sinr: float = 5.0
    intersection_safety_uu_min_sinr: float = 8.0
    pc5_poor_sinr: float = -2.0
    intersection_pc5_poor_sinr: float = -5.0
    pc5_good_sinr: float = 7.0
    nonsafety_uu_min_sinr: float = 0.0
    dual_traffic_sinr: float = 15.0
    congestion_load: float = 70.0
    nonsafety_pc5_sinr: float = 10.0


@dataclass
class RewardParams:
    w_safety: float = 0.7
    w_throughput: float = 0.2
    w_overhead: float = 0.1
    safety_threshold: float = 0.9
    latency_target: float = 0.1
    latency_decay: float = 2.0
    pdr_latency_split: float = 0.7
    mcg_penalty: float = 1.0
    scg_penalty: float = 0.7
    interface_penalty: float = 0.3
    pingpong_penalty: float = 5.0
    switch_penalty: float = 0.3
    safety_boost: float = 0.2
    poor_pdr: float = 0.5
    poor_latency: float = 0.3
    throughput_scaling: str = 'log'  # 'log' or 'linear'
    min_max_throughput: float = 1e3


@dataclass
class SimParams:
    # Basic information
    name: str = 'Unnamed Scenario'
    description: str = 'No description'

    # Simulation parameters
    sim_time: float = 300.0
    time_step: float = 0.1
    seed: int = 42
    log_interval: int = 50

    environment: EnvironmentParams = field(default_factory=EnvironmentParams)
    vehicle: VehicleParams = field(default_factory=VehicleParams)
    network: NetworkParams = field(default_factory=NetworkParams)
    channel: ChannelParams = field(default_factory=ChannelParams)
    pc5: PC5Params = field(default_factory=PC5Params)
    data: DataParams = field(default_factory=DataParams)
    handover: HandoverParams = field(default_factory=HandoverParams)
    reward: RewardParams = field(default_factory=RewardParams)

    # Derived parameters
    total_steps: int = 0


SCENARIO_MAPPINGS = {
    'urban_intersection': 'urban_intersection.json',
    'dense_intersection': 'dense_intersection.json',
}


def load_scenario_config(scenario_input: str, scenarios_dir: Optional[Path] = None) -> SimParams:
    """Load scenario configuration from JSON file"""

    if scenarios_dir is None:
        # Default to app/scenarios/
        scenarios_dir = Path(__file__).parent.parent / 'scenarios'

    json_path = _resolve_scenario_path(scenario_input, Path(scenarios_dir))

    with open(json_path, 'r') as f:
        cfg = json.load(f)

    sim_params = params_from_dict(cfg)

    logger.info('Loaded scenario: %s', sim_params.name)
    return sim_params


def params_from_dict(cfg: Dict[str, Any]) -> SimParams:
    """Convert a camelCase configuration mapping to validated SimParams"""
    sim_params = _convert_json_to_params(cfg)
    return _validate_and_enhance_config(sim_params)


def _resolve_scenario_path(scenario_input: str, scenarios_dir: Path) -> Path:
    """Resolve scenario input to actual JSON file path"""

    path = Path(scenario_input)

    # Direct file path provided
    if path.is_file():
        return path

    # Known scenario name
    if scenario_input in SCENARIO_MAPPINGS:
        return scenarios_dir / SCENARIO_MAPPINGS[scenario_input]

    # Try appending .json extension
    candidate = scenarios_dir / f'{scenario_input}.json'
    if candidate.is_file():
        return candidate

    available = ', '.join(SCENARIO_MAPPINGS.keys())
    raise ValueError(f'Unknown scenario: {scenario_input}\nAvailable scenarios: {available}')


def _get_field_or_default(cfg: Dict, field: str, default: Any) -> Any:
    """Get field value or default"""
    return cfg.get(field, default)


def _snake_to_camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.capitalize() for part in rest)


def _fill_section(section_cls, cfg: Optional[Dict]):
    """Build a parameter section, reading each field from its camelCase key"""
    section = section_cls()
    if not cfg:
        return section
    for name in section.__dataclass_fields__:
        value = _get_field_or_default(cfg, _snake_to_camel(name), getattr(section, name))
        setattr(section, name, value)
    return section


def _convert_json_to_params(cfg: Dict) -> SimParams:
    """Convert JSON configuration to SimParams"""

    return SimParams(
        # Basic information
        name=_get_field_or_default(cfg, 'name', 'Unnamed Scenario'),
        description=_get_field_or_default(cfg, 'description', 'No description'),

        # Simulation parameters
        sim_time=_get_field_or_default(cfg, 'simTime', 300),
        time_step=_get_field_or_default(cfg, 'timeStep', 0.1),
        seed=_get_field_or_default(cfg, 'seed', 42),
        log_interval=_get_field_or_default(cfg, 'logInterval', 50),

        # Sections
        environment=_fill_section(EnvironmentParams, cfg.get('environment')),
        vehicle=_fill_section(VehicleParams, cfg.get('vehicle')),
        network=_fill_section(NetworkParams, cfg.get('network')),
        channel=_fill_section(ChannelParams, cfg.get('channel')),
        pc5=_fill_section(PC5Params, cfg.get('pc5')),
        data=_fill_section(DataParams, cfg.get('data')),
        handover=_fill_section(HandoverParams, cfg.get('handover')),
        reward=_fill_section(RewardParams, cfg.get('reward')),
    )


def _validate_and_enhance_config(sim_params: SimParams) -> SimParams:
    """Validate configuration and add derived parameters"""

    assert sim_params.vehicle.count > 0, 'vehicle.count must be positive'
    assert sim_params.network.macro_count > 0, 'network.macroCount must be positive'
    assert sim_params.network.small_count >= 0, 'network.smallCount must be non-negative'
    assert sim_params.time_step > 0, 'timeStep must be positive'
    assert sim_params.handover.history_capacity > 0, 'handover.historyCapacity must be positive'
    assert 0.0 < sim_params.network.load_decay <= 1.0, 'network.loadDecay must be in (0, 1]'
    assert sim_params.reward.throughput_scaling in ('log', 'linear'), \
        'reward.throughputScaling must be "log" or "linear"'

    if sim_params.sim_time <= 0:
        sim_params.total_steps = 0
    else:
        sim_params.total_steps = int(np.ceil(sim_params.sim_time / sim_params.time_step - 1e-9))

    return sim_params
