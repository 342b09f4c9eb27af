"""Radio channel model for Uu (vehicle-cell) and PC5 (vehicle-vehicle) links"""

import logging
import numpy as np
from typing import Optional, Sequence

from .network import UU, PC5, ChannelResult
from .scenario_loader import SimParams

logger = logging.getLogger(__name__)

# RNG sub-stream offsets
CHANNEL_STREAM = 5000
SELECTION_STREAM = 6000
TRANSMISSION_STREAM = 7000
PC5_STREAM = 8000

DEFAULT_RSRP = -100.0
DEFAULT_SINR = 0.0


def derive_rng(seed: int, stream: int, step: int, *keys: int) -> np.random.RandomState:
    """Deterministic RNG sub-stream keyed by run seed, stream, step and entity ids"""
    entropy = [int(v) & 0xFFFFFFFF for v in (seed, stream, step) + keys]
    return np.random.RandomState(np.random.SeedSequence(entropy).generate_state(1))


def los_probability(link_type: str, distance: float, decay_distance: float = 80.0) -> float:
    """Distance-based LoS probability: 3GPP UMi curve for Uu, exponential for PC5"""

    d = max(distance, 1.0)
    if link_type == PC5:
        return float(min(1.0, np.exp(-d / decay_distance)))

    if d <= 18:
        return 1.0
    return float(min(18 / d, 1.0) * (1 - np.exp(-d / 36)) + np.exp(-d / 36))


def reference_path_loss(frequency: float) -> float:
    """Free-space path loss at 1 m (dB)"""
    return 32.4 + 20 * np.log10(frequency / 1e9)


def path_loss_db(distance: float, frequency: float, is_los: bool, params: SimParams,
                 rng: np.random.RandomState) -> float:
    """Log-distance path loss PL0 + 10 n log10(d) with Gaussian shadowing"""

    ch = params.channel
    d = max(distance, ch.min_distance)

    if is_los:
        exponent, shadow_std = ch.pathloss_exponent_los, ch.shadow_std_los
    else:
        exponent, shadow_std = ch.pathloss_exponent_nlos, ch.shadow_std_nlos

    shadow = rng.randn() * shadow_std
    return float(reference_path_loss(frequency) + 10 * exponent * np.log10(d) + shadow)


def rician_k_factor(distance: float, params: SimParams) -> float:
    ch = params.channel
    if distance <= ch.k_factor_distance:
        return ch.k_factor_los
    return max(ch.k_factor_min, ch.k_factor_reference - ch.k_factor_slope * distance)


def fast_fading_db(is_los: bool, distance: float, params: SimParams,
                   rng: np.random.RandomState) -> float:
    """One fast-fading draw in dB: Rician under LoS, Rayleigh under NLoS"""

    x, y = rng.randn(), rng.randn()

    if is_los:
        k = rician_k_factor(distance, params)
        h = np.sqrt(k / (k + 1)) + np.sqrt(1 / (k + 1)) * complex(x, y) / np.sqrt(2)
        power = abs(h)**2
    else:
        power = (x**2 + y**2) / 2

    return float(10 * np.log10(max(power, 1e-12)))


def noise_power_dbm(bandwidth: float, params: SimParams) -> float:
    ch = params.channel
    return ch.thermal_noise + 10 * np.log10(bandwidth) + ch.noise_figure


def interference_dbm(link_type: str, noise_dbm: float, params: SimParams,
                     load: Optional[float] = None, num_neighbors: Optional[int] = None) -> float:
    """Interference estimate: cell-load driven for Uu, neighbour-density driven for PC5"""

    if link_type == PC5:
        pc5 = params.pc5
        neighbors = 5 if num_neighbors is None else max(0, num_neighbors)
        density = pc5.density_per_neighbor * neighbors
        return noise_dbm + 10 * np.log10(max(1.0, density / 10)) - pc5.sensing_gain

    ch = params.channel
    if load is None or not np.isfinite(load):
        load = ch.default_load
    load = min(max(load, 0.0), params.network.max_load)
    return noise_dbm + ch.uu_interference_base + ch.uu_interference_load * load / params.network.max_load


def channel_model(link_type: str, tx_position: Sequence[float], tx_height: float,
                  rx_position: Sequence[float], rx_height: float, tx_power: float,
                  params: SimParams, rng: np.random.RandomState,
                  is_los: Optional[bool] = None, load: Optional[float] = None,
                  num_neighbors: Optional[int] = None) -> ChannelResult:
    """
    Compute RSRP and SINR for one link

    Args:
        link_type: 'Uu' or 'PC5'
        tx_position, rx_position: 2D positions (m)
        tx_height, rx_height: Antenna heights (m)
        tx_power: Transmit power (dBm)
        params: Scenario parameters
        rng: Random stream for LoS, shadowing and fading draws
        is_los: Force LoS/NLoS; drawn from the LoS probability curve when None
        load: Destination cell load in percent (Uu only)
        num_neighbors: PC5 neighbour count driving interference (PC5 only)

    Returns:
        ChannelResult with RSRP (dBm) and SINR (dB)
    """

    tx = np.asarray(tx_position, dtype=float)
    rx = np.asarray(rx_position, dtype=float)
    if tx.shape != (2,) or rx.shape != (2,):
        raise ValueError(f'positions must be 2D, got {tx.shape} and {rx.shape}')
    if not (np.all(np.isfinite(tx)) and np.all(np.isfinite(rx))
            and np.isfinite(tx_height) and np.isfinite(rx_height)):
        raise ValueError('non-finite link geometry')

    if link_type == PC5:
        frequency, bandwidth = params.pc5.frequency, params.pc5.bandwidth
    elif link_type == UU:
        frequency, bandwidth = params.network.carrier_frequency, params.network.bandwidth
    else:
        raise ValueError(f'unknown link type: {link_type}')

    d2d = float(np.linalg.norm(tx - rx))
    d3d = max(float(np.sqrt(d2d**2 + (tx_height - rx_height)**2)), params.channel.min_distance)

    if is_los is None:
        is_los = bool(rng.rand() < los_probability(link_type, d2d, params.pc5.los_decay_distance))

    path_loss = path_loss_db(d3d, frequency, is_los, params, rng)
    rx_power = tx_power - path_loss

    # Per resource block (12 subcarriers per 180 kHz RB)
    num_rbs = max(1.0, bandwidth / params.channel.rb_bandwidth)
    rsrp = rx_power - 10 * np.log10(num_rbs * 12)

    noise = noise_power_dbm(bandwidth, params)
    interference = interference_dbm(link_type, noise, params, load=load, num_neighbors=num_neighbors)
    total = 10 * np.log10(10**(noise / 10) + 10**(interference / 10))

    sinr = rx_power - total + fast_fading_db(is_los, d3d, params, rng)

    return ChannelResult(rsrp=float(rsrp), sinr=float(sinr), is_los=is_los,
                         distance=d3d, path_loss=path_loss)


def safe_channel_model(*args, **kwargs) -> ChannelResult:
    """channel_model that falls back to conservative defaults on invalid geometry"""
    try:
        result = channel_model(*args, **kwargs)
    except (ValueError, TypeError, ArithmeticError) as e:
        logger.warning('Channel model fallback: %s', e)
        return ChannelResult(rsrp=DEFAULT_RSRP, sinr=DEFAULT_SINR, is_los=False)

    if not (np.isfinite(result.rsrp) and np.isfinite(result.sinr)):
        logger.warning('Channel model produced non-finite output, using defaults')
        return ChannelResult(rsrp=DEFAULT_RSRP, sinr=DEFAULT_SINR, is_los=False)
    return result
