"""World construction: lanes, buildings, traffic signals, cells and vehicles"""

import logging
import numpy as np
from dataclasses import dataclass, field
from typing import List
from .network import (Cell, Lane, Building, TrafficSignals, Vehicle, HandoverHistory,
                      MACRO, SMALL, UU, PC5)
from .scenario_loader import SimParams

logger = logging.getLogger(__name__)

DIRECTIONS = ('NS', 'SN', 'EW', 'WE')


@dataclass
class World:
    lanes: List[Lane] = field(default_factory=list)
    buildings: List[Building] = field(default_factory=list)
    signals: TrafficSignals = field(default_factory=TrafficSignals)
    cells: List[Cell] = field(default_factory=list)
    vehicles: List[Vehicle] = field(default_factory=list)


def create_world(sim_params: SimParams, seed: int) -> World:
    """Build the complete static and initial dynamic state for one run"""

    lanes = create_lanes(sim_params)
    buildings = create_buildings(sim_params, seed)
    signals = create_traffic_signals(sim_params)
    cells = configure_cells(sim_params)
    vehicles = initialize_vehicles(sim_params, lanes, cells, seed)

    logger.info('Created world: %d lanes, %d buildings, %d cells, %d vehicles',
                len(lanes), len(buildings), len(cells), len(vehicles))
    return World(lanes=lanes, buildings=buildings, signals=signals, cells=cells, vehicles=vehicles)


def create_lanes(sim_params: SimParams) -> List[Lane]:
    """Two crossing roads through the origin, `num_lanes` lanes per direction"""

    env = sim_params.environment
    half = env.lane_half_length
    lanes = []
    lane_id = 1

    for direction in DIRECTIONS:
        for i in range(env.num_lanes):
            off = (i + 0.5) * env.lane_width
            if direction == 'NS':
                start, end = [off, -half], [off, half]
            elif direction == 'SN':
                start, end = [-off, half], [-off, -half]
            elif direction == 'EW':
                start, end = [half, off], [-half, off]
            else:
                start, end = [-half, -off], [half, -off]

            lanes.append(Lane(id=lane_id, direction=direction, offset=off,
                              start=np.array(start, dtype=float), end=np.array(end, dtype=float)))
            lane_id += 1

    return lanes


def create_buildings(sim_params: SimParams, seed: int) -> List[Building]:
    """Random rectangular buildings in the four corner blocks, clear of the carriageway"""

    env = sim_params.environment
    rng = np.random.RandomState(seed + 1000)

    count = int(np.floor(env.area_width * env.area_height * env.building_density / 1000))
    road_clearance = env.num_lanes * env.lane_width + 2.0
    half_w, half_h = env.area_width / 2, env.area_height / 2

    buildings = []
    for _ in range(count):
        width = rng.uniform(10, 40)
        depth = rng.uniform(10, 40)
        sx = 1 if rng.rand() < 0.5 else -1
        sy = 1 if rng.rand() < 0.5 else -1

        x_lo = road_clearance + width / 2
        y_lo = road_clearance + depth / 2
        x = sx * rng.uniform(x_lo, max(x_lo, half_w - width / 2))
        y = sy * rng.uniform(y_lo, max(y_lo, half_h - depth / 2))

        buildings.append(Building(x=float(x), y=float(y), width=float(width), depth=float(depth)))

    return buildings


def create_traffic_signals(sim_params: SimParams) -> TrafficSignals:
    env = sim_params.environment
    return TrafficSignals(ns_state='green', ew_state='red',
                          ns_timer=env.green_duration, ew_timer=env.red_duration,
                          green_duration=env.green_duration, red_duration=env.red_duration)


def configure_cells(sim_params: SimParams) -> List[Cell]:
    """Macro cells at the centre and on an outer ring, small cells on an inner ring"""

    net = sim_params.network
    cells = []
    cell_id = 1

    for i in range(net.macro_count):
        if i == 0:
            x, y = 0.0, 0.0
        else:
            angle = 2 * np.pi * (i - 1) / (net.macro_count - 1) + np.pi / 4
            x, y = net.macro_ring_radius * np.cos(angle), net.macro_ring_radius * np.sin(angle)
        cells.append(Cell(id=cell_id, type=MACRO, x=float(x), y=float(y),
                          height=net.macro_height, tx_power=net.macro_power))
        cell_id += 1

    for i in range(net.small_count):
        # Along the road axes
        angle = 2 * np.pi * i / net.small_count
        x, y = net.small_ring_radius * np.cos(angle), net.small_ring_radius * np.sin(angle)
        cells.append(Cell(id=cell_id, type=SMALL, x=float(round(x, 6)), y=float(round(y, 6)),
                          height=net.small_height, tx_power=net.small_power))
        cell_id += 1

    return cells


def initialize_vehicles(sim_params: SimParams, lanes: List[Lane], cells: List[Cell], seed: int) -> List[Vehicle]:
    """Place vehicles uniformly along random lanes, attached to the first macro cell"""

    vp = sim_params.vehicle
    rng = np.random.RandomState(seed + 2000)

    first_macro = next((c.id for c in cells if c.type == MACRO), 0)
    wrap = sim_params.environment.lane_wrap_distance

    vehicles = []
    for vid in range(1, vp.count + 1):
        lane = lanes[rng.randint(len(lanes))]
        along = rng.uniform(0, max(0.0, lane.length - wrap))
        position = lane.start + lane.unit * along
        speed = (0.5 + 0.5 * rng.rand()) * vp.max_speed
        velocity = lane.unit * speed

        vehicles.append(Vehicle(
            id=vid,
            x=float(position[0]),
            y=float(position[1]),
            vx=float(velocity[0]),
            vy=float(velocity[1]),
            lane=lane.id,
            direction=lane.direction,
            serving_macro_cell=first_macro,
            serving_small_cell=0,
            safety_interface=PC5,
            nonsafety_interface=UU,
            nonsafety_queue=float(rng.randint(0, vp.initial_nonsafety_queue_max + 1)),
            handover_history=HandoverHistory(sim_params.handover.history_capacity),
            recent_cells=HandoverHistory(sim_params.handover.history_capacity),
        ))

    return vehicles
