"""Network entities: Cells, Vehicles, links and per-step statistics"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional
import numpy as np


# Radio interfaces
UU = 'Uu'
PC5 = 'PC5'

# Cell types
MACRO = 'macro'
SMALL = 'small'

# Handover / action types (0 = none)
HO_NONE = 0
HO_MCG = 1
HO_SCG_ADD = 2
HO_SCG_REMOVE = 3
HO_SAFETY_TO_UU = 4
HO_SAFETY_TO_PC5 = 5
HO_NONSAFETY_TO_UU = 6
HO_NONSAFETY_TO_PC5 = 7
ACTION_NO_OP = 8

NUM_ACTIONS = 8

HANDOVER_TYPE_NAMES = {
    HO_MCG: 'MCG',
    HO_SCG_ADD: 'SCG_Add',
    HO_SCG_REMOVE: 'SCG_Remove',
    HO_SAFETY_TO_UU: 'Safety_Uu',
    HO_SAFETY_TO_PC5: 'Safety_PC5',
    HO_NONSAFETY_TO_UU: 'NonSafety_Uu',
    HO_NONSAFETY_TO_PC5: 'NonSafety_PC5',
}

# Per-vehicle data anomalies that must not abort the step loop
VEHICLE_ERRORS = (ValueError, TypeError, AttributeError, ArithmeticError, IndexError, KeyError)


@dataclass
class Cell:
    id: int
    type: str  # 'macro' or 'small'
    x: float
    y: float
    height: float
    tx_power: float  # dBm
    load: float = 0.0  # percentage [0, 100]

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y])

    def add_load(self, delta: float, max_load: float = 100.0):
        """Accumulate load, clamped to [0, max_load]"""
        self.load = float(min(max_load, max(0.0, self.load + delta)))


@dataclass
class Lane:
    id: int
    direction: str  # 'NS', 'SN', 'EW', 'WE'
    offset: float
    start: np.ndarray
    end: np.ndarray

    @property
    def length(self) -> float:
        return float(np.linalg.norm(self.end - self.start))

    @property
    def unit(self) -> np.ndarray:
        vec = self.end - self.start
        return vec / max(np.linalg.norm(vec), 1e-9)


@dataclass
class Building:
    x: float
    y: float
    width: float
    depth: float

    @property
    def rect_min(self) -> np.ndarray:
        return np.array([self.x - self.width / 2, self.y - self.depth / 2])

    @property
    def rect_max(self) -> np.ndarray:
        return np.array([self.x + self.width / 2, self.y + self.depth / 2])


@dataclass
class TrafficSignals:
    ns_state: str = 'green'
    ew_state: str = 'red'
    ns_timer: float = 30.0
    ew_timer: float = 0.0
    green_duration: float = 30.0
    red_duration: float = 30.0

    def is_green(self, direction: str) -> bool:
        if direction in ('NS', 'SN'):
            return self.ns_state == 'green'
        return self.ew_state == 'green'


@dataclass
class PC5LinkMetrics:
    sinr: float
    reliability: float
    distance: float = 0.0


@dataclass
class HandoverRecord:
    time: float
    type: int
    from_cell: int
    to_cell: int


class HandoverHistory:
    """Fixed-capacity circular buffer of handover records in insertion order"""

    def __init__(self, capacity: int = 5):
        if capacity <= 0:
            raise ValueError('handover history capacity must be positive')
        self.capacity = capacity
        self._slots: List[Optional[HandoverRecord]] = [None] * capacity
        self._next = 0
        self._count = 0

    def append(self, record: HandoverRecord):
        self._slots[self._next] = record
        self._next = (self._next + 1) % self.capacity
        self._count = min(self._count + 1, self.capacity)

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator[HandoverRecord]:
        # Oldest first
        start = (self._next - self._count) % self.capacity
        for i in range(self._count):
            yield self._slots[(start + i) % self.capacity]

    def latest(self) -> Optional[HandoverRecord]:
        if self._count == 0:
            return None
        return self._slots[(self._next - 1) % self.capacity]

    def clear(self):
        self._slots = [None] * self.capacity
        self._next = 0
        self._count = 0


@dataclass
class Vehicle:
    id: int
    x: float
    y: float
    vx: float
    vy: float
    lane: int
    direction: str
    acceleration: float = 0.0
    stopped: bool = False
    serving_macro_cell: int = 0  # 0 = none
    serving_small_cell: int = 0  # 0 = none
    safety_interface: str = PC5
    nonsafety_interface: str = UU
    rsrp_uu: Optional[float] = None
    sinr_uu: Optional[float] = None
    previous_sinr_uu: Optional[float] = None
    sinr_scg: Optional[float] = None
    los_to_cells: Dict[int, bool] = field(default_factory=dict)
    pc5_metrics: Dict[int, PC5LinkMetrics] = field(default_factory=dict)
    cluster: List[int] = field(default_factory=list)
    safety_queue: float = 0.0
    nonsafety_queue: float = 0.0
    handover_history: HandoverHistory = field(default_factory=HandoverHistory)
    # MCG transitions only; interface switches must not evict them
    recent_cells: HandoverHistory = field(default_factory=HandoverHistory)
    last_handover_time: Optional[float] = None

    @property
    def position(self) -> np.ndarray:
        return np.array([self.x, self.y])

    @position.setter
    def position(self, value):
        self.x = float(value[0])
        self.y = float(value[1])

    @property
    def velocity(self) -> np.ndarray:
        return np.array([self.vx, self.vy])

    @velocity.setter
    def velocity(self, value):
        self.vx = float(value[0])
        self.vy = float(value[1])

    @property
    def speed(self) -> float:
        return float(np.hypot(self.vx, self.vy))

    def average_pc5_sinr(self) -> Optional[float]:
        sinrs = [m.sinr for m in self.pc5_metrics.values()
                 if m.sinr is not None and np.isfinite(m.sinr)]
        if not sinrs:
            return None
        return float(np.mean(sinrs))


@dataclass
class HandoverStats:
    type: int = HO_NONE
    is_ping_pong: bool = False
    interface_switch: bool = False


@dataclass
class TransmissionStats:
    throughput: float = 0.0
    max_throughput: float = 1e6
    safety_pdr: float = 0.0
    latency: float = 1.0
    safety_sent: int = 0
    safety_received: int = 0
    nonsafety_sent: float = 0.0
    nonsafety_received: float = 0.0


@dataclass
class ChannelResult:
    rsrp: float
    sinr: float
    is_los: bool = True
    distance: float = 0.0
    path_loss: float = 0.0


def find_cell(cells: List[Cell], cell_id: int) -> Optional[Cell]:
    """Look up a cell by id (ids are 1-based, 0 means none)"""
    if cell_id <= 0:
        return None
    return next((c for c in cells if c.id == cell_id), None)


def cells_of_type(cells: List[Cell], cell_type: str) -> List[Cell]:
    return [c for c in cells if c.type == cell_type]


def vehicle_index(vehicles: List[Vehicle]) -> Dict[int, Vehicle]:
    return {v.id: v for v in vehicles}

