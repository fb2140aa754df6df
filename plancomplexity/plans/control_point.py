from dataclasses import dataclass, field

import numpy as np

from plancomplexity.plans.machine import LimitingFactor
from plancomplexity.utils import is_finite_positive


@dataclass(frozen=True)
class JawWindow:
    """The jaw opening of a control point in mm."""

    x1: float
    x2: float
    y1: float
    y2: float

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return self.y2 - self.y1

    @property
    def perimeter(self) -> float:
        return 2 * (self.height + self.width)

    @property
    def area(self) -> float:
        return self.height * self.width

    def union(self, other: "JawWindow") -> "JawWindow":
        """The smallest window containing both jaw windows."""
        return JawWindow(
            x1=min(self.x1, other.x1),
            x2=max(self.x2, other.x2),
            y1=min(self.y1, other.y1),
            y2=max(self.y2, other.y2),
        )


@dataclass(frozen=True)
class RawControlPoint:
    """
    A snapshot of the beam geometry as read from the planning system.

    Parameters
    ----------
    index : int
        The control point index within the beam.
    jaws : JawWindow
        The jaw positions.
    leaf_positions : np.ndarray
        The leaf positions as a 2xN array, row 0 is bank 0 (X1 side), row 1 is bank 1 (X2 side).
        The array is copied and made read-only.
    gantry_angle : float
        The gantry angle in degrees.
    meterset_weight : float
        The cumulative meterset weight, a fraction in [0, 1].
    """

    index: int
    jaws: JawWindow
    leaf_positions: np.ndarray = field(compare=False)
    gantry_angle: float = 0.0
    meterset_weight: float = 0.0

    def __post_init__(self):
        positions = np.array(self.leaf_positions, dtype=float)
        if positions.ndim != 2 or positions.shape[0] != 2:
            raise ValueError("Leaf positions must be a 2xN array")
        positions.setflags(write=False)
        object.__setattr__(self, "leaf_positions", positions)

    @property
    def number_of_leaf_pairs(self) -> int:
        return self.leaf_positions.shape[1]


@dataclass(frozen=True)
class Aperture:
    """A contiguous open region spanning one or more adjacent leaf pairs."""

    perimeter: float
    edge_length: float
    area: float


@dataclass(frozen=True)
class ApertureControlPoint:
    """The apertures of a control point and the MU attributed to it."""

    index: int
    jaws: JawWindow
    incremental_mu: float
    closed_leaf_gap_sum: float = 0.0
    apertures: tuple[Aperture, ...] = ()

    @property
    def jaw_perimeter(self) -> float:
        return self.jaws.perimeter

    @property
    def jaw_area(self) -> float:
        return self.jaws.area

    @property
    def aperture_count(self) -> int:
        return len(self.apertures)

    @property
    def total_area(self) -> float:
        return sum(ap.area for ap in self.apertures)

    @property
    def total_perimeter(self) -> float:
        return sum(ap.perimeter for ap in self.apertures)

    @property
    def total_edge_length(self) -> float:
        return sum(ap.edge_length for ap in self.apertures)


@dataclass(frozen=True)
class IntervalTiming:
    """Duration of a control point interval and the machine limit that sets it."""

    duration: float
    limiting_factor: LimitingFactor


@dataclass(frozen=True)
class DynamicControlPoint:
    """
    The delivery dynamics between two consecutive control points.

    Parameters
    ----------
    interval_index : int
        The index of the interval, i.e. the index of the first control point of the pair.
    gantry_speed : float
        The gantry speed in deg/s.
    avg_leaf_speed : float
        The weighted average leaf speed in mm/s.
    dose_rate : float
        The dose rate in MU/min.
    interval_mu : float
        The MU delivered in the interval.
    limiting_factor : LimitingFactor
        Which machine limit sets the interval duration.
    """

    interval_index: int
    gantry_speed: float
    avg_leaf_speed: float
    dose_rate: float
    interval_mu: float
    limiting_factor: LimitingFactor = LimitingFactor.MU


@dataclass(frozen=True)
class BeamRecord:
    """The reconstructed control points of a beam, ready for metric aggregation."""

    beam_id: str
    total_mu: float
    total_time: float = 0.0
    aperture_control_points: tuple[ApertureControlPoint, ...] = ()
    dynamic_control_points: tuple[DynamicControlPoint, ...] = ()
    machine_id: str = ""
    energy: str = ""

    @property
    def is_valid(self) -> bool:
        """A beam can be aggregated only if its MU is a finite positive number."""
        return is_finite_positive(self.total_mu)
