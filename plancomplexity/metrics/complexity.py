"""MU weighted complexity metrics of one or more beams.

Every metric takes the beam records of the beams to aggregate. If the set of beams is empty or any beam
has no valid MU the metrics evaluate to 0 (the histogram to empty bins); filter the beams with
:func:`filter_valid` beforehand to report on the valid beams only.

Unless stated otherwise the MU weights are normalised by the total MU of the beams. Metrics marked as
aperture MU weighted are normalised by :func:`total_aperture_mu` instead, so that a control point with
two apertures counts twice.
"""

import logging
import math
from collections.abc import Iterator, Sequence
from dataclasses import dataclass

import numpy as np

from plancomplexity.plans.control_point import ApertureControlPoint, BeamRecord
from plancomplexity.settings import DEFAULT_SETTINGS, ComplexitySettings
from plancomplexity.utils import safe_divide

logger = logging.getLogger(__name__)


def are_beams_valid(records: Sequence[BeamRecord]) -> bool:
    """Whether the beams can be aggregated: at least one beam and every beam with a finite, positive MU."""
    return len(records) > 0 and all(record.is_valid for record in records)


def filter_valid(records: Sequence[BeamRecord]) -> list[BeamRecord]:
    """Keep the beams with a valid MU. Dropped beams are logged as warnings."""
    valid = []
    for record in records:
        if record.is_valid:
            valid.append(record)
        else:
            logger.warning(
                "Beam %s has no valid MU (%s); excluded from the metrics",
                record.beam_id,
                record.total_mu,
            )
    return valid


def _control_points(records: Sequence[BeamRecord]) -> Iterator[ApertureControlPoint]:
    for record in records:
        yield from record.aperture_control_points


def _total_mu(records: Sequence[BeamRecord]) -> float:
    return sum(record.total_mu for record in records)


def _aperture_weights(records: Sequence[BeamRecord]) -> tuple[np.ndarray, np.ndarray]:
    """The control point MU and the area of every aperture of the beams."""
    weights, areas = [], []
    for cp in _control_points(records):
        for aperture in cp.apertures:
            weights.append(cp.incremental_mu)
            areas.append(aperture.area)
    return np.array(weights, dtype=float), np.array(areas, dtype=float)


def mu_dose_ratio(records: Sequence[BeamRecord], prescribed_dose: float) -> float:
    """The total MU over the prescribed dose, the traditional modulation factor."""
    if not are_beams_valid(records):
        return 0.0
    return safe_divide(_total_mu(records), prescribed_dose)


def total_aperture_mu(records: Sequence[BeamRecord]) -> float:
    """The total MU delivered through each aperture, i.e. the control point MU times its number of apertures."""
    if not are_beams_valid(records):
        return 0.0
    return sum(cp.incremental_mu * cp.aperture_count for cp in _control_points(records))


def average_aperture_count(records: Sequence[BeamRecord]) -> float:
    """The MU weighted average number of apertures per control point."""
    if not are_beams_valid(records):
        return 0.0
    return safe_divide(total_aperture_mu(records), _total_mu(records))


def aperture_jaw_area_ratio(records: Sequence[BeamRecord]) -> float:
    """The MU weighted ratio of the aperture area over the jaw opening area."""
    if not are_beams_valid(records):
        return 0.0
    weighted = sum(
        cp.incremental_mu * safe_divide(cp.total_area, cp.jaw_area)
        for cp in _control_points(records)
    )
    return safe_divide(weighted, _total_mu(records))


def perimeter_area_ratio(records: Sequence[BeamRecord]) -> float:
    """The ratio of the MU weighted aperture perimeter over the MU weighted aperture area (mm^-1)."""
    if not are_beams_valid(records):
        return 0.0
    perimeter = sum(cp.incremental_mu * cp.total_perimeter for cp in _control_points(records))
    area = sum(cp.incremental_mu * cp.total_area for cp in _control_points(records))
    return safe_divide(perimeter, area)


def aperture_mu_weighted_perimeter_area_ratio(records: Sequence[BeamRecord]) -> float:
    """The aperture MU weighted average of the perimeter over area ratio of each aperture (mm^-1)."""
    if not are_beams_valid(records):
        return 0.0
    weighted = sum(
        cp.incremental_mu * sum(safe_divide(ap.perimeter, ap.area) for ap in cp.apertures)
        for cp in _control_points(records)
    )
    return safe_divide(weighted, total_aperture_mu(records))


def original_edge_length_area_ratio(records: Sequence[BeamRecord]) -> float:
    """The MU weighted average of the control point edge length over the control point aperture area (mm^-1).

    Control points without apertures contribute nothing but their MU still counts in the normalisation.
    """
    if not are_beams_valid(records):
        return 0.0
    weighted = sum(
        cp.incremental_mu * safe_divide(cp.total_edge_length, cp.total_area)
        for cp in _control_points(records)
        if cp.aperture_count > 0
    )
    return safe_divide(weighted, _total_mu(records))


def edge_length_area_ratio(records: Sequence[BeamRecord]) -> float:
    """The ratio of the MU weighted leaf edge length over the MU weighted aperture area (mm^-1)."""
    if not are_beams_valid(records):
        return 0.0
    edge_length = sum(cp.incremental_mu * cp.total_edge_length for cp in _control_points(records))
    area = sum(cp.incremental_mu * cp.total_area for cp in _control_points(records))
    return safe_divide(edge_length, area)


def aperture_mu_weighted_edge_length_area_ratio(records: Sequence[BeamRecord]) -> float:
    """The aperture MU weighted average of the edge length over area ratio of each aperture (mm^-1)."""
    if not are_beams_valid(records):
        return 0.0
    weighted = sum(
        cp.incremental_mu * sum(safe_divide(ap.edge_length, ap.area) for ap in cp.apertures)
        for cp in _control_points(records)
    )
    return safe_divide(weighted, total_aperture_mu(records))


def equivalent_square_length(records: Sequence[BeamRecord]) -> float:
    """Twice the MU weighted aperture area over the MU weighted edge length (mm).

    For a single square aperture of side s the leaf edges are the two sides closed by the leaves, so this
    reduces to s.
    """
    if not are_beams_valid(records):
        return 0.0
    edge_length = sum(cp.incremental_mu * cp.total_edge_length for cp in _control_points(records))
    area = sum(cp.incremental_mu * cp.total_area for cp in _control_points(records))
    return safe_divide(2 * area, edge_length)


def aperture_area_histogram(
    records: Sequence[BeamRecord],
    bin_size: int = DEFAULT_SETTINGS.histogram_bin_size_mm2,
    max_area: int = DEFAULT_SETTINGS.max_aperture_area_mm2,
) -> dict[int, float]:
    """The aperture MU weighted histogram of the aperture areas.

    Parameters
    ----------
    records : Sequence[BeamRecord]
        The beams to aggregate.
    bin_size : int
        The width of the bins in mm^2.
    max_area : int
        The upper bound of the histogram in mm^2. Larger apertures are not binned.

    Returns
    -------
    dict[int, float]
        Upper bound of the bin (mm^2) -> fraction of the aperture MU.
    """
    if bin_size <= 0:
        raise ValueError("The bin size must be positive")
    num_bins = int(math.floor(max_area / bin_size))
    histogram = {(idx + 1) * bin_size: 0.0 for idx in range(num_bins)}
    if not are_beams_valid(records):
        return histogram
    aperture_mu = total_aperture_mu(records)
    if aperture_mu == 0:
        return histogram
    for cp in _control_points(records):
        for aperture in cp.apertures:
            bin_key = int(math.ceil(aperture.area / bin_size)) * bin_size
            if bin_key in histogram:
                histogram[bin_key] += cp.incremental_mu / aperture_mu
    return histogram


def average_aperture_area(records: Sequence[BeamRecord]) -> float:
    """The aperture MU weighted average aperture area (mm^2)."""
    if not are_beams_valid(records):
        return 0.0
    weights, areas = _aperture_weights(records)
    return safe_divide(float(np.sum(weights * areas)), float(np.sum(weights)))


def aperture_area_skewness(records: Sequence[BeamRecord]) -> float:
    """The aperture MU weighted skewness of the aperture areas. Zero if all apertures have the same area."""
    if not are_beams_valid(records):
        return 0.0
    weights, areas = _aperture_weights(records)
    total = float(np.sum(weights))
    if total == 0:
        return 0.0
    weights = weights / total
    mean = float(np.sum(weights * areas))
    variance = float(np.sum(weights * (areas - mean) ** 2))
    moment3 = float(np.sum(weights * areas**3))
    # relative tolerance, the raw third moment carries the rounding error of area^3
    if variance <= 1e-12 * max(mean**2, 1.0):
        return 0.0
    return (moment3 - 3 * mean * variance - mean**3) / variance**1.5


def leaf_gaps(records: Sequence[BeamRecord]) -> float:
    """The MU weighted sum of the widths of the closed leaf pairs within the jaws (mm)."""
    if not are_beams_valid(records):
        return 0.0
    weighted = sum(cp.incremental_mu * cp.closed_leaf_gap_sum for cp in _control_points(records))
    return safe_divide(weighted, _total_mu(records))


def average_leaf_speed(records: Sequence[BeamRecord]) -> float:
    """The MU weighted average leaf speed (mm/s)."""
    if not are_beams_valid(records):
        return 0.0
    weighted = sum(
        dcp.interval_mu * dcp.avg_leaf_speed
        for record in records
        for dcp in record.dynamic_control_points
    )
    return safe_divide(weighted, _total_mu(records))


def average_gantry_acceleration(records: Sequence[BeamRecord]) -> float:
    """The MU weighted average change of gantry speed between intervals (deg/s per control point).

    The gantry starts and ends each beam at rest, so every beam is padded with a zero speed, zero MU
    interval before the first and after the last interval.
    """
    if not are_beams_valid(records):
        return 0.0
    weighted = 0.0
    for record in records:
        previous_mu, previous_speed = 0.0, 0.0
        for dcp in record.dynamic_control_points:
            weighted += 0.5 * (dcp.interval_mu + previous_mu) * abs(dcp.gantry_speed - previous_speed)
            previous_mu, previous_speed = dcp.interval_mu, dcp.gantry_speed
        weighted += 0.5 * previous_mu * abs(previous_speed)
    return safe_divide(weighted, _total_mu(records))


def total_beam_time(records: Sequence[BeamRecord]) -> float:
    """The total delivery time of the beams (s)."""
    if not are_beams_valid(records):
        return 0.0
    return sum(record.total_time for record in records)


@dataclass(frozen=True)
class ComplexityMetrics:
    """All the scalar complexity metrics of a set of beams."""

    total_mu: float
    total_time: float
    mu_dose_ratio: float
    total_aperture_mu: float
    average_aperture_count: float
    aperture_jaw_area_ratio: float
    perimeter_area_ratio: float
    aperture_mu_weighted_perimeter_area_ratio: float
    original_edge_length_area_ratio: float
    edge_length_area_ratio: float
    aperture_mu_weighted_edge_length_area_ratio: float
    equivalent_square_length: float
    average_aperture_area: float
    aperture_area_skewness: float
    leaf_gaps: float
    average_leaf_speed: float
    average_gantry_acceleration: float

    @classmethod
    def from_records(
        cls,
        records: Sequence[BeamRecord],
        prescribed_dose: float = float("nan"),
    ):
        """Compute every metric of the beams.

        Parameters
        ----------
        records : Sequence[BeamRecord]
            The beams to aggregate.
        prescribed_dose : float
            The prescribed dose per fraction, used for the MU/dose ratio only.
        """
        valid = are_beams_valid(records)
        return cls(
            total_mu=_total_mu(records) if valid else 0.0,
            total_time=total_beam_time(records),
            mu_dose_ratio=mu_dose_ratio(records, prescribed_dose),
            total_aperture_mu=total_aperture_mu(records),
            average_aperture_count=average_aperture_count(records),
            aperture_jaw_area_ratio=aperture_jaw_area_ratio(records),
            perimeter_area_ratio=perimeter_area_ratio(records),
            aperture_mu_weighted_perimeter_area_ratio=aperture_mu_weighted_perimeter_area_ratio(records),
            original_edge_length_area_ratio=original_edge_length_area_ratio(records),
            edge_length_area_ratio=edge_length_area_ratio(records),
            aperture_mu_weighted_edge_length_area_ratio=aperture_mu_weighted_edge_length_area_ratio(records),
            equivalent_square_length=equivalent_square_length(records),
            average_aperture_area=average_aperture_area(records),
            aperture_area_skewness=aperture_area_skewness(records),
            leaf_gaps=leaf_gaps(records),
            average_leaf_speed=average_leaf_speed(records),
            average_gantry_acceleration=average_gantry_acceleration(records),
        )


def compute_histogram(
    records: Sequence[BeamRecord], settings: ComplexitySettings = DEFAULT_SETTINGS
) -> dict[int, float]:
    """The aperture area histogram with the bins of the settings."""
    return aperture_area_histogram(
        records, settings.histogram_bin_size_mm2, settings.max_aperture_area_mm2
    )
