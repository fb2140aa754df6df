import logging
from collections.abc import Sequence

from plancomplexity.plans.control_point import (
    ApertureControlPoint,
    DynamicControlPoint,
    IntervalTiming,
    JawWindow,
    RawControlPoint,
)
from plancomplexity.plans.machine import LimitingFactor
from plancomplexity.plans.mlc import LeafPairSpec
from plancomplexity.utils import safe_divide, wrap180

logger = logging.getLogger(__name__)


def gantry_travel(angle_start: float, angle_end: float) -> float:
    """The shortest rotation (deg) between two gantry angles."""
    return abs(wrap180(angle_end - angle_start))


def max_jaw_y_span(jaws: Sequence[JawWindow]) -> float:
    """The widest Y jaw opening over the control points of a beam."""
    return max((jaw.height for jaw in jaws), default=0.0)


def weighted_leaf_travel(
    start: RawControlPoint,
    end: RawControlPoint,
    leaf_specs: Sequence[LeafPairSpec],
    jaws: JawWindow,
    y_span: float,
) -> float:
    """The leaf travel distance (mm) between two control points, weighted by leaf width.

    Each leaf pair within the Y jaws contributes its mean travel of both banks, scaled by its width over
    the widest Y jaw opening of the beam. Leaf pairs hidden behind an X jaw at both control points do not
    contribute.

    Parameters
    ----------
    start : RawControlPoint
        The first control point of the interval.
    end : RawControlPoint
        The second control point of the interval.
    leaf_specs : Sequence[LeafPairSpec]
        The leaf geometry of the MLC.
    jaws : JawWindow
        The jaw window covering both control points.
    y_span : float
        The widest Y jaw opening of the beam.
    """
    if y_span <= 0:
        return 0.0
    bank0_start, bank1_start = start.leaf_positions
    bank0_end, bank1_end = end.leaf_positions
    travel = 0.0
    for idx, leaf in enumerate(leaf_specs):
        if not (jaws.y1 < leaf.top and leaf.bottom < jaws.y2):
            continue
        behind_x1 = bank1_end[idx] < jaws.x1 and bank1_start[idx] < jaws.x1
        behind_x2 = bank0_end[idx] > jaws.x2 and bank0_start[idx] > jaws.x2
        if behind_x1 or behind_x2:
            continue
        travel += (
            leaf.width
            / y_span
            * 0.5
            * (
                abs(bank1_end[idx] - bank1_start[idx])
                + abs(bank0_end[idx] - bank0_start[idx])
            )
        )
    return float(travel)


def solve_interval_timing(
    delta_mu: float,
    delta_angle: float,
    max_dose_rate: float,
    max_gantry_speed: float,
) -> IntervalTiming:
    """Find the shortest duration of an interval given the dose rate and gantry speed limits.

    The interval lasts as long as the slower of the two axes needs: delivering ``delta_mu`` at the maximum
    dose rate or rotating ``delta_angle`` at the maximum gantry speed.

    Parameters
    ----------
    delta_mu : float
        The MU delivered in the interval.
    delta_angle : float
        The gantry rotation in the interval, in degrees (sign is ignored).
    max_dose_rate : float
        The maximum dose rate in MU/s.
    max_gantry_speed : float
        The maximum gantry speed in deg/s.
    """
    mu_time = safe_divide(delta_mu, max_dose_rate)
    gantry_time = safe_divide(abs(delta_angle), max_gantry_speed)
    if mu_time < gantry_time:
        return IntervalTiming(duration=gantry_time, limiting_factor=LimitingFactor.GANTRY)
    return IntervalTiming(duration=mu_time, limiting_factor=LimitingFactor.MU)


def reconcile_rates(
    control_points: Sequence[RawControlPoint],
    aperture_control_points: Sequence[ApertureControlPoint],
    leaf_specs: Sequence[LeafPairSpec],
    total_mu: float,
    max_dose_rate: float,
    max_gantry_speed: float | None,
) -> tuple[tuple[DynamicControlPoint, ...], float]:
    """Compute the gantry speed, dose rate and average leaf speed of every control point interval.

    Parameters
    ----------
    control_points : Sequence[RawControlPoint]
        The control points of the beam.
    aperture_control_points : Sequence[ApertureControlPoint]
        The aperture control points of the beam, providing the jaw windows.
    leaf_specs : Sequence[LeafPairSpec]
        The leaf geometry of the MLC.
    total_mu : float
        The MU of the beam.
    max_dose_rate : float
        The maximum dose rate in MU/min.
    max_gantry_speed : float | None
        The maximum gantry speed in deg/s. If unknown, no dynamics are computed.

    Returns
    -------
    tuple
        The dynamic control points (one per interval) and the total beam time in seconds.
    """
    if not max_gantry_speed or max_gantry_speed <= 0:
        logger.warning("Maximum gantry speed unknown; skipping the delivery dynamics")
        return (), 0.0

    max_dose_rate_s = max_dose_rate / 60.0
    y_span = max_jaw_y_span([cp.jaws for cp in aperture_control_points])
    dynamic_cps = []
    beam_time = 0.0
    for idx in range(1, len(control_points)):
        start, end = control_points[idx - 1], control_points[idx]
        delta_mu = (end.meterset_weight - start.meterset_weight) * total_mu
        delta_angle = gantry_travel(start.gantry_angle, end.gantry_angle)
        jaws = aperture_control_points[idx - 1].jaws.union(
            aperture_control_points[idx].jaws
        )
        travel = weighted_leaf_travel(start, end, leaf_specs, jaws, y_span)

        timing = solve_interval_timing(
            delta_mu, delta_angle, max_dose_rate_s, max_gantry_speed
        )
        if timing.limiting_factor == LimitingFactor.GANTRY:
            gantry_speed = max_gantry_speed
            dose_rate = safe_divide(delta_mu, timing.duration)
        else:
            gantry_speed = safe_divide(delta_angle, timing.duration)
            dose_rate = max_dose_rate_s
        leaf_speed = safe_divide(travel, timing.duration)
        beam_time += timing.duration

        logger.debug(
            "Interval %d: %.3f s (%s limited), gantry %.3f deg/s, leaves %.3f mm/s",
            idx - 1,
            timing.duration,
            timing.limiting_factor.value,
            gantry_speed,
            leaf_speed,
        )
        dynamic_cps.append(
            DynamicControlPoint(
                interval_index=idx - 1,
                gantry_speed=gantry_speed,
                avg_leaf_speed=leaf_speed,
                dose_rate=dose_rate * 60.0,
                interval_mu=delta_mu,
                limiting_factor=timing.limiting_factor,
            )
        )
    return tuple(dynamic_cps), beam_time
