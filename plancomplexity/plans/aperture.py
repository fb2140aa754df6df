from collections.abc import Sequence

import numpy as np

from plancomplexity.plans.control_point import (
    Aperture,
    ApertureControlPoint,
    JawWindow,
    RawControlPoint,
)
from plancomplexity.plans.mlc import LeafPairSpec
from plancomplexity.settings import MIN_LEAF_GAP_MM


def incremental_metersets(weights: Sequence[float], total_mu: float) -> np.ndarray:
    """Compute the MU attributable to each control point.

    Each control point is given half of the MU delivered in the interval before it and half of the MU
    delivered in the interval after it (centered trapezoidal rule). For weights starting at 0 and ending
    at 1 the result sums to ``total_mu``.

    Parameters
    ----------
    weights : Sequence[float]
        The cumulative meterset weights of the control points.
    total_mu : float
        The MU of the beam.

    Returns
    -------
    np.ndarray
        The MU of each control point.
    """
    weights = np.asarray(weights, dtype=float)
    num_cps = len(weights)
    if num_cps < 2:
        return np.zeros(num_cps)
    metersets = np.empty(num_cps)
    metersets[0] = 0.5 * weights[1] * total_mu
    metersets[-1] = 0.5 * (weights[-1] - weights[-2]) * total_mu
    metersets[1:-1] = 0.5 * (weights[2:] - weights[:-2]) * total_mu
    return metersets


def is_leaf_within_jaws(
    leaf: LeafPairSpec, bank0: float, bank1: float, jaws: JawWindow
) -> bool:
    """Whether the leaf pair band overlaps the Y jaws and both leaf tips are inside the X jaws."""
    return (
        jaws.y1 < leaf.top
        and leaf.bottom < jaws.y2
        and jaws.x1 < bank0
        and bank1 < jaws.x2
    )


def _clamp(value: float, upper: float) -> float:
    return max(0.0, min(value, upper))


def extract_apertures(
    control_point: RawControlPoint,
    leaf_specs: Sequence[LeafPairSpec],
    incremental_mu: float = 0.0,
    min_leaf_gap: float = MIN_LEAF_GAP_MM,
) -> ApertureControlPoint:
    """Find the open apertures formed by the MLC and the jaws at a control point.

    The leaf pairs are scanned from -Y to +Y. Open leaf pairs are accumulated into the current aperture
    until a leaf pair whose neighbour in +Y does not continue the opening, at which point the aperture is
    closed and a new one may start.

    The perimeter of an aperture is made of the leaf edges (the parts of the leaf tips' sides that are
    not shared with the neighbouring open leaf pairs) plus the leaf tip sides. The edge length only counts
    the former.

    Parameters
    ----------
    control_point : RawControlPoint
        The control point geometry.
    leaf_specs : Sequence[LeafPairSpec]
        The leaf geometry of the MLC, in the same order as the leaf positions.
    incremental_mu : float
        The MU attributed to the control point.
    min_leaf_gap : float
        Leaf pair openings at or below this value (mm) are considered closed.
    """
    if len(leaf_specs) != control_point.number_of_leaf_pairs:
        raise ValueError(
            f"The MLC has {len(leaf_specs)} leaf pairs but the control point has "
            f"{control_point.number_of_leaf_pairs}"
        )

    jaws = control_point.jaws
    bank0, bank1 = control_point.leaf_positions
    gaps = bank1 - bank0
    within_jaws = [
        is_leaf_within_jaws(leaf, bank0[idx], bank1[idx], jaws)
        for idx, leaf in enumerate(leaf_specs)
    ]
    is_open = [within and gap > min_leaf_gap for within, gap in zip(within_jaws, gaps)]
    last_idx = len(leaf_specs) - 1

    apertures = []
    closed_leaf_gap_sum = 0.0
    perimeter = edge_length = area = 0.0
    for idx, leaf in enumerate(leaf_specs):
        if not within_jaws[idx]:
            continue
        if not is_open[idx]:
            closed_leaf_gap_sum += leaf.width
            continue

        gap = float(gaps[idx])
        # the Y jaws may block part of the leaf
        open_width = min(leaf.width, leaf.top - jaws.y1, jaws.y2 - leaf.bottom)

        if idx > 0 and is_open[idx - 1]:
            edge_n0 = _clamp(bank0[idx - 1] - bank0[idx], gap)
            edge_n1 = _clamp(bank1[idx] - bank1[idx - 1], gap)
        else:
            edge_n0, edge_n1 = gap, 0.0
        if idx < last_idx and is_open[idx + 1]:
            edge_p0 = _clamp(bank0[idx + 1] - bank0[idx], gap)
            edge_p1 = _clamp(bank1[idx] - bank1[idx + 1], gap)
        else:
            edge_p0, edge_p1 = gap, 0.0

        closing_edges = float(edge_n0 + edge_n1 + edge_p0 + edge_p1)
        perimeter += closing_edges + 2 * open_width
        edge_length += closing_edges
        area += gap * open_width

        # the next leaf pair does not overlap this opening
        if edge_p0 == gap or edge_p1 == gap:
            apertures.append(
                Aperture(perimeter=perimeter, edge_length=edge_length, area=area)
            )
            perimeter = edge_length = area = 0.0

    return ApertureControlPoint(
        index=control_point.index,
        jaws=jaws,
        incremental_mu=float(incremental_mu),
        closed_leaf_gap_sum=closed_leaf_gap_sum,
        apertures=tuple(apertures),
    )


def build_aperture_control_points(
    control_points: Sequence[RawControlPoint],
    leaf_specs: Sequence[LeafPairSpec],
    total_mu: float,
    min_leaf_gap: float = MIN_LEAF_GAP_MM,
) -> tuple[ApertureControlPoint, ...]:
    """Extract the apertures of every control point of a beam and weight them by their MU."""
    metersets = incremental_metersets(
        [cp.meterset_weight for cp in control_points], total_mu
    )
    return tuple(
        extract_apertures(cp, leaf_specs, mu, min_leaf_gap)
        for cp, mu in zip(control_points, metersets)
    )
