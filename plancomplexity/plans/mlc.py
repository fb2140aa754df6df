from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class LeafPairSpec:
    """
    Geometry of a single MLC leaf pair, as projected at the isocenter plane.

    Parameters
    ----------
    center_y : float
        The position of the center of the leaf pair along the leaf-stacking (Y) axis in mm.
    width : float
        The width of the leaf pair in mm.
    """

    center_y: float
    width: float

    @property
    def bottom(self) -> float:
        return self.center_y - 0.5 * self.width

    @property
    def top(self) -> float:
        return self.center_y + 0.5 * self.width


def _leaf_bank(first_center: float, width: float, count: int) -> tuple[LeafPairSpec, ...]:
    return tuple(
        LeafPairSpec(center_y=float(first_center + idx * width), width=float(width))
        for idx in range(count)
    )


MLC_HD120 = "Varian High Definition 120"
MLC_MIL120 = "Millennium 120"

# Leaf pairs are ordered from -Y to +Y, matching the order of LeafPositionBoundaries in DICOM.
MLC_MODELS: dict[str, tuple[LeafPairSpec, ...]] = {
    MLC_HD120: (
        _leaf_bank(-107.5, 5, 14)
        + _leaf_bank(-38.75, 2.5, 32)
        + _leaf_bank(42.5, 5, 14)
    ),
    MLC_MIL120: (
        _leaf_bank(-195, 10, 10)
        + _leaf_bank(-97.5, 5, 40)
        + _leaf_bank(105, 10, 10)
    ),
}


def get_leaf_specs(
    mlc_model: str | None,
    mlc_models: dict[str, tuple[LeafPairSpec, ...]] = MLC_MODELS,
) -> tuple[LeafPairSpec, ...]:
    """Return the leaf geometry of the MLC model. Unknown models return an empty tuple."""
    if mlc_model is None:
        return ()
    return mlc_models.get(mlc_model, ())


def leaf_specs_from_boundaries(boundaries: Sequence[float]) -> tuple[LeafPairSpec, ...]:
    """Convert DICOM LeafPositionBoundaries (N+1 values) into N leaf pair specs."""
    boundaries = np.asarray(boundaries, dtype=float)
    centers = 0.5 * (boundaries[1:] + boundaries[:-1])
    widths = np.diff(boundaries)
    return tuple(
        LeafPairSpec(center_y=float(c), width=float(w)) for c, w in zip(centers, widths)
    )


def identify_mlc_model(
    boundaries: Sequence[float],
    mlc_models: dict[str, tuple[LeafPairSpec, ...]] = MLC_MODELS,
    tolerance: float = 0.01,
) -> str | None:
    """Find the MLC model whose leaf geometry matches the DICOM leaf boundaries.

    Returns None when no model of the table matches.
    """
    specs = leaf_specs_from_boundaries(boundaries)
    for name, model_specs in mlc_models.items():
        if len(model_specs) != len(specs):
            continue
        if all(
            abs(a.center_y - b.center_y) <= tolerance
            and abs(a.width - b.width) <= tolerance
            for a, b in zip(model_specs, specs)
        ):
            return name
    return None
