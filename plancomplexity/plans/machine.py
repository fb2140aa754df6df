from dataclasses import dataclass, replace
from enum import Enum
from typing import Self


@dataclass(frozen=True)
class MachineSpecs:
    """
    This class is a dataclass holding machine specs

    Parameters
    ----------
    max_gantry_speed : float
        The maximum gantry speed in deg/sec
    """

    max_gantry_speed: float

    def replace(self, **overrides) -> Self:
        return replace(self, **overrides)


# Treatment unit id -> machine specs. New machines are added here.
MACHINE_SPECS: dict[str, MachineSpecs] = {
    "Everest": MachineSpecs(max_gantry_speed=4.8),
    "K2": MachineSpecs(max_gantry_speed=4.8),
    "Denali": MachineSpecs(max_gantry_speed=6.0),
    "Taos": MachineSpecs(max_gantry_speed=6.0),
}


def get_max_gantry_speed(
    machine_id: str | None, machine_specs: dict[str, MachineSpecs] = MACHINE_SPECS
) -> float | None:
    """Return the maximum gantry speed (deg/s) of the treatment unit, or None if the unit is unknown."""
    specs = machine_specs.get(machine_id) if machine_id is not None else None
    if specs is None or specs.max_gantry_speed <= 0:
        return None
    return specs.max_gantry_speed


class MLCPlanType(Enum):
    STATIC = "STATIC"
    DOSE_DYNAMIC = "DOSE_DYNAMIC"
    ARC_DYNAMIC = "ARC_DYNAMIC"
    VMAT = "VMAT"

    @property
    def is_rotational(self) -> bool:
        """Whether the gantry is in motion while the beam is on."""
        return self in (MLCPlanType.ARC_DYNAMIC, MLCPlanType.VMAT)


class LimitingFactor(Enum):
    """Which machine limit sets the duration of a control point interval."""

    MU = "MU"
    GANTRY = "GANTRY"
