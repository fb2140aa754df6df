import logging
from collections.abc import Iterable, Sequence

import numpy as np
from pydicom import Dataset

from plancomplexity.plans.aperture import build_aperture_control_points
from plancomplexity.plans.control_point import BeamRecord, JawWindow, RawControlPoint
from plancomplexity.plans.dynamics import reconcile_rates
from plancomplexity.plans.machine import (
    MACHINE_SPECS,
    MachineSpecs,
    MLCPlanType,
    get_max_gantry_speed,
)
from plancomplexity.plans.mlc import (
    MLC_MODELS,
    LeafPairSpec,
    get_leaf_specs,
    identify_mlc_model,
)
from plancomplexity.settings import DEFAULT_SETTINGS, ComplexitySettings
from plancomplexity.utils import wrap180

logger = logging.getLogger(__name__)

X_JAW_TYPES = ("ASYMX", "X")
Y_JAW_TYPES = ("ASYMY", "Y")
DEFAULT_X_JAW_LIMIT = 200.0


class Beam:
    """Represents the control point geometry of a treatment beam. Builds the beam record used by the metrics."""

    def __init__(
        self,
        beam_name: str,
        beam_meterset: float,
        meterset_weights: Sequence[float],
        gantry_angles: float | Sequence[float],
        x1: float | Sequence[float],
        x2: float | Sequence[float],
        y1: float | Sequence[float],
        y2: float | Sequence[float],
        mlc_positions: Sequence[Sequence[float]] | None,
        mlc_model: str | None,
        machine_id: str | None = None,
        energy: str = "",
        dose_rate: float | None = None,
        plan_type: MLCPlanType = MLCPlanType.STATIC,
    ):
        """
        Parameters
        ----------
        beam_name : str
            The name (id) of the beam.
        beam_meterset : float
            The MU of the beam. May be NaN if the beam has no MU.
        meterset_weights : Sequence[float]
            The cumulative meterset weight for each control point, from 0 to 1.
        gantry_angles : Union[float, Sequence[float]]
            The gantry angle(s) of the beam. If a single number, it's replicated for all control points.
        x1 : Union[float, Sequence[float]]
            The left jaw position(s).
        x2 : Union[float, Sequence[float]]
            The right jaw position(s).
        y1 : Union[float, Sequence[float]]
            The bottom jaw position(s).
        y2 : Union[float, Sequence[float]]
            The top jaw position(s).
        mlc_positions : Sequence[Sequence[float]] | None
            The MLC positions for each control point, as in DICOM LeafJawPositions:
            the first half are the bank 0 (X1) leaves, the second half the bank 1 (X2) leaves.
            None if the beam has no MLC.
        mlc_model : str | None
            The MLC model name used to look up the leaf geometry.
        machine_id : str | None
            The treatment unit id used to look up the maximum gantry speed.
        energy : str
            The energy mode of the beam, used for reporting only.
        dose_rate : float | None
            The maximum dose rate of the beam in MU/min.
        plan_type : MLCPlanType
            The MLC delivery type. Dynamics are computed for rotational deliveries only.
        """
        self.beam_name = beam_name
        self.beam_meterset = float(beam_meterset)
        self.mlc_model = mlc_model
        self.machine_id = machine_id
        self.energy = energy
        self.dose_rate = dose_rate
        self.plan_type = plan_type
        self.number_of_control_points = len(meterset_weights)

        # For easier manipulation all variables are stored as np.ndarray of size num_cp,
        # if the axis are static they are replicated to fit the array.
        self.meterset_weights = np.array(meterset_weights, dtype=float)
        self.gantry_angles = self._expand(gantry_angles)
        self.jaw_positions = {
            "x1": self._expand(x1),
            "x2": self._expand(x2),
            "y1": self._expand(y1),
            "y2": self._expand(y2),
        }
        self.mlc_positions = None
        if mlc_positions is not None:
            mlc_positions = np.array(mlc_positions, dtype=float)
            if mlc_positions.ndim == 1:
                mlc_positions = np.tile(mlc_positions, (self.number_of_control_points, 1))
            if mlc_positions.shape[0] != self.number_of_control_points:
                raise ValueError(
                    "The number of MLC control points must match the number of meterset weights"
                )
            if mlc_positions.shape[1] % 2:
                raise ValueError("MLC positions must have an even number of leaves")
            self.mlc_positions = mlc_positions

    def _expand(self, values: float | Sequence[float]) -> np.ndarray:
        if not isinstance(values, Iterable):
            values = [values] * self.number_of_control_points
        values = np.array(values, dtype=float)
        if len(values) != self.number_of_control_points:
            raise ValueError(
                "The number of values must match the number of meterset weights"
            )
        return values

    @property
    def control_points(self) -> tuple[RawControlPoint, ...]:
        """The raw control points of the beam. Empty if the beam has no MLC."""
        if self.mlc_positions is None:
            return ()
        num_leaf_pairs = self.mlc_positions.shape[1] // 2
        return tuple(
            RawControlPoint(
                index=idx,
                jaws=JawWindow(
                    x1=self.jaw_positions["x1"][idx],
                    x2=self.jaw_positions["x2"][idx],
                    y1=self.jaw_positions["y1"][idx],
                    y2=self.jaw_positions["y2"][idx],
                ),
                leaf_positions=self.mlc_positions[idx].reshape(2, num_leaf_pairs),
                gantry_angle=self.gantry_angles[idx],
                meterset_weight=self.meterset_weights[idx],
            )
            for idx in range(self.number_of_control_points)
        )

    def compute(
        self,
        settings: ComplexitySettings = DEFAULT_SETTINGS,
        mlc_models: dict[str, tuple[LeafPairSpec, ...]] = MLC_MODELS,
        machine_specs: dict[str, MachineSpecs] = MACHINE_SPECS,
    ) -> BeamRecord | None:
        """Reconstruct the apertures and, for rotational deliveries, the dynamics of the beam.

        Parameters
        ----------
        settings : ComplexitySettings
            The reconstruction settings.
        mlc_models : dict
            The leaf geometry table, MLC model name -> leaf pair specs.
        machine_specs : dict
            The machine table, treatment unit id -> machine specs.

        Returns
        -------
        BeamRecord | None
            The beam record, or None if the beam has no MLC or the MLC model is not supported.
        """
        if self.mlc_positions is None:
            logger.warning("Beam %s has no MLC; skipping", self.beam_name)
            return None
        leaf_specs = get_leaf_specs(self.mlc_model, mlc_models)
        if not leaf_specs:
            logger.warning(
                "Beam %s: MLC model %r is not supported; skipping",
                self.beam_name,
                self.mlc_model,
            )
            return None
        if len(leaf_specs) != self.mlc_positions.shape[1] // 2:
            logger.warning(
                "Beam %s: the leaf positions do not match the %s leaf geometry; skipping",
                self.beam_name,
                self.mlc_model,
            )
            return None

        control_points = self.control_points
        aperture_cps = build_aperture_control_points(
            control_points, leaf_specs, self.beam_meterset, settings.min_leaf_gap_mm
        )

        dynamic_cps, beam_time = (), 0.0
        if self.plan_type.is_rotational:
            max_gantry_speed = get_max_gantry_speed(self.machine_id, machine_specs)
            if max_gantry_speed is None:
                logger.warning(
                    "Beam %s: treatment unit %r is unknown; skipping the delivery dynamics",
                    self.beam_name,
                    self.machine_id,
                )
            elif not self.dose_rate:
                logger.warning(
                    "Beam %s has no dose rate; skipping the delivery dynamics",
                    self.beam_name,
                )
            else:
                dynamic_cps, beam_time = reconcile_rates(
                    control_points,
                    aperture_cps,
                    leaf_specs,
                    self.beam_meterset,
                    self.dose_rate,
                    max_gantry_speed,
                )

        return BeamRecord(
            beam_id=self.beam_name,
            total_mu=self.beam_meterset,
            total_time=beam_time,
            aperture_control_points=aperture_cps,
            dynamic_control_points=dynamic_cps,
            machine_id=self.machine_id or "",
            energy=self.energy,
        )

    @classmethod
    def from_dicom(
        cls,
        ds: Dataset,
        beam_idx: int,
        mlc_models: dict[str, tuple[LeafPairSpec, ...]] = MLC_MODELS,
    ):
        """Load a beam from an RT plan dataset

        Parameters
        ----------
        ds : Dataset
            The dataset of the RT Plan.
        beam_idx : int
            The index of the beam to be loaded (zero indexed, i.e. beam #1 -> ind #0).
        mlc_models : dict
            The leaf geometry table used to identify the MLC model from the leaf boundaries.
        """
        if ds.Modality != "RTPLAN":
            raise ValueError("File is not an RTPLAN file")

        if beam_idx >= len(ds.BeamSequence):
            msg = "beam_idx is larger than the number of beams in the plan (note: use zero indexing)."
            raise ValueError(msg)

        beam = ds.BeamSequence[beam_idx]
        mu = _beam_meterset(ds, beam)
        name = str(getattr(beam, "BeamName", "") or beam.get("BeamNumber", beam_idx + 1))
        blds = {bld.RTBeamLimitingDeviceType: bld for bld in beam.BeamLimitingDeviceSequence}
        mlc_key = next((key for key in blds if key.startswith("MLC")), None)

        cp0 = beam.ControlPointSequence[0]
        energy = _energy_mode(beam, cp0)
        dose_rate = cp0.get("DoseRateSet")

        # Initial control point
        gantry_angles = [float(cp0.GantryAngle)]
        cmws = [float(cp0.CumulativeMetersetWeight)]
        bldp = {
            bld.RTBeamLimitingDeviceType: [list(bld.LeafJawPositions)]
            for bld in cp0.BeamLimitingDevicePositionSequence
        }

        # for the next control points the concept is: append new if exists,
        # otherwise append a copy of the previous control point
        for cp in beam.ControlPointSequence[1:]:
            gantry_angle = cp.get("GantryAngle")
            gantry_angles.append(
                gantry_angles[-1] if gantry_angle is None else float(gantry_angle)
            )
            cmw = cp.get("CumulativeMetersetWeight")
            cmws.append(cmws[-1] if cmw is None else float(cmw))

            bldps = {
                x.RTBeamLimitingDeviceType: list(x.LeafJawPositions)
                for x in cp.get("BeamLimitingDevicePositionSequence", [])
            }
            for key in bldp.keys():
                bldp[key].append(bldps.get(key, bldp[key][-1]))

        # weights are relative to the final cumulative meterset weight
        final_weight = float(beam.get("FinalCumulativeMetersetWeight") or cmws[-1] or 1.0)
        meterset_weights = np.array(cmws) / final_weight

        mlc_model = None
        mlc_positions = None
        if mlc_key is not None and mlc_key in bldp:
            mlc_positions = bldp[mlc_key]
            mlc_model = identify_mlc_model(
                blds[mlc_key].LeafPositionBoundaries, mlc_models
            )
            if mlc_model is None:
                logger.warning(
                    "Beam %s: the MLC leaf boundaries do not match any known MLC model",
                    name,
                )

        x_key = next((k for k in X_JAW_TYPES if k in bldp), None)
        y_key = next((k for k in Y_JAW_TYPES if k in bldp), None)
        x_jaws = (
            np.array(bldp[x_key])
            if x_key
            else np.tile([-DEFAULT_X_JAW_LIMIT, DEFAULT_X_JAW_LIMIT], (len(cmws), 1))
        )
        if y_key:
            y_jaws = np.array(bldp[y_key])
        else:
            # without Y jaws the field is only bounded by the outer leaves
            boundaries = blds[mlc_key].LeafPositionBoundaries if mlc_key else [-200, 200]
            y_jaws = np.tile([boundaries[0], boundaries[-1]], (len(cmws), 1))

        return cls(
            beam_name=name,
            beam_meterset=mu,
            meterset_weights=meterset_weights,
            gantry_angles=gantry_angles,
            x1=x_jaws[:, 0],
            x2=x_jaws[:, 1],
            y1=y_jaws[:, 0],
            y2=y_jaws[:, 1],
            mlc_positions=mlc_positions,
            mlc_model=mlc_model,
            machine_id=beam.get("TreatmentMachineName"),
            energy=energy,
            dose_rate=float(dose_rate) if dose_rate is not None else None,
            plan_type=_plan_type(beam.get("BeamType", "STATIC"), gantry_angles),
        )


def _beam_meterset(ds: Dataset, beam: Dataset) -> float:
    """Get the MU of the beam from the fraction group. NaN if the beam has no MU."""
    beam_number = beam.get("BeamNumber")
    for fraction_group in ds.get("FractionGroupSequence", []):
        for ref_beam in fraction_group.get("ReferencedBeamSequence", []):
            if ref_beam.get("ReferencedBeamNumber") == beam_number:
                meterset = ref_beam.get("BeamMeterset")
                return float(meterset) if meterset is not None else float("nan")
    return float("nan")


def _energy_mode(beam: Dataset, cp0: Dataset) -> str:
    energy = cp0.get("NominalBeamEnergy")
    if energy is None:
        return ""
    mode = f"{float(energy):g}X"
    pfms = beam.get("PrimaryFluenceModeSequence")
    if pfms and pfms[0].get("FluenceMode") == "NON_STANDARD":
        mode += f"-{pfms[0].get('FluenceModeID', '')}"
    return mode


def _plan_type(beam_type: str, gantry_angles: Sequence[float]) -> MLCPlanType:
    """Infer the MLC delivery type from the beam type and the gantry motion."""
    gantry_moves = bool(np.any(np.diff(wrap180(np.array(gantry_angles))) != 0))
    if beam_type == "STATIC":
        return MLCPlanType.ARC_DYNAMIC if gantry_moves else MLCPlanType.STATIC
    return MLCPlanType.VMAT if gantry_moves else MLCPlanType.DOSE_DYNAMIC
