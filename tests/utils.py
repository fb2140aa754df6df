from collections.abc import Sequence

import numpy as np
from pydicom import Dataset, FileMetaDataset
from pydicom.sequence import Sequence as DicomSequence
from pydicom.uid import ExplicitVRLittleEndian, RTPlanStorage, generate_uid

from plancomplexity.plans.beam import Beam
from plancomplexity.plans.control_point import (
    Aperture,
    ApertureControlPoint,
    BeamRecord,
    DynamicControlPoint,
    JawWindow,
    RawControlPoint,
)
from plancomplexity.plans.machine import MLCPlanType
from plancomplexity.plans.mlc import MLC_HD120, MLC_MODELS, LeafPairSpec

# Four 10 mm leaf pairs spanning Y = -20..20 mm, easy to compute by hand.
TEST_MLC = "Test MLC 4"
TEST_LEAF_SPECS = (
    LeafPairSpec(center_y=-15, width=10),
    LeafPairSpec(center_y=-5, width=10),
    LeafPairSpec(center_y=5, width=10),
    LeafPairSpec(center_y=15, width=10),
)
TEST_MLC_MODELS = {TEST_MLC: TEST_LEAF_SPECS}
OPEN_JAWS = JawWindow(x1=-50, x2=50, y1=-20, y2=20)


def leaf_boundaries(leaf_specs: Sequence[LeafPairSpec]) -> list[float]:
    return [leaf_specs[0].bottom] + [leaf.top for leaf in leaf_specs]


def create_control_point(
    bank0: Sequence[float],
    bank1: Sequence[float],
    jaws: JawWindow = OPEN_JAWS,
    index: int = 0,
    gantry_angle: float = 0,
    meterset_weight: float = 0,
) -> RawControlPoint:
    return RawControlPoint(
        index=index,
        jaws=jaws,
        leaf_positions=np.array([bank0, bank1], dtype=float),
        gantry_angle=gantry_angle,
        meterset_weight=meterset_weight,
    )


def create_beam(**kwargs) -> Beam:
    num_leaves = 2 * len(TEST_LEAF_SPECS)
    weights = kwargs.get("meterset_weights", [0, 1])
    return Beam(
        beam_name=kwargs.get("beam_name", "name"),
        beam_meterset=kwargs.get("beam_meterset", 100),
        meterset_weights=weights,
        gantry_angles=kwargs.get("gantry_angles", 0),
        x1=kwargs.get("x1", -50),
        x2=kwargs.get("x2", 50),
        y1=kwargs.get("y1", -20),
        y2=kwargs.get("y2", 20),
        mlc_positions=kwargs.get(
            "mlc_positions", len(weights) * [[-5] * (num_leaves // 2) + [5] * (num_leaves // 2)]
        ),
        mlc_model=kwargs.get("mlc_model", TEST_MLC),
        machine_id=kwargs.get("machine_id", "Denali"),
        energy=kwargs.get("energy", "6X"),
        dose_rate=kwargs.get("dose_rate", 600),
        plan_type=kwargs.get("plan_type", MLCPlanType.STATIC),
    )


def create_aperture_control_point(
    incremental_mu: float,
    apertures: Sequence[tuple[float, float, float]] = (),
    jaws: JawWindow = OPEN_JAWS,
    closed_leaf_gap_sum: float = 0,
    index: int = 0,
) -> ApertureControlPoint:
    """Apertures are given as (perimeter, edge length, area)."""
    return ApertureControlPoint(
        index=index,
        jaws=jaws,
        incremental_mu=incremental_mu,
        closed_leaf_gap_sum=closed_leaf_gap_sum,
        apertures=tuple(Aperture(p, e, a) for p, e, a in apertures),
    )


def create_record(
    total_mu: float,
    aperture_control_points: Sequence[ApertureControlPoint] = (),
    dynamics: Sequence[tuple[float, float, float]] = (),
    beam_id: str = "B1",
    total_time: float = 0,
) -> BeamRecord:
    """Dynamics are given as (interval MU, gantry speed, leaf speed)."""
    return BeamRecord(
        beam_id=beam_id,
        total_mu=total_mu,
        total_time=total_time,
        aperture_control_points=tuple(aperture_control_points),
        dynamic_control_points=tuple(
            DynamicControlPoint(
                interval_index=idx,
                gantry_speed=gantry_speed,
                avg_leaf_speed=leaf_speed,
                dose_rate=600,
                interval_mu=mu,
            )
            for idx, (mu, gantry_speed, leaf_speed) in enumerate(dynamics)
        ),
    )


def create_beam_dataset(
    control_points: Sequence[dict],
    boundaries: Sequence[float],
    beam_number: int = 1,
    beam_name: str = "Arc1",
    beam_type: str = "DYNAMIC",
    machine: str = "Denali",
    dose_rate: float = 600,
    energy: float = 6,
    delivery_type: str = "TREATMENT",
) -> Dataset:
    """Create a BeamSequence item.

    Each control point is a dict with the keys ``gantry``, ``weight`` and optionally ``x``, ``y`` (jaw pairs)
    and ``mlc`` (LeafJawPositions). Missing keys are omitted from the control point, as in real plans.
    """
    beam = Dataset()
    beam.BeamNumber = beam_number
    beam.BeamName = beam_name
    beam.BeamType = beam_type
    beam.TreatmentMachineName = machine
    beam.TreatmentDeliveryType = delivery_type
    beam.RadiationType = "PHOTON"
    beam.FinalCumulativeMetersetWeight = 1.0
    beam.NumberOfControlPoints = len(control_points)

    jaw_x = Dataset()
    jaw_x.RTBeamLimitingDeviceType = "ASYMX"
    jaw_x.NumberOfLeafJawPairs = 1
    jaw_y = Dataset()
    jaw_y.RTBeamLimitingDeviceType = "ASYMY"
    jaw_y.NumberOfLeafJawPairs = 1
    mlc = Dataset()
    mlc.RTBeamLimitingDeviceType = "MLCX"
    mlc.NumberOfLeafJawPairs = len(boundaries) - 1
    mlc.LeafPositionBoundaries = list(boundaries)
    beam.BeamLimitingDeviceSequence = DicomSequence((jaw_x, jaw_y, mlc))

    beam.ControlPointSequence = DicomSequence()
    for idx, values in enumerate(control_points):
        cp = Dataset()
        cp.ControlPointIndex = idx
        if idx == 0:
            cp.NominalBeamEnergy = energy
            cp.DoseRateSet = dose_rate
        if "gantry" in values:
            cp.GantryAngle = values["gantry"]
        cp.CumulativeMetersetWeight = values["weight"]
        positions = DicomSequence()
        for key, device in (("x", "ASYMX"), ("y", "ASYMY"), ("mlc", "MLCX")):
            if key in values:
                position = Dataset()
                position.RTBeamLimitingDeviceType = device
                position.LeafJawPositions = list(values[key])
                positions.append(position)
        if len(positions) > 0:
            cp.BeamLimitingDevicePositionSequence = positions
        beam.ControlPointSequence.append(cp)
    return beam


def create_rt_plan(
    beams: Sequence[Dataset],
    beam_metersets: Sequence[float | None],
    prescription_dose: float | None = 40.0,
    fractions: int = 20,
) -> Dataset:
    """Create an RTPLAN dataset from BeamSequence items. A None meterset omits BeamMeterset."""
    file_meta = FileMetaDataset()
    file_meta.TransferSyntaxUID = ExplicitVRLittleEndian
    file_meta.MediaStorageSOPClassUID = RTPlanStorage
    file_meta.MediaStorageSOPInstanceUID = generate_uid()

    ds = Dataset()
    ds.file_meta = file_meta
    ds.SOPClassUID = RTPlanStorage
    ds.SOPInstanceUID = file_meta.MediaStorageSOPInstanceUID
    ds.Modality = "RTPLAN"
    ds.PatientID = "123456"
    ds.PatientName = "Complexity^Test"
    ds.RTPlanLabel = "Plan1"

    if prescription_dose is not None:
        dose_ref = Dataset()
        dose_ref.DoseReferenceNumber = 1
        dose_ref.DoseReferenceStructureType = "SITE"
        dose_ref.DoseReferenceType = "TARGET"
        dose_ref.TargetPrescriptionDose = prescription_dose
        ds.DoseReferenceSequence = DicomSequence((dose_ref,))

    fraction_group = Dataset()
    fraction_group.FractionGroupNumber = 1
    fraction_group.NumberOfFractionsPlanned = fractions
    fraction_group.NumberOfBeams = len(beams)
    fraction_group.ReferencedBeamSequence = DicomSequence()
    for beam, meterset in zip(beams, beam_metersets):
        ref_beam = Dataset()
        ref_beam.ReferencedBeamNumber = beam.BeamNumber
        if meterset is not None:
            ref_beam.BeamMeterset = meterset
        fraction_group.ReferencedBeamSequence.append(ref_beam)
    ds.FractionGroupSequence = DicomSequence((fraction_group,))
    ds.BeamSequence = DicomSequence(beams)
    return ds


def create_arc_beam_dataset(beam_number: int = 1, beam_name: str = "Arc1", **kwargs) -> Dataset:
    """A 3 control point HD120 arc from 180 to 200 deg. The last control point carries the MLC forward."""
    control_points = [
        {"gantry": 180, "weight": 0, "x": (-50, 50), "y": (-50, 50), "mlc": 60 * [-5] + 60 * [5]},
        {"gantry": 190, "weight": 0.5, "mlc": 60 * [-10] + 60 * [10]},
        {"gantry": 200, "weight": 1},
    ]
    return create_beam_dataset(
        control_points,
        leaf_boundaries(MLC_MODELS[MLC_HD120]),
        beam_number=beam_number,
        beam_name=beam_name,
        **kwargs,
    )
