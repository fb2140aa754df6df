from pathlib import Path

import pydicom
from pydicom import Dataset

from plancomplexity.metrics.complexity import filter_valid
from plancomplexity.plans.beam import Beam
from plancomplexity.plans.control_point import BeamRecord
from plancomplexity.plans.machine import MACHINE_SPECS, MachineSpecs
from plancomplexity.plans.mlc import MLC_MODELS, LeafPairSpec
from plancomplexity.settings import DEFAULT_SETTINGS, ComplexitySettings


class Plan:
    """A treatment plan: its beams and its prescription."""

    def __init__(
        self,
        beams: list[Beam],
        prescribed_dose: float = float("nan"),
        plan_id: str = "",
        patient_id: str = "",
    ):
        """
        Parameters
        ----------
        beams : list[Beam]
            The beams of the plan.
        prescribed_dose : float
            The prescribed dose per fraction. NaN if unknown.
        plan_id : str
            The plan label.
        patient_id : str
            The patient id.
        """
        self.beams = beams
        self.prescribed_dose = prescribed_dose
        self.plan_id = plan_id
        self.patient_id = patient_id

    @classmethod
    def from_dicom(
        cls,
        ds: Dataset,
        mlc_models: dict[str, tuple[LeafPairSpec, ...]] = MLC_MODELS,
    ):
        """Load all the beams of an RT plan dataset.

        Parameters
        ----------
        ds : Dataset
            The dataset of the RT Plan.
        mlc_models : dict
            The leaf geometry table used to identify the MLC model of each beam.
        """
        if ds.Modality != "RTPLAN":
            raise ValueError("File is not an RTPLAN file")
        if not hasattr(ds, "BeamSequence"):
            raise ValueError("RTPLAN file must have at least one beam in the beam sequence")
        # setup beams do not deliver dose
        beams = [
            Beam.from_dicom(ds, idx, mlc_models)
            for idx, beam in enumerate(ds.BeamSequence)
            if beam.get("TreatmentDeliveryType", "TREATMENT") == "TREATMENT"
        ]
        return cls(
            beams=beams,
            prescribed_dose=prescribed_dose_per_fraction(ds),
            plan_id=str(ds.get("RTPlanLabel", "")),
            patient_id=str(ds.get("PatientID", "")),
        )

    @classmethod
    def from_rt_plan_file(
        cls,
        rt_plan_file: str | Path,
        mlc_models: dict[str, tuple[LeafPairSpec, ...]] = MLC_MODELS,
    ):
        """Load a plan from an RT plan file.

        Parameters
        ----------
        rt_plan_file : str | Path
            The path to the RT Plan file.
        mlc_models : dict
            The leaf geometry table used to identify the MLC model of each beam.
        """
        ds = pydicom.dcmread(rt_plan_file)
        return cls.from_dicom(ds, mlc_models)

    def compute_records(
        self,
        settings: ComplexitySettings = DEFAULT_SETTINGS,
        mlc_models: dict[str, tuple[LeafPairSpec, ...]] = MLC_MODELS,
        machine_specs: dict[str, MachineSpecs] = MACHINE_SPECS,
    ) -> list[BeamRecord]:
        """Compute the records of the beams that have a supported MLC."""
        records = []
        for beam in self.beams:
            record = beam.compute(settings, mlc_models, machine_specs)
            if record is not None:
                records.append(record)
        return records

    def valid_records(
        self,
        settings: ComplexitySettings = DEFAULT_SETTINGS,
        mlc_models: dict[str, tuple[LeafPairSpec, ...]] = MLC_MODELS,
        machine_specs: dict[str, MachineSpecs] = MACHINE_SPECS,
    ) -> list[BeamRecord]:
        """Compute the records of the beams that can be aggregated (supported MLC and valid MU)."""
        return filter_valid(self.compute_records(settings, mlc_models, machine_specs))


def prescribed_dose_per_fraction(ds: Dataset) -> float:
    """The prescribed dose per fraction (Gy) of the plan. NaN if the plan has no prescription."""
    fraction_groups = ds.get("FractionGroupSequence", [])
    num_fractions = fraction_groups[0].get("NumberOfFractionsPlanned") if fraction_groups else None
    prescription_doses = [
        float(ref.TargetPrescriptionDose)
        for ref in ds.get("DoseReferenceSequence", [])
        if ref.get("TargetPrescriptionDose") is not None
    ]
    if prescription_doses and num_fractions:
        return max(prescription_doses) / int(num_fractions)

    beam_doses = [
        float(ref.BeamDose)
        for ref in (fraction_groups[0].get("ReferencedBeamSequence", []) if fraction_groups else [])
        if ref.get("BeamDose") is not None
    ]
    if beam_doses:
        return sum(beam_doses)
    return float("nan")
