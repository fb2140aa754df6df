import csv
import logging
from collections.abc import Sequence
from pathlib import Path

from plotly import graph_objects as go

from plancomplexity.metrics.complexity import ComplexityMetrics, compute_histogram, filter_valid
from plancomplexity.plans.control_point import BeamRecord
from plancomplexity.plans.plan import Plan
from plancomplexity.plans.visualization import plot_aperture_histogram
from plancomplexity.settings import DEFAULT_SETTINGS, ComplexitySettings

logger = logging.getLogger(__name__)

HEADER = (
    "Beam Id",
    "Machine",
    "Beam Energy",
    "Beam MU",
    "Beam Time(s)",
    "Aperture/Jaw Area",
    "Perimeter/Area (mm-1)",
    "OG Edge/Area (mm-1)",
    "Edge/Area (mm-1)",
    "Closed Leaf Gap (mm)",
    "Average Leaf Speed (mm/s)",
    "Average Gantry Accel (deg/s/CP)",
)
HISTOGRAM_HEADER = ("Aperture Area (mm^2)", "Aperture MU Fraction")


class ComplexityReport:
    """Per-beam and plan complexity metrics of a plan, with CSV export and a text summary."""

    def __init__(
        self,
        records: Sequence[BeamRecord],
        prescribed_dose: float = float("nan"),
        plan_id: str = "",
        patient_id: str = "",
        settings: ComplexitySettings = DEFAULT_SETTINGS,
    ):
        """
        Parameters
        ----------
        records : Sequence[BeamRecord]
            The records of the beams to report. Only beams with a valid MU are reported.
        prescribed_dose : float
            The prescribed dose per fraction.
        plan_id : str
            The plan label.
        patient_id : str
            The patient id.
        settings : ComplexitySettings
            The settings of the aperture area histogram.
        """
        self.records = filter_valid(records)
        self.prescribed_dose = prescribed_dose
        self.plan_id = plan_id
        self.patient_id = patient_id
        self.beam_metrics = [ComplexityMetrics.from_records([record]) for record in self.records]
        self.plan_metrics = ComplexityMetrics.from_records(self.records, prescribed_dose)
        self.histogram = compute_histogram(self.records, settings)

    @classmethod
    def from_plan(cls, plan: Plan, settings: ComplexitySettings = DEFAULT_SETTINGS):
        """Compute the report of all the beams of the plan."""
        return cls(
            plan.valid_records(settings),
            prescribed_dose=plan.prescribed_dose,
            plan_id=plan.plan_id,
            patient_id=plan.patient_id,
            settings=settings,
        )

    @staticmethod
    def _metric_columns(metrics: ComplexityMetrics) -> list[float]:
        return [
            metrics.aperture_jaw_area_ratio,
            metrics.aperture_mu_weighted_perimeter_area_ratio,
            metrics.original_edge_length_area_ratio,
            metrics.aperture_mu_weighted_edge_length_area_ratio,
            metrics.leaf_gaps,
            metrics.average_leaf_speed,
            metrics.average_gantry_acceleration,
        ]

    def rows(self) -> list[list]:
        """The report table: one row per beam followed by the totals row."""
        rows = []
        for record, metrics in zip(self.records, self.beam_metrics):
            rows.append(
                [record.beam_id, record.machine_id, record.energy, record.total_mu, record.total_time]
                + self._metric_columns(metrics)
            )
        rows.append(
            ["Total:", "", "", self.plan_metrics.total_mu, self.plan_metrics.total_time]
            + self._metric_columns(self.plan_metrics)
        )
        return rows

    def histogram_rows(self) -> list[list]:
        """The non-empty bins of the aperture area histogram as (bin upper bound, MU fraction) rows."""
        return [[bound, fraction] for bound, fraction in self.histogram.items() if fraction > 0]

    def to_csv(self, filename: str | Path) -> Path:
        """Write the report to a CSV file.

        The metrics table is followed by a blank row and the non-empty bins of the aperture area histogram.

        Parameters
        ----------
        filename : str | Path
            The file to write.
        """
        filename = Path(filename)
        with open(filename, "w", newline="") as f:
            writer = csv.writer(f)
            writer.writerow([self.patient_id, self.plan_id])
            writer.writerow(HEADER)
            writer.writerows(self.rows())
            writer.writerow([])
            writer.writerow(HISTOGRAM_HEADER)
            writer.writerows(self.histogram_rows())
        logger.info("Complexity report written to %s", filename)
        return filename

    def summary(self) -> str:
        """A human readable summary of the beam and plan metrics."""
        lines = []
        for record, metrics in zip(self.records, self.beam_metrics):
            lines.append(
                f"For beam {record.beam_id}, the total MU = {record.total_mu:.3f}, "
                f"and the beam time = {record.total_time:.1f} sec."
            )
            lines.append(
                f"- The aperture area/jaw opening ratio = {metrics.aperture_jaw_area_ratio:.2f},"
            )
            lines.append(
                f"  and the complexity metric = "
                f"{metrics.aperture_mu_weighted_edge_length_area_ratio:.2f} mm-1."
            )
            lines.append("")
        plan = self.plan_metrics
        lines.append(
            f"The total beam time = {plan.total_time / 60:.1f} min, "
            f"overall MU/dose ratio = {plan.mu_dose_ratio:.2f},"
        )
        lines.append(f"with aperture area/jaw opening ratio = {plan.aperture_jaw_area_ratio:.2f},")
        lines.append(
            f"and complexity metric = {plan.aperture_mu_weighted_edge_length_area_ratio:.2f} mm-1."
        )
        lines.append(
            f"The average aperture area = {plan.average_aperture_area:.0f} mm^2, "
            f"with skewness = {plan.aperture_area_skewness:.2f}."
        )
        return "\n".join(lines)

    def plot_histogram(self, show: bool = True) -> go.Figure:
        """Plot the aperture area histogram of the plan."""
        return plot_aperture_histogram(
            self.histogram, title=f"Aperture area histogram - {self.plan_id}", show=show
        )
