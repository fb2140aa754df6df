import logging
from argparse import ArgumentParser
from pathlib import Path

from plancomplexity.plans.plan import Plan
from plancomplexity.reporting.report import ComplexityReport
from plancomplexity.settings import ComplexitySettings

logger = logging.getLogger(__name__)


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="plancomplexity",
        description="Compute the aperture and delivery complexity metrics of an RT plan.",
    )
    parser.add_argument("rt_plan_file", type=Path, help="The RTPLAN DICOM file.")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="The CSV report to write. Defaults to <PatientID>_<RTPlanLabel>.csv next to the plan.",
    )
    parser.add_argument(
        "--bin-size",
        type=int,
        default=None,
        help="The aperture area histogram bin size in mm^2.",
    )
    parser.add_argument(
        "--min-leaf-gap",
        type=float,
        default=None,
        help="Leaf openings at or below this value (mm) are considered closed.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug messages.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    overrides = {}
    if args.bin_size is not None:
        overrides["histogram_bin_size_mm2"] = args.bin_size
    if args.min_leaf_gap is not None:
        overrides["min_leaf_gap_mm"] = args.min_leaf_gap
    settings = ComplexitySettings(**overrides)

    plan = Plan.from_rt_plan_file(args.rt_plan_file)
    report = ComplexityReport.from_plan(plan, settings)
    output = args.output or args.rt_plan_file.with_name(
        f"{plan.patient_id}_{plan.plan_id}.csv"
    )
    report.to_csv(output)
    print(report.summary())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
