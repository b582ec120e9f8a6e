"""Print attendance statistics for one class as a table or JSON.

Loads the whole dataset from the spreadsheet backend, computes bimester and
annual attendance for every student of the class and flags students below
the minimum attendance.

Run with: python scripts/class_report.py --class "Turma 7A"
JSON:     python scripts/class_report.py --class c-1700000000000 --json
At risk:  python scripts/class_report.py --class "Turma 7A" --at-risk
Report:   python scripts/class_report.py --class "Turma 7A" --ai-report

Exit codes:
  0 = success
  1 = error (message on stderr)
"""

import argparse
import asyncio
import json
import sys

from dotenv import load_dotenv

from frequencia.config import get_config
from frequencia.controller import AttendanceController
from frequencia.errors import ConfigurationMissingError, LoadFailureError
from frequencia.logging import setup_logging_from_config
from frequencia.models import EnrollmentStatus, StudentSummary
from frequencia.reports import ReportGenerator

load_dotenv()


def _log(msg: str) -> None:
    """Write diagnostic messages to stderr so stdout stays clean for JSON."""
    print(msg, file=sys.stderr)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Attendance statistics for one class.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--class",
        dest="class_ref",
        required=True,
        help="Class id or exact class name.",
    )
    parser.add_argument(
        "--status",
        choices=[s.value for s in EnrollmentStatus],
        default=None,
        help="Only include students with this enrollment status.",
    )
    parser.add_argument(
        "--at-risk",
        action="store_true",
        help="Only list students below the minimum attendance.",
    )
    parser.add_argument(
        "--ai-report",
        action="store_true",
        help="Append a generated narrative report per student (table mode only).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output JSON instead of a table.",
    )
    return parser.parse_args()


def _format_table(summaries: list[StudentSummary]) -> str:
    """Columns: Student | <one per bimester> | Annual | Risk"""
    if not summaries:
        return "(no students)"

    headers = ["Student", *(b.name for b in summaries[0].bimesters), "Annual", "Risk"]
    rows = []
    for s in summaries:
        rows.append(
            [
                s.student.name,
                *(f"{b.percentage:.1f}% ({b.total})" for b in s.bimesters),
                f"{s.annual.percentage:.1f}% ({s.annual.total})",
                "!" if s.at_risk else "",
            ]
        )

    widths = [len(h) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)
    row_lines = [" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)) for row in rows]
    return "\n".join([header_line, separator, *row_lines])


async def main(args: argparse.Namespace) -> int:
    config = get_config()
    setup_logging_from_config(config)

    try:
        controller = AttendanceController.from_config(config)
        await controller.load()
    except ConfigurationMissingError as e:
        _log(f"ERROR: {e}")
        return 1
    except LoadFailureError as e:
        _log(f"ERROR: {e}")
        return 1

    cls = controller.get_class(args.class_ref) or next(
        (c for c in controller.classes if c.name == args.class_ref), None
    )
    if cls is None:
        _log(f"ERROR: class not found: {args.class_ref}")
        return 1

    status = EnrollmentStatus(args.status) if args.status else None
    summaries = controller.class_summary(cls.id, status)
    if args.at_risk:
        summaries = [s for s in summaries if s.at_risk]

    if args.json:
        print(
            json.dumps(
                {
                    "class": cls.to_wire(),
                    "students": [s.model_dump(mode="json") for s in summaries],
                },
                indent=2,
                ensure_ascii=False,
            )
        )
        return 0

    print(f"{cls.name} - {len(summaries)} student(s)")
    print(_format_table(summaries))

    if args.ai_report:
        generator = ReportGenerator(config)
        for s in summaries:
            print(f"\n## {s.student.name}")
            print(await asyncio.to_thread(generator.generate, s.student, s.annual))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(_parse_args())))
