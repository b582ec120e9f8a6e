"""Mark every unmarked active student of a class for one lesson, then save.

Only cells that are still UNDEFINED are touched; existing marks are kept.

Run with: python scripts/mark_lesson.py --class "Turma 7A" --date 2024-03-05
Lesson:   python scripts/mark_lesson.py --class "Turma 7A" --date 2024-03-05 --lesson 2
Absent:   python scripts/mark_lesson.py --class "Turma 7A" --date 2024-03-05 --status ABSENT
Dry run:  python scripts/mark_lesson.py --class "Turma 7A" --date 2024-03-05 --dry-run

Exit codes:
  0 = success (or nothing to mark)
  1 = error (message on stderr)
"""

import argparse
import asyncio
import sys
from datetime import date

from dotenv import load_dotenv

from frequencia.config import get_config
from frequencia.controller import AttendanceController
from frequencia.errors import ConfigurationMissingError, FlushFailureError, LoadFailureError
from frequencia.logging import setup_logging_from_config
from frequencia.models import AttendanceStatus

load_dotenv()


def _log(msg: str) -> None:
    print(msg, file=sys.stderr)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Bulk-mark one lesson for a class.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--class", dest="class_ref", required=True, help="Class id or exact name.")
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=date.today(),
        help="Lesson date, YYYY-MM-DD (default: today).",
    )
    parser.add_argument("--lesson", type=int, default=0, help="Zero-based lesson slot (default: 0).")
    parser.add_argument(
        "--status",
        choices=[s.value for s in AttendanceStatus if s != AttendanceStatus.UNDEFINED],
        default=AttendanceStatus.PRESENT.value,
        help="Status to apply (default: PRESENT).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would change without saving.",
    )
    args = parser.parse_args()
    if args.lesson < 0:
        parser.error("--lesson must be 0 or greater")
    return args


async def main(args: argparse.Namespace) -> int:
    config = get_config()
    setup_logging_from_config(config)

    try:
        controller = AttendanceController.from_config(config)
        await controller.load()
    except (ConfigurationMissingError, LoadFailureError) as e:
        _log(f"ERROR: {e}")
        return 1

    cls = controller.get_class(args.class_ref) or next(
        (c for c in controller.classes if c.name == args.class_ref), None
    )
    if cls is None:
        _log(f"ERROR: class not found: {args.class_ref}")
        return 1

    date_key = args.date.isoformat()
    changes = controller.bulk_update_status(
        date_key,
        args.lesson,
        AttendanceStatus(args.status),
        controller.class_students(cls.id),
    )
    if not changes:
        _log("Nothing to mark.")
        return 0

    for change in changes:
        student = controller.get_student(change.student_id)
        print(f"  {student.name if student else change.student_id}: {change.status.value}")

    if args.dry_run:
        _log(f"[dry-run] {len(changes)} change(s) not saved.")
        return 0

    try:
        saved = await controller.save_changes()
    except FlushFailureError as e:
        _log(f"ERROR: {e}. Run again to retry.")
        return 1

    _log(f"Saved {saved} change(s) for {cls.name} on {date_key}, lesson {args.lesson}.")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main(_parse_args())))
