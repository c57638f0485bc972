import argparse
import logging
import os
import sys
from typing import List, Optional

from romatype.domain.romaji_matcher import DEFAULT_VARIANT_CAP, RomajiMatcher
from romatype.services.records_store import PRACTICE_KEY, RecordsStore, best_of
from romatype.services.settings_store import SettingsStore

logger = logging.getLogger("romatype")

# -------------------------------------------------
#          DEFAULT FILE LOCATIONS (TOP-LEVEL)
# -------------------------------------------------

SETTINGS_PATH = os.path.join(os.path.dirname(__file__), "settings.yaml")
RECORDS_PATH = os.path.join(os.path.dirname(__file__), "records.yaml")


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# -------------------------------------------------
#          SUBCOMMANDS
# -------------------------------------------------


def cmd_variants(args: argparse.Namespace) -> int:
    """Print every accepted spelling of ROMAJI, canonical first."""
    matcher = RomajiMatcher(cap=args.cap)
    for variant in matcher.variants(args.romaji):
        print(variant)
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    matcher = RomajiMatcher()
    split = matcher.highlight_split(args.input, args.romaji)
    prefix_ok = matcher.is_prefix_valid(args.input, args.romaji)
    complete = matcher.is_complete(args.input, args.romaji)
    print(f"prefix_valid: {'yes' if prefix_ok else 'no'}")
    print(f"complete:     {'yes' if complete else 'no'}")
    print(f"matched:      {split.matched!r}")
    print(f"next:         {split.next_char!r}")
    print(f"remainder:    {split.remainder!r}")
    if split.is_mismatch:
        print("mismatch:     yes")
    # Non-zero exit lets shell scripts test a spelling directly.
    return 0 if prefix_ok else 1


def _format_record(record) -> str:
    return (
        f"{record.mode.value:<10} {record.difficulty.value:<7} "
        f"solved={record.solved:<4} mistakes={record.total_mistakes:<4} "
        f"timed_out={record.timed_out:<3} points={record.points}"
    )


def cmd_records(args: argparse.Namespace) -> int:
    store = RecordsStore(args.path or RECORDS_PATH, key=args.key)
    if args.daily:
        bests = store.daily_bests()
        if not bests:
            print("No records.")
            return 0
        for best in bests:
            print(f"{best.date_key}  {_format_record(best.record)}")
        return 0

    records = store.load()
    if not records:
        print("No records.")
        return 0
    for record in records:
        print(_format_record(record))
    top = best_of(records)
    if top is not None:
        print(f"best: {_format_record(top)}")
    return 0


def cmd_settings(args: argparse.Namespace) -> int:
    store = SettingsStore(args.path or SETTINGS_PATH)
    print(f"difficulty:               {store.get_difficulty().value}")
    print(f"calibration_offset_ms:    {store.get_calibration_offset_ms()}")
    print(f"api_base_url:             {store.get_api_base_url()}")
    print(f"practice_session_seconds: {store.get_practice_session_seconds()}")
    print(f"flash_session_seconds:    {store.get_flash_session_seconds()}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="romatype", description="Romaji typing trainer tools")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("variants", help="list accepted spellings of a romaji string")
    p.add_argument("romaji")
    p.add_argument("--cap", type=int, default=DEFAULT_VARIANT_CAP, help="maximum number of spellings")
    p.set_defaults(func=cmd_variants)

    p = sub.add_parser("check", help="validate a (partial) input against a romaji string")
    p.add_argument("romaji")
    p.add_argument("input")
    p.set_defaults(func=cmd_check)

    p = sub.add_parser("records", help="show stored session records")
    p.add_argument("--key", default=PRACTICE_KEY, help="record list (sessions, flash_sessions, beat_sync_sessions)")
    p.add_argument("--daily", action="store_true", help="best record per day")
    p.add_argument("--path", default=None, help="records file")
    p.set_defaults(func=cmd_records)

    p = sub.add_parser("settings", help="show effective settings")
    p.add_argument("--path", default=None, help="settings file")
    p.set_defaults(func=cmd_settings)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    logger.debug("Running %s", args.command)
    return int(args.func(args))


if __name__ == "__main__":
    sys.exit(main())
