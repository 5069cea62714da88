#!/usr/bin/env python3
"""Football tournament schedule builder.

    tourneysched [config.yaml] [-v] [--no-referees]

Builds the group phase, places the configured playoff matches after it,
assigns referees and prints the timetable, the conflict report and the
fairness statistics.

Examples:
    tourneysched                     # default config.yaml
    tourneysched cup.yaml -v         # debug logging of placement decisions
    tourneysched --no-referees       # timetable only
"""

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from tourneysched.config import load_config
from tourneysched.conflicts import detect_all, format_conflict_report, has_blocking_conflicts
from tourneysched.errors import ConfigurationError, InfeasibleScheduleError
from tourneysched.models import PlacedMatch, RefereeMode, Team
from tourneysched.referees import referee_display_name
from tourneysched.scheduler import schedule
from tourneysched.stats import analyze_fairness, format_fairness_report, referee_stats


def format_match_line(m: PlacedMatch, teams: list[Team], config: dict) -> str:
    names = {t.id: t.name for t in teams}
    when = m.start_time.strftime("%H:%M") if m.start_time else f"#{m.slot}"
    phase = m.label or m.stage or (f"Group {m.group}" if m.group else "")
    ref = referee_display_name(m.referee, config.get("referees"), teams)
    return (f"{when:>5}  F{m.field}  {m.id:<10} {phase:<12} "
            f"{names.get(m.team_a, m.team_a):>18} - {names.get(m.team_b, m.team_b):<18}"
            f"  Ref: {ref}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Football tournament schedule builder",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Exit codes:
  0  Schedule built without blocking conflicts
  1  Configuration error, infeasible schedule or blocking conflicts
""",
    )
    parser.add_argument(
        "config", nargs="?", default="config.yaml",
        help="Path to config YAML file (default: config.yaml)"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Log every placement decision"
    )
    parser.add_argument(
        "--no-referees", action="store_true",
        help="Skip referee assignment"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config_path = args.config
    if not Path(config_path).exists():
        print(f"Error: config file {config_path} not found")
        sys.exit(1)

    print(f"Loading config from {config_path}...")
    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.no_referees:
        config["referees"] = replace(config["referees"], mode=RefereeMode.NONE)

    print(f"Scheduling {len(config['teams'])} teams in {len(config['groups'])} groups...")
    try:
        result = schedule(config)
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except InfeasibleScheduleError as e:
        print(f"Error: {e}")
        print(f"Placed {len(e.placed)} matches, {len(e.unplaced)} could not be placed.")
        print("Relax min_rest_slots, add fields or raise max_slots and retry.")
        sys.exit(1)

    teams = config["teams"]
    print()
    for m in result.all_matches:
        print(format_match_line(m, teams, config))
    print(f"\n{len(result.all_matches)} matches in {result.total_slots} slots "
          f"({result.duration_minutes} min)")

    conflicts = detect_all(result.all_matches, config["detection"], teams)
    print("\n" + format_conflict_report(conflicts))

    fairness = analyze_fairness(result.group_matches, teams)
    refs = referee_stats(result.all_matches, config["referees"], teams)
    print("\n" + format_fairness_report(fairness, refs, teams))

    if has_blocking_conflicts(conflicts):
        print("\nSchedule has blocking conflicts.")
        sys.exit(1)
    print("\nSchedule generated successfully!")


if __name__ == "__main__":
    main()
