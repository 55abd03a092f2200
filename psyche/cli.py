#!/usr/bin/env python3
"""
psyche CLI — drive one character instance from the terminal
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from psyche import __version__
from psyche.config import InstanceConfig, load_config
from psyche.instance import ACTION_CATEGORIES, InstanceController


def parse_input(text):
    """``grief:0.9`` → ``{"type": "grief", "intensity": 0.9}``"""
    emotion, sep, intensity = text.partition(":")
    if not emotion or not sep:
        raise argparse.ArgumentTypeError(f"expected EMOTION:INTENSITY, got {text!r}")
    try:
        value = float(intensity)
    except ValueError:
        raise argparse.ArgumentTypeError(f"intensity must be a number, got {intensity!r}") from None
    return {"type": emotion, "intensity": value, "source": "cli"}


def build_parser():
    parser = argparse.ArgumentParser(
        prog="psyche",
        description="Psyche — mental-state runtime for simulated characters",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"psyche {__version__}")
    parser.add_argument("--log-level", default="WARNING",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Developer log level (default: WARNING)")

    subparsers = parser.add_subparsers(dest="command", help="Sub-command")

    # psyche run
    run_p = subparsers.add_parser("run", help="Initialize an instance and tick it")
    run_p.add_argument("--config", type=Path, help="Character definition (.json)")
    run_p.add_argument("--ticks", type=int, default=50, help="Number of ticks (default: 50)")
    run_p.add_argument("--tick-ms", type=float, default=None,
                       help="Simulated ms per tick (default: config tick_rate)")
    run_p.add_argument("--every", type=int, default=10,
                       help="Print a status line every N ticks (default: 10)")
    run_p.add_argument("--input", dest="inputs", type=parse_input, nargs="*", default=[],
                       metavar="EMOTION:INTENSITY", help="Emotional inputs fed before tick 1")

    # psyche actions
    subparsers.add_parser("actions", help="List the player action surface")

    return parser


def status_line(tick, report):
    return (f"[{tick:>5}] t={report['timestamp']:>8.0f}ms  {report['status']:<16} "
            f"stability={report['stability']:.3f}  corruption={report['corruption']:.3f}  "
            f"events={len(report['events'])}")


def cmd_run(args):
    config = load_config(args.config) if args.config else InstanceConfig()
    instance = InstanceController(config)
    instance.initialize()
    print(f"▶ {config.name} ({config.id}) initialized")

    for data in args.inputs:
        input_id = instance.emotional.process_emotional_input(data)
        print(f"   input {input_id}: {data['type']} @ {data['intensity']:.2f}")

    for tick in range(1, args.ticks + 1):
        report = instance.tick(args.tick_ms)
        if tick % max(1, args.every) == 0 or tick == args.ticks:
            print(status_line(tick, report))
        for event in report["events"]:
            if event["type"] in ("critical_state", "total_corruption",
                                 "resource_exhaustion", "tick_error"):
                print(f"   ⚠ {event['type']}")

    print(json.dumps(instance.get_statistics(), indent=2, default=str))
    return 0


def cmd_actions(args):
    for category, actions in ACTION_CATEGORIES.items():
        print(f"{category:<10} {', '.join(actions)}")
    return 0


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level),
                        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    if not args.command:
        parser.print_help()
        return 0

    if args.command == "run":
        return cmd_run(args)
    if args.command == "actions":
        return cmd_actions(args)
    return 1


if __name__ == "__main__":
    sys.exit(main())
