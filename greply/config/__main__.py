from __future__ import annotations

import argparse
import sys
from pathlib import Path

from greply.logging import configure_logging

from . import doctor


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Configuration utilities for greply.")
    subparsers = parser.add_subparsers(dest="command")

    doctor_parser = subparsers.add_parser("doctor", help="Validate configuration sources.")
    doctor_parser.add_argument("--env-file", type=Path, help="Path to the .env file to read.")
    doctor_parser.add_argument(
        "--config-file", type=Path, help="Path to the user config file (config.toml)."
    )
    doctor_parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging verbosity for the diagnostic run (case-insensitive).",
    )
    doctor_parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        default="text",
        help="Format of diagnostic log lines written to stderr.",
    )

    args = parser.parse_args(argv)
    if args.command == "doctor":
        try:
            configure_logging(level=args.log_level, fmt=args.log_format)
        except ValueError as exc:
            parser.error(str(exc))
        success = doctor(env_file=args.env_file, config_file=args.config_file)
        return 0 if success else 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
