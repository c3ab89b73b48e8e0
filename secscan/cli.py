"""Command-line entry point for the secscan static security scanner."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from . import __version__
from .config import ScanConfig, apply_overrides, load_config
from .errors import ConfigError, RuleLoadError, ScanError
from .oracle import AdvisoryFileOracle, NullOracle, VulnerabilityOracle
from .result import Palette, Report, format_report_text
from .rules import RuleSet, load, load_baseline
from .scan import Scanner

EXIT_FATAL = 2

logger = logging.getLogger("secscan")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="secscan",
        description="Static security scanner for source-code repositories",
    )
    parser.add_argument(
        "root",
        nargs="?",
        default=".",
        help="Directory to scan (defaults to the current directory).",
    )
    parser.add_argument(
        "--exclude",
        "-e",
        dest="exclude",
        action="append",
        default=[],
        help="Glob of paths to skip, .scanignore syntax (repeatable).",
    )
    parser.add_argument(
        "--rules",
        "-r",
        dest="rules",
        action="append",
        default=[],
        help="YAML rule file to use instead of the built-in baseline (repeatable).",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Config file (defaults to .secscan.yaml in the scan root, if present).",
    )
    parser.add_argument(
        "--advisories",
        default=None,
        help="YAML advisory database used for dependency checks.",
    )
    parser.add_argument(
        "--oracle-timeout",
        type=float,
        default=None,
        help="Seconds to wait for dependency lookups before reporting the rest unknown.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Number of files scanned in parallel (defaults to the CPU count).",
    )
    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Report format (defaults to text).",
    )
    parser.add_argument(
        "--out",
        "--output",
        dest="output_path",
        type=str,
        default=None,
        help="Path to write the JSON report (e.g., artifacts/secscan.json).",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable ANSI colours in the text report (NO_COLOR is honoured too).",
    )
    parser.add_argument(
        "--list-rules",
        action="store_true",
        help="Print the active rules and exit.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="count",
        default=0,
        help="Log more detail to stderr (-vv for debug output).",
    )
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Only log errors (also enabled by the QUIET environment variable).",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def configure_logging(verbose: int, quiet: bool) -> None:
    if quiet or os.environ.get("QUIET"):
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)
    logging.getLogger().setLevel(level)


def load_rules(config: ScanConfig) -> RuleSet:
    ruleset = load(config.rules) if config.rules else load_baseline()
    missing = [rule_id for rule_id in config.disabled_rules if rule_id not in ruleset]
    if missing:
        raise RuleLoadError(
            f"cannot disable unknown rules: {', '.join(missing)}",
            suggestion="Check disabled_rules against --list-rules.",
        )
    return ruleset


def build_oracle(config: ScanConfig) -> VulnerabilityOracle:
    if config.advisories is None:
        return NullOracle()
    return AdvisoryFileOracle.from_file(config.advisories)


def format_rules(ruleset: RuleSet) -> str:
    lines = [f"Rule set {ruleset.version} ({len(ruleset)} rules)"]
    header = f"{'Id':<9} {'Tier':<4} {'Category':<15} Title"
    lines.append(header)
    lines.append("-" * len(header))
    for rule in ruleset:
        lines.append(f"{rule.id:<9} {rule.severity.value:<4} {rule.category.value:<15} {rule.title}")
    return "\n".join(lines)


def prepare(args: argparse.Namespace) -> Tuple[Path, ScanConfig, RuleSet]:
    """Resolve the root, merge configuration and load rules; raises fatal scan errors."""

    root = Path(args.root)
    if not root.is_dir():
        raise ConfigError(
            f"scan root {root} is not a directory",
            context={"root": root},
            suggestion="Pass an existing directory as ROOT.",
        )
    config = load_config(root, Path(args.config) if args.config else None)
    config = apply_overrides(
        config,
        exclude=args.exclude,
        rules=[Path(item) for item in args.rules] or None,
        workers=args.workers,
        oracle_timeout=args.oracle_timeout,
        advisories=Path(args.advisories) if args.advisories else None,
    )
    ruleset = load_rules(config)
    return root, config, ruleset


def write_output(report: Report, output_path: Optional[str], report_format: str, palette: Palette) -> None:
    payload = report.to_json()
    if report_format == "json" and not output_path:
        print(payload)
        return
    print(format_report_text(report, palette))
    if output_path:
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_text(payload + "\n", encoding="utf-8")
        print(f"\nReport written to {output_path}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose, args.quiet)
    try:
        root, config, ruleset = prepare(args)
        logger.info("scanning %s with %d rules (%s)", root, len(ruleset), ruleset.version)
        if args.list_rules:
            print(format_rules(ruleset.without(config.disabled_rules)))
            return 0
        oracle = build_oracle(config)
        report = Scanner(root, ruleset, config=config, oracle=oracle).run()
    except ScanError as error:
        print(error.format(), file=sys.stderr)
        return EXIT_FATAL
    palette = Palette(enabled=False if args.no_color else None)
    if palette.enabled and not sys.stdout.isatty():
        palette = Palette(enabled=False)
    write_output(report, args.output_path, args.format, palette)
    return report.exit_code


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
