"""
CLI entrypoint for stagehand.

Usage:
    stagehand --version
    stagehand --help
    stagehand -i inventory.yml site.yml
"""

import argparse
import json
import platform
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from stagehand import __version__
from stagehand.engine.config import RunConfig
from stagehand.engine.errors import ExitCode, ParseError


def get_version_string() -> str:
    """Generate a detailed version string."""
    python_version = platform.python_version()
    os_info = f"{platform.system()} {platform.release()}"
    return (
        f"stagehand {__version__}\n"
        f"  python: {python_version}\n"
        f"  platform: {os_info}"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for stagehand."""
    parser = argparse.ArgumentParser(
        prog="stagehand",
        description="Converge hosts onto declared state, one tier at a time",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  stagehand -i inventory.yml site.yml
  stagehand -i hosts.ini site.yml --check --diff
  stagehand site.yml --strict --forks 10 -e release=1.4.2
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=get_version_string(),
    )

    parser.add_argument(
        "site",
        nargs="?",
        default=None,
        help="Site document binding tiers to roles",
    )

    parser.add_argument(
        "-i", "--inventory",
        dest="inventory",
        default=None,
        help="Inventory file or directory (default: 'inventory' key of the site)",
    )

    parser.add_argument(
        "-f", "--forks",
        dest="forks",
        type=int,
        default=None,
        help="Number of hosts converged in parallel (default: 5)",
    )

    parser.add_argument(
        "--strict",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Abort the run when a tier is degraded (--no-strict overrides the site document)",
    )

    parser.add_argument(
        "-C", "--check",
        action="store_true",
        help="Probe and diff only; make no changes",
    )

    parser.add_argument(
        "--diff",
        action="store_true",
        help="Show differences when changing files",
    )

    parser.add_argument(
        "-e", "--extra-vars",
        dest="extra_vars",
        action="append",
        default=[],
        help="Extra variables as key=value, JSON or @file (can be repeated)",
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Output results in JSON format",
    )

    parser.add_argument(
        "--report",
        dest="report",
        default=None,
        help="Write the run result as JSON to this file",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv)",
    )

    return parser


def _parse_extra_vars(extra_vars_list: List[str]) -> Dict[str, Any]:
    """
    Parse extra vars from command line.

    Raises:
        ParseError: An @file is missing or not a mapping, or JSON is invalid
    """
    result: Dict[str, Any] = {}
    for item in extra_vars_list:
        item = item.strip()

        if item.startswith('@'):
            path = Path(item[1:])
            if not path.is_file():
                raise ParseError("Extra vars file not found", file_path=str(path))
            try:
                file_vars = yaml.safe_load(path.read_text(encoding='utf-8')) or {}
            except yaml.YAMLError as e:
                raise ParseError(f"YAML syntax error: {e}", file_path=str(path))
            if not isinstance(file_vars, dict):
                raise ParseError("Extra vars file must hold a mapping", file_path=str(path))
            result.update(file_vars)
            continue

        if item.startswith('{'):
            try:
                parsed = json.loads(item)
            except json.JSONDecodeError as e:
                raise ParseError(f"Invalid JSON in extra vars: {e}")
            if not isinstance(parsed, dict):
                raise ParseError("JSON extra vars must be an object")
            result.update(parsed)
            continue

        key, sep, value = item.partition('=')
        key = key.strip()
        if not sep or not key:
            raise ParseError(f"Invalid extra var (expected key=value): {item}")
        # Values may be JSON for complex types
        try:
            result[key] = json.loads(value)
        except json.JSONDecodeError:
            result[key] = value.strip()

    return result


def build_config(parsed: argparse.Namespace) -> RunConfig:
    """Build a RunConfig from parsed arguments, leaving unset flags at their defaults."""
    options: Dict[str, Any] = {
        "check_mode": parsed.check,
        "diff_mode": parsed.diff,
        "verbosity": parsed.verbose,
        "json_output": parsed.json,
        "report_file": parsed.report,
        "extra_vars": _parse_extra_vars(parsed.extra_vars),
    }
    explicit = {key: getattr(parsed, key) for key in ("forks", "strict") if getattr(parsed, key) is not None}
    options.update(explicit)
    return RunConfig(cli_settings=frozenset(explicit), **options)


def main(args: Optional[List[str]] = None) -> int:
    """Main entrypoint for the stagehand CLI."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    # If no site provided, show help
    if not parsed.site:
        parser.print_help()
        return ExitCode.SUCCESS

    try:
        config = build_config(parsed)
    except ParseError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return ExitCode.LOAD_ERROR

    from stagehand.engine.runner import ConvergenceRunner

    runner = ConvergenceRunner(
        site_path=parsed.site,
        inventory_source=parsed.inventory,
        config=config,
    )
    return runner.run()


if __name__ == "__main__":
    sys.exit(main())
