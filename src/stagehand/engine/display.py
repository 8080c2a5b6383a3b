"""
Stagehand Console Display

Banner-style console output for a run. Everything is suppressed in JSON mode
except errors, which go to stderr.
"""

import sys
from typing import Optional

from stagehand.engine.results import RunResult, TaskOutcome, TaskResult, TierOutcome, TierResult

GREEN = '\033[32m'
YELLOW = '\033[33m'
RED = '\033[31m'
CYAN = '\033[36m'
RESET = '\033[0m'

OUTCOME_LABELS = {
    TaskOutcome.UNCHANGED: ('ok', GREEN),
    TaskOutcome.CHANGED: ('changed', YELLOW),
    TaskOutcome.FAILED: ('failed', RED),
    TaskOutcome.SKIPPED: ('skipped', CYAN),
}

TIER_COLORS = {
    TierOutcome.CLEAN: GREEN,
    TierOutcome.DEGRADED: YELLOW,
    TierOutcome.TOTAL_FAILURE: RED,
    TierOutcome.NOT_RUN: CYAN,
}


class Display:
    """Console output for a convergence run."""

    def __init__(self, verbosity: int = 0, json_output: bool = False, diff_mode: bool = False):
        self.verbosity = verbosity
        self.json_output = json_output
        self.diff_mode = diff_mode

    def header(self, msg: str) -> None:
        if not self.json_output:
            print(msg)

    def tier(self, name: str, role: str, hosts: int) -> None:
        """Print tier banner."""
        if not self.json_output:
            print(f"\nTIER [{name}] " + "*" * max(10, 60 - len(name)))
            print(f"role: {role}, hosts: {hosts}")

    def task_result(self, result: TaskResult, handler: bool = False) -> None:
        """Print result of one task (or handler) on one host."""
        if self.json_output:
            return

        label, color = OUTCOME_LABELS[result.outcome]
        kind = "handler" if handler else "task"
        line = f"{color}{label}: [{result.host}]{RESET} {kind} {result.task_name}"

        show_msg = result.outcome == TaskOutcome.FAILED or self.verbosity > 0
        if result.ignored:
            line += " ...ignoring"
        if show_msg and result.msg:
            line += f" => {result.msg}"
        print(line)

        if self.diff_mode and result.diff:
            print(result.diff, end='' if result.diff.endswith('\n') else '\n')
        if self.verbosity > 1 and result.stdout:
            print(result.stdout.rstrip())

    def unreachable(self, host: str, msg: str) -> None:
        if not self.json_output:
            print(f"{RED}unreachable: [{host}]{RESET} => {msg}")

    def tier_outcome(self, result: TierResult) -> None:
        if self.json_output:
            return
        color = TIER_COLORS[result.outcome]
        print(f"tier {result.name}: {color}{result.outcome.value}{RESET}")

    def warning(self, msg: str) -> None:
        """Print a warning message."""
        if not self.json_output:
            print(f"{YELLOW}[WARNING]: {msg}{RESET}", file=sys.stderr)

    def error(self, msg: str) -> None:
        """Print an error message."""
        if not self.json_output:
            print(f"{RED}{msg}{RESET}", file=sys.stderr)

    def recap(self, result: RunResult, reason: Optional[str] = None) -> None:
        """Print final recap."""
        if self.json_output:
            return

        print("\nRUN RECAP " + "*" * 60)
        for host, stats in sorted(result.host_stats().items()):
            parts = [
                f"{GREEN}ok={stats['unchanged']}{RESET}",
                f"{YELLOW}changed={stats['changed']}{RESET}",
                f"{RED}failed={stats['failed']}{RESET}",
                f"{CYAN}skipped={stats['skipped']}{RESET}",
            ]
            print(f"{host:40} : " + "  ".join(parts))

        print()
        for tier in result.tier_results:
            color = TIER_COLORS[tier.outcome]
            print(f"{tier.name:40} : {color}{tier.outcome.value}{RESET}")

        if reason:
            print(f"\n{RED}Run aborted: {reason}{RESET}")
