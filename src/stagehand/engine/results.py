"""
Stagehand Result Classes

Per-task outcomes, per-host run reports, per-tier aggregation and the whole
run's result.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class TaskOutcome(Enum):
    """Outcome of a single task (or handler) on a single host."""
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    FAILED = "failed"
    SKIPPED = "skipped"


class HostStatus(Enum):
    """Terminal status of a host for one stage."""
    CONVERGED = "converged"
    FAILED = "failed"
    ABORTED = "aborted"


class TierOutcome(Enum):
    """Aggregate outcome of a stage."""
    CLEAN = "clean"
    DEGRADED = "degraded"
    TOTAL_FAILURE = "total_failure"
    NOT_RUN = "not_run"


@dataclass
class TaskResult:
    """Result of executing a single task on a single host."""

    host: str
    task_name: str
    outcome: TaskOutcome
    action: str = ""
    position: int = 0
    msg: str = ""
    rc: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    delta: Dict[str, Any] = field(default_factory=dict)
    diff: Optional[str] = None
    error: Optional[str] = None
    ignored: bool = False
    started_at: float = 0.0
    finished_at: float = 0.0

    @property
    def changed(self) -> bool:
        return self.outcome == TaskOutcome.CHANGED

    @property
    def failed(self) -> bool:
        return self.outcome == TaskOutcome.FAILED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        result: Dict[str, Any] = {
            "task": self.task_name,
            "action": self.action,
            "position": self.position,
            "outcome": self.outcome.value,
        }
        if self.msg:
            result["msg"] = self.msg
        if self.rc is not None:
            result["rc"] = self.rc
        if self.stdout:
            result["stdout"] = self.stdout
        if self.stderr:
            result["stderr"] = self.stderr
        if self.delta:
            result["delta"] = self.delta
        if self.error:
            result["error"] = self.error
        if self.ignored:
            result["ignored"] = True
        return result


@dataclass
class RunReport:
    """Record of one host's run through one stage."""

    host: str
    tier: str = ""
    status: HostStatus = HostStatus.CONVERGED
    cause: Optional[str] = None
    task_results: List[TaskResult] = field(default_factory=list)
    handler_results: List[TaskResult] = field(default_factory=list)
    notified_handlers: List[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None

    def add_task_result(self, result: TaskResult) -> None:
        self.task_results.append(result)

    def add_handler_result(self, result: TaskResult) -> None:
        self.handler_results.append(result)

    def fail(self, cause: str) -> None:
        """Mark the host failed; the first cause is kept."""
        self.status = HostStatus.FAILED
        if self.cause is None:
            self.cause = cause

    def abort(self, cause: str) -> None:
        """Mark the host aborted unless it already failed."""
        if self.status != HostStatus.FAILED:
            self.status = HostStatus.ABORTED
            self.cause = cause

    def finish(self) -> 'RunReport':
        self.finished_at = time.monotonic()
        return self

    @property
    def converged(self) -> bool:
        return self.status == HostStatus.CONVERGED

    def counts(self) -> Dict[str, int]:
        """Task outcome counters (handlers included)."""
        counts = {outcome.value: 0 for outcome in TaskOutcome}
        for result in self.task_results + self.handler_results:
            counts[result.outcome.value] += 1
        return counts

    @property
    def handlers_run(self) -> List[str]:
        return [r.task_name for r in self.handler_results if r.outcome != TaskOutcome.SKIPPED]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        result: Dict[str, Any] = {
            "host": self.host,
            "tier": self.tier,
            "status": self.status.value,
            "tasks": [r.to_dict() for r in self.task_results],
            "handlers": [r.to_dict() for r in self.handler_results],
            "stats": self.counts(),
        }
        if self.cause:
            result["cause"] = self.cause
        return result


def aggregate(reports: Sequence[RunReport]) -> TierOutcome:
    """
    Aggregate host reports into a tier outcome.

    clean: every host converged (an empty tier is clean)
    degraded: at least one host converged, at least one did not
    total_failure: no host converged
    """
    if not reports:
        return TierOutcome.CLEAN
    converged = sum(1 for report in reports if report.converged)
    if converged == len(reports):
        return TierOutcome.CLEAN
    if converged == 0:
        return TierOutcome.TOTAL_FAILURE
    return TierOutcome.DEGRADED


@dataclass
class TierResult:
    """Result of executing one stage."""

    name: str
    role: str
    reports: List[RunReport] = field(default_factory=list)
    attempted: bool = True

    @property
    def outcome(self) -> TierOutcome:
        if not self.attempted:
            return TierOutcome.NOT_RUN
        return aggregate(self.reports)

    def report_for(self, host: str) -> Optional[RunReport]:
        for report in self.reports:
            if report.host == host:
                return report
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.name,
            "role": self.role,
            "attempted": self.attempted,
            "outcome": self.outcome.value,
            "hosts": [r.to_dict() for r in self.reports],
        }


@dataclass
class RunResult:
    """Result of an entire run."""

    site: str
    tier_results: List[TierResult] = field(default_factory=list)
    aborted: bool = False
    abort_reason: Optional[str] = None
    cancelled: bool = False

    def add_tier_result(self, result: TierResult) -> None:
        self.tier_results.append(result)

    @property
    def attempted(self) -> List[TierResult]:
        return [t for t in self.tier_results if t.attempted]

    @property
    def success(self) -> bool:
        """Every tier ran and came out clean."""
        return not self.aborted and all(t.outcome == TierOutcome.CLEAN for t in self.tier_results)

    def host_stats(self) -> Dict[str, Dict[str, int]]:
        """Outcome counters per host, summed over all stages."""
        stats: Dict[str, Dict[str, int]] = {}
        for tier in self.attempted:
            for report in tier.reports:
                totals = stats.setdefault(report.host, {o.value: 0 for o in TaskOutcome})
                for key, value in report.counts().items():
                    totals[key] += value
        return stats

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON output."""
        result: Dict[str, Any] = {
            "site": self.site,
            "success": self.success,
            "tiers": [t.to_dict() for t in self.tier_results],
            "stats": self.host_stats(),
        }
        if self.aborted:
            result["aborted"] = True
            result["abort_reason"] = self.abort_reason
        return result

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
