"""
Stagehand Execution Engine

Async convergence of hosts, one stage (tier) at a time.

Hosts within a stage run concurrently, bounded by a semaphore (forks); tasks
within a host run strictly in order. Each stage ends with a barrier: the next
stage starts only after every host of the current one reached a terminal
status.
"""

import asyncio
import time
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence

from stagehand.actions.base import get_action
from stagehand.engine.context import HostContext
from stagehand.engine.display import Display
from stagehand.engine.errors import ActionError, HandlerError, StagehandError, UnreachableHost
from stagehand.engine.facts import gather_facts
from stagehand.engine.inventory import Host
from stagehand.engine.plan import ExecutionPlan, Stage
from stagehand.engine.probe import NoChange
from stagehand.engine.results import (
    HostStatus,
    RunReport,
    RunResult,
    TaskOutcome,
    TaskResult,
    TierOutcome,
    TierResult,
)
from stagehand.engine.roles import Handler, Role, Task
from stagehand.engine.templating import evaluate_when, render_recursive

if TYPE_CHECKING:
    from stagehand.connections.base import Connection


class HostExecutor:
    """Run a role's ordered task list on one host."""

    def __init__(self, display: Optional[Display] = None):
        self.display = display or Display(json_output=True)

    async def apply_host(self, ctx: HostContext, tasks: Sequence[Task]) -> RunReport:
        """
        Apply tasks in position order, stopping at the first non-ignored failure.

        Cancellation is checked before each task; a task already started
        always runs to completion.
        """
        report = ctx.report
        for task in tasks:
            if ctx.cancelled:
                report.abort("cancelled")
                break

            result = await self.run_step(ctx, task)
            report.add_task_result(result)
            self.display.task_result(result)

            if result.changed:
                ctx.notify(task.notify)
            if result.failed and not result.ignored:
                report.fail(f"task '{task.name}' failed: {result.msg}")
                break
        return report

    async def run_step(self, ctx: HostContext, step: Task) -> TaskResult:
        """Evaluate the guard, render arguments, then probe/diff/apply one step."""
        result = TaskResult(
            host=ctx.name,
            task_name=step.name,
            outcome=TaskOutcome.UNCHANGED,
            action=step.action,
            position=step.position,
            started_at=time.monotonic(),
        )

        try:
            variables = ctx.get_vars(step)
            if step.when is not None and not evaluate_when(step.when, variables):
                result.outcome = TaskOutcome.SKIPPED
                result.msg = "Conditional check failed"
            else:
                await self._converge(ctx, step, variables, result)
        except StagehandError as e:
            self._record_failure(result, e, e.message)
        except Exception as e:
            self._record_failure(result, e, str(e) or e.__class__.__name__)

        result.ignored = result.failed and step.ignore_errors
        result.finished_at = time.monotonic()
        return result

    async def _converge(self, ctx: HostContext, step: Task, variables, result: TaskResult) -> None:
        action_class = get_action(step.action)
        if action_class is None:
            raise ActionError(step.action, ctx.name, f"Unknown action kind: {step.action}")

        args = render_recursive(step.args, variables)
        action = action_class(args, ctx, variables)
        error = action.validate_args()
        if error:
            raise action.fail(error)

        diff, output = await action.converge(check_mode=ctx.check_mode)
        if isinstance(diff, NoChange):
            result.outcome = TaskOutcome.UNCHANGED
            result.msg = diff.reason
            return

        result.outcome = TaskOutcome.CHANGED
        result.delta = diff.delta
        result.diff = diff.diff
        if output is None:
            result.msg = "would change (check mode)"
        else:
            result.msg = output.msg
            result.rc = output.rc
            result.stdout = output.stdout
            result.stderr = output.stderr

    def _record_failure(self, result: TaskResult, error: Exception, msg: str) -> None:
        result.outcome = TaskOutcome.FAILED
        result.msg = msg
        result.error = error.__class__.__name__
        if isinstance(error, ActionError):
            result.rc = error.rc
            result.stdout = error.stdout or ""
            result.stderr = error.stderr or ""


class HandlerDispatcher:
    """Drain a host's pending notifications and run the matching handlers once each."""

    def __init__(self, executor: HostExecutor):
        self.executor = executor

    def resolve(self, role: Role, notifications: Sequence[str]) -> List[Handler]:
        """
        Handlers in first-notified order, each at most once.

        A notification wakes every handler listening to it, in the order the
        handlers are defined.
        """
        handlers: Dict[str, Handler] = {}
        for name in notifications:
            for handler in role.handlers_for(name):
                handlers.setdefault(handler.name, handler)
        return list(handlers.values())

    async def dispatch(self, ctx: HostContext, role: Role) -> RunReport:
        """
        Run every pending handler, even after one of them fails.

        Nothing runs when the host already failed or was aborted; the pending
        set is emptied either way.
        """
        report = ctx.report
        notifications = ctx.drain()
        if report.status != HostStatus.CONVERGED:
            return report

        failed: List[str] = []
        for handler in self.resolve(role, notifications):
            if ctx.cancelled:
                report.abort("cancelled")
                break
            result = await self.executor.run_step(ctx, handler)
            report.add_handler_result(result)
            self.executor.display.task_result(result, handler=True)
            if result.failed and not result.ignored:
                failed.append(handler.name)

        if failed:
            report.fail(str(HandlerError(ctx.name, failed)))
        return report


class Scheduler:
    """
    Async scheduler for an ExecutionPlan.

    Uses asyncio with a semaphore to limit concurrency (forks). Connections
    and gathered facts are cached per host for the whole run.
    """

    def __init__(
        self,
        forks: int = 5,
        connection_factory: Optional[Callable] = None,
        display: Optional[Display] = None,
        strict: bool = False,
        check_mode: bool = False,
        diff_mode: bool = False,
        extra_vars: Optional[Dict] = None,
        gather_facts: bool = True,
    ):
        """
        Initialize the scheduler.

        Args:
            forks: Maximum number of hosts converging at once
            connection_factory: Async callable to create connections: (host) -> Connection
            display: Console output; silent when omitted
            strict: Abort the run after a degraded stage as well
            check_mode: Probe and diff only, never apply
            diff_mode: Keep artifact diffs for display
            extra_vars: Highest-precedence variables
            gather_facts: Collect facts from each host on first connect
        """
        if connection_factory is None:
            from stagehand.connections.base import create_connection_factory
            connection_factory = create_connection_factory()

        self.forks = max(1, forks)
        self.connection_factory = connection_factory
        self.display = display or Display(json_output=True)
        self.strict = strict
        self.check_mode = check_mode
        self.diff_mode = diff_mode
        self.extra_vars = dict(extra_vars or {})
        self.gather_facts = gather_facts

        self.executor = HostExecutor(self.display)
        self.dispatcher = HandlerDispatcher(self.executor)

        self._cancel_event = asyncio.Event()
        self._connections: Dict[str, 'Connection'] = {}
        self._unreachable: Dict[str, UnreachableHost] = {}
        self._facts: Dict[str, Dict] = {}

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Stop every host stream before its next task."""
        self._cancel_event.set()

    async def run_plan(self, plan: ExecutionPlan, site_name: str = "") -> RunResult:
        """
        Run every stage in order.

        A total failure (or, when strict, a degraded stage) aborts the run;
        hosts of the stages that never ran get aborted reports.
        """
        result = RunResult(site=site_name)
        semaphore = asyncio.Semaphore(self.forks)
        stages = list(plan)

        try:
            for index, stage in enumerate(stages):
                if self.cancelled:
                    self._abort_remaining(result, stages[index:], "cancelled")
                    break

                tier_result = await self.run_stage(stage, semaphore)
                result.add_tier_result(tier_result)

                if self.cancelled:
                    self._abort_remaining(result, stages[index + 1:], "cancelled")
                    break

                outcome = tier_result.outcome
                if outcome == TierOutcome.TOTAL_FAILURE or (self.strict and outcome == TierOutcome.DEGRADED):
                    reason = f"upstream tier {stage.name} {outcome.value}"
                    self._abort_remaining(result, stages[index + 1:], reason)
                    break
        finally:
            await self.close_connections()

        return result

    def _abort_remaining(self, result: RunResult, stages: Sequence[Stage], reason: str) -> None:
        result.aborted = True
        result.abort_reason = reason
        result.cancelled = reason == "cancelled"
        for stage in stages:
            tier_result = TierResult(name=stage.name, role=stage.role.name, attempted=False)
            for host in stage.hosts:
                report = RunReport(host=host.name, tier=stage.name)
                report.abort(reason)
                tier_result.reports.append(report.finish())
            result.add_tier_result(tier_result)

    async def run_stage(self, stage: Stage, semaphore: Optional[asyncio.Semaphore] = None) -> TierResult:
        """Converge every host of a stage concurrently; returns after all are terminal."""
        semaphore = semaphore or asyncio.Semaphore(self.forks)
        self.display.tier(stage.name, stage.role.name, len(stage.hosts))
        if not stage.hosts:
            self.display.warning(f"No hosts matched for tier: {stage.name}")

        async def run_with_semaphore(host: Host) -> RunReport:
            async with semaphore:
                return await self.run_host(stage, host)

        completed = await asyncio.gather(
            *[run_with_semaphore(host) for host in stage.hosts],
            return_exceptions=True,
        )

        tier_result = TierResult(name=stage.name, role=stage.role.name)
        for host, item in zip(stage.hosts, completed):
            if isinstance(item, BaseException):
                report = RunReport(host=host.name, tier=stage.name)
                report.fail(f"internal error: {item.__class__.__name__}: {item}")
                item = report.finish()
            tier_result.reports.append(item)

        self.display.tier_outcome(tier_result)
        return tier_result

    async def run_host(self, stage: Stage, host: Host) -> RunReport:
        """Connect, gather facts, apply the role's tasks, then dispatch handlers."""
        report = RunReport(host=host.name, tier=stage.name)
        ctx = HostContext(
            host=host,
            role=stage.role,
            report=report,
            tier_vars=stage.vars,
            extra_vars=self.extra_vars,
            check_mode=self.check_mode,
            diff_mode=self.diff_mode,
            cancel_event=self._cancel_event,
        )

        if ctx.cancelled:
            report.abort("cancelled")
            return report.finish()

        try:
            ctx.connection = await self._connect(host)
        except UnreachableHost as e:
            report.fail(f"unreachable: {e.message}")
            self.display.unreachable(host.name, e.message)
            return report.finish()

        ctx.facts = await self._get_facts(host, ctx.connection)

        await self.executor.apply_host(ctx, stage.role.tasks)
        await self.dispatcher.dispatch(ctx, stage.role)
        return report.finish()

    async def _connect(self, host: Host) -> 'Connection':
        if host.name in self._unreachable:
            raise self._unreachable[host.name]
        if host.name not in self._connections:
            try:
                self._connections[host.name] = await self.connection_factory(host)
            except UnreachableHost as e:
                self._unreachable[host.name] = e
                raise
        return self._connections[host.name]

    async def _get_facts(self, host: Host, connection: 'Connection') -> Dict:
        if not self.gather_facts:
            return {}
        if host.name not in self._facts:
            self._facts[host.name] = await gather_facts(connection)
        return self._facts[host.name]

    async def close_connections(self) -> None:
        """Close all cached connections."""
        for name, conn in self._connections.items():
            try:
                await conn.close()
            except (OSError, StagehandError) as e:
                self.display.warning(f"Error closing connection to {name}: {e}")
        self._connections.clear()
