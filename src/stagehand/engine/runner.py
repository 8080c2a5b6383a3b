"""
Stagehand Convergence Runner

High-level runner that coordinates inventory, site and role loading,
connections, the scheduler, and output.
"""

import asyncio
import json
import signal
from pathlib import Path
from typing import Callable, Optional, Tuple

from stagehand.connections.base import create_connection_factory
from stagehand.engine.config import RunConfig
from stagehand.engine.display import Display
from stagehand.engine.errors import ExitCode, ParseError, StagehandError
from stagehand.engine.executor import Scheduler
from stagehand.engine.inventory import InventoryManager
from stagehand.engine.plan import ExecutionPlan, Site, SiteLoader, bind
from stagehand.engine.results import RunResult, TierOutcome
from stagehand.engine.roles import RoleLoader


class ConvergenceRunner:
    """
    High-level convergence runner.

    Coordinates:
    - Site document, inventory and role loading
    - Binding tiers into an ExecutionPlan
    - Connection creation (with connect retries)
    - Tier-by-tier execution and output
    """

    def __init__(
        self,
        site_path: str,
        inventory_source: Optional[str] = None,
        config: Optional[RunConfig] = None,
        connection_factory: Optional[Callable] = None,
    ):
        self.site_path = site_path
        self.inventory_source = inventory_source
        self.config = config or RunConfig()
        self.connection_factory = connection_factory
        self.display = self._make_display(self.config)

        self.site: Optional[Site] = None
        self.inventory: Optional[InventoryManager] = None
        self.scheduler: Optional[Scheduler] = None

    @staticmethod
    def _make_display(config: RunConfig) -> Display:
        return Display(
            verbosity=config.verbosity,
            json_output=config.json_output,
            diff_mode=config.diff_mode,
        )

    def run(self) -> int:
        """
        Run the site synchronously.

        Returns:
            Exit code (0=clean, 2=degraded, 3=total failure, 4=load error,
            1=unexpected error, 130=interrupted)
        """
        try:
            result = asyncio.run(self.run_async())
        except StagehandError as e:
            error_type = "load_error" if e.exit_code == ExitCode.LOAD_ERROR else "error"
            self._report_error(error_type, str(e), int(e.exit_code))
            return int(e.exit_code)
        except KeyboardInterrupt:
            self._report_error("interrupted", "Execution interrupted", ExitCode.KEYBOARD_INTERRUPT)
            return ExitCode.KEYBOARD_INTERRUPT

        if self.config.json_output:
            print(result.to_json())

        if self.config.report_file:
            try:
                Path(self.config.report_file).write_text(result.to_json(), encoding='utf-8')
            except OSError as e:
                self._report_error("error", f"Could not write report: {e}", ExitCode.GENERIC_ERROR)
                return ExitCode.GENERIC_ERROR

        return self.exit_code(result)

    def load(self) -> Tuple[Site, ExecutionPlan]:
        """
        Load the site, inventory and roles, and bind them into a plan.

        Raises:
            ParseError: Any input document is missing or malformed
        """
        self.site = SiteLoader(self.site_path).load()
        self.config = self.config.merged_with_site(self.site)
        self.display = self._make_display(self.config)

        source = self.inventory_source or self.site.inventory
        if source is None:
            raise ParseError(
                "No inventory given",
                file_path=self.site_path,
                details="Pass -i INVENTORY or set 'inventory' in the site document",
            )

        self.inventory = InventoryManager().parse(source)
        loader = RoleLoader(self.site.roles_path)
        plan = bind(self.site.tiers, self.inventory, loader, defaults=self.site.vars)
        return self.site, plan

    async def run_async(self) -> RunResult:
        """Load everything, then run the plan tier by tier."""
        site, plan = self.load()
        self.display.header(f"SITE: {site.name} ({len(plan)} tiers, {len(plan.host_names)} hosts)")

        factory = self.connection_factory or create_connection_factory(
            retries=self.config.connect_retries,
            delay=self.config.connect_retry_delay,
        )
        self.scheduler = Scheduler(
            forks=self.config.forks,
            connection_factory=factory,
            display=self.display,
            strict=self.config.strict,
            check_mode=self.config.check_mode,
            diff_mode=self.config.diff_mode,
            extra_vars=self.config.extra_vars,
        )

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self._on_interrupt)
            handles_sigint = True
        except (NotImplementedError, RuntimeError):
            # Event loops without signal support (Windows) fall back to KeyboardInterrupt
            handles_sigint = False

        try:
            result = await self.scheduler.run_plan(plan, site_name=site.name)
        finally:
            if handles_sigint:
                loop.remove_signal_handler(signal.SIGINT)

        self.display.recap(result, result.abort_reason)
        return result

    def _on_interrupt(self) -> None:
        self.display.warning("Interrupt received, finishing running tasks")
        self.scheduler.cancel()

    @staticmethod
    def exit_code(result: RunResult) -> int:
        """Determine exit code from a run result."""
        if result.cancelled:
            return ExitCode.KEYBOARD_INTERRUPT
        outcomes = [tier.outcome for tier in result.attempted]
        if TierOutcome.TOTAL_FAILURE in outcomes:
            return ExitCode.TOTAL_FAILURE
        if TierOutcome.DEGRADED in outcomes:
            return ExitCode.DEGRADED
        return ExitCode.SUCCESS

    def _report_error(self, error_type: str, message: str, exit_code: int) -> None:
        """Print an error, as a JSON object in JSON mode."""
        if self.config.json_output:
            print(json.dumps({
                "error": True,
                "error_type": error_type,
                "message": message,
                "exit_code": int(exit_code),
            }, indent=2))
        else:
            self.display.error(f"ERROR: {message}")
