"""
Stagehand Host Context

Per-host runtime state threaded through a stage's task list.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from stagehand.engine.inventory import Host
from stagehand.engine.results import RunReport
from stagehand.engine.roles import Role, Task


@dataclass
class HostContext:
    """Runtime context for a single host during one stage."""

    host: Host
    role: Role
    report: RunReport
    connection: Any = None  # Connection object (set during execution)
    facts: Dict[str, Any] = field(default_factory=dict)
    tier_vars: Dict[str, Any] = field(default_factory=dict)
    extra_vars: Dict[str, Any] = field(default_factory=dict)
    check_mode: bool = False  # Dry-run mode
    diff_mode: bool = False  # Show diffs
    # Insertion-ordered pending handler notifications
    pending: Dict[str, None] = field(default_factory=dict)
    cancel_event: Optional[asyncio.Event] = None

    @property
    def name(self) -> str:
        return self.host.name

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def notify(self, names: List[str]) -> None:
        """Enqueue handler notifications; a repeated name keeps its first position."""
        for name in names:
            if name not in self.pending:
                self.pending[name] = None
                self.report.notified_handlers.append(name)

    def drain(self) -> List[str]:
        """Take every pending notification, leaving the set empty."""
        names = list(self.pending)
        self.pending.clear()
        return names

    def get_vars(self, task: Optional[Task] = None) -> Dict[str, Any]:
        """
        Variables for templating, lowest precedence first:
        role defaults, inventory (site defaults, groups, host), role vars,
        tier vars, task vars, extra vars.
        """
        merged: Dict[str, Any] = {}
        merged.update(self.role.defaults)
        merged.update(self.host.get_vars())
        merged.update(self.role.vars)
        merged.update(self.tier_vars)
        if task is not None:
            merged.update(task.vars)
        merged.update(self.extra_vars)
        merged['facts'] = self.facts
        return merged
