"""
Stagehand service action

Manage systemd services: running state and boot-time enablement.
"""

from typing import Any, Dict

from stagehand.actions.base import Action, ActionOutput, boolean, register_action
from stagehand.engine.probe import Change, CurrentState, Diff, diff_states
from stagehand.engine.templating import shell_quote

STATE_VERBS = {
    "started": "start",
    "stopped": "stop",
    "restarted": "restart",
    "reloaded": "reload",
}


@register_action
class ServiceAction(Action):
    """
    Manage services (start, stop, restart, reload, enable, disable).

    'restarted' and 'reloaded' cannot be observed, so they always change.
    """

    kind = "service"
    required_args = ["name"]
    optional_args = {
        "state": None,      # started, stopped, restarted, reloaded
        "enabled": None,    # yes/no
    }

    def validate_args(self):
        error = super().validate_args()
        if error:
            return error
        state = self.get_arg("state")
        if state is None and self.get_arg("enabled") is None:
            return "Either 'state' or 'enabled' must be specified"
        if state is not None and state not in STATE_VERBS:
            return f"Unknown state: {state}. Valid: {', '.join(STATE_VERBS)}"
        return None

    @property
    def unit(self) -> str:
        return shell_quote(str(self.args["name"]))

    def desired(self) -> Dict[str, Any]:
        enabled = self.get_arg("enabled")
        state = self.get_arg("state")
        return {
            "state": state if state in ("started", "stopped") else None,
            "enabled": boolean(enabled) if enabled is not None else None,
        }

    async def probe(self) -> CurrentState:
        values: Dict[str, Any] = {}
        result = await self.connection.run(f"systemctl is-active {self.unit}")
        values["state"] = "started" if result.stdout.strip() == "active" else "stopped"

        if self.get_arg("enabled") is not None:
            result = await self.connection.run(f"systemctl is-enabled {self.unit}")
            values["enabled"] = result.stdout.strip() in ("enabled", "enabled-runtime", "static")
        return CurrentState(values=values)

    def diff(self, current: CurrentState) -> Diff:
        result = diff_states(current, self.desired())
        state = self.get_arg("state")
        if state not in ("restarted", "reloaded"):
            return result

        delta = dict(result.delta) if isinstance(result, Change) else {}
        delta["state"] = {"before": current.get("state"), "after": state}
        return Change(delta=delta)

    async def apply(self, change: Change) -> ActionOutput:
        messages = []

        if "enabled" in change.delta:
            verb = "enable" if change.delta["enabled"]["after"] else "disable"
            await self.run_checked(f"systemctl {verb} {self.unit}")
            messages.append(f"{verb}d")

        if "state" in change.delta:
            target = change.delta["state"]["after"]
            verb = STATE_VERBS[target]
            await self.run_checked(f"systemctl {verb} {self.unit}")
            messages.append(target)

        return ActionOutput(msg=f"Service '{self.args['name']}' " + ", ".join(messages))
