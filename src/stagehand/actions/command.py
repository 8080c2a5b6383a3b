"""
Stagehand command action

Run a command through the host's shell. A command has no observable state,
so it runs every time unless one of its guards already holds:

- creates: the path exists
- removes: the path does not exist
- unless: the guard command exits 0
"""

from typing import Any, Dict

from stagehand.actions.base import Action, ActionOutput, register_action
from stagehand.engine.probe import Change, CurrentState, Diff, NoChange


@register_action
class CommandAction(Action):
    """Execute a command on the target host."""

    kind = "command"
    required_args = ["cmd"]
    optional_args = {
        "chdir": None,
        "creates": None,
        "removes": None,
        "unless": None,
        "timeout": None,
    }

    @property
    def cmd(self) -> str:
        return str(self.args["cmd"])

    async def probe(self) -> CurrentState:
        creates = self.get_arg("creates")
        removes = self.get_arg("removes")
        unless = self.get_arg("unless")
        if creates is None and removes is None and unless is None:
            return CurrentState.unknown()

        values: Dict[str, Any] = {}
        if creates is not None:
            if await self.connection.stat(str(creates)):
                values["guard"] = f"{creates} exists"
        if removes is not None and "guard" not in values:
            if not await self.connection.stat(str(removes)):
                values["guard"] = f"{removes} does not exist"
        if unless is not None and "guard" not in values:
            result = await self.connection.run(str(unless), cwd=self.get_arg("chdir"))
            if result.rc == 0:
                values["guard"] = "'unless' command succeeded"
        return CurrentState(values=values)

    def diff(self, current: CurrentState) -> Diff:
        guard = current.get("guard")
        if guard:
            return NoChange(reason=f"skipped, since {guard}")
        return Change(delta={"cmd": {"before": None, "after": self.cmd}})

    async def apply(self, change: Change) -> ActionOutput:
        timeout = self.get_arg("timeout")
        result = await self.run_checked(
            self.cmd,
            message="non-zero return code",
            cwd=self.get_arg("chdir"),
            timeout=int(timeout) if timeout is not None else None,
        )
        return ActionOutput(
            msg=f"ran: {self.cmd}",
            rc=result.rc,
            stdout=result.stdout,
            stderr=result.stderr,
        )
