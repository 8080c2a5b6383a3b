"""
Stagehand package action

Ensure OS packages are installed or removed (apt, dnf, yum).
"""

from typing import Any, Dict, List

from stagehand.actions.base import Action, ActionOutput, register_action
from stagehand.engine.probe import Change, CurrentState
from stagehand.engine.templating import shell_quote

SUPPORTED_MANAGERS = ("apt", "dnf", "yum")


@register_action
class PackageAction(Action):
    """
    Manage packages with the host's package manager.

    The manager comes from the 'manager' argument, then the 'pkg_mgr' fact,
    then defaults to apt.
    """

    kind = "package"
    required_args = ["name"]
    optional_args = {
        "state": "present",     # present, absent
        "manager": None,        # apt, dnf, yum
    }

    def validate_args(self):
        error = super().validate_args()
        if error:
            return error
        state = self.get_arg("state")
        if state not in ("present", "absent", "installed", "removed"):
            return f"Unknown state: {state}. Valid: present, absent"
        if self.manager not in SUPPORTED_MANAGERS:
            return f"Unsupported package manager: {self.manager}"
        return None

    @property
    def packages(self) -> List[str]:
        name = self.args["name"]
        if isinstance(name, list):
            return [str(p).strip() for p in name if str(p).strip()]
        return [p.strip() for p in str(name).split(",") if p.strip()]

    @property
    def manager(self) -> str:
        return self.get_arg("manager") or self.context.facts.get("pkg_mgr") or "apt"

    @property
    def state(self) -> str:
        state = self.get_arg("state", "present")
        return {"installed": "present", "removed": "absent"}.get(state, state)

    def desired(self) -> Dict[str, Any]:
        return {package: self.state for package in self.packages}

    async def probe(self) -> CurrentState:
        values = {}
        for package in self.packages:
            installed = await self._is_installed(package)
            values[package] = "present" if installed else "absent"
        return CurrentState(values=values)

    async def _is_installed(self, package: str) -> bool:
        if self.manager == "apt":
            result = await self.connection.run(
                f"dpkg-query -W -f='${{Status}}' {shell_quote(package)}"
            )
            return result.rc == 0 and "install ok installed" in result.stdout
        result = await self.connection.run(f"rpm -q {shell_quote(package)}")
        return result.rc == 0

    async def apply(self, change: Change) -> ActionOutput:
        install = [name for name, d in change.delta.items() if d["after"] == "present"]
        remove = [name for name, d in change.delta.items() if d["after"] == "absent"]
        messages = []

        if install:
            await self.run_checked(
                self._command("install", install),
                message=f"failed to install {', '.join(install)}",
                environment=self._environment(),
            )
            messages.append(f"installed {', '.join(install)}")
        if remove:
            await self.run_checked(
                self._command("remove", remove),
                message=f"failed to remove {', '.join(remove)}",
                environment=self._environment(),
            )
            messages.append(f"removed {', '.join(remove)}")

        return ActionOutput(msg="; ".join(messages))

    def _command(self, verb: str, packages: List[str]) -> str:
        pkg_list = " ".join(shell_quote(p) for p in packages)
        if self.manager == "apt":
            return f"apt-get {verb} -y {pkg_list}"
        return f"{self.manager} {verb} -y {pkg_list}"

    def _environment(self):
        if self.manager == "apt":
            return {"DEBIAN_FRONTEND": "noninteractive"}
        return None
