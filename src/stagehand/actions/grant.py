"""
Stagehand grant action

Manage MySQL/MariaDB accounts and their database privileges through the
mysql command-line client on the host.

Privileges use the "db.table:PRIV1,PRIV2/otherdb.*:ALL" form.
"""

import re
from typing import Any, Dict, List

from stagehand.actions.base import Action, ActionOutput, register_action
from stagehand.engine.errors import ActionError
from stagehand.engine.probe import Change, CurrentState, Diff, NoChange
from stagehand.engine.templating import shell_quote

GRANT_LINE = re.compile(r"^GRANT (?P<privs>.+?) ON (?P<target>\S+) TO ", re.IGNORECASE)
NO_SUCH_GRANT = ("There is no such grant", "ERROR 1141")


def parse_privileges(spec: Any) -> Dict[str, List[str]]:
    """Parse "db.*:SELECT,INSERT/other.*:ALL" into {target: sorted privileges}."""
    if not spec:
        return {}
    if isinstance(spec, dict):
        items = spec.items()
    else:
        items = []
        for part in str(spec).split("/"):
            target, sep, privs = part.strip().rpartition(":")
            if not sep or not target:
                raise ValueError(f"Invalid privilege specification: {part!r}")
            items.append((target, privs))

    parsed = {}
    for target, privs in items:
        if isinstance(privs, str):
            privs = privs.split(",")
        parsed[normalize_target(target)] = sorted({normalize_privilege(p) for p in privs if str(p).strip()})
    return parsed


def normalize_target(target: str) -> str:
    return str(target).strip().replace("`", "")


def normalize_privilege(privilege: Any) -> str:
    name = " ".join(str(privilege).upper().split())
    return "ALL" if name == "ALL PRIVILEGES" else name


def parse_show_grants(output: str) -> Dict[str, List[str]]:
    """Parse SHOW GRANTS output into {target: sorted privileges}."""
    grants: Dict[str, List[str]] = {}
    for line in output.splitlines():
        match = GRANT_LINE.match(line.strip())
        if not match:
            continue
        target = normalize_target(match.group("target"))
        privs = {normalize_privilege(p) for p in match.group("privs").split(",")}
        grants[target] = sorted(set(grants.get(target, [])) | privs)
    return grants


def sql_string(value: Any) -> str:
    """Quote a value as a SQL string literal."""
    return "'" + str(value).replace("\\", "\\\\").replace("'", "\\'") + "'"


@register_action
class GrantAction(Action):
    """
    Ensure a database user exists (or not) with at least the given privileges.

    Existing extra privileges are left alone. Passwords cannot be read back,
    so a password is only set when the account is created.
    """

    kind = "grant"
    required_args = ["user"]
    optional_args = {
        "host": "localhost",
        "password": None,
        "priv": None,
        "state": "present",     # present, absent
        "login_user": None,
        "login_password": None,
        "login_host": None,
    }

    def validate_args(self):
        error = super().validate_args()
        if error:
            return error
        if self.get_arg("state") not in ("present", "absent"):
            return f"Unknown state: {self.get_arg('state')}. Valid: present, absent"
        try:
            parse_privileges(self.get_arg("priv"))
        except ValueError as e:
            return str(e)
        return None

    @property
    def account(self) -> str:
        return f"{sql_string(self.args['user'])}@{sql_string(self.get_arg('host'))}"

    def mysql(self, statement: str) -> str:
        """Build a mysql client invocation for one SQL statement."""
        parts = ["mysql", "-N", "-B"]
        if self.get_arg("login_user"):
            parts.append(f"-u {shell_quote(str(self.get_arg('login_user')))}")
        if self.get_arg("login_password"):
            parts.append(f"--password={shell_quote(str(self.get_arg('login_password')))}")
        if self.get_arg("login_host"):
            parts.append(f"-h {shell_quote(str(self.get_arg('login_host')))}")
        parts.append(f"-e {shell_quote(statement)}")
        return " ".join(parts)

    async def probe(self) -> CurrentState:
        result = await self.connection.run(self.mysql(f"SHOW GRANTS FOR {self.account}"))
        if result.rc != 0:
            if any(marker in result.stderr for marker in NO_SUCH_GRANT):
                return CurrentState(values={"exists": False, "privileges": {}})
            raise ActionError(
                self.kind, self.host_name, "could not read grants",
                rc=result.rc, stdout=result.stdout, stderr=result.stderr,
            )
        return CurrentState(values={"exists": True, "privileges": parse_show_grants(result.stdout)})

    def diff(self, current: CurrentState) -> Diff:
        if self.get_arg("state") == "absent":
            if current.get("exists"):
                return Change(delta={"exists": {"before": True, "after": False}})
            return NoChange(reason=f"user {self.args['user']} absent")

        delta: Dict[str, Any] = {}
        if not current.get("exists"):
            delta["exists"] = {"before": False, "after": True}

        held = current.get("privileges") or {}
        missing = self._missing(held)
        if missing:
            delta["privileges"] = {
                "before": {target: held.get(target, []) for target in missing},
                "after": missing,
            }

        if not delta:
            return NoChange(reason=f"user {self.args['user']} has the requested grants")
        return Change(delta=delta)

    def _missing(self, held: Dict[str, List[str]]) -> Dict[str, List[str]]:
        missing = {}
        for target, wanted in parse_privileges(self.get_arg("priv")).items():
            have = set(held.get(target, []))
            if "ALL" in have:
                continue
            if "ALL" in wanted:
                needed = ["ALL"]
            else:
                needed = [p for p in wanted if p not in have]
            if needed:
                missing[target] = needed
        return missing

    async def apply(self, change: Change) -> ActionOutput:
        if self.get_arg("state") == "absent":
            await self.run_checked(self.mysql(f"DROP USER IF EXISTS {self.account}"))
            return ActionOutput(msg=f"dropped user {self.args['user']}")

        messages = []
        if "exists" in change.delta:
            statement = f"CREATE USER IF NOT EXISTS {self.account}"
            password = self.get_arg("password")
            if password is not None:
                statement += f" IDENTIFIED BY {sql_string(password)}"
            await self.run_checked(self.mysql(statement), message="could not create user")
            messages.append(f"created user {self.args['user']}")

        if "privileges" in change.delta:
            for target, privs in change.delta["privileges"]["after"].items():
                statement = f"GRANT {', '.join(privs)} ON {target} TO {self.account}"
                await self.run_checked(self.mysql(statement), message=f"could not grant on {target}")
                messages.append(f"granted {', '.join(privs)} on {target}")

        return ActionOutput(msg="; ".join(messages))
