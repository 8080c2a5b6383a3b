"""
Shared fixtures: a simulated fleet of hosts and helpers that lay out
inventories, site documents and role directories under tmp_path.
"""

import asyncio
import re
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import pytest
import yaml

from stagehand.connections.base import Connection, RunResult
from stagehand.engine.errors import UnreachableHost
from stagehand.engine.inventory import Host


PKG_QUERY = re.compile(r"^(?:dpkg-query -W -f='\$\{Status\}'|rpm -q) (?P<name>.+)$")
PKG_CHANGE = re.compile(r"^(?:apt-get|dnf|yum) (?P<verb>install|remove) -y (?P<names>.+)$")
SYSTEMCTL = re.compile(r"^systemctl (?P<verb>[\w-]+) (?P<unit>.+)$")
ACCOUNT = re.compile(r"'(?P<user>[^']*)'@'(?P<host>[^']*)'")
GRANT_STMT = re.compile(r"^GRANT (?P<privs>.+) ON (?P<target>\S+) TO (?P<account>.+)$")


class FakeConnection(Connection):
    """
    In-memory host: packages, services, files and database grants are
    simulated well enough for probe/diff/apply to converge against.
    """

    def __init__(self, host: Host):
        super().__init__(host)
        self.packages: Set[str] = set()
        self.services: Dict[str, Dict[str, bool]] = {}
        self.files: Dict[str, bytes] = {}
        self.modes: Dict[str, str] = {}
        self.grants: Dict[str, Dict[str, Set[str]]] = {}
        self.commands: List[str] = []
        self.actions: List[str] = []
        self.command_results: Dict[str, RunResult] = {}
        self.fail_on: List[str] = []
        self.delay: float = 0.0
        self.connected = False
        self.connect_count = 0
        self.os_release = 'ID=debian\nVERSION_ID="12"\n'

    async def connect(self) -> None:
        self.connected = True
        self.connect_count += 1

    async def close(self) -> None:
        self.connected = False

    async def run(
        self,
        command: str,
        shell: bool = True,
        timeout: Optional[int] = None,
        cwd: Optional[str] = None,
        environment: Optional[dict] = None,
    ) -> RunResult:
        self.commands.append(command)
        if self.delay:
            await asyncio.sleep(self.delay)

        for marker in self.fail_on:
            if marker in command:
                return RunResult(rc=1, stdout="", stderr=f"simulated failure: {marker}")
        if command in self.command_results:
            return self.command_results[command]

        return self._simulate(command)

    def _simulate(self, command: str) -> RunResult:
        facts = {
            "uname -s": "Linux",
            "uname -r": "6.1.0-18-amd64",
            "uname -m": "x86_64",
            "hostname -s 2>/dev/null || hostname": self.host.name.split('.')[0],
            "hostname -f 2>/dev/null || hostname": self.host.name,
            "cat /etc/os-release": self.os_release,
        }
        if command in facts:
            return RunResult(rc=0, stdout=facts[command] + "\n", stderr="")
        if command == "command -v dnf":
            return RunResult(rc=1, stdout="", stderr="")

        match = PKG_QUERY.match(command)
        if match:
            name = shlex.split(match.group("name"))[0]
            if name in self.packages:
                return RunResult(rc=0, stdout="install ok installed", stderr="")
            return RunResult(rc=1, stdout="", stderr=f"no packages found matching {name}")

        match = PKG_CHANGE.match(command)
        if match:
            names = shlex.split(match.group("names"))
            if match.group("verb") == "install":
                self.packages.update(names)
            else:
                self.packages.difference_update(names)
            self.actions.append(command)
            return RunResult(rc=0, stdout="", stderr="")

        match = SYSTEMCTL.match(command)
        if match:
            return self._systemctl(match.group("verb"), shlex.split(match.group("unit"))[0])

        if command.startswith("mysql "):
            argv = shlex.split(command)
            return self._mysql(argv[argv.index("-e") + 1])

        for path in re.findall(r"touch (\S+)", command):
            self.files[path] = b""
        self.actions.append(command)
        return RunResult(rc=0, stdout="", stderr="")

    def _systemctl(self, verb: str, unit: str) -> RunResult:
        service = self.services.setdefault(unit, {"active": False, "enabled": False})
        if verb == "is-active":
            active = service["active"]
            return RunResult(rc=0 if active else 3, stdout="active\n" if active else "inactive\n", stderr="")
        if verb == "is-enabled":
            enabled = service["enabled"]
            return RunResult(rc=0 if enabled else 1, stdout="enabled\n" if enabled else "disabled\n", stderr="")

        self.actions.append(f"systemctl {verb} {unit}")
        if verb in ("start", "restart"):
            service["active"] = True
        elif verb == "stop":
            service["active"] = False
        elif verb == "enable":
            service["enabled"] = True
        elif verb == "disable":
            service["enabled"] = False
        return RunResult(rc=0, stdout="", stderr="")

    def _mysql(self, statement: str) -> RunResult:
        account_match = ACCOUNT.search(statement)
        account = account_match.group(0) if account_match else ""

        if statement.startswith("SHOW GRANTS FOR"):
            if account not in self.grants:
                return RunResult(
                    rc=1, stdout="",
                    stderr=f"ERROR 1141 (42000): There is no such grant defined for user {account}",
                )
            user, host = account_match.group("user"), account_match.group("host")
            lines = [f"GRANT USAGE ON *.* TO `{user}`@`{host}`"]
            for target, privs in sorted(self.grants[account].items()):
                db, _, table = target.partition(".")
                lines.append(f"GRANT {', '.join(sorted(privs))} ON `{db}`.{table} TO `{user}`@`{host}`")
            return RunResult(rc=0, stdout="\n".join(lines) + "\n", stderr="")

        self.actions.append(statement)
        if statement.startswith("CREATE USER IF NOT EXISTS"):
            self.grants.setdefault(account, {})
        elif statement.startswith("DROP USER IF EXISTS"):
            self.grants.pop(account, None)
        elif statement.startswith("GRANT"):
            match = GRANT_STMT.match(statement)
            privs = {p.strip() for p in match.group("privs").split(",")}
            self.grants.setdefault(account, {}).setdefault(match.group("target"), set()).update(privs)
        return RunResult(rc=0, stdout="", stderr="")

    async def read_file(self, path: str) -> Optional[bytes]:
        return self.files.get(path)

    async def write_file(self, path: str, data: bytes, mode: Optional[str] = None) -> None:
        self.actions.append(f"write {path}")
        self.files[path] = data
        self.modes[path] = mode or self.modes.get(path, "0644")

    async def stat(self, path: str) -> Optional[dict]:
        if path not in self.files:
            return None
        return {
            'exists': True,
            'isdir': False,
            'isfile': True,
            'size': len(self.files[path]),
            'mode': self.modes.get(path, "0644"),
        }


class FakeFleet:
    """Connection factory whose hosts keep their state across runs."""

    def __init__(self):
        self.hosts: Dict[str, FakeConnection] = {}
        self.unreachable: Set[str] = set()
        self.delays: Dict[str, float] = {}
        self.attempts: Dict[str, int] = {}

    def __getitem__(self, name: str) -> FakeConnection:
        return self.hosts[name]

    def host(self, name: str) -> FakeConnection:
        """Get (creating if needed) the simulated host called ``name``."""
        if name not in self.hosts:
            self.hosts[name] = FakeConnection(Host(name))
            self.hosts[name].delay = self.delays.get(name, 0.0)
        return self.hosts[name]

    async def factory(self, host: Host) -> Connection:
        self.attempts[host.name] = self.attempts.get(host.name, 0) + 1
        if host.name in self.unreachable:
            raise UnreachableHost(host.name, "Connection refused", connection_type="fake")
        conn = self.host(host.name)
        conn.host = host
        await conn.connect()
        return conn


def write_yaml(path: Path, data: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding='utf-8')
    return path


def write_role(
    roles_dir: Path,
    name: str,
    tasks: List[Dict[str, Any]],
    handlers: Optional[List[Dict[str, Any]]] = None,
    templates: Optional[Dict[str, str]] = None,
    files: Optional[Dict[str, str]] = None,
    defaults: Optional[Dict[str, Any]] = None,
    role_vars: Optional[Dict[str, Any]] = None,
) -> Path:
    """Lay out a role directory."""
    role_dir = roles_dir / name
    write_yaml(role_dir / "tasks" / "main.yml", tasks)
    if handlers is not None:
        write_yaml(role_dir / "handlers" / "main.yml", handlers)
    if defaults is not None:
        write_yaml(role_dir / "defaults" / "main.yml", defaults)
    if role_vars is not None:
        write_yaml(role_dir / "vars" / "main.yml", role_vars)
    for rel, source in (templates or {}).items():
        target = role_dir / "templates" / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(source, encoding='utf-8')
    for rel, content in (files or {}).items():
        target = role_dir / "files" / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding='utf-8')
    return role_dir


@pytest.fixture
def fleet() -> FakeFleet:
    return FakeFleet()


@pytest.fixture
def three_tier(tmp_path: Path) -> Dict[str, Path]:
    """A database / application / web deployment with one role per tier."""
    write_yaml(tmp_path / "inventory.yml", {
        "all": {
            "vars": {"db_name": "appdb"},
            "children": {
                "db": {"hosts": {"db1": {"ansible_host": "10.0.0.10"}}},
                "app": {
                    "hosts": {"app1": {}, "app2": {}},
                    "vars": {"app_port": 8000},
                },
                "web": {"hosts": {"web1": {}}},
            },
        },
    })

    roles = tmp_path / "roles"
    write_role(
        roles, "mysql",
        tasks=[
            {"name": "Install MySQL", "package": {"name": "mysql-server"}},
            {"name": "Configure MySQL", "template": {"src": "my.cnf.j2", "dest": "/etc/mysql/my.cnf"},
             "notify": "restart mysql"},
            {"name": "Start MySQL", "service": {"name": "mysql", "state": "started", "enabled": True}},
            {"name": "Application account",
             "grant": {"user": "app", "host": "%", "password": "s3cret", "priv": "{{ db_name }}.*:ALL"}},
        ],
        handlers=[
            {"name": "restart mysql", "service": {"name": "mysql", "state": "restarted"}},
        ],
        templates={"my.cnf.j2": "[mysqld]\nbind-address = {{ ansible_host }}\n"},
    )
    write_role(
        roles, "flask_app",
        tasks=[
            {"name": "Install Python", "apt": {"name": ["python3", "python3-venv"]}},
            {"name": "Application config", "template": {"src": "app.conf.j2", "dest": "/etc/app/app.conf",
                                                         "mode": "0640"},
             "notify": ["restart app"]},
            {"name": "Release marker", "copy": {"content": "release={{ release }}\n", "dest": "/etc/app/RELEASE"},
             "notify": ["restart app"]},
            {"name": "Create virtualenv",
             "command": {"cmd": "python3 -m venv /opt/app/venv && touch /opt/app/venv/.done",
                         "creates": "/opt/app/venv/.done"}},
            {"name": "Start app", "service": {"name": "app", "state": "started"}},
        ],
        handlers=[
            {"name": "restart app", "service": {"name": "app", "state": "restarted"}},
        ],
        templates={"app.conf.j2": "db_host = db1\ndb_name = {{ db_name }}\nport = {{ app_port }}\n"},
        defaults={"release": "1.0"},
    )
    write_role(
        roles, "nginx",
        tasks=[
            {"name": "Install nginx", "package": "nginx"},
            {"name": "Site config", "template": {"src": "site.conf.j2", "dest": "/etc/nginx/conf.d/app.conf"},
             "notify": "reload nginx"},
            {"name": "Start nginx", "service": {"name": "nginx", "state": "started", "enabled": "yes"}},
        ],
        handlers=[
            {"name": "reload nginx", "service": {"name": "nginx", "state": "reloaded"}},
        ],
        templates={"site.conf.j2": "upstream app {\n  server app1:{{ upstream_port }};\n  server app2:{{ upstream_port }};\n}\n"},
    )

    write_yaml(tmp_path / "site.yml", {
        "name": "three-tier",
        "inventory": "inventory.yml",
        "vars": {"upstream_port": 8000},
        "tiers": [
            {"name": "database", "hosts": "db", "role": "mysql"},
            {"name": "application", "hosts": "app", "role": "flask_app"},
            {"name": "web", "hosts": "web", "role": "nginx"},
        ],
    })
    return {
        "root": tmp_path,
        "site": tmp_path / "site.yml",
        "inventory": tmp_path / "inventory.yml",
        "roles": roles,
    }
