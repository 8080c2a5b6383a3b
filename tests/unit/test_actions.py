"""
Tests for the built-in action kinds against a simulated host.
"""

import pytest

from stagehand.actions.base import get_action, list_actions, normalize_mode
from stagehand.actions.command import CommandAction
from stagehand.actions.copy import CopyAction
from stagehand.actions.grant import GrantAction, parse_privileges, parse_show_grants
from stagehand.actions.package import PackageAction
from stagehand.actions.service import ServiceAction
from stagehand.actions.template import TemplateAction
from stagehand.connections.base import RunResult
from stagehand.engine.context import HostContext
from stagehand.engine.errors import ActionError
from stagehand.engine.facts import gather_facts, os_family, parse_os_release
from stagehand.engine.inventory import Host
from stagehand.engine.probe import Change, NoChange
from stagehand.engine.results import RunReport
from stagehand.engine.roles import ArtifactTemplate, Role, RoleLoader

from tests.conftest import FakeConnection, write_role


@pytest.fixture
def conn():
    return FakeConnection(Host("web1"))


def make_action(action_class, args, conn, role=None, facts=None, extra_vars=None):
    ctx = HostContext(
        host=conn.host,
        role=role or Role(name="test"),
        report=RunReport(host=conn.host.name),
        connection=conn,
        facts=facts if facts is not None else {"pkg_mgr": "apt"},
        extra_vars=extra_vars or {},
    )
    action = action_class(args, ctx, ctx.get_vars())
    assert action.validate_args() is None
    return action


class TestRegistry:

    def test_builtin_kinds(self):
        assert list_actions() == ["command", "copy", "grant", "package", "service", "template"]
        assert get_action("package") is PackageAction
        assert get_action("lineinfile") is None

    def test_normalize_mode(self):
        assert normalize_mode("644") == "0644"
        assert normalize_mode(0o640) == "0640"
        assert normalize_mode(None) is None
        with pytest.raises(ValueError):
            normalize_mode("rwxr-xr-x")


class TestPackageAction:

    @pytest.mark.asyncio
    async def test_install_then_unchanged(self, conn):
        action = make_action(PackageAction, {"name": ["nginx", "curl"]}, conn)
        diff, output = await action.converge()
        assert isinstance(diff, Change)
        assert conn.actions == ["apt-get install -y 'nginx' 'curl'"]
        assert output.msg == "installed nginx, curl"

        diff, output = await make_action(PackageAction, {"name": "nginx,curl"}, conn).converge()
        assert isinstance(diff, NoChange)
        assert output is None
        assert len(conn.actions) == 1

    @pytest.mark.asyncio
    async def test_remove(self, conn):
        conn.packages.add("telnet")
        action = make_action(PackageAction, {"name": "telnet", "state": "absent"}, conn)
        diff, _ = await action.converge()
        assert diff.delta == {"telnet": {"before": "present", "after": "absent"}}
        assert "telnet" not in conn.packages

    @pytest.mark.asyncio
    async def test_check_mode_does_not_apply(self, conn):
        action = make_action(PackageAction, {"name": "nginx"}, conn)
        diff, output = await action.converge(check_mode=True)
        assert diff.changed
        assert output is None
        assert conn.actions == []

    @pytest.mark.asyncio
    async def test_manager_from_facts(self, conn):
        action = make_action(PackageAction, {"name": "httpd"}, conn, facts={"pkg_mgr": "dnf"})
        await action.converge()
        assert "rpm -q 'httpd'" in conn.commands
        assert conn.actions == ["dnf install -y 'httpd'"]

    @pytest.mark.asyncio
    async def test_install_failure(self, conn):
        conn.fail_on.append("apt-get install")
        action = make_action(PackageAction, {"name": "nginx"}, conn)
        with pytest.raises(ActionError) as exc_info:
            await action.converge()
        assert exc_info.value.rc == 1
        assert "simulated failure" in exc_info.value.stderr

    def test_invalid_state(self, conn):
        ctx = HostContext(host=conn.host, role=Role(name="t"), report=RunReport(host="web1"), connection=conn)
        action = PackageAction({"name": "nginx", "state": "latest"}, ctx)
        assert "Unknown state" in action.validate_args()


class TestServiceAction:

    @pytest.mark.asyncio
    async def test_start_and_enable(self, conn):
        action = make_action(ServiceAction, {"name": "nginx", "state": "started", "enabled": "yes"}, conn)
        diff, output = await action.converge()
        assert set(diff.delta) == {"state", "enabled"}
        assert conn.actions == ["systemctl enable nginx", "systemctl start nginx"]
        assert conn.services["nginx"] == {"active": True, "enabled": True}

        diff, _ = await make_action(
            ServiceAction, {"name": "nginx", "state": "started", "enabled": True}, conn
        ).converge()
        assert isinstance(diff, NoChange)

    @pytest.mark.asyncio
    async def test_enabled_not_probed_when_unmanaged(self, conn):
        await make_action(ServiceAction, {"name": "app", "state": "started"}, conn).converge()
        assert not any("is-enabled" in c for c in conn.commands)

    @pytest.mark.asyncio
    async def test_restarted_always_changes(self, conn):
        conn.services["mysql"] = {"active": True, "enabled": True}
        for _ in range(2):
            diff, _ = await make_action(ServiceAction, {"name": "mysql", "state": "restarted"}, conn).converge()
            assert diff.changed
        assert conn.actions == ["systemctl restart mysql", "systemctl restart mysql"]

    def test_requires_state_or_enabled(self, conn):
        ctx = HostContext(host=conn.host, role=Role(name="t"), report=RunReport(host="web1"), connection=conn)
        assert ServiceAction({"name": "nginx"}, ctx).validate_args() is not None


class TestFileActions:

    @pytest.mark.asyncio
    async def test_copy_content(self, conn):
        args = {"content": "release=1.0\n", "dest": "/etc/app/RELEASE"}
        diff, _ = await make_action(CopyAction, args, conn).converge()
        assert diff.changed
        assert conn.files["/etc/app/RELEASE"] == b"release=1.0\n"

        diff, _ = await make_action(CopyAction, args, conn).converge()
        assert isinstance(diff, NoChange)

    @pytest.mark.asyncio
    async def test_mode_only_change(self, conn):
        conn.files["/etc/app.conf"] = b"x\n"
        conn.modes["/etc/app.conf"] = "0644"
        diff, _ = await make_action(
            CopyAction, {"content": "x\n", "dest": "/etc/app.conf", "mode": "0600"}, conn
        ).converge()
        assert diff.delta["mode"] == {"before": "0644", "after": "0600"}
        assert "after_checksum" not in diff.delta
        assert conn.modes["/etc/app.conf"] == "0600"

    @pytest.mark.asyncio
    async def test_copy_from_role_files(self, conn, tmp_path):
        write_role(tmp_path, "app", tasks=[{"package": "x"}], files={"motd": "welcome\n"})
        role = RoleLoader([tmp_path]).load("app")
        await make_action(CopyAction, {"src": "motd", "dest": "/etc/motd"}, conn, role=role).converge()
        assert conn.files["/etc/motd"] == b"welcome\n"

    @pytest.mark.asyncio
    async def test_copy_missing_source(self, conn):
        action = make_action(CopyAction, {"src": "absent.txt", "dest": "/etc/x"}, conn)
        with pytest.raises(ActionError, match="Source file not found"):
            await action.converge()

    @pytest.mark.asyncio
    async def test_template_renders_host_variables(self, conn):
        role = Role(name="nginx", artifacts={
            "site.conf.j2": ArtifactTemplate("site.conf.j2", "server {{ inventory_hostname }}:{{ port }};\n"),
        })
        args = {"src": "site.conf.j2", "dest": "/etc/nginx/site.conf"}
        diff, _ = await make_action(TemplateAction, args, conn, role=role, extra_vars={"port": 80}).converge()
        assert diff.changed
        assert "+server web1:80;" in diff.diff
        assert conn.files["/etc/nginx/site.conf"] == b"server web1:80;\n"

        diff, _ = await make_action(TemplateAction, args, conn, role=role, extra_vars={"port": 80}).converge()
        assert isinstance(diff, NoChange)

        diff, _ = await make_action(TemplateAction, args, conn, role=role, extra_vars={"port": 81}).converge()
        assert diff.changed


class TestCommandAction:

    @pytest.mark.asyncio
    async def test_without_guard_always_runs(self, conn):
        for _ in range(2):
            diff, output = await make_action(CommandAction, {"cmd": "echo hi"}, conn).converge()
            assert diff.changed
            assert output.rc == 0
        assert conn.actions == ["echo hi", "echo hi"]

    @pytest.mark.asyncio
    async def test_creates_guard(self, conn):
        args = {"cmd": "make install && touch /opt/.done", "creates": "/opt/.done"}
        diff, _ = await make_action(CommandAction, args, conn).converge()
        assert diff.changed
        diff, _ = await make_action(CommandAction, args, conn).converge()
        assert isinstance(diff, NoChange)
        assert diff.reason == "skipped, since /opt/.done exists"

    @pytest.mark.asyncio
    async def test_unless_guard(self, conn):
        conn.command_results["test -f /etc/ok"] = RunResult(rc=0, stdout="", stderr="")
        diff, _ = await make_action(CommandAction, {"cmd": "setup", "unless": "test -f /etc/ok"}, conn).converge()
        assert isinstance(diff, NoChange)
        assert "setup" not in conn.actions

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, conn):
        conn.command_results["false"] = RunResult(rc=2, stdout="", stderr="nope")
        with pytest.raises(ActionError) as exc_info:
            await make_action(CommandAction, {"cmd": "false"}, conn).converge()
        assert exc_info.value.rc == 2
        assert exc_info.value.stderr == "nope"


class TestGrantAction:

    def test_parse_privileges(self):
        assert parse_privileges("appdb.*:SELECT,insert/`logs`.*:ALL PRIVILEGES") == {
            "appdb.*": ["INSERT", "SELECT"],
            "logs.*": ["ALL"],
        }
        with pytest.raises(ValueError):
            parse_privileges("no-target")

    def test_parse_show_grants(self):
        output = (
            "GRANT USAGE ON *.* TO `app`@`%`\n"
            "GRANT SELECT, INSERT ON `appdb`.* TO `app`@`%`\n"
        )
        assert parse_show_grants(output) == {"*.*": ["USAGE"], "appdb.*": ["INSERT", "SELECT"]}

    @pytest.mark.asyncio
    async def test_create_user_and_grant(self, conn):
        args = {"user": "app", "host": "%", "password": "s3cret", "priv": "appdb.*:ALL"}
        diff, _ = await make_action(GrantAction, args, conn).converge()
        assert set(diff.delta) == {"exists", "privileges"}
        assert conn.actions == [
            "CREATE USER IF NOT EXISTS 'app'@'%' IDENTIFIED BY 's3cret'",
            "GRANT ALL ON appdb.* TO 'app'@'%'",
        ]

        diff, _ = await make_action(GrantAction, args, conn).converge()
        assert isinstance(diff, NoChange)

    @pytest.mark.asyncio
    async def test_all_covers_specific_privileges(self, conn):
        conn.grants["'app'@'%'"] = {"appdb.*": {"ALL"}}
        diff, _ = await make_action(
            GrantAction, {"user": "app", "host": "%", "priv": "appdb.*:SELECT"}, conn
        ).converge()
        assert isinstance(diff, NoChange)

    @pytest.mark.asyncio
    async def test_missing_privilege_only(self, conn):
        conn.grants["'app'@'%'"] = {"appdb.*": {"SELECT"}}
        diff, _ = await make_action(
            GrantAction, {"user": "app", "host": "%", "priv": "appdb.*:SELECT,INSERT"}, conn
        ).converge()
        assert diff.delta == {"privileges": {"before": {"appdb.*": ["SELECT"]}, "after": {"appdb.*": ["INSERT"]}}}
        assert conn.grants["'app'@'%'"]["appdb.*"] == {"SELECT", "INSERT"}

    @pytest.mark.asyncio
    async def test_absent(self, conn):
        conn.grants["'old'@'localhost'"] = {}
        diff, _ = await make_action(GrantAction, {"user": "old", "state": "absent"}, conn).converge()
        assert diff.changed
        assert "'old'@'localhost'" not in conn.grants

        diff, _ = await make_action(GrantAction, {"user": "old", "state": "absent"}, conn).converge()
        assert isinstance(diff, NoChange)

    @pytest.mark.asyncio
    async def test_server_error_fails(self, conn):
        conn.fail_on.append("SHOW GRANTS")
        with pytest.raises(ActionError, match="could not read grants"):
            await make_action(GrantAction, {"user": "app"}, conn).converge()

    def test_login_options(self, conn):
        action = make_action(GrantAction, {"user": "app", "login_user": "root", "login_host": "db1"}, conn)
        assert action.mysql("SELECT 1") == "mysql -N -B -u 'root' -h 'db1' -e 'SELECT 1'"


class TestFacts:

    @pytest.mark.asyncio
    async def test_debian(self, conn):
        facts = await gather_facts(conn)
        assert facts["hostname"] == "web1"
        assert facts["system"] == "Linux"
        assert facts["distribution"] == "Debian"
        assert facts["distribution_version"] == "12"
        assert facts["os_family"] == "Debian"
        assert facts["pkg_mgr"] == "apt"

    @pytest.mark.asyncio
    async def test_redhat_with_dnf(self, conn):
        conn.os_release = 'ID="rocky"\nVERSION_ID="9.3"\n'
        conn.command_results["command -v dnf"] = RunResult(rc=0, stdout="/usr/bin/dnf\n", stderr="")
        facts = await gather_facts(conn)
        assert facts["os_family"] == "RedHat"
        assert facts["pkg_mgr"] == "dnf"

    def test_helpers(self):
        assert parse_os_release('NAME="Ubuntu"\nID=ubuntu\nVERSION_ID="22.04"') == {
            "distribution": "Ubuntu",
            "distribution_version": "22.04",
        }
        assert os_family("Alpine") == "Alpine"
        assert os_family("Plan9") == "Linux"
