"""
End-to-end convergence of a database / application / web deployment,
run twice against the same simulated fleet.
"""

import json

import pytest

from stagehand.engine.config import RunConfig
from stagehand.engine.results import HostStatus, TaskOutcome, TierOutcome
from stagehand.engine.runner import ConvergenceRunner


def make_runner(three_tier, fleet, **config):
    config.setdefault("json_output", True)
    return ConvergenceRunner(
        str(three_tier["site"]),
        config=RunConfig(**config),
        connection_factory=fleet.factory,
    )


def outcomes(report):
    return [r.outcome for r in report.task_results]


class TestThreeTierDeployment:

    @pytest.mark.asyncio
    async def test_first_run_converges_everything(self, three_tier, fleet):
        result = await make_runner(three_tier, fleet).run_async()

        assert [t.name for t in result.tier_results] == ["database", "application", "web"]
        assert all(t.outcome == TierOutcome.CLEAN for t in result.tier_results)
        assert result.success

        db1 = result.tier_results[0].report_for("db1")
        assert outcomes(db1) == [TaskOutcome.CHANGED] * 4
        assert db1.handlers_run == ["restart mysql"]

        for name in ("app1", "app2"):
            report = result.tier_results[1].report_for(name)
            assert report.status == HostStatus.CONVERGED
            assert outcomes(report) == [TaskOutcome.CHANGED] * 5
            assert report.notified_handlers == ["restart app"]
            assert report.handlers_run == ["restart app"]

        web1 = result.tier_results[2].report_for("web1")
        assert web1.handlers_run == ["reload nginx"]

    @pytest.mark.asyncio
    async def test_host_state_after_first_run(self, three_tier, fleet):
        await make_runner(three_tier, fleet).run_async()

        db1 = fleet["db1"]
        assert "mysql-server" in db1.packages
        assert db1.files["/etc/mysql/my.cnf"] == b"[mysqld]\nbind-address = 10.0.0.10\n"
        assert db1.services["mysql"] == {"active": True, "enabled": True}
        assert db1.grants["'app'@'%'"] == {"appdb.*": {"ALL"}}
        assert db1.actions.count("systemctl restart mysql") == 1

        app1 = fleet["app1"]
        assert app1.files["/etc/app/app.conf"] == b"db_host = db1\ndb_name = appdb\nport = 8000\n"
        assert app1.modes["/etc/app/app.conf"] == "0640"
        assert app1.files["/etc/app/RELEASE"] == b"release=1.0\n"
        assert app1.actions.count("systemctl restart app") == 1

        web1 = fleet["web1"]
        assert b"server app1:8000;" in web1.files["/etc/nginx/conf.d/app.conf"]
        assert web1.services["nginx"] == {"active": True, "enabled": True}

    @pytest.mark.asyncio
    async def test_second_run_changes_nothing(self, three_tier, fleet):
        await make_runner(three_tier, fleet).run_async()
        actions_before = {name: list(conn.actions) for name, conn in fleet.hosts.items()}

        result = await make_runner(three_tier, fleet).run_async()

        for tier in result.tier_results:
            assert tier.outcome == TierOutcome.CLEAN
            for report in tier.reports:
                assert set(outcomes(report)) == {TaskOutcome.UNCHANGED}
                assert report.handlers_run == []
        assert {name: conn.actions for name, conn in fleet.hosts.items()} == actions_before
        assert ConvergenceRunner.exit_code(result) == 0

    @pytest.mark.asyncio
    async def test_changed_variable_reconverges_one_tier(self, three_tier, fleet):
        await make_runner(three_tier, fleet).run_async()
        result = await make_runner(three_tier, fleet, extra_vars={"release": "1.1"}).run_async()

        app1 = result.tier_results[1].report_for("app1")
        changed = [r.task_name for r in app1.task_results if r.changed]
        assert changed == ["Release marker"]
        assert app1.handlers_run == ["restart app"]
        assert result.tier_results[0].report_for("db1").handlers_run == []

    def test_run_reports_json_and_exit_code(self, three_tier, fleet, capsys):
        assert make_runner(three_tier, fleet).run() == 0

        data = json.loads(capsys.readouterr().out)
        assert data["site"] == "three-tier"
        assert data["success"] is True
        assert [t["outcome"] for t in data["tiers"]] == ["clean", "clean", "clean"]
        assert data["stats"]["app1"]["changed"] == 6

    def test_database_outage_stops_downstream(self, three_tier, fleet, capsys):
        fleet.unreachable.add("db1")
        assert make_runner(three_tier, fleet).run() == 3

        data = json.loads(capsys.readouterr().out)
        assert data["abort_reason"] == "upstream tier database total_failure"
        assert [t["outcome"] for t in data["tiers"]] == ["total_failure", "not_run", "not_run"]
        assert "app1" not in fleet.attempts

    def test_report_file(self, three_tier, fleet, tmp_path):
        report_path = tmp_path / "report.json"
        assert make_runner(three_tier, fleet, report_file=str(report_path)).run() == 0
        assert json.loads(report_path.read_text())["success"] is True
