import pytest

from promo_engine import cli
from promo_engine.core.errors import RuleNotFound


def test_parser_knows_maintenance_commands() -> None:
    parser = cli._build_parser()
    assert parser.parse_args(["apply-rule", "3"]).rule_id == 3
    assert parser.parse_args(["revert-rule", "4"]).command == "revert-rule"
    assert parser.parse_args(["reconcile-expired"]).command == "reconcile-expired"
    assert parser.parse_args(["init-db"]).command == "init-db"


def test_run_cli_command_dispatches(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    async def fake_apply(rule_id: int):
        return {"rule_id": rule_id, "updated": 2, "skipped": 0, "conflicted": 0}

    monkeypatch.setattr(cli, "apply_rule", fake_apply)
    args = cli._build_parser().parse_args(["apply-rule", "9"])
    assert cli._run_cli_command(args) is True
    assert '"updated": 2' in capsys.readouterr().out


def test_main_turns_domain_errors_into_exit(monkeypatch: pytest.MonkeyPatch) -> None:
    async def missing(rule_id: int):
        raise RuleNotFound(rule_id=rule_id)

    monkeypatch.setattr(cli, "revert_rule", missing)
    monkeypatch.setattr("sys.argv", ["promo-engine", "revert-rule", "1"])
    with pytest.raises(SystemExit) as excinfo:
        cli.main()
    assert "rule_not_found" in str(excinfo.value)
