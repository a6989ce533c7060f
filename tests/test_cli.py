"""Tests for the command-line interface."""

import json
from pathlib import Path

import pytest

from tierflow.cli import build_parser, main


def _run(capsys: pytest.CaptureFixture[str], data_dir: Path, *argv: str) -> tuple[int, str]:
    code = main(["--data-dir", str(data_dir), *argv])
    return code, capsys.readouterr().out


class TestParser:
    def test_settle_takes_ordered_addresses(self) -> None:
        args = build_parser().parse_args(["settle", "--sub", "0xabc", "bob", "alice"])
        assert args.command == "settle"
        assert args.addresses == ["bob", "alice"]

    def test_price_is_integer(self) -> None:
        args = build_parser().parse_args([
            "create-tier", "--sub", "0xabc", "--caller", "carol",
            "--name", "Gold", "--price", "100",
        ])
        assert args.price == 100

    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main([]) == 0
        assert "tierflow" in capsys.readouterr().out


class TestCommands:
    def test_end_to_end(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        code, out = _run(capsys, tmp_path, "create-subscription", "--creator", "carol", "--name", "Club")
        assert code == 0
        sub = out.strip().split(": ")[1]
        assert sub.startswith("0x")

        steps = [
            ("create-tier", "--sub", sub, "--caller", "carol", "--name", "Gold", "--price", "100"),
            ("fund", "--holder", "alice", "--amount", "1000"),
            ("authorize", "--holder", "alice", "--sub", sub, "--amount", "100"),
            ("subscribe", "--sub", sub, "--caller", "alice", "--tier", "0"),
        ]
        for step in steps:
            code, _ = _run(capsys, tmp_path, *step)
            assert code == 0

        code, out = _run(capsys, tmp_path, "check", "--sub", sub, "--address", "alice")
        assert code == 0
        assert json.loads(out)["subscribed"] is True

        code, out = _run(capsys, tmp_path, "status")
        status = json.loads(out)
        assert status["subscriptions"][0]["active_subscribers"] == 1
        assert (tmp_path / "state.json").exists()
        assert (tmp_path / "events.jsonl").exists()

    def test_failure_exits_nonzero(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        code = main(["--data-dir", str(tmp_path), "unsubscribe", "--sub", "0xdeadbeef", "--caller", "alice"])
        assert code == 1
        assert "UnknownSubscription" in capsys.readouterr().err

    def test_owner_only_tier_creation(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        _, out = _run(capsys, tmp_path, "create-subscription", "--creator", "carol", "--name", "Club")
        sub = out.strip().split(": ")[1]
        code = main([
            "--data-dir", str(tmp_path), "create-tier", "--sub", sub,
            "--caller", "mallory", "--name", "Gold", "--price", "100",
        ])
        assert code == 1
        assert "OnlyOwner" in capsys.readouterr().err


class TestCheckInvariants:
    def test_shipped_params_pass(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["check-invariants"]) == 0
        assert "passed" in capsys.readouterr().out

    def test_bad_params_fail(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        (tmp_path / "billing_params.json").write_text(
            json.dumps({"billing": {"PROTOCOL_FEE_PERCENT": 150, "SUBSCRIPTION_PERIOD_SECONDS": 10}}),
            encoding="utf-8",
        )
        assert main(["--config", str(tmp_path), "check-invariants"]) == 1
        out = capsys.readouterr().out
        assert "PROTOCOL_FEE_PERCENT" in out
        assert "whole number of days" in out
