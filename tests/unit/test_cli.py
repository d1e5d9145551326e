"""Unit tests for the command line entry point."""

from pathlib import Path

import pytest

from catalog_sync import cli


def test_parser_event_command() -> None:
    args = cli.build_parser().parse_args(["event", "payload.json"])

    assert args.command == "event"
    assert args.event_file == Path("payload.json")


def test_parser_requires_command() -> None:
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_main_reports_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    async def failing(command: str, event_file: Path | None = None) -> None:
        raise RuntimeError("database unreachable")

    monkeypatch.setattr(cli, "run_command", failing)

    assert cli.main(["stock"]) == 1


def test_main_success(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []

    async def succeeding(command: str, event_file: Path | None = None) -> dict:
        calls.append(command)
        return {"synced": 1}

    monkeypatch.setattr(cli, "run_command", succeeding)

    assert cli.main(["full"]) == 0
    assert calls == ["full"]
