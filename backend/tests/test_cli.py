from __future__ import annotations

import json

import pytest

from receipt_capture import cli
from receipt_capture.models.enums import OutcomeKind, PipelineState
from receipt_capture.models.schemas import IngestionOutcome


def test_scan_missing_file_is_validation_exit(tmp_path, capsys):
    code = cli.main(["scan", str(tmp_path / "nope.jpg"), "--owner", "owner-1"])
    assert code == 2
    assert "No such file" in capsys.readouterr().err


def test_scan_prints_outcome_and_maps_exit_code(tmp_path, monkeypatch, capsys):
    image = tmp_path / "receipt.jpg"
    image.write_bytes(b"\x01\x02")

    async def _fake_main(args):
        assert args.owner == "owner-1"
        assert args.path == image
        return IngestionOutcome(state=PipelineState.FAILED, kind=OutcomeKind.PARTIAL, message="partial")

    monkeypatch.setattr(cli, "_main", _fake_main)
    code = cli.main(["scan", str(image), "--owner", "owner-1"])

    assert code == 1
    printed = json.loads(capsys.readouterr().out)
    assert printed["kind"] == "partial"
    assert printed["state"] == "failed"


def test_camera_arguments_default_to_environment_facing():
    args = cli.build_parser().parse_args(["camera", "--owner", "o"])
    assert args.facing == "environment"
    assert args.warmup == 2.0


def test_interrupt_exits_130(monkeypatch, capsys):
    async def _interrupted(args):
        raise KeyboardInterrupt

    monkeypatch.setattr(cli, "_main", _interrupted)
    assert cli.main(["camera", "--owner", "o"]) == 130


@pytest.mark.asyncio
async def test_run_scan_stops_when_selection_is_rejected():
    class BusyCoordinator:
        analyzed = False

        def select_file(self, path):
            return IngestionOutcome(state=PipelineState.ANALYZING, kind=OutcomeKind.BUSY, message="busy")

        async def analyze(self):
            self.analyzed = True

    coordinator = BusyCoordinator()
    outcome = await cli.run_scan(coordinator, "x.jpg")
    assert outcome.kind == OutcomeKind.BUSY
    assert not coordinator.analyzed


@pytest.mark.asyncio
async def test_run_scan_unreadable_path_is_validation(tmp_path):
    from receipt_capture.services.ingestion_service import IngestionCoordinator

    class _Unused:
        pass

    coordinator = IngestionCoordinator("owner-1", recognition=_Unused(), persistence=_Unused())
    outcome = await cli.run_scan(coordinator, tmp_path / "gone.jpg")
    assert outcome.kind == OutcomeKind.VALIDATION
    assert cli.EXIT_CODES[outcome.kind] == 2
