import json
import logging

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from src.data import cli
from src.data.models import SNAPSHOT_VERSION, ImportCounts, ImportReport
from src.exceptions import ImportFormatError
from src.links.services import create_link
from src.models.models import ClickEvent, Link


def _backup(tmp_path, payload):
    path = tmp_path / "backup.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


SNAPSHOT = {
    "version": SNAPSHOT_VERSION,
    "exportTime": "2024-05-02T00:00:00Z",
    "data": {
        "links": [{"id": 7, "shortCode": "restored", "originalUrl": "https://example.com/restored"}],
        "clickEvents": [
            {"linkId": 7, "clickedAt": "2024-05-01T12:00:00Z"},
            {"linkId": 99, "clickedAt": "2024-05-01T12:00:00Z"},
        ],
    },
}


def test_parser_defaults():
    args = cli.build_parser().parse_args(["backup.json"])

    assert str(args.file) == "backup.json"
    assert args.overwrite is False
    assert args.batch_size is None


@pytest.mark.parametrize("argv", [
    ["backup.json", "--batchSize=2000", "--overwrite"],
    ["backup.json", "-b", "2000", "-o"],
    ["backup.json", "--batch-size", "2000", "-o"],
])
def test_parser_options(argv):
    args = cli.build_parser().parse_args(argv)

    assert args.overwrite is True
    assert args.batch_size == 2000


@pytest.mark.parametrize("value", ["0", "-5", "many"])
def test_parser_rejects_bad_batch_size(value):
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["backup.json", "-b", value])


def test_load_backup(tmp_path):
    assert cli.load_backup(_backup(tmp_path, SNAPSHOT)) == SNAPSHOT


@pytest.mark.asyncio
async def test_restore_from_file(tmp_path, db_session: AsyncSession, session_factory):
    await create_link(db_session, "https://example.com/old", custom_code="old")
    payload = cli.load_backup(_backup(tmp_path, SNAPSHOT))

    report = await cli.restore(payload, overwrite_existing=True, batch_size=1, session_factory=session_factory)

    assert report.imported.links == 1
    assert report.imported.click_analytics == 1
    assert report.skipped.click_analytics == 1
    codes = (await db_session.execute(select(Link.short_code))).scalars().all()
    assert codes == ["restored"]
    clicks = (await db_session.execute(select(ClickEvent))).scalars().all()
    assert len(clicks) == 1


@pytest.mark.asyncio
async def test_restore_rejects_bad_format(session_factory):
    with pytest.raises(ImportFormatError):
        await cli.restore({"version": "0.1"}, session_factory=session_factory)


def test_main_missing_file(tmp_path, caplog):
    with caplog.at_level(logging.ERROR, logger="src.data.cli"):
        assert cli.main([str(tmp_path / "missing.json")]) == 1

    assert "missing.json" in caplog.text


def test_main_invalid_json(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    assert cli.main([str(path)]) == 1


def test_main_passes_options(tmp_path, monkeypatch, caplog):
    calls = []

    async def fake_run(payload, overwrite_existing, batch_size):
        calls.append((payload, overwrite_existing, batch_size))
        return ImportReport(imported=ImportCounts(links=1), errors=["clickEvents[0]: bad record"])

    monkeypatch.setattr(cli, "_run", fake_run)
    path = _backup(tmp_path, SNAPSHOT)

    with caplog.at_level(logging.WARNING, logger="src.data.cli"):
        assert cli.main([str(path), "--batchSize=500", "-o"]) == 0

    assert calls == [(SNAPSHOT, True, 500)]
    assert "clickEvents[0]: bad record" in caplog.text


def test_main_reports_rejected_import(tmp_path, monkeypatch):
    async def fake_run(payload, overwrite_existing, batch_size):
        raise ImportFormatError("unsupported version")

    monkeypatch.setattr(cli, "_run", fake_run)

    assert cli.main([str(_backup(tmp_path, {"version": "0.1"}))]) == 1
