"""Archive extraction through patool."""

import patoolib
import pytest
from patoolib.util import PatoolError

from bchelper import archive
from bchelper.errors import ExternalToolFailure


def test_extract_archive_calls_patool(monkeypatch, tmp_path) -> None:
    calls = []
    monkeypatch.setattr(
        patoolib, "extract_archive", lambda path, **kwargs: calls.append((path, kwargs))
    )
    payload = tmp_path / "payload.zip"
    payload.write_bytes(b"PK")
    outdir = tmp_path / "out"

    assert archive.extract_archive(str(payload), str(outdir)) == str(outdir)
    assert outdir.is_dir()
    assert calls == [(str(payload), {"outdir": str(outdir), "verbosity": -1, "interactive": False})]


def test_patool_error_is_external_tool_failure(monkeypatch, tmp_path) -> None:
    def fail(path, **kwargs):
        raise PatoolError("could not find an executable program to extract format zip")

    monkeypatch.setattr(patoolib, "extract_archive", fail)
    payload = tmp_path / "payload.zip"
    payload.write_bytes(b"PK")

    with pytest.raises(ExternalToolFailure, match="payload.zip"):
        archive.extract_archive(str(payload), str(tmp_path / "out"))


def test_missing_archive(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        archive.extract_archive(str(tmp_path / "missing.zip"), str(tmp_path / "out"))
