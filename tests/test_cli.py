"""Host command line protocol."""

import io
import json
import sys

from bchelper import cli
from bchelper.config import AppSettings


def run_cli(monkeypatch, payload):
    monkeypatch.setattr(sys, "stdin", io.StringIO(payload))
    stdout = io.StringIO()
    monkeypatch.setattr(sys, "stdout", stdout)
    code = cli.main()
    return code, [json.loads(line) for line in stdout.getvalue().splitlines()]


def test_unknown_command(monkeypatch) -> None:
    code, messages = run_cli(monkeypatch, json.dumps({"command": "backup"}))
    assert code == 1
    assert messages[-1]["data"]["code"] == "UNKNOWN_COMMAND"


def test_invalid_json(monkeypatch) -> None:
    code, messages = run_cli(monkeypatch, "{not json")
    assert code == 1
    assert messages[-1]["data"]["code"] == "INVALID_JSON"


def test_new_compiler_folder_reports_error_kind(monkeypatch) -> None:
    payload = json.dumps(
        {"command": "new-compiler-folder", "options": {"artifact_url": "https://host/onprem/15.0.0.0/w1"}}
    )
    code, messages = run_cli(monkeypatch, payload)
    assert code == 1
    assert messages[-1]["type"] == "error"
    assert messages[-1]["data"]["code"] == "UnsupportedVersion"


def test_new_compiler_folder_success(monkeypatch) -> None:
    built = {}

    class FakeBuilder:
        def __init__(self, app_settings, progress_callback=None):
            pass

        def build(self, artifact_url, **kwargs):
            built.update(kwargs, artifact_url=artifact_url)
            return "/helper/compiler/bcserver"

    monkeypatch.setattr(cli, "CompilerFolderBuilder", FakeBuilder)
    payload = json.dumps(
        {
            "command": "new-compiler-folder",
            "options": {"artifact_url": "https://host/sandbox/17.0.0.0/us", "container_name": "bcserver"},
        }
    )

    code, messages = run_cli(monkeypatch, payload)

    assert code == 0
    assert messages[-1]["data"] == {"compiler_folder": "/helper/compiler/bcserver"}
    assert built["container_name"] == "bcserver"
    assert built["include_al"] is False


def test_restore_databases_passes_options(monkeypatch) -> None:
    received = {}

    class FakeResult:
        def model_dump(self):
            return {"container_name": "bcserver", "databases": ["CRONUS"]}

    class FakeRestorer:
        def __init__(self, app_settings, progress_callback=None):
            pass

        def restore(self, container_name, **kwargs):
            received.update(kwargs, container_name=container_name)
            return FakeResult()

    monkeypatch.setattr(cli, "DatabaseRestorer", FakeRestorer)
    code = cli.process_command(
        {"command": "restore-databases", "options": {"container_name": "bcserver", "tenant": ["default"]}},
        AppSettings(),
    )

    assert code == 0
    assert received == {"container_name": "bcserver", "tenant": ["default"]}


def test_unknown_option_is_rejected(monkeypatch) -> None:
    class FailingBuilder:
        def __init__(self, app_settings, progress_callback=None):
            raise AssertionError("builder must not be created")

    monkeypatch.setattr(cli, "CompilerFolderBuilder", FailingBuilder)
    payload = json.dumps(
        {
            "command": "new-compiler-folder",
            "options": {"artifact_url": "https://host/sandbox/17.0.0.0/us", "cache_foldr": "/cache"},
        }
    )

    code, messages = run_cli(monkeypatch, payload)

    assert code == 1
    assert messages[-1]["type"] == "error"
    assert messages[-1]["data"]["code"] == "InvalidArgument"
    assert "cache_foldr" in messages[-1]["message"]


def test_options_must_be_an_object(monkeypatch) -> None:
    payload = json.dumps({"command": "remove-compiler-folder", "options": ["/helper/compiler/bcserver"]})

    code, messages = run_cli(monkeypatch, payload)

    assert code == 1
    assert messages[-1]["data"]["code"] == "InvalidArgument"


def test_messages_share_the_agent_message_shape(monkeypatch) -> None:
    code, messages = run_cli(monkeypatch, json.dumps({"command": "backup"}))

    assert code == 1
    assert set(messages[-1]) == {"type", "timestamp", "status", "message", "data"}
