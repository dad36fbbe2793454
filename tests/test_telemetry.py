"""The traced decorator records operations and re-raises failures."""

import logging

import pytest

from bchelper.errors import UnsupportedVersion
from bchelper.telemetry import traced


@traced("sample-operation")
def sample(artifact_url, password=None, fail=False):
    if fail:
        raise UnsupportedVersion("too old")
    return artifact_url


def test_traced_logs_parameters_and_masks_secrets(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="bchelper.telemetry"):
        assert sample("https://host/sandbox/17.0.0.0/us", password="secret") == "https://host/sandbox/17.0.0.0/us"

    started = caplog.records[0]
    assert started.operation == "sample-operation"
    assert started.parameters == {
        "artifact_url": "https://host/sandbox/17.0.0.0/us",
        "password": "***",
        "fail": False,
    }
    assert caplog.records[-1].getMessage() == "sample-operation completed"


def test_traced_reraises_unchanged(caplog) -> None:
    with caplog.at_level(logging.INFO, logger="bchelper.telemetry"):
        with pytest.raises(UnsupportedVersion, match="too old"):
            sample("url", fail=True)

    failure = caplog.records[-1]
    assert failure.levelno == logging.ERROR
    assert failure.error_type == "UnsupportedVersion"
