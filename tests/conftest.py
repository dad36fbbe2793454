"""Shared fixtures: settings rooted in tmp_path and a fake artifact tree."""

import os
import sys
import zipfile
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from bchelper.config import (  # noqa: E402
    AppSettings,
    ArtifactSettings,
    CompilerSettings,
    HelperSettings,
)

ARTIFACT_URL = "https://bcartifacts.azureedge.net/sandbox/17.0.0.0/us?sv=2020&sig=abc"


def zip_extractor(archive_path, outdir):
    os.makedirs(outdir, exist_ok=True)
    with zipfile.ZipFile(archive_path) as archive:
        archive.extractall(outdir)
    return outdir


def _write(path: Path, content: bytes = b"x") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def _write_zip(path: Path, entries: dict) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return path


def make_artifact_tree(root: Path, with_extensions: bool = True, country: str = "us"):
    app = root / "app"
    platform = root / "platform"

    modern_dev = platform / "ModernDev" / "program files" / "Microsoft Dynamics NAV" / "170" / "AL Development Environment"
    _write(modern_dev / "System.app")
    _write_zip(
        modern_dev / "ALLanguage.vsix",
        {"extension/bin/linux/alc": "#!/bin/sh\n", "extension/bin/win32/alc.exe": "exe"},
    )

    service = platform / "ServiceTier" / "program files" / "Microsoft Dynamics NAV" / "170" / "Service"
    _write(service / "Microsoft.Dynamics.Nav.Ncl.dll")
    _write(service / "DocumentFormat.OpenXml.dll")
    _write(service / "Microsoft.Dynamics.Nav.Server.exe")
    _write(service / "Management" / "Microsoft.Dynamics.Nav.Management.dll")
    _write(service / "WindowsServiceInstaller" / "Installer.dll")
    _write(service / "SideServices" / "Side.dll")
    _write(service / "Reporting" / "Microsoft.Reporting.dll")

    _write(platform / "Test Assemblies" / "Mock Assemblies" / "Mock.dll")

    applications = platform / "Applications"
    _write(applications / "BaseApp" / "Source" / "Microsoft_Base Application.app")
    _write(applications / "TestFramework" / "Microsoft_Tests-TestLibraries.app")
    _write(applications / "TestFramework" / "Microsoft_TestRunner-Internal.app")
    _write_zip(applications / "BaseApp" / "Source" / "Base Application.Source.zip", {"Codeunit.al": "codeunit"})

    app.mkdir(parents=True, exist_ok=True)
    if with_extensions:
        _write(app / "Extensions" / "Microsoft_Base Application_17.0.0.0.app")
        _write(app / "Extensions" / "Microsoft_System Application_17.0.0.0.app")
    _write_zip(
        app / f"Applications.{country}" / "BaseApp" / "Source" / "Base Application.Source.zip",
        {"Country.al": "codeunit"},
    )
    return str(app), str(platform)


class FakeDownloader:
    def __init__(self, root: Path, **tree_options):
        self.root = root
        self.tree_options = tree_options
        self.calls = []

    def download(self, artifact, include_platform=True):
        self.calls.append((artifact.url, include_platform))
        return make_artifact_tree(self.root, **self.tree_options)


@pytest.fixture
def app_settings(tmp_path):
    return AppSettings(
        helper=HelperSettings(host_helper_folder=str(tmp_path / "helper")),
        artifacts=ArtifactSettings(cache_folder=str(tmp_path / "artifacts")),
        compiler=CompilerSettings(elevate_chmod=False),
    )


@pytest.fixture
def downloader(tmp_path):
    return FakeDownloader(tmp_path / "payload")
