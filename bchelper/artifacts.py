"""
Artifact references and the artifact payload cache.

An artifact URL has the shape ``https://<host>/<type>/<version>/<country>``
optionally followed by a query string (a SAS token). The application payload
lives at that URL, the platform payload at the same URL with the country
replaced by ``platform``.
"""

import json
import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from pydantic import BaseModel

from .archive import extract_archive
from .config import ArtifactSettings
from .errors import InvalidArgument
from .resource_resolver import ResourceResolver

logger = logging.getLogger(__name__)

VersionInfo = Tuple[int, int, int, int]


def parse_version(value: str) -> VersionInfo:
    """Parse a dotted version of 2 to 4 numeric components, padded to 4."""
    parts = value.split(".")
    if not 2 <= len(parts) <= 4 or not all(part.isdigit() for part in parts):
        raise InvalidArgument(f"Invalid version: {value}")
    numbers = [int(part) for part in parts] + [0] * (4 - len(parts))
    return numbers[0], numbers[1], numbers[2], numbers[3]


class ArtifactReference(BaseModel):
    """A parsed artifact URL."""

    url: str
    type: str
    version: str
    country: str

    @classmethod
    def parse(cls, artifact_url: str) -> "ArtifactReference":
        """
        Parse an artifact URL.

        Args:
            artifact_url: URL such as https://host/sandbox/17.0.0.0/us?sv=...

        Returns:
            ArtifactReference: The validated reference

        Raises:
            InvalidArgument: If the URL has fewer than 6 segments or a bad version
        """
        if not artifact_url:
            raise InvalidArgument("Artifact URL is empty")

        parts = artifact_url.split("?")[0].split("/")
        if len(parts) < 6:
            raise InvalidArgument(f"Invalid artifact URL: {artifact_url}")

        artifact_type, version, country = parts[3], parts[4], parts[5]
        if not artifact_type or not country:
            raise InvalidArgument(f"Invalid artifact URL: {artifact_url}")
        parse_version(version)

        return cls(url=artifact_url, type=artifact_type, version=version, country=country)

    @property
    def version_info(self) -> VersionInfo:
        return parse_version(self.version)

    @property
    def default_folder_name(self) -> str:
        return f"{self.type}-{self.version}-{self.country}"

    @property
    def platform_url(self) -> str:
        base, sep, query = self.url.partition("?")
        parts = base.split("/")
        parts[5] = "platform"
        return "/".join(parts) + sep + query


class ArtifactDownloader:
    """
    Downloads application and platform payloads into the artifact cache.

    Payload folders that already exist are reused without network access.
    """

    def __init__(
        self,
        artifact_settings: Optional[ArtifactSettings] = None,
        resolver: Optional[ResourceResolver] = None,
        extractor: Optional[Callable[[str, str], str]] = None,
    ):
        """
        Initialize the downloader.

        Args:
            artifact_settings: Cache folder and download settings
            resolver: Resource resolver used for the actual download
            extractor: Archive extraction function (archive_path, outdir)
        """
        self.settings = artifact_settings or ArtifactSettings()
        self.resolver = resolver or ResourceResolver(self.settings)
        self.extractor = extractor or extract_archive

    def payload_folder(self, artifact: ArtifactReference, country: str) -> str:
        return os.path.join(
            self.settings.cache_folder, artifact.type, artifact.version, country
        )

    def download(
        self, artifact: ArtifactReference, include_platform: bool = True
    ) -> Tuple[str, Optional[str]]:
        """
        Make sure the payloads of an artifact are present in the cache.

        Args:
            artifact: The artifact to download
            include_platform: Whether to download the platform payload as well

        Returns:
            Tuple[str, Optional[str]]: Application and platform payload folders
        """
        app_path = self.payload_folder(artifact, artifact.country)
        self._ensure_payload(artifact.url, app_path)

        if not include_platform:
            return app_path, None

        platform_url = self._manifest_platform_url(app_path) or artifact.platform_url
        platform_path = self.payload_folder(artifact, "platform")
        self._ensure_payload(platform_url, platform_path)

        return app_path, platform_path

    def _manifest_platform_url(self, app_path: str) -> Optional[str]:
        manifest_path = os.path.join(app_path, "manifest.json")
        if not os.path.isfile(manifest_path):
            return None
        with open(manifest_path, "r", encoding="utf-8-sig") as f:
            manifest = json.load(f)
        return manifest.get("platformUrl") or None

    def _ensure_payload(self, url: str, folder: str) -> None:
        if os.path.isdir(folder):
            logger.info(f"Reusing cached payload {folder}")
            self._touch_last_used(folder)
            return

        temp_dir = tempfile.mkdtemp()
        try:
            archive_path = os.path.join(temp_dir, "payload.zip")
            self.resolver.fetch(url, archive_path)
            try:
                self.extractor(archive_path, folder)
            except Exception:
                # A half extracted payload would be reused on the next run
                shutil.rmtree(folder, ignore_errors=True)
                raise
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

        self._touch_last_used(folder)

    def _touch_last_used(self, folder: str) -> None:
        with open(os.path.join(folder, "lastused"), "w", encoding="utf-8") as f:
            f.write(datetime.now(timezone.utc).isoformat())
