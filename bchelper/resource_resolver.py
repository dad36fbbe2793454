"""
Resource resolver for the container helper.

Fetches artifact payloads and compiler packages from local paths,
file:// URIs, HTTP(S) URLs and S3 objects into a local file.
"""

import logging
import os
import shutil
import urllib.parse
from typing import Optional

import requests

from .config import ArtifactSettings
from .errors import ExternalToolFailure, InvalidArgument

logger = logging.getLogger(__name__)


class ResourceResolver:
    """Fetches resource URIs to local file paths."""

    def __init__(self, artifact_settings: Optional[ArtifactSettings] = None):
        """Initialize resolver with download settings."""
        self.settings = artifact_settings or ArtifactSettings()

    def fetch(self, resource_uri: str, destination: str) -> str:
        """Copy or download a resource to ``destination`` and return that path."""
        os.makedirs(os.path.dirname(os.path.abspath(destination)), exist_ok=True)

        # Plain paths, including Windows drive paths that urlparse reads as a scheme
        if os.path.isfile(resource_uri):
            return self._fetch_local(resource_uri, destination)

        parsed = urllib.parse.urlparse(resource_uri)

        # Dispatch based on scheme
        if parsed.scheme == "file":
            return self._fetch_file(parsed, destination)
        elif parsed.scheme in ("http", "https"):
            return self._fetch_http(parsed, destination)
        elif parsed.scheme == "s3":
            return self._fetch_s3(parsed, destination)
        elif parsed.scheme == "" or len(parsed.scheme) == 1:
            raise FileNotFoundError(f"File not found: {resource_uri}")
        else:
            raise InvalidArgument(f"Unsupported resource scheme: {parsed.scheme}")

    def _fetch_local(self, path: str, destination: str) -> str:
        logger.info(f"Copying {path} to {destination}")
        shutil.copyfile(path, destination)
        return destination

    def _fetch_file(self, parsed_uri: urllib.parse.ParseResult, destination: str) -> str:
        """Fetch a file:// URI."""
        if parsed_uri.netloc:
            # Handle Windows UNC paths or non-standard file URIs
            path = f"//{parsed_uri.netloc}{parsed_uri.path}"
        else:
            path = parsed_uri.path

        path = urllib.parse.unquote(path)

        if not os.path.isfile(path):
            raise FileNotFoundError(f"File not found: {path}")

        return self._fetch_local(path, destination)

    def _fetch_http(self, parsed_uri: urllib.parse.ParseResult, destination: str) -> str:
        """Download an HTTP(S) URI to a local file."""
        url = parsed_uri.geturl()
        logger.info(f"Downloading {parsed_uri.scheme}://{parsed_uri.netloc}{parsed_uri.path}")

        try:
            with requests.get(
                url, stream=True, timeout=self.settings.request_timeout
            ) as response:
                response.raise_for_status()
                with open(destination, "wb") as f:
                    for chunk in response.iter_content(
                        chunk_size=self.settings.chunk_size
                    ):
                        f.write(chunk)

            logger.info(f"Downloaded {parsed_uri.path} to {destination}")
            return destination

        except requests.RequestException as e:
            raise ExternalToolFailure(
                f"Failed to download {parsed_uri.netloc}{parsed_uri.path}: {str(e)}"
            ) from e

    def _fetch_s3(self, parsed_uri: urllib.parse.ParseResult, destination: str) -> str:
        """Download an S3 object to a local file."""
        try:
            import boto3
        except ImportError:
            raise ImportError("boto3 is required for S3 resource access")

        bucket = parsed_uri.netloc
        key = parsed_uri.path.lstrip("/")

        if not bucket or not key:
            raise InvalidArgument(f"Invalid S3 URI: {parsed_uri.geturl()}")

        logger.info(f"Downloading S3 object s3://{bucket}/{key}")

        # Parse query parameters for region, etc.
        params = dict(urllib.parse.parse_qsl(parsed_uri.query))
        region = params.get("region")

        try:
            s3_client = boto3.client("s3", region_name=region)
            s3_client.download_file(bucket, key, destination)

            logger.info(f"Downloaded s3://{bucket}/{key} to {destination}")
            return destination

        except Exception as e:
            raise ExternalToolFailure(f"Failed to download from S3: {str(e)}") from e
