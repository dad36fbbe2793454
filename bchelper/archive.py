"""
Archive extraction for artifact payloads and compiler packages.
"""

import logging
import os

import patoolib
from patoolib.util import PatoolError

from .errors import ExternalToolFailure

logger = logging.getLogger(__name__)


def extract_archive(archive_path: str, outdir: str) -> str:
    """
    Extract an archive into a directory.

    Args:
        archive_path: Path to the archive (zip, 7z, rar, ...)
        outdir: Directory receiving the extracted files, created if missing

    Returns:
        str: The output directory

    Raises:
        FileNotFoundError: If the archive does not exist
        ExternalToolFailure: If the extraction program fails
    """
    if not os.path.isfile(archive_path):
        raise FileNotFoundError(f"Archive not found: {archive_path}")

    os.makedirs(outdir, exist_ok=True)
    logger.info(f"Extracting {os.path.basename(archive_path)} to {outdir}")

    try:
        patoolib.extract_archive(
            archive_path, outdir=outdir, verbosity=-1, interactive=False
        )
    except PatoolError as e:
        raise ExternalToolFailure(
            f"Failed to extract {archive_path}: {str(e)}"
        ) from e

    return outdir
