"""
Compiler folder assembly.

A compiler folder holds everything needed to compile AL extensions without
a running container: the compiler (``compiler/``), symbol packages
(``symbols/``) and the service tier assemblies the compiler references
(``dlls/``). It is assembled from the application and platform payloads of
an artifact, optionally through a cache folder shared between builds.
"""

import fnmatch
import glob
import logging
import os
import shutil
import subprocess
import tempfile
from typing import Any, Callable, Dict, List, Optional

from .archive import extract_archive
from .artifacts import ArtifactDownloader, ArtifactReference
from .config import AppSettings, settings as default_settings
from .errors import ExternalToolFailure, InvalidArgument, SourceNotFound, UnsupportedVersion
from .resource_resolver import ResourceResolver
from .telemetry import trace, traced

logger = logging.getLogger(__name__)

MINIMUM_VERSION = (16, 0, 0, 0)

MODERN_DEV_FOLDER = "ModernDev/program files/Microsoft Dynamics NAV/*/AL Development Environment"
SERVICE_TIER_FOLDER = "ServiceTier/program files/Microsoft Dynamics NAV/*/Service"
MOCK_ASSEMBLIES_FOLDER = "Test Assemblies/Mock Assemblies"

EXCLUDED_SERVICE_FOLDERS = ("Management", "WindowsServiceInstaller", "SideServices")

OPENXML_DLL = "DocumentFormat.OpenXml.dll"

TEST_PACKAGE_PATTERNS = (
    "Microsoft_Tests-*.app",
    "Microsoft_Performance Toolkit Samples*.app",
    "Microsoft_Performance Toolkit Tests*.app",
    "Microsoft_System Application Test Library*.app",
    "Microsoft_TestRunner-Internal*.app",
)

BASE_APP_SOURCE = "Base Application.Source.zip"

ALC_LINUX_PATH = ("extension", "bin", "linux", "alc")


def _resolve_single(base: str, pattern: str) -> str:
    matches = sorted(glob.glob(os.path.join(base, *pattern.split("/"))))
    if not matches:
        raise FileNotFoundError(f"{pattern} not found in {base}")
    return matches[0]


def _find_files(root: str, pattern: str) -> List[str]:
    """Recursively find files whose name matches a pattern, case-insensitively."""
    found = []
    pattern = pattern.lower()
    for directory, _, files in os.walk(root):
        for name in sorted(files):
            if fnmatch.fnmatchcase(name.lower(), pattern):
                found.append(os.path.join(directory, name))
    return found


def _copy_filtered_tree(
    source: str, destination: str, pattern: str, exclude: tuple = ()
) -> None:
    """Copy ``source`` as a subfolder of ``destination``, keeping only matching files."""
    source = os.path.normpath(source)
    pattern = pattern.lower()

    def ignore(directory: str, names: List[str]) -> List[str]:
        ignored = []
        for name in names:
            if os.path.isdir(os.path.join(directory, name)):
                if os.path.normpath(directory) == source and name in exclude:
                    ignored.append(name)
            elif not fnmatch.fnmatchcase(name.lower(), pattern):
                ignored.append(name)
        return ignored

    shutil.copytree(
        source,
        os.path.join(destination, os.path.basename(source)),
        ignore=ignore,
        dirs_exist_ok=True,
    )


def _copy_folders_and_files(source: str, destination: str) -> None:
    shutil.copytree(source, destination, dirs_exist_ok=True)


def _is_empty_folder(path: str) -> bool:
    return not os.path.isdir(path) or not any(os.scandir(path))


class CompilerFolderBuilder:
    """
    Builds compiler folders from artifact URLs.

    All collaborators can be injected; by default artifacts are downloaded
    through ArtifactDownloader and archives extracted with patool.
    """

    def __init__(
        self,
        app_settings: Optional[AppSettings] = None,
        downloader: Optional[ArtifactDownloader] = None,
        resolver: Optional[ResourceResolver] = None,
        extractor: Optional[Callable[[str, str], str]] = None,
        progress_callback: Optional[Callable[[str, str, Dict[str, Any]], None]] = None,
        posix: Optional[bool] = None,
    ):
        """
        Initialize the builder.

        Args:
            app_settings: Application settings, defaults to the module settings
            downloader: Artifact payload downloader
            resolver: Resource resolver used to fetch vsix files
            extractor: Archive extraction function (archive_path, outdir)
            progress_callback: Callback for progress updates
            posix: Whether the host is POSIX-like, detected when omitted
        """
        self.settings = app_settings or default_settings
        self.resolver = resolver or ResourceResolver(self.settings.artifacts)
        self.extractor = extractor or extract_archive
        self.downloader = downloader or ArtifactDownloader(
            self.settings.artifacts, resolver=self.resolver, extractor=self.extractor
        )
        self.progress_callback = progress_callback or (lambda *args: None)
        self.posix = os.name == "posix" if posix is None else posix

    @traced("new-compiler-folder")
    def build(
        self,
        artifact_url: str,
        container_name: str = "",
        cache_folder: Optional[str] = None,
        packages_folder: Optional[str] = None,
        vsix_file: Optional[str] = None,
        include_al: bool = False,
    ) -> str:
        """
        Build a compiler folder for an artifact.

        Args:
            artifact_url: Artifact URL (type, version and country segments)
            container_name: Folder name, defaults to type-version-country
            cache_folder: Optional folder caching symbols, compiler and dlls
            packages_folder: Optional folder receiving a copy of all symbols
            vsix_file: Optional compiler package replacing the artifact's compiler
            include_al: Whether to extract the Base Application source as well

        Returns:
            str: Path of the compiler folder

        Raises:
            InvalidArgument: For a malformed artifact URL
            UnsupportedVersion: For artifacts older than 16.0
            SourceNotFound: If the Base Application source cannot be located
            ExternalToolFailure: For download or extraction failures
        """
        artifact = ArtifactReference.parse(artifact_url)
        if artifact.version_info < MINIMUM_VERSION:
            raise UnsupportedVersion(
                f"Compiling without a container is not supported for version {artifact.version}, 16.0 or later is required"
            )

        name = container_name or artifact.default_folder_name
        compiler_folder = self._compiler_folder_path(name)
        self._recreate_folder(compiler_folder)

        cache_root = cache_folder or compiler_folder
        symbols_path = os.path.join(cache_root, "symbols")
        compiler_path = os.path.join(cache_root, "compiler")
        dlls_path = os.path.join(cache_root, "dlls")

        populate_cache = not os.path.isdir(symbols_path)
        app_path = platform_path = None
        if include_al or populate_cache:
            self.progress_callback(
                "processing",
                "Downloading artifacts",
                {"step": "downloading", "artifact": artifact.default_folder_name},
            )
            app_path, platform_path = self.downloader.download(
                artifact, include_platform=True
            )

        if include_al:
            self._ensure_al_source(artifact, app_path, platform_path)

        if populate_cache:
            # A shared cache always holds the artifact compiler for builds without a vsix
            self._populate(
                app_path,
                platform_path,
                symbols_path,
                compiler_path,
                dlls_path,
                unpack_compiler=bool(cache_folder) or not vsix_file,
            )

        target_compiler_path = os.path.join(compiler_folder, "compiler")
        if vsix_file:
            self._unpack_vsix(vsix_file, target_compiler_path)

        if cache_folder:
            self.progress_callback(
                "processing", "Copying from cache", {"step": "cache", "cache_folder": cache_folder}
            )
            _copy_folders_and_files(dlls_path, os.path.join(compiler_folder, "dlls"))
            _copy_folders_and_files(symbols_path, os.path.join(compiler_folder, "symbols"))
            if not vsix_file:
                _copy_folders_and_files(compiler_path, target_compiler_path)

        if packages_folder:
            os.makedirs(packages_folder, exist_ok=True)
            _copy_folders_and_files(symbols_path, packages_folder)

        if self.posix:
            self._grant_execute(os.path.join(target_compiler_path, *ALC_LINUX_PATH))

        trace("Compiler folder ready", compiler_folder=compiler_folder)
        return compiler_folder

    @traced("remove-compiler-folder")
    def remove(self, compiler_folder: str) -> None:
        """
        Remove a compiler folder created by :meth:`build`.

        Raises:
            InvalidArgument: If the folder is not inside the compiler root
        """
        target = os.path.realpath(compiler_folder)
        if not self._is_inside_compiler_root(target):
            raise InvalidArgument(f"{compiler_folder} is not a compiler folder")
        if not os.path.isdir(target):
            raise InvalidArgument(f"Compiler folder {compiler_folder} does not exist")

        shutil.rmtree(target)
        logger.info(f"Removed compiler folder {target}")

    def _is_inside_compiler_root(self, path: str) -> bool:
        root = os.path.realpath(self.settings.helper.compiler_root)
        return os.path.dirname(os.path.realpath(path)) == root

    def _compiler_folder_path(self, name: str) -> str:
        """Compiler folder for a name; the name must be a single path component."""
        if (
            os.path.isabs(name)
            or "/" in name
            or "\\" in name
            or name in (".", "..")
            or ".." in name
        ):
            raise InvalidArgument(f"Invalid compiler folder name: {name}")

        compiler_folder = os.path.join(self.settings.helper.compiler_root, name)
        if not self._is_inside_compiler_root(compiler_folder):
            raise InvalidArgument(f"Invalid compiler folder name: {name}")
        return compiler_folder

    def _recreate_folder(self, path: str) -> None:
        if os.path.exists(path):
            logger.info(f"Removing existing folder {path}")
            shutil.rmtree(path, ignore_errors=True)
        os.makedirs(path, exist_ok=True)

    def _ensure_al_source(
        self, artifact: ArtifactReference, app_path: str, platform_path: str
    ) -> None:
        al_folder = os.path.join(
            self.settings.helper.extensions_root,
            f"Original-{artifact.version}-{artifact.country}-al",
        )
        if not _is_empty_folder(al_folder):
            return

        os.makedirs(al_folder, exist_ok=True)
        country_applications = os.path.join(app_path, f"Applications.{artifact.country}")
        if os.path.isdir(country_applications):
            candidates = _find_files(country_applications, BASE_APP_SOURCE)
        else:
            candidates = _find_files(os.path.join(platform_path, "Applications"), BASE_APP_SOURCE)

        if len(candidates) != 1:
            raise SourceNotFound(
                f"Unable to locate a single {BASE_APP_SOURCE}, found {len(candidates)}"
            )

        self.progress_callback(
            "processing",
            "Extracting Base Application source",
            {"step": "al_source", "destination": al_folder},
        )
        self.extractor(candidates[0], al_folder)

    def _populate(
        self,
        app_path: str,
        platform_path: str,
        symbols_path: str,
        compiler_path: str,
        dlls_path: str,
        unpack_compiler: bool,
    ) -> None:
        self.progress_callback(
            "processing", "Populating symbols, compiler and dlls", {"step": "populating"}
        )
        for path in (symbols_path, compiler_path, dlls_path):
            os.makedirs(path, exist_ok=True)

        modern_dev_folder = _resolve_single(platform_path, MODERN_DEV_FOLDER)
        shutil.copy2(os.path.join(modern_dev_folder, "System.app"), symbols_path)

        if unpack_compiler:
            self._unpack_compiler_package(
                os.path.join(modern_dev_folder, "ALLanguage.vsix"), compiler_path
            )

        service_tier_folder = _resolve_single(platform_path, SERVICE_TIER_FOLDER)
        _copy_filtered_tree(
            service_tier_folder, dlls_path, "*.dll", exclude=EXCLUDED_SERVICE_FOLDERS
        )

        openxml_path = os.path.join(dlls_path, "OpenXML")
        os.makedirs(openxml_path, exist_ok=True)
        openxml_dll = os.path.join(dlls_path, "Service", OPENXML_DLL)
        if os.path.isfile(openxml_dll):
            shutil.copy2(openxml_dll, openxml_path)

        mock_assemblies_folder = os.path.join(platform_path, *MOCK_ASSEMBLIES_FOLDER.split("/"))
        if not os.path.isdir(mock_assemblies_folder):
            raise FileNotFoundError(f"{MOCK_ASSEMBLIES_FOLDER} not found in {platform_path}")
        _copy_filtered_tree(mock_assemblies_folder, dlls_path, "*.dll")

        platform_applications = os.path.join(platform_path, "Applications")
        extensions_folder = os.path.join(app_path, "Extensions")
        if os.path.isdir(extensions_folder):
            packages = [
                os.path.join(extensions_folder, name)
                for name in sorted(os.listdir(extensions_folder))
                if name.lower().endswith(".app")
            ]
            for pattern in TEST_PACKAGE_PATTERNS:
                packages.extend(_find_files(platform_applications, pattern))
        else:
            packages = _find_files(platform_applications, "*.app")

        for package in packages:
            shutil.copy2(package, symbols_path)
        logger.info(f"Copied {len(packages)} packages to {symbols_path}")

    def _unpack_compiler_package(self, package_path: str, destination: str) -> None:
        """Extract a compiler package (vsix) through a temporary zip copy."""
        temp_dir = tempfile.mkdtemp()
        try:
            temp_zip = os.path.join(temp_dir, "alc.zip")
            shutil.copyfile(package_path, temp_zip)
            self.extractor(temp_zip, destination)
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    def _unpack_vsix(self, vsix_file: str, destination: str) -> None:
        self.progress_callback(
            "processing", "Unpacking compiler package", {"step": "vsix", "vsix_file": vsix_file}
        )
        temp_dir = tempfile.mkdtemp()
        try:
            temp_zip = os.path.join(temp_dir, "alc.zip")
            self.resolver.fetch(vsix_file, temp_zip)
            self.extractor(temp_zip, destination)
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    def _grant_execute(self, path: str) -> None:
        if not os.path.isfile(path):
            logger.warning(f"Compiler executable not found: {path}")
            return

        if not self.settings.compiler.elevate_chmod:
            os.chmod(path, os.stat(path).st_mode | 0o111)
            return

        command = [*self.settings.compiler.sudo_command, "chmod", "+x", path]
        try:
            result = subprocess.run(command, capture_output=True, text=True, check=False)
        except OSError as e:
            raise ExternalToolFailure(f"Failed to run {command[0]}: {e}") from e
        if result.returncode != 0:
            raise ExternalToolFailure(
                f"Failed to grant execute permission on {path}: {result.stderr.strip()}"
            )
