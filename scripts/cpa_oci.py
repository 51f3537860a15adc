#!/usr/bin/env python3
"""
Cola Package Action - OCI Registry Push

Pushes the generated .pkg archives to an OCI registry with the ORAS CLI.
Each archive becomes <registry>/<namespace>/<name>:<version> and is also
tagged 'latest'. Versions already present in the registry are skipped
unless force_release is set, in which case they are overwritten.
"""

from __future__ import annotations

import platform
import subprocess
import sys
import tarfile
import tempfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import requests

from cpa_common import (
    ARCHIVE_SUFFIX,
    ActionLogger,
    RegistryError,
    mask_secret,
    run,
)
from cpa_manifest import parse_package_archive_name, sanitize_name

ORAS_VERSION = "1.1.0"
ORAS_DOWNLOAD_URL = (
    "https://github.com/oras-project/oras/releases/download/v{version}/oras_{version}_{os}_{arch}.tar.gz"
)

Runner = Callable[..., subprocess.CompletedProcess[str]]


@dataclass
class OCIPushResult:
    pushed_count: int = 0
    skipped_count: int = 0


# ---------------------------------------------------------------------------
# ORAS installation
# ---------------------------------------------------------------------------
def oras_platform() -> tuple[str, str]:
    """(os, arch) pair as used in ORAS release asset names."""
    os_name = "darwin" if sys.platform == "darwin" else "windows" if sys.platform.startswith("win") else "linux"
    machine = platform.machine().lower()
    arch = {"x86_64": "amd64", "amd64": "amd64", "aarch64": "arm64", "arm64": "arm64"}.get(machine, machine)
    return os_name, arch


def install_oras(
    install_dir: Path | str | None = None,
    version: str = ORAS_VERSION,
    log: ActionLogger | None = None,
) -> Path:
    """Download the ORAS release for this platform and extract the binary.

    Returns:
        Path to the extracted oras executable

    Raises:
        RegistryError: if the download or extraction fails
    """
    log = log or ActionLogger()
    os_name, arch = oras_platform()
    url = ORAS_DOWNLOAD_URL.format(version=version, os=os_name, arch=arch)
    target_dir = Path(install_dir) if install_dir else Path(tempfile.gettempdir()) / f"oras-{version}"
    target_dir.mkdir(parents=True, exist_ok=True)
    binary = target_dir / "oras"

    log.info(f"Downloading ORAS from: {url}")
    try:
        response = requests.get(url, timeout=120, stream=True)
        response.raise_for_status()
        with tempfile.TemporaryFile() as tmp:
            for chunk in response.iter_content(chunk_size=65536):
                tmp.write(chunk)
            tmp.seek(0)
            with tarfile.open(fileobj=tmp, mode="r:gz") as tar:
                member = tar.extractfile("oras")
                if member is None:
                    raise RegistryError(f"ORAS archive from {url} does not contain an oras binary")
                binary.write_bytes(member.read())
    except (requests.RequestException, tarfile.TarError, KeyError, OSError) as e:
        raise RegistryError(f"Failed to install ORAS: {e}") from e

    binary.chmod(0o755)
    log.success("ORAS installed successfully")
    return binary


# ---------------------------------------------------------------------------
# ORAS client
# ---------------------------------------------------------------------------
class OrasClient:
    """Thin wrapper over the oras executable."""

    def __init__(
        self,
        executable: str = "oras",
        runner: Runner = run,
        log: ActionLogger | None = None,
        install_dir: Path | str | None = None,
    ) -> None:
        self.executable = executable
        self._run = runner
        self.log = log or ActionLogger()
        self.install_dir = install_dir

    def _oras(
        self, *args: str, cwd: Path | str | None = None, input_text: str | None = None
    ) -> subprocess.CompletedProcess[str]:
        return self._run([self.executable, *args], cwd=cwd, input_text=input_text)

    def ensure_installed(self) -> None:
        try:
            result = self._oras("version")
        except FileNotFoundError:
            result = None
        if result is not None and result.returncode == 0:
            self.log.info("✓ ORAS is installed")
            return
        self.log.info("ORAS not found, installing...")
        self.executable = str(install_oras(self.install_dir, log=self.log))

    def login(self, registry: str, username: str, token: str) -> None:
        self.log.info("Authenticating to OCI registry...")
        # ghcr.io/owner -> ghcr.io
        hostname = registry.split("/")[0]
        self.log.mask(token)
        self.log.info(f"Command: oras login {hostname} -u {username} --password-stdin")
        self.log.info(f"Token: {mask_secret(token)}")

        result = self._oras("login", hostname, "-u", username, "--password-stdin", input_text=token)
        if result.returncode != 0:
            raise RegistryError(f"oras login to {hostname} failed: {result.stderr.strip()}")
        self.log.success("Authentication successful")

    def logout(self, registry: str) -> None:
        hostname = registry.split("/")[0]
        result = self._oras("logout", hostname)
        if result.returncode != 0:
            self.log.warning(f"oras logout from {hostname} failed: {result.stderr.strip()}")

    def manifest_exists(self, reference: str, tag: str) -> bool:
        self.log.info(f"Checking if OCI tag exists: {reference}:{tag}")
        try:
            result = self._oras("manifest", "fetch", f"{reference}:{tag}")
        except OSError as e:
            self.log.error(f"Error checking OCI tag existence: {e}")
            return False
        self.log.info(f"ORAS manifest fetch exit code: {result.returncode}")
        exists = result.returncode == 0
        self.log.info(f"Tag {reference}:{tag} {'EXISTS' if exists else 'NOT FOUND'}")
        return exists

    def push(self, reference: str, tag: str, archive_path: Path, annotations: list[str]) -> None:
        args = ["push", f"{reference}:{tag}", f"{archive_path.name}:application/zip"]
        for annotation in annotations:
            args += ["--annotation", annotation]

        self.log.info(f"Command: oras {' '.join(args)}")
        self.log.info(f"Working directory: {archive_path.parent}")
        result = self._oras(*args, cwd=archive_path.parent)
        if result.returncode != 0:
            raise RegistryError(f"oras push {reference}:{tag} failed: {result.stderr.strip()}")

    def tag(self, reference: str, source_tag: str, target_tag: str) -> None:
        self.log.info(f"Command: oras tag {reference}:{source_tag} {target_tag}")
        result = self._oras("tag", f"{reference}:{source_tag}", target_tag)
        if result.returncode != 0:
            raise RegistryError(f"oras tag {reference}:{target_tag} failed: {result.stderr.strip()}")


# ---------------------------------------------------------------------------
# Push step
# ---------------------------------------------------------------------------
def oci_reference(registry: str, namespace: str, package_name: str) -> str:
    """registry/namespace/name, without an empty segment when namespace is blank."""
    safe_name = sanitize_name(package_name)
    return f"{registry}/{namespace}/{safe_name}" if namespace else f"{registry}/{safe_name}"


def build_annotations(package_name: str, version: str, reference: str, repository: str | None) -> list[str]:
    annotations = [
        f"org.opencontainers.image.title={package_name}",
        f"org.opencontainers.image.version={version}",
        "org.opencontainers.image.description=Command Launcher Package - "
        f"Install: cdt package install --file oci://{reference}:{version}",
        "com.github.package.type=cdt_package",
    ]
    # Links the package to its GitHub repository
    if repository:
        annotations.append(f"org.opencontainers.image.source=https://github.com/{repository}")
    return annotations


def push_to_oci(
    output_directory: Path | str,
    registry: str,
    packages_namespace: str,
    username: str,
    token: str,
    repository: str | None = None,
    force_release: bool = False,
    log: ActionLogger | None = None,
    client: OrasClient | None = None,
) -> OCIPushResult:
    """Push every .pkg archive in output_directory to the registry.

    Raises:
        RegistryError: if no archive exists or any oras command fails
    """
    log = log or ActionLogger()
    client = client or OrasClient(log=log)
    output_dir = Path(output_directory)

    log.header("Pushing Packages to OCI Registry")
    log.info(f"Output Directory: {output_dir}")
    log.info(f"Registry: {registry}")
    log.info(f"Packages Namespace: {packages_namespace}")
    log.info(f"Username: {username}")
    if repository:
        log.info(f"Repository: {repository} (packages will be linked to this repo)")

    client.ensure_installed()
    client.login(registry, username, token)

    try:
        archives = sorted(p for p in output_dir.glob(f"*{ARCHIVE_SUFFIX}") if p.is_file())
        if not archives:
            raise RegistryError(f"No .pkg files found in {output_dir}")

        log.info(f"Found {len(archives)} .pkg file(s) to push")

        result = OCIPushResult()
        for archive in archives:
            with log.group(f"Processing: {archive.name}"):
                parsed = parse_package_archive_name(archive.name)
                if parsed is None:
                    log.warning(f"Skipping {archive.name}: Invalid filename format (expected: name-version.pkg)")
                    result.skipped_count += 1
                    continue

                package_name, version = parsed
                reference = oci_reference(registry, packages_namespace, package_name)
                log.info(f"Package: {package_name}")
                log.info(f"Version: {version}")
                log.info(f"OCI Reference: {reference}:{version}")

                if client.manifest_exists(reference, version):
                    if not force_release:
                        log.warning(f"Version {version} already exists in registry: {reference}:{version}")
                        log.warning("Skipping push (already published)")
                        result.skipped_count += 1
                        continue
                    log.warning(f"Version {version} already exists in registry, will override due to force-release")
                    log.info(f"Overriding: {reference}:{version}")
                else:
                    log.info(f"Version {version} not found in registry, will push...")

                try:
                    annotations = build_annotations(package_name, version, reference, repository)
                    client.push(reference, version, archive, annotations)
                    client.tag(reference, version, "latest")
                except RegistryError as e:
                    log.error(f"Failed to push {archive.name}: {e}")
                    raise

                log.success(f"✅ Pushed: {reference}:{version}")
                log.success(f"✅ Tagged: {reference}:latest")
                result.pushed_count += 1
    finally:
        client.logout(registry)

    log.header("OCI Push Summary")
    log.info(f"Packages pushed: {result.pushed_count}")
    log.info(f"Packages skipped: {result.skipped_count}")
    log.info(f"Total processed: {result.pushed_count + result.skipped_count}")

    log.success("✅ OCI push completed successfully")
    if result.skipped_count > 0 and not force_release:
        log.info("Note: Versions already in registry were skipped (not an error)")
    if force_release and result.pushed_count > 0:
        log.info("Note: Existing versions were overridden due to force-release")

    return result
