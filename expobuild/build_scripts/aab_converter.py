#
# Copyright 2024 expobuild Project Authors. All rights reserved.
# Use of this source code is governed by a MIT-style
# license that can be found at
#
# https://opensource.org/license/MIT
#
# The above copyright notice and this permission
# notice shall be included in all copies or
# substantial portions of the Software.

"""
Convert an Android App Bundle (.aab) into a single installable APK.

Uses bundletool in universal mode:

    java -jar bundletool-all.jar build-apks --bundle=app.aab \\
        --output=app.apks --mode=universal

The resulting .apks file is a zip holding universal.apk, which is copied to
<output_dir>/app-universal.apk. bundletool is downloaded once into the per-user
tools directory (~/.expobuild/tools by default).
"""

import contextlib
import os
import shutil
import zipfile
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from expobuild.errors import (
    DownloadFailed,
    ExpansionFailed,
    ExtractionUnavailable,
    PrerequisiteMissing,
    SourceNotFound,
    UniversalVariantMissing,
)
from expobuild.utils.cmd.cmd_util import CommandFailed, CommandNotFound, CommandRunner
from expobuild.utils.config import BundletoolConfig, SigningConfig
from expobuild.utils.console import print_status, print_success, print_warning
from expobuild.utils.context.context import ProjectContext

UNIVERSAL_APK_NAME = "universal.apk"
OUTPUT_APK_NAME = "app-universal.apk"
EXTRACT_DIR_NAME = "temp_apks"


@dataclass
class ConversionJob:
    archive_path: Path
    output_dir: Path

    @property
    def intermediate_path(self) -> Path:
        # bundletool requires the output to end with .apks and not exist yet
        return self.output_dir / f"{self.archive_path.stem}.apks"

    @property
    def extract_dir(self) -> Path:
        return self.output_dir / EXTRACT_DIR_NAME

    @property
    def final_path(self) -> Path:
        return self.output_dir / OUTPUT_APK_NAME

    def cleanup(self):
        if self.extract_dir.exists():
            shutil.rmtree(self.extract_dir, ignore_errors=True)
        # a locked file must not mask the error that ended the job
        with contextlib.suppress(OSError):
            self.intermediate_path.unlink(missing_ok=True)


def find_file_bfs(root: Path, predicate) -> Optional[Path]:
    """
    Breadth-first search for the first file under root matching predicate.

    Entries of a directory are visited in name order so the result is stable.
    """
    if not root.is_dir():
        return None
    queue = deque([root])
    while queue:
        current = queue.popleft()
        try:
            entries = sorted(current.iterdir(), key=lambda p: p.name)
        except OSError:
            continue
        for entry in entries:
            if entry.is_file() and predicate(entry):
                return entry
        queue.extend(entry for entry in entries if entry.is_dir())
    return None


class ToolDownloader:
    """Download files with curl, or wget when curl is not installed"""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def _command(self, url: str, dest: Path):
        if self.runner.exists("curl"):
            return "curl", ["-fL", "-o", str(dest), url]
        if self.runner.exists("wget"):
            return "wget", ["-O", str(dest), url]
        return None

    def download(self, url: str, dest: Path) -> Path:
        command = self._command(url, dest)
        if command is None:
            raise DownloadFailed("Neither curl nor wget is available to download " + url)

        dest.parent.mkdir(parents=True, exist_ok=True)
        print_status(f"Downloading from {url}...")
        program, args = command
        try:
            self.runner.run(program, args)
        except (CommandFailed, CommandNotFound) as e:
            if dest.exists():
                dest.unlink()
            raise DownloadFailed(f"Download of {url} failed: {e}")
        if not dest.is_file():
            raise DownloadFailed(f"{program} reported success but {dest} was not written")
        print_success(f"Downloaded to {dest}")
        return dest


class AabConverter:
    def __init__(
        self,
        context: ProjectContext,
        runner: CommandRunner,
        bundletool: Optional[BundletoolConfig] = None,
        signing: Optional[SigningConfig] = None,
        downloader: Optional[ToolDownloader] = None,
    ):
        self.context = context
        self.runner = runner
        self.bundletool = bundletool or BundletoolConfig()
        self.signing = signing or SigningConfig()
        self.downloader = downloader or ToolDownloader(runner)

    @property
    def tool_path(self) -> Path:
        return self.context.tools_path / self.bundletool.jar_name

    def ensure_tool(self) -> Path:
        """Return the cached bundletool jar, downloading it on first use"""
        if self.tool_path.is_file():
            return self.tool_path
        print_warning(f"bundletool {self.bundletool.version} not found. Downloading...")
        return self.downloader.download(self.bundletool.download_url, self.tool_path)

    def signing_args(self) -> List[str]:
        if not self.signing.enabled:
            return []
        keystore = Path(self.signing.keystore)
        if not keystore.is_absolute():
            keystore = self.context.path(keystore)
        args = [f"--ks={keystore}", f"--ks-key-alias={self.signing.key_alias}"]
        if self.signing.keystore_password:
            args.append(f"--ks-pass=pass:{self.signing.keystore_password}")
        if self.signing.key_password:
            args.append(f"--key-pass=pass:{self.signing.key_password}")
        return args

    def _expand(self, tool: Path, job: ConversionJob):
        args = [
            "-jar", str(tool), "build-apks",
            f"--bundle={job.archive_path}",
            f"--output={job.intermediate_path}",
            "--mode=universal",
        ] + self.signing_args()
        try:
            self.runner.run("java", args)
        except CommandNotFound:
            raise PrerequisiteMissing("Java is not installed. bundletool needs a Java runtime.")
        except CommandFailed as e:
            raise ExpansionFailed(f"bundletool build-apks failed with exit code {e.exit_code}")
        if not job.intermediate_path.is_file():
            raise ExpansionFailed(f"bundletool did not produce {job.intermediate_path.name}")

    def _extract(self, job: ConversionJob):
        try:
            with zipfile.ZipFile(job.intermediate_path, "r") as zip_ref:
                zip_ref.extractall(job.extract_dir)
        except (zipfile.BadZipFile, OSError) as e:
            raise ExtractionUnavailable(f"Cannot extract {job.intermediate_path.name}: {e}")

    def convert(self, archive_path, output_dir) -> Path:
        """
        Convert an .aab into <output_dir>/app-universal.apk.

        Args:
            archive_path: Path of the Android App Bundle
            output_dir: Directory receiving the APK, created when missing

        Returns:
            Path of the universal APK

        Raises:
            SourceNotFound, DownloadFailed, ExpansionFailed,
            ExtractionUnavailable, UniversalVariantMissing
        """
        archive_path = Path(archive_path)
        if not archive_path.is_absolute():
            archive_path = self.context.path(archive_path)
        if not archive_path.is_file():
            raise SourceNotFound(f"AAB file not found: {archive_path}")

        output_dir = Path(output_dir)
        if not output_dir.is_absolute():
            output_dir = self.context.path(output_dir)

        print_status(f"Converting {archive_path.name} to a universal APK...")
        tool = self.ensure_tool()

        output_dir.mkdir(parents=True, exist_ok=True)
        job = ConversionJob(archive_path, output_dir)
        job.cleanup()
        try:
            self._expand(tool, job)
            self._extract(job)
            universal = find_file_bfs(job.extract_dir, lambda p: p.name == UNIVERSAL_APK_NAME)
            if universal is None:
                raise UniversalVariantMissing(f"{UNIVERSAL_APK_NAME} not found in {job.intermediate_path.name}")
            shutil.copyfile(universal, job.final_path)
        finally:
            job.cleanup()

        size_mb = os.path.getsize(job.final_path) / (1024 * 1024)
        print_success(f"APK created: {job.final_path} ({size_mb:.1f} MB)")
        return job.final_path
