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
Build strategy dispatcher.

Resolves a BuildRequest into one of the supported ways of producing an APK:

    cloud               eas build --platform android --profile <p>
    local               eas build --platform android --profile <p> --local
    remote-then-convert EAS cloud build of an .aab, downloaded and converted
                        to a universal APK with bundletool
    convert-only        bundletool conversion of an existing .aab

Local builds are not possible on Windows hosts. An explicit --local request
there is an error, while the automatic choice quietly switches to the cloud.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Union
from urllib.parse import urlparse

from expobuild.build_scripts.aab_converter import AabConverter, find_file_bfs
from expobuild.build_scripts.dependency_installer import DependencyInstaller
from expobuild.build_scripts.platform_util import PlatformClass
from expobuild.build_scripts.prerequisites import ProjectSetup
from expobuild.errors import (
    BuildSubmissionFailed,
    ConflictingModes,
    LocalBuildFailed,
    UnsupportedPlatform,
)
from expobuild.utils.cmd.cmd_util import CommandFailed, CommandNotFound, CommandRunner
from expobuild.utils.config import DEFAULT_OUTPUT_DIR, DEFAULT_PROFILE, BuildConfig
from expobuild.utils.console import print_section, print_status, print_success, print_warning
from expobuild.utils.context.context import ProjectContext

EXPO_DASHBOARD_URL = "https://expo.dev"
REMOTE_AAB_NAME = "build.aab"


@dataclass(frozen=True)
class AutoMode:
    name = "auto"


@dataclass(frozen=True)
class CloudMode:
    name = "cloud"


@dataclass(frozen=True)
class LocalMode:
    name = "local"


@dataclass(frozen=True)
class RemoteThenConvertMode:
    name = "aab-to-apk"


@dataclass(frozen=True)
class ConvertOnlyMode:
    archive_path: str
    name = "convert-aab"


BuildMode = Union[AutoMode, CloudMode, LocalMode, RemoteThenConvertMode, ConvertOnlyMode]


class Strategy(Enum):
    CLOUD = "cloud"
    LOCAL = "local"
    REMOTE_THEN_CONVERT = "remote-then-convert"
    CONVERT_ONLY = "convert-only"


@dataclass(frozen=True)
class BuildRequest:
    profile: str = DEFAULT_PROFILE
    mode: BuildMode = field(default_factory=AutoMode)
    skip_install: bool = False
    output_dir: str = DEFAULT_OUTPUT_DIR

    @classmethod
    def from_flags(
        cls,
        profile: str = DEFAULT_PROFILE,
        cloud: bool = False,
        local: bool = False,
        aab_to_apk: bool = False,
        convert_aab: Optional[str] = None,
        skip_install: bool = False,
        output_dir: str = DEFAULT_OUTPUT_DIR,
    ) -> "BuildRequest":
        """
        Build a request from the individual mode flags of the command line.

        Raises:
            ConflictingModes: more than one mode flag is set
        """
        selected: List[BuildMode] = []
        if cloud:
            selected.append(CloudMode())
        if local:
            selected.append(LocalMode())
        if aab_to_apk:
            selected.append(RemoteThenConvertMode())
        if convert_aab is not None:
            selected.append(ConvertOnlyMode(convert_aab))

        if len(selected) > 1:
            names = ", ".join(f"--{m.name}" for m in selected)
            raise ConflictingModes(f"Cannot use {names} options simultaneously")

        mode = selected[0] if selected else AutoMode()
        return cls(profile=profile, mode=mode, skip_install=skip_install, output_dir=output_dir)


@dataclass
class BuildOutcome:
    strategy: Strategy
    status: str
    artifact: Optional[Path] = None


def resolve_strategy(mode: BuildMode, platform: PlatformClass) -> Strategy:
    """
    Map a build mode onto the strategy that runs on this host.

    Raises:
        UnsupportedPlatform: a local build was requested on a Windows host
    """
    if isinstance(mode, ConvertOnlyMode):
        return Strategy.CONVERT_ONLY
    if isinstance(mode, CloudMode):
        return Strategy.CLOUD
    if isinstance(mode, RemoteThenConvertMode):
        return Strategy.REMOTE_THEN_CONVERT
    if isinstance(mode, LocalMode):
        if platform.is_windows:
            raise UnsupportedPlatform(
                "Local Android builds are not supported on Windows! "
                "Use --cloud option or run this on macOS/Linux"
            )
        return Strategy.LOCAL
    if platform.is_windows:
        print_warning("Windows detected. Local Android builds are not supported on Windows.")
        print_status("Switching to EAS cloud build...")
        return Strategy.CLOUD
    return Strategy.LOCAL


def _decode_builds(output: str):
    """Yield every JSON value that starts at a `[` or `{` in output"""
    decoder = json.JSONDecoder()
    index = 0
    while True:
        starts = [i for i in (output.find("[", index), output.find("{", index)) if i >= 0]
        if not starts:
            return
        start = min(starts)
        try:
            data, end = decoder.raw_decode(output, start)
        except ValueError:
            index = start + 1
            continue
        yield data
        index = end


def parse_artifact_url(output: str) -> Optional[str]:
    """
    Find the application archive URL in `eas build --json` output.

    The JSON document may be surrounded by other text, and is a list of
    builds (one per platform) or a single build object.
    """
    for data in _decode_builds(output):
        builds = data if isinstance(data, list) else [data]
        for build in builds:
            if not isinstance(build, dict):
                continue
            artifacts = build.get("artifacts") or {}
            if not isinstance(artifacts, dict):
                continue
            url = artifacts.get("applicationArchiveUrl") or artifacts.get("buildUrl")
            if url:
                return url
    return None


def is_app_bundle_url(url: str) -> bool:
    return urlparse(url).path.lower().endswith(".aab")


class BuildDispatcher:
    def __init__(
        self,
        context: ProjectContext,
        runner: CommandRunner,
        config: Optional[BuildConfig] = None,
        setup: Optional[ProjectSetup] = None,
        converter: Optional[AabConverter] = None,
        installer: Optional[DependencyInstaller] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.context = context
        self.runner = runner
        self.config = config or BuildConfig()
        self.setup = setup or ProjectSetup(context, runner)
        self.converter = converter or AabConverter(
            context, runner, self.config.bundletool, self.config.signing
        )
        self.installer = installer
        self.sleep = sleep

    def make_installer(self, platform: PlatformClass) -> DependencyInstaller:
        if self.installer is not None:
            return self.installer
        return DependencyInstaller(
            self.context,
            self.runner,
            platform,
            max_attempts=self.config.max_attempts,
            retry_delay=self.config.retry_delay,
            sleep=self.sleep,
        )

    def dispatch(self, request: BuildRequest, platform: PlatformClass) -> BuildOutcome:
        """
        Run the build described by request.

        Convert-only requests go straight to the converter. Every other mode
        checks the project, installs dependencies, runs prebuild and then the
        resolved strategy. Any failure raises and ends the run.
        """
        if isinstance(request.mode, ConvertOnlyMode):
            print_section("Converting existing AAB")
            apk = self.converter.convert(request.mode.archive_path, request.output_dir)
            return BuildOutcome(Strategy.CONVERT_ONLY, f"APK ready: {apk}", apk)

        strategy = resolve_strategy(request.mode, platform)

        self.setup.prepare()
        self.make_installer(platform).install_dependencies(skip=request.skip_install)
        self.setup.prebuild_app()

        print_status(f"Starting APK build with profile: {request.profile}")
        if strategy is Strategy.CLOUD:
            return self.build_cloud(request)
        if strategy is Strategy.LOCAL:
            return self.build_local(request)
        return self.build_remote_then_convert(request)

    def _eas_build(self, profile: str, extra_args=None, **run_options):
        args = ["build", "--platform", "android", "--profile", profile] + (extra_args or [])
        return self.runner.run("eas", args, cwd=self.context.root, **run_options)

    def build_cloud(self, request: BuildRequest) -> BuildOutcome:
        print_section("EAS cloud build")
        print_status("Using EAS cloud build (this may take 10-20 minutes)...")
        print_status(f"You can monitor progress at: {EXPO_DASHBOARD_URL}")
        try:
            self._eas_build(request.profile)
        except (CommandFailed, CommandNotFound) as e:
            raise BuildSubmissionFailed(f"Build submission failed! {e}")

        print_success("Build submitted successfully!")
        status = (
            "Your APK will be available for download once the build completes. "
            f"Check your email or visit {EXPO_DASHBOARD_URL} for the download link."
        )
        print_status(status)
        return BuildOutcome(Strategy.CLOUD, status)

    def build_local(self, request: BuildRequest) -> BuildOutcome:
        print_section("EAS local build")
        print_status("Using local build (this may take several minutes)...")
        try:
            self._eas_build(request.profile, ["--local"])
        except (CommandFailed, CommandNotFound) as e:
            raise LocalBuildFailed(f"APK build failed! {e}")

        print_success("APK build completed successfully!")
        apk = find_file_bfs(self.context.path(self.config.dist_dir), lambda p: p.suffix == ".apk")
        if apk is not None:
            print_success(f"APK file created: {apk}")
            return BuildOutcome(Strategy.LOCAL, f"APK file created: {apk}", apk)
        return BuildOutcome(Strategy.LOCAL, "APK build completed")

    def build_remote_then_convert(self, request: BuildRequest) -> BuildOutcome:
        print_section("EAS cloud AAB build + local conversion")
        print_status("Waiting for the EAS cloud build to finish (this may take 10-20 minutes)...")
        print_status(f"You can monitor progress at: {EXPO_DASHBOARD_URL}")
        try:
            result = self._eas_build(
                request.profile, ["--non-interactive", "--wait", "--json"],
                inherit_io=False,
                capture_stderr=False,
            )
        except (CommandFailed, CommandNotFound) as e:
            raise BuildSubmissionFailed(f"Remote AAB build failed! {e}")

        url = parse_artifact_url(result.stdout or "")
        if not url:
            raise BuildSubmissionFailed("EAS build finished but reported no build artifact URL")
        if not is_app_bundle_url(url):
            raise BuildSubmissionFailed(
                f"Profile '{request.profile}' did not produce an Android App Bundle ({url}). "
                "Use a profile whose android.buildType is 'app-bundle'"
            )
        print_success(f"Remote build finished: {url}")

        output_dir = self.context.path(request.output_dir)
        aab = self.converter.downloader.download(url, output_dir / REMOTE_AAB_NAME)
        apk = self.converter.convert(aab, output_dir)
        return BuildOutcome(Strategy.REMOTE_THEN_CONVERT, f"APK ready: {apk}", apk)
