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
Dependency installer for Expo projects.

Installs node_modules with yarn or npm, chosen by the lock file in the project
root, and retries a bounded number of times since registry installs fail
intermittently. On Windows hosts a best-effort cleanup runs first, because
locked files left behind by running node processes are the usual cause of
failed installs there.
"""

import shutil
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List

from expobuild.build_scripts.platform_util import PlatformClass
from expobuild.errors import InstallExhausted, MissingDependencies
from expobuild.utils.cmd.cmd_util import CommandFailed, CommandNotFound, CommandRunner
from expobuild.utils.config import DEFAULT_MAX_ATTEMPTS, DEFAULT_RETRY_DELAY
from expobuild.utils.console import print_status, print_success, print_warning
from expobuild.utils.context.context import ProjectContext

DEPENDENCY_DIR = "node_modules"
YARN_LOCK_FILE = "yarn.lock"
NPM_LOCK_FILE = "package-lock.json"


class PackageManager(Enum):
    YARN = "yarn"
    NPM = "npm"

    @property
    def install_args(self) -> List[str]:
        if self is PackageManager.YARN:
            return ["install"]
        return ["install", "--no-optional"]


@dataclass
class InstallAttempt:
    number: int
    manager: PackageManager
    succeeded: bool = False


@dataclass
class BestEffortStep:
    """A cleanup action whose failure is reported and then ignored"""
    description: str
    action: Callable[[], None]
    ignore_failure: bool = True


def run_best_effort(steps: List[BestEffortStep]) -> List[str]:
    """
    Run each step in order.

    Returns the descriptions of the steps that failed.
    """
    failed = []
    for step in steps:
        try:
            step.action()
        except (CommandFailed, CommandNotFound, OSError) as e:
            if not step.ignore_failure:
                raise
            print_warning(f"{step.description} failed, continuing: {e}")
            failed.append(step.description)
    return failed


class DependencyInstaller:
    def __init__(
        self,
        context: ProjectContext,
        runner: CommandRunner,
        platform: PlatformClass,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.context = context
        self.runner = runner
        self.platform = platform
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.sleep = sleep
        self.attempts: List[InstallAttempt] = []

    @property
    def dependency_dir(self):
        return self.context.path(DEPENDENCY_DIR)

    def select_package_manager(self) -> PackageManager:
        if self.context.path(YARN_LOCK_FILE).is_file():
            return PackageManager.YARN
        if not self.context.path(NPM_LOCK_FILE).is_file():
            print_warning("No lock file found. Using npm install...")
        return PackageManager.NPM

    def windows_cleanup_steps(self) -> List[BestEffortStep]:
        root = self.context.root

        def kill(image):
            return lambda: self.runner.run("taskkill", ["/f", "/im", image], inherit_io=False)

        def remove_dependency_dir():
            if self.dependency_dir.exists():
                print_status(f"Attempting to clean {DEPENDENCY_DIR}...")
                shutil.rmtree(self.dependency_dir)

        return [
            BestEffortStep("Stop running node processes", kill("node.exe")),
            BestEffortStep("Stop running npm processes", kill("npm.exe")),
            BestEffortStep(
                "Clear npm cache",
                lambda: self.runner.run("npm", ["cache", "clean", "--force"], inherit_io=False, cwd=root),
            ),
            BestEffortStep(f"Remove {DEPENDENCY_DIR}", remove_dependency_dir),
        ]

    def install_dependencies(self, skip: bool = False):
        """
        Make sure the project's node_modules is installed.

        Args:
            skip: Do not install, only check node_modules is present

        Raises:
            MissingDependencies: skip is set and node_modules does not exist
            InstallExhausted: every install attempt failed
        """
        if skip:
            if not self.dependency_dir.is_dir():
                raise MissingDependencies(
                    f"{DEPENDENCY_DIR} not found in {self.context.root}, run without --no-install first"
                )
            print_status("Skipping dependency installation")
            return

        print_status("Installing/updating dependencies...")
        manager = self.select_package_manager()

        if self.platform.is_windows:
            print_warning("Windows detected. Applying Windows-specific fixes...")
            run_best_effort(self.windows_cleanup_steps())

        self.attempts = []
        for number in range(1, self.max_attempts + 1):
            print_status(f"Installation attempt {number} of {self.max_attempts}...")
            attempt = InstallAttempt(number, manager)
            self.attempts.append(attempt)
            try:
                self.runner.run(manager.value, manager.install_args, cwd=self.context.root)
                attempt.succeeded = True
                print_success("Dependencies installed!")
                return
            except (CommandFailed, CommandNotFound) as e:
                print_warning(f"{manager.value} install failed: {e}")

            if number < self.max_attempts:
                print_warning(f"Installation failed, retrying in {self.retry_delay:g} seconds...")
                self.sleep(self.retry_delay)

        raise InstallExhausted(
            f"Failed to install dependencies after {self.max_attempts} attempts. "
            f"Try running as administrator or manually delete {DEPENDENCY_DIR}",
            attempts=list(self.attempts),
        )
