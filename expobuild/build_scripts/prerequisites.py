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

from expobuild.errors import PrerequisiteMissing
from expobuild.utils.cmd.cmd_util import CommandFailed, CommandNotFound, CommandRunner
from expobuild.utils.console import print_status, print_success, print_warning
from expobuild.utils.context.context import APP_CONFIG_FILES, ProjectContext

EAS_CONFIG_FILE = "eas.json"
ANDROID_DIR = "android"

# CLI name -> npm package providing it
GLOBAL_CLIS = {
    "expo": "@expo/cli",
    "eas": "eas-cli",
}


class ProjectSetup:
    """Checks and one-time setup steps that run before an EAS build"""

    def __init__(self, context: ProjectContext, runner: CommandRunner):
        self.context = context
        self.runner = runner

    def check_prerequisites(self):
        print_status("Checking prerequisites...")

        if self.context.find_app_config() is None:
            raise PrerequisiteMissing(
                f"No Expo configuration file found ({', '.join(APP_CONFIG_FILES)}). "
                "Make sure you're in an Expo project directory."
            )

        if not self.runner.exists("node"):
            raise PrerequisiteMissing("Node.js is not installed. Please install Node.js first.")

        if not self.runner.exists("npm") and not self.runner.exists("yarn"):
            raise PrerequisiteMissing("Neither npm nor yarn is installed. Please install one of them.")

        for cli, package in GLOBAL_CLIS.items():
            if not self.runner.exists(cli):
                print_warning(f"{cli} CLI not found. Installing globally...")
                self.install_global(package)

        print_success("Prerequisites check completed!")

    def install_global(self, package: str):
        try:
            if self.runner.exists("yarn"):
                self.runner.run("yarn", ["global", "add", package])
            else:
                self.runner.run("npm", ["install", "-g", package])
        except (CommandFailed, CommandNotFound) as e:
            raise PrerequisiteMissing(f"Could not install {package} globally: {e}")

    def login_eas(self):
        print_status("Checking EAS authentication...")
        try:
            result = self.runner.run("eas", ["whoami"], inherit_io=False, cwd=self.context.root)
        except CommandFailed:
            print_warning("Not logged in to EAS. Please login:")
            self.runner.run("eas", ["login"], cwd=self.context.root)
            return
        user = (result.stdout or "").strip().splitlines()
        print_success(f"Already logged in to EAS as {user[0] if user else 'unknown'}")

    def setup_eas(self):
        if self.context.path(EAS_CONFIG_FILE).is_file():
            print_status("EAS already configured.")
            return
        print_status("EAS not configured. Setting up EAS...")
        self.runner.run("eas", ["build:configure"], cwd=self.context.root)
        print_success("EAS configuration created!")

    def prebuild_app(self):
        if self.context.path(ANDROID_DIR).is_dir():
            print_status("Android directory exists. Skipping prebuild.")
            return
        print_status("Android directory not found. Running prebuild...")
        self.runner.run("expo", ["prebuild", "--platform", "android"], cwd=self.context.root)
        print_success("Prebuild completed!")

    def prepare(self):
        """Prerequisites, EAS login and EAS configuration, in that order"""
        self.check_prerequisites()
        self.login_eas()
        self.setup_eas()

