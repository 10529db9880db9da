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

import sys
import time
import argparse

from expobuild.build_scripts.build_dispatcher import BuildDispatcher, BuildOutcome, BuildRequest
from expobuild.build_scripts.platform_util import detect_platform
from expobuild.errors import ExpoBuildError
from expobuild.utils.cmd.cmd_util import CommandRunner
from expobuild.utils.config import load_build_config
from expobuild.utils.console import print_error, print_status, print_success
from expobuild.utils.context.command import CliCommand
from expobuild.utils.context.context import CliContext, ProjectContext
from expobuild.utils.context.namespace import CliNameSpace


class CliArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors with exit status 1"""

    def error(self, message):
        self.print_usage(sys.stderr)
        print_error(message)
        sys.exit(1)


# Root Class for Command Line Interface
class Cli(CliCommand):
    def __init__(self, runner=None, sleep=time.sleep):
        self.runner = runner
        self.sleep = sleep

    def description(self) -> str:
        return """expobuild - Expo APK Builder

Builds an installable Android APK from an Expo project using EAS, locally or
in the cloud, and converts Android App Bundles (.aab) to universal APKs with
bundletool.

BUILD MODES (at most one):
    (none)              Auto-detect: local build on macOS/Linux, cloud build on Windows
    -c, --cloud         Force EAS cloud build (useful for Windows)
    -l, --local         Force local build (macOS/Linux only)
    -a, --aab-to-apk    EAS cloud build of an AAB, then convert it to an APK locally
    --convert-aab PATH  Only convert an existing .aab file to an APK

EXAMPLES:
    expobuild                          # Build with default settings (auto-detects platform)
    expobuild -p production            # Build with production profile
    expobuild --cloud                  # Force cloud build (Windows users)
    expobuild --local                  # Force local build (macOS/Linux users)
    expobuild --no-install             # Skip dependency installation
    expobuild -a -p production         # Cloud AAB build, converted to app-universal.apk
    expobuild --convert-aab build.aab  # Convert an existing AAB

CONFIGURATION:
    Defaults are read from EXPOBUILD.toml in the project directory when present.
    bundletool is cached under $EXPOBUILD_HOME/tools (default: ~/.expobuild/tools).
        """

    def cli(self, argv=None) -> CliNameSpace:
        parser = CliArgumentParser(
            prog="expobuild",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            description=self.description(),
        )
        parser.add_argument(
            "-p", "--profile",
            action="store",
            default=None,
            help="Build profile to use (default: preview)",
        )
        parser.add_argument(
            "-s", "--skip-deps", "--no-install",
            dest="no_install",
            action="store_true",
            help="Skip dependency installation (node_modules must exist)",
        )
        parser.add_argument(
            "-c", "--cloud",
            action="store_true",
            help="Force cloud build (useful for Windows)",
        )
        parser.add_argument(
            "-l", "--local",
            action="store_true",
            help="Force local build (macOS/Linux only)",
        )
        parser.add_argument(
            "-a", "--aab-to-apk",
            action="store_true",
            help="Build an AAB with EAS cloud, then convert it to a universal APK",
        )
        parser.add_argument(
            "--convert-aab",
            metavar="PATH",
            default=None,
            help="Convert an existing AAB file to a universal APK and exit",
        )
        parser.add_argument(
            "-o", "--output-dir",
            default=None,
            help="Directory for converted APKs (default: apk_output)",
        )
        parser.add_argument(
            "--project-dir",
            default=None,
            help="Expo project directory (default: current directory)",
        )
        return parser.parse_args(argv, namespace=CliNameSpace())

    def exec(self, context: CliContext, args: CliNameSpace) -> BuildOutcome:
        if args.project_dir:
            project = ProjectContext(args.project_dir, context.env)
        else:
            project = ProjectContext.from_cwd(context.env)
        config = load_build_config(project)

        request = BuildRequest.from_flags(
            profile=args.profile or config.profile,
            cloud=args.cloud,
            local=args.local,
            aab_to_apk=args.aab_to_apk,
            convert_aab=args.convert_aab,
            skip_install=args.no_install,
            output_dir=args.output_dir or config.output_dir,
        )
        platform = detect_platform(project)

        print_status("Starting Expo APK build process...")
        runner = self.runner or CommandRunner(project.env)
        dispatcher = BuildDispatcher(project, runner, config, sleep=self.sleep)
        outcome = dispatcher.dispatch(request, platform)
        print_success("Build process completed!")
        return outcome

    def run(self, argv=None, context: CliContext = None) -> int:
        """Parse argv, run the build and return the process exit status"""
        args = self.cli(argv)
        try:
            self.exec(context or CliContext(), args)
        except KeyboardInterrupt:
            print_error("Build process interrupted!")
            return 1
        except ExpoBuildError as e:
            print_error(f"{e.category}: {e}")
            return 1
        return 0


def main():
    sys.exit(Cli().run())


if __name__ == "__main__":
    main()
