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
Error taxonomy for expobuild.

Every failure raised by the build pipeline derives from ExpoBuildError so the
CLI can report it with its category and exit with status 1. Failures are
grouped by the stage that raises them:

- BuildError: request validation and build strategies
- InstallError: dependency installation
- ConvertError: AAB to APK conversion
"""


class ExpoBuildError(Exception):
    """Base class for all expobuild failures"""

    category = "Error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message or self.category


class ConfigError(ExpoBuildError):
    """EXPOBUILD.toml could not be read or has invalid values"""

    category = "ConfigError"


class PrerequisiteMissing(ExpoBuildError):
    """A required file or tool is missing; raised before anything is changed"""

    category = "PrerequisiteMissing"


class BuildError(ExpoBuildError):
    category = "BuildError"


class ConflictingModes(BuildError):
    category = "ConflictingModes"


class UnsupportedPlatform(BuildError):
    category = "UnsupportedPlatform"


class BuildSubmissionFailed(BuildError):
    category = "BuildSubmissionFailed"


class LocalBuildFailed(BuildError):
    category = "LocalBuildFailed"


class InstallError(ExpoBuildError):
    category = "InstallError"


class MissingDependencies(InstallError):
    category = "MissingDependencies"


class InstallExhausted(InstallError):
    category = "InstallExhausted"

    def __init__(self, message: str = "", attempts=None):
        super().__init__(message)
        self.attempts = attempts or []


class ConvertError(ExpoBuildError):
    category = "ConvertError"


class SourceNotFound(ConvertError):
    category = "SourceNotFound"


class DownloadFailed(ConvertError):
    category = "DownloadFailed"


class ExpansionFailed(ConvertError):
    category = "ExpansionFailed"


class ExtractionUnavailable(ConvertError):
    category = "ExtractionUnavailable"


class UniversalVariantMissing(ConvertError):
    category = "UniversalVariantMissing"
