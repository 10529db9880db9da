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

import platform
import sys
from enum import Enum
from typing import Optional

from expobuild.utils.context.context import ProjectContext

# OSTYPE values reported by Windows shells, plus sys.platform for native Windows
WINDOWS_OS_TYPES = ("msys", "win32", "cygwin")

# uname -s prefixes of the MSYS2 / Git Bash and Cygwin environments
WINDOWS_KERNEL_PREFIXES = ("MINGW", "CYGWIN")


class PlatformClass(Enum):
    WINDOWS_FAMILY = "windows"
    POSIX_FAMILY = "posix"

    @property
    def is_windows(self) -> bool:
        return self is PlatformClass.WINDOWS_FAMILY


def classify_platform(os_type: Optional[str] = None, kernel_name: Optional[str] = None) -> PlatformClass:
    """
    Classify the host into the Windows family or the POSIX family.

    Args:
        os_type: OS type string, e.g. bash's $OSTYPE or sys.platform
        kernel_name: Kernel name as printed by `uname -s`

    When both are omitted the running interpreter is probed.
    """
    if os_type is None and kernel_name is None:
        os_type = sys.platform
        kernel_name = platform.system()

    if os_type in WINDOWS_OS_TYPES:
        return PlatformClass.WINDOWS_FAMILY
    if kernel_name and kernel_name.startswith(WINDOWS_KERNEL_PREFIXES):
        return PlatformClass.WINDOWS_FAMILY
    return PlatformClass.POSIX_FAMILY


def detect_platform(context: ProjectContext) -> PlatformClass:
    """Classify the host using $OSTYPE from the project environment when it is exported"""
    os_type = context.env.get("OSTYPE") or sys.platform
    return classify_platform(os_type, platform.system())
