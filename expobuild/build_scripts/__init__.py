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

"""Build steps for producing an Android APK."""

__all__ = [
    "aab_converter",
    "build_dispatcher",
    "dependency_installer",
    "platform_util",
    "prerequisites",
]
