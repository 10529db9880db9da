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


def print_status(msg):
    print(f"[INFO] {msg}")


def print_success(msg):
    print(f"[SUCCESS] {msg}")


def print_warning(msg):
    print(f"[WARNING] {msg}")


def print_error(msg):
    print(f"[ERROR] {msg}", file=sys.stderr)


def print_section(title):
    print(f"\n=== {title} ===")
