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

import os
from pathlib import Path
from typing import Dict, Optional

# Expo app configuration files, any one of them marks a project root
APP_CONFIG_FILES = ["app.json", "app.config.js", "app.config.ts"]

# Name of the optional per-project configuration file
CONFIG_FILE_NAME = "EXPOBUILD.toml"


# This context data class to save the context of the command
class CliContext:
    def __init__(self, env: Optional[Dict[str, str]] = None):
        # None means "snapshot os.environ when the project is created"
        self.env = env


class ProjectContext:
    """
    The project a build runs against.

    Holds the project root and a snapshot of the environment so that no
    component reads the process working directory or os.environ directly.
    """

    def __init__(self, root, env: Optional[Dict[str, str]] = None):
        self.root = Path(root).resolve()
        self.env = dict(os.environ if env is None else env)

    @classmethod
    def from_cwd(cls, env: Optional[Dict[str, str]] = None) -> "ProjectContext":
        try:
            root = os.getcwd()
        except (OSError, FileNotFoundError):
            # The working directory was deleted underneath us
            root = (env or os.environ).get("PWD", ".")
        return cls(root, env)

    def path(self, *parts) -> Path:
        """Resolve a path relative to the project root"""
        return self.root.joinpath(*parts)

    def find_app_config(self) -> Optional[Path]:
        for name in APP_CONFIG_FILES:
            candidate = self.path(name)
            if candidate.is_file():
                return candidate
        return None

    @property
    def config_file(self) -> Path:
        return self.path(CONFIG_FILE_NAME)

    @property
    def home_path(self) -> Path:
        """Per-user expobuild directory, $EXPOBUILD_HOME or ~/.expobuild"""
        override = self.env.get("EXPOBUILD_HOME")
        if override:
            return Path(override).expanduser()
        user_home = self.env.get("HOME") or self.env.get("USERPROFILE")
        if user_home:
            return Path(user_home) / ".expobuild"
        return Path.home() / ".expobuild"

    @property
    def tools_path(self) -> Path:
        return self.home_path / "tools"

    def __repr__(self):
        return f"ProjectContext(root={self.root})"
