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
Build configuration for expobuild.

Reads the optional EXPOBUILD.toml from the project root. Every value has a
default, so a project without the file builds with the stock settings:

    [build]
    profile = "preview"
    output_dir = "apk_output"
    dist_dir = "dist"

    [install]
    max_attempts = 3
    retry_delay = 5

    [bundletool]
    version = "1.17.2"

    [signing]
    keystore = "release.keystore"
    key_alias = "upload"
    keystore_password = "${KEYSTORE_PASSWORD}"

String values support ${VAR} and $VAR expansion from the project environment.
"""

import re
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

if sys.version_info >= (3, 11, 0, "alpha", 7):
    import tomllib
else:
    import tomli as tomllib

from expobuild.errors import ConfigError
from expobuild.utils.context.context import ProjectContext

DEFAULT_PROFILE = "preview"
DEFAULT_OUTPUT_DIR = "apk_output"
DEFAULT_DIST_DIR = "dist"
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 5
BUNDLETOOL_VERSION = "1.17.2"
BUNDLETOOL_URL = (
    "https://github.com/google/bundletool/releases/download/"
    "{version}/bundletool-all-{version}.jar"
)


@dataclass
class SigningConfig:
    """Keystore used by bundletool to sign the universal APK."""
    keystore: str = ""
    key_alias: str = ""
    keystore_password: str = ""
    key_password: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.keystore)


@dataclass
class BundletoolConfig:
    version: str = BUNDLETOOL_VERSION
    url: str = BUNDLETOOL_URL

    @property
    def download_url(self) -> str:
        return self.url.format(version=self.version)

    @property
    def jar_name(self) -> str:
        return f"bundletool-all-{self.version}.jar"


@dataclass
class BuildConfig:
    profile: str = DEFAULT_PROFILE
    output_dir: str = DEFAULT_OUTPUT_DIR
    dist_dir: str = DEFAULT_DIST_DIR
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    retry_delay: float = DEFAULT_RETRY_DELAY
    bundletool: BundletoolConfig = field(default_factory=BundletoolConfig)
    signing: SigningConfig = field(default_factory=SigningConfig)


def expand_env(value: Any, env: Dict[str, str]) -> Any:
    """
    Expand environment variables in configuration values.

    Supports ${VAR_NAME} and $VAR_NAME syntax. Unknown variables are left as is.
    """
    if not isinstance(value, str):
        return value

    pattern1 = re.compile(r"\$\{([^}]+)\}")
    value = pattern1.sub(lambda m: env.get(m.group(1), m.group(0)), value)

    pattern2 = re.compile(r"\$([A-Za-z_][A-Za-z0-9_]*)")
    value = pattern2.sub(lambda m: env.get(m.group(1), m.group(0)), value)

    return value


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _positive_int(section: Dict[str, Any], key: str, default: int, errors: List[str]) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        errors.append(f"{key} must be a positive integer, got {value!r}")
        return default
    return value


def _non_negative_number(section: Dict[str, Any], key: str, default: float, errors: List[str]) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        errors.append(f"{key} must be a non-negative number, got {value!r}")
        return default
    return value


def parse_build_config(data: Dict[str, Any], env: Optional[Dict[str, str]] = None) -> BuildConfig:
    """Build a BuildConfig from the parsed TOML document"""
    env = env or {}
    build = _section(data, "build")
    install = _section(data, "install")
    bundletool = _section(data, "bundletool")
    signing = _section(data, "signing")

    errors = []
    config = BuildConfig(
        profile=expand_env(build.get("profile", DEFAULT_PROFILE), env),
        output_dir=expand_env(build.get("output_dir", DEFAULT_OUTPUT_DIR), env),
        dist_dir=expand_env(build.get("dist_dir", DEFAULT_DIST_DIR), env),
        max_attempts=_positive_int(install, "max_attempts", DEFAULT_MAX_ATTEMPTS, errors),
        retry_delay=_non_negative_number(install, "retry_delay", DEFAULT_RETRY_DELAY, errors),
        bundletool=BundletoolConfig(
            version=str(bundletool.get("version", BUNDLETOOL_VERSION)),
            url=bundletool.get("url", BUNDLETOOL_URL),
        ),
        signing=SigningConfig(
            keystore=expand_env(signing.get("keystore", ""), env),
            key_alias=expand_env(signing.get("key_alias", ""), env),
            keystore_password=expand_env(signing.get("keystore_password", ""), env),
            key_password=expand_env(signing.get("key_password", ""), env),
        ),
    )
    for key in ("profile", "output_dir", "dist_dir"):
        if not isinstance(getattr(config, key), str) or not getattr(config, key):
            errors.append(f"{key} must be a non-empty string")
    if config.signing.enabled and not config.signing.key_alias:
        errors.append("signing.key_alias is required when signing.keystore is set")

    if errors:
        raise ConfigError("Invalid EXPOBUILD.toml: " + "; ".join(errors))
    return config


def load_build_config(context: ProjectContext) -> BuildConfig:
    """
    Load EXPOBUILD.toml from the project root.

    Returns the default configuration when the file does not exist.
    """
    config_file = context.config_file
    if not config_file.is_file():
        return BuildConfig()

    try:
        with open(config_file, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse {config_file.name}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read {config_file.name}: {e}")

    return parse_build_config(data, context.env)
