import itertools
import json
import sys
from pathlib import Path

import pytest

from conftest import bundletool_handler
from expobuild.build_scripts.build_dispatcher import (
    AutoMode,
    BuildDispatcher,
    BuildRequest,
    CloudMode,
    ConvertOnlyMode,
    LocalMode,
    RemoteThenConvertMode,
    Strategy,
    parse_artifact_url,
    resolve_strategy,
)
from expobuild.build_scripts.platform_util import PlatformClass
from expobuild.errors import (
    BuildSubmissionFailed,
    ConflictingModes,
    InstallExhausted,
    LocalBuildFailed,
    PrerequisiteMissing,
    UnsupportedPlatform,
)
from expobuild.utils.cmd.cmd_util import CommandFailed, CommandResult, CommandRunner

WINDOWS = PlatformClass.WINDOWS_FAMILY
POSIX = PlatformClass.POSIX_FAMILY

MODE_FLAGS = {
    "cloud": {"cloud": True},
    "local": {"local": True},
    "aab_to_apk": {"aab_to_apk": True},
    "convert_aab": {"convert_aab": "build.aab"},
}

AAB_URL = "https://expo.dev/artifacts/eas/abc.aab"


def eas_handler(build=None, whoami="jane"):
    """Fake eas CLI: whoami answers, build delegates to `build`"""

    def handler(args):
        if args[0] == "whoami":
            return CommandResult(0, whoami + "\n")
        if args[0] == "build" and build is not None:
            return build(args)
        return None

    return handler


def failing_build(args):
    raise CommandFailed("eas", 1)


@pytest.fixture
def ready_project(project):
    project.path("eas.json").write_text("{}")
    project.path("android").mkdir()
    project.path("package-lock.json").write_text("{}")
    return project


@pytest.fixture
def dispatcher(ready_project, runner, fake_sleep):
    runner.on("eas", eas_handler())
    return BuildDispatcher(ready_project, runner, sleep=fake_sleep)


def eas_builds(runner):
    return [args for args in runner.commands("eas") if args[0] == "build"]


class TestRequestValidation:
    @pytest.mark.parametrize("first, second", list(itertools.combinations(MODE_FLAGS, 2)))
    def test_any_two_modes_conflict(self, first, second):
        flags = dict(MODE_FLAGS[first], **MODE_FLAGS[second])
        with pytest.raises(ConflictingModes):
            BuildRequest.from_flags(**flags)

    def test_all_modes_conflict(self):
        flags = {}
        for value in MODE_FLAGS.values():
            flags.update(value)
        with pytest.raises(ConflictingModes):
            BuildRequest.from_flags(**flags)

    @pytest.mark.parametrize(
        "flags, mode",
        [
            ({}, AutoMode()),
            ({"cloud": True}, CloudMode()),
            ({"local": True}, LocalMode()),
            ({"aab_to_apk": True}, RemoteThenConvertMode()),
            ({"convert_aab": "x.aab"}, ConvertOnlyMode("x.aab")),
        ],
    )
    def test_single_mode(self, flags, mode):
        request = BuildRequest.from_flags(**flags)
        assert request.mode == mode
        assert request.profile == "preview"
        assert request.output_dir == "apk_output"
        assert not request.skip_install

    def test_request_is_immutable(self):
        request = BuildRequest.from_flags(profile="production")
        with pytest.raises(Exception):
            request.profile = "preview"


class TestResolveStrategy:
    def test_auto_on_windows_falls_back_to_cloud(self):
        assert resolve_strategy(AutoMode(), WINDOWS) is Strategy.CLOUD

    def test_auto_on_posix_builds_locally(self):
        assert resolve_strategy(AutoMode(), POSIX) is Strategy.LOCAL

    def test_explicit_local_on_windows_is_rejected(self):
        with pytest.raises(UnsupportedPlatform):
            resolve_strategy(LocalMode(), WINDOWS)

    @pytest.mark.parametrize("platform", [WINDOWS, POSIX])
    def test_explicit_modes_are_honoured(self, platform):
        assert resolve_strategy(CloudMode(), platform) is Strategy.CLOUD
        assert resolve_strategy(RemoteThenConvertMode(), platform) is Strategy.REMOTE_THEN_CONVERT
        assert resolve_strategy(ConvertOnlyMode("a.aab"), platform) is Strategy.CONVERT_ONLY


class TestDispatch:
    def test_local_on_windows_fails_before_any_work(self, dispatcher, runner):
        request = BuildRequest.from_flags(local=True)
        with pytest.raises(UnsupportedPlatform):
            dispatcher.dispatch(request, WINDOWS)
        assert runner.calls == []

    def test_auto_on_windows_submits_cloud_build(self, dispatcher, runner, ready_project):
        ready_project.path("node_modules").mkdir()
        outcome = dispatcher.dispatch(BuildRequest.from_flags(skip_install=True), WINDOWS)

        assert outcome.strategy is Strategy.CLOUD
        assert outcome.artifact is None
        assert "expo.dev" in outcome.status
        assert eas_builds(runner) == [["build", "--platform", "android", "--profile", "preview"]]

    def test_cloud_build_with_profile(self, dispatcher, runner):
        request = BuildRequest.from_flags(profile="production", cloud=True)
        dispatcher.dispatch(request, POSIX)
        assert eas_builds(runner) == [["build", "--platform", "android", "--profile", "production"]]

    def test_cloud_build_failure(self, ready_project, runner, fake_sleep):
        runner.on("eas", eas_handler(build=failing_build))
        dispatcher = BuildDispatcher(ready_project, runner, sleep=fake_sleep)
        with pytest.raises(BuildSubmissionFailed):
            dispatcher.dispatch(BuildRequest.from_flags(cloud=True), POSIX)
        assert len(eas_builds(runner)) == 1

    def test_local_build_reports_apk(self, dispatcher, runner, ready_project):
        apk = ready_project.path("dist", "build-123.apk")
        apk.parent.mkdir()
        apk.write_bytes(b"apk")

        outcome = dispatcher.dispatch(BuildRequest.from_flags(), POSIX)

        assert outcome.strategy is Strategy.LOCAL
        assert outcome.artifact == apk
        assert eas_builds(runner) == [
            ["build", "--platform", "android", "--profile", "preview", "--local"]
        ]

    def test_local_build_without_apk_still_succeeds(self, dispatcher):
        outcome = dispatcher.dispatch(BuildRequest.from_flags(local=True), POSIX)
        assert outcome.strategy is Strategy.LOCAL
        assert outcome.artifact is None

    def test_local_build_failure(self, ready_project, runner, fake_sleep):
        runner.on("eas", eas_handler(build=failing_build))
        dispatcher = BuildDispatcher(ready_project, runner, sleep=fake_sleep)
        with pytest.raises(LocalBuildFailed):
            dispatcher.dispatch(BuildRequest.from_flags(local=True), POSIX)

    def test_pipeline_order(self, project, runner, fake_sleep):
        runner.on("eas", eas_handler())
        dispatcher = BuildDispatcher(project, runner, sleep=fake_sleep)
        dispatcher.dispatch(BuildRequest.from_flags(cloud=True), POSIX)

        steps = [(c["program"], c["args"][0]) for c in runner.calls]
        assert steps == [
            ("eas", "whoami"),
            ("eas", "build:configure"),
            ("npm", "install"),
            ("expo", "prebuild"),
            ("eas", "build"),
        ]

    def test_install_failure_stops_before_build(self, dispatcher, runner, sleeps):
        runner.fail("npm")
        with pytest.raises(InstallExhausted):
            dispatcher.dispatch(BuildRequest.from_flags(cloud=True), POSIX)
        assert eas_builds(runner) == []
        assert sleeps == [5, 5]

    def test_missing_app_config(self, dispatcher, runner, ready_project):
        ready_project.path("app.json").unlink()
        with pytest.raises(PrerequisiteMissing):
            dispatcher.dispatch(BuildRequest.from_flags(cloud=True), POSIX)
        assert runner.calls == []


class TestConvertOnly:
    def test_bypasses_install_and_build(self, project, runner, cached_bundletool):
        project.path("build.aab").write_bytes(b"aab")
        runner.on("java", bundletool_handler())
        dispatcher = BuildDispatcher(project, runner)

        request = BuildRequest.from_flags(convert_aab="build.aab")
        outcome = dispatcher.dispatch(request, WINDOWS)

        assert outcome.strategy is Strategy.CONVERT_ONLY
        assert outcome.artifact == project.path("apk_output", "app-universal.apk")
        assert runner.programs() == ["java"]

    def test_works_outside_expo_project(self, project, runner, cached_bundletool):
        project.path("app.json").unlink()
        project.path("build.aab").write_bytes(b"aab")
        runner.on("java", bundletool_handler())
        outcome = BuildDispatcher(project, runner).dispatch(
            BuildRequest.from_flags(convert_aab="build.aab", output_dir="out"), POSIX
        )
        assert outcome.artifact == project.path("out", "app-universal.apk")


class TestRemoteThenConvert:
    def test_downloads_and_converts(self, ready_project, runner, fake_sleep, cached_bundletool):
        build_output = "Waiting for build...\n" + json.dumps(
            [{"platform": "ANDROID", "artifacts": {"buildUrl": AAB_URL}}]
        )
        runner.on("eas", eas_handler(build=lambda args: CommandResult(0, build_output)))

        def curl(args):
            Path(args[args.index("-o") + 1]).write_bytes(b"aab")

        runner.on("curl", curl).on("java", bundletool_handler())
        dispatcher = BuildDispatcher(ready_project, runner, sleep=fake_sleep)

        outcome = dispatcher.dispatch(BuildRequest.from_flags(aab_to_apk=True, profile="production"), WINDOWS)

        assert eas_builds(runner) == [[
            "build", "--platform", "android", "--profile", "production",
            "--non-interactive", "--wait", "--json",
        ]]
        build_call = next(c for c in runner.calls if c["args"][:1] == ["build"])
        assert build_call["inherit_io"] is False
        assert build_call["capture_stderr"] is False
        output_dir = ready_project.path("apk_output")
        assert runner.commands("curl") == [["-fL", "-o", str(output_dir / "build.aab"), AAB_URL]]
        assert outcome.strategy is Strategy.REMOTE_THEN_CONVERT
        assert outcome.artifact == output_dir / "app-universal.apk"

    def test_remote_failure(self, ready_project, runner, fake_sleep):
        runner.on("eas", eas_handler(build=failing_build))
        dispatcher = BuildDispatcher(ready_project, runner, sleep=fake_sleep)
        with pytest.raises(BuildSubmissionFailed):
            dispatcher.dispatch(BuildRequest.from_flags(aab_to_apk=True), POSIX)

    def test_apk_artifact_is_rejected(self, ready_project, runner, fake_sleep):
        apk_output = json.dumps([{"artifacts": {"buildUrl": "https://expo.dev/artifacts/eas/abc.apk"}}])
        runner.on("eas", eas_handler(build=lambda args: CommandResult(0, apk_output)))
        dispatcher = BuildDispatcher(ready_project, runner, sleep=fake_sleep)
        with pytest.raises(BuildSubmissionFailed, match="app-bundle"):
            dispatcher.dispatch(BuildRequest.from_flags(aab_to_apk=True), POSIX)
        assert runner.commands("curl") == []
        assert runner.commands("java") == []

    def test_no_artifact_url(self, ready_project, runner, fake_sleep):
        runner.on("eas", eas_handler(build=lambda args: CommandResult(0, "[]")))
        dispatcher = BuildDispatcher(ready_project, runner, sleep=fake_sleep)
        with pytest.raises(BuildSubmissionFailed):
            dispatcher.dispatch(BuildRequest.from_flags(aab_to_apk=True), POSIX)
        assert runner.commands("curl") == []


@pytest.mark.parametrize(
    "output, expected",
    [
        (json.dumps([{"artifacts": {"applicationArchiveUrl": "a", "buildUrl": "b"}}]), "a"),
        (json.dumps([{"artifacts": {"buildUrl": "b"}}]), "b"),
        (json.dumps({"artifacts": {"buildUrl": "b"}}), "b"),
        ("log line\n" + json.dumps([{"artifacts": None}, {"artifacts": {"buildUrl": "c"}}]), "c"),
        ("[expo-cli] Build queued {id: 1}\n" + json.dumps([{"artifacts": {"buildUrl": "d"}}]), "d"),
        (json.dumps([{"artifacts": {"buildUrl": "e"}}]) + "\nSee logs\n", "e"),
        ("[1]\n" + json.dumps({"artifacts": {"applicationArchiveUrl": "f"}}), "f"),
        ("not json at all", None),
        ("[broken", None),
        ("", None),
    ],
)
def test_parse_artifact_url(output, expected):
    assert parse_artifact_url(output) == expected


FAKE_EAS = """\
import json
import sys

sys.stderr.write("[expo-cli] Build queued {id: 1}\\n")
print(json.dumps([{"platform": "ANDROID", "artifacts": {"buildUrl": "%s"}}]))
print("done")
"""


@pytest.mark.skipif(sys.platform == "win32", reason="uses a shebang script as the eas executable")
def test_artifact_url_from_eas_with_stderr_logs(tmp_path, capfd):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    eas = bin_dir / "eas"
    eas.write_text(f"#!{sys.executable}\n" + FAKE_EAS % AAB_URL)
    eas.chmod(0o755)
    runner = CommandRunner({"PATH": str(bin_dir)}, verbose=False)

    result = runner.run(
        "eas", ["build", "--json"], inherit_io=False, capture_stderr=False, cwd=tmp_path
    )

    assert "Build queued" not in result.stdout
    assert parse_artifact_url(result.stdout) == AAB_URL
    assert "Build queued" in capfd.readouterr().err
