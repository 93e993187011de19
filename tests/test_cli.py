from pathlib import Path

import pytest

import bd_burner
from bd_burner import ArgumentError
from conftest import DRUTIL_DEVICE_WITH_MEDIA


class FakeCaffeinate:
    instances = []

    def __init__(self, args, **kwargs):
        self.args = args
        self.terminated = False
        FakeCaffeinate.instances.append(self)

    def poll(self):
        return 0 if self.terminated else None

    def terminate(self):
        self.terminated = True

    def wait(self, timeout=None):
        return 0

    def kill(self):
        self.terminated = True


@pytest.fixture
def tools(shell):
    shell.on("command -v", (0, "/usr/bin/tool\n", ""))
    return shell


@pytest.fixture
def caffeinate(monkeypatch):
    FakeCaffeinate.instances = []
    monkeypatch.setattr(bd_burner.subprocess, "Popen", FakeCaffeinate)
    return FakeCaffeinate


def parse(argv):
    return bd_burner.options_from_args(bd_burner.build_parser().parse_args(argv))


@pytest.mark.unit
def test_help_exits_zero(capsys):
    with pytest.raises(SystemExit) as exc:
        bd_burner.build_parser().parse_args(["--help"])
    assert exc.value.code == 0
    assert "--image" in capsys.readouterr().out


@pytest.mark.unit
def test_dvd_and_bdxl_are_exclusive():
    with pytest.raises(SystemExit) as exc:
        bd_burner.build_parser().parse_args(["--dvd", "--bdxl"])
    assert exc.value.code == 2


@pytest.mark.unit
def test_speed_must_be_positive():
    with pytest.raises(SystemExit):
        bd_burner.build_parser().parse_args(["--image", "x.iso", "-x", "0"])


@pytest.mark.unit
def test_parse_create_mode_defaults():
    opts = parse(["-s", "/data", "-t", "/stage"])
    assert opts.source == Path("/data")
    assert opts.stage == Path("/stage")
    assert opts.medium == "bdxl"
    assert opts.volume == "BD_BACKUP"
    assert opts.speed is None
    assert opts.dry_run is False


@pytest.mark.unit
def test_parse_short_flags():
    opts = parse(["-s", "/data", "-t", "/stage", "--dvd", "-v", "Backup Photos1", "-x", "2", "--dry-run"])
    assert opts.medium == "dvd"
    assert opts.volume == "Backup Photos1"
    assert opts.speed == 2
    assert opts.dry_run is True


@pytest.mark.unit
def test_env_speed_and_stage(monkeypatch):
    monkeypatch.setattr(bd_burner, "DEFAULT_SPEED", "4")
    monkeypatch.setattr(bd_burner, "DEFAULT_STAGE", "/env/stage")
    create = parse(["-s", "/data"])
    assert create.speed == 4
    assert create.stage == Path("/env/stage")
    reuse = parse(["--image", "/img.iso"])
    assert reuse.stage is None
    assert parse(["--image", "/img.iso", "-x", "1"]).speed == 1


@pytest.mark.unit
def test_env_speed_invalid(monkeypatch):
    monkeypatch.setattr(bd_burner, "DEFAULT_SPEED", "fast")
    with pytest.raises(ArgumentError) as exc:
        parse(["--image", "/img.iso"])
    assert exc.value.reason == "InvalidSpeed"


@pytest.mark.unit
def test_env_medium_invalid(monkeypatch):
    monkeypatch.setattr(bd_burner, "DEFAULT_MEDIUM", "cd")
    with pytest.raises(ArgumentError) as exc:
        parse(["-s", "/data", "-t", "/stage"])
    assert exc.value.reason == "InvalidMedium"


@pytest.mark.unit
def test_main_missing_tools(shell, image_file, capsys):
    assert bd_burner.main(["--image", str(image_file), "--no-keep-awake"]) == 3
    assert "Missing command(s): hdiutil, drutil, du" in capsys.readouterr().err


@pytest.mark.unit
def test_main_missing_arguments(tools, capsys):
    assert bd_burner.main(["--no-keep-awake"]) == 2
    assert "ERROR:" in capsys.readouterr().err


@pytest.mark.unit
def test_main_dry_run_reuse(tools, image_file, caffeinate, capsys):
    tools.on("hdiutil attach", (0, "/dev/disk7\n", ""))
    tools.on("hdiutil detach")

    assert bd_burner.main(["--image", str(image_file), "--dry-run"]) == 0

    out = capsys.readouterr().out
    assert "Burn skipped" in out
    assert len(caffeinate.instances) == 1
    assert caffeinate.instances[0].args == ["caffeinate", "-dimsu"]
    assert caffeinate.instances[0].terminated


@pytest.mark.unit
def test_main_full_burn(tools, image_file, caffeinate):
    tools.on("hdiutil attach", (0, "/dev/disk7\n", ""))
    tools.on("hdiutil detach")
    tools.on("drutil status", (0, DRUTIL_DEVICE_WITH_MEDIA, ""))
    tools.on("drutil burn")
    assert bd_burner.main(["--image", str(image_file), "-x", "2"]) == 0
    assert tools.called("drutil burn") == [f"drutil burn -drive /dev/disk4 -speed 2 {image_file}"]
    assert caffeinate.instances[0].terminated


@pytest.mark.unit
def test_main_no_device_exit_code(tools, image_file, caffeinate, capsys):
    tools.on("hdiutil attach", (0, "/dev/disk7\n", ""))
    tools.on("hdiutil detach")
    tools.on("drutil status", (0, "", ""))
    assert bd_burner.main(["--image", str(image_file)]) == 7
    assert "No optical device" in capsys.readouterr().err
    assert caffeinate.instances[0].terminated


@pytest.mark.unit
def test_main_interrupt_releases_keep_awake(tools, image_file, caffeinate, monkeypatch):
    def interrupted(self):
        raise KeyboardInterrupt

    monkeypatch.setattr(bd_burner.BurnOrchestrator, "run", interrupted)
    assert bd_burner.main(["--image", str(image_file)]) == 130
    assert caffeinate.instances[0].terminated


@pytest.mark.unit
def test_keep_awake_disabled_starts_nothing(caffeinate):
    with bd_burner.keep_awake(False) as proc:
        assert proc is None
    assert caffeinate.instances == []


@pytest.mark.unit
def test_keep_awake_without_caffeinate(shell, caffeinate):
    with bd_burner.keep_awake(True) as proc:
        assert proc is None
    assert caffeinate.instances == []
