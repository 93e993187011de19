import os
import shlex
import sys
from pathlib import Path

import pytest

# Ensure project root is on sys.path so 'bd_burner' imports without installation
_TESTS_DIR = os.path.dirname(__file__)
_ROOT_DIR = os.path.abspath(os.path.join(_TESTS_DIR, os.pardir))
if _ROOT_DIR not in sys.path:
    sys.path.insert(0, _ROOT_DIR)

import bd_burner  # noqa: E402


class FakeShell:
    """Stand-in for ``bd_burner.run_cmd`` that records every command.

    Responses are registered per command prefix; the longest matching prefix
    wins. A list of responses is consumed in order and its last entry repeats.
    Unregistered commands exit 127 so unexpected calls are visible.
    """

    def __init__(self):
        self.calls = []
        self.captures = []
        self._rules = {}

    def on(self, prefix, *responses, effect=None):
        if not responses:
            responses = ((0, "", ""),)
        self._rules[prefix] = {"responses": list(responses), "effect": effect}
        return self

    def __call__(self, cmd, capture=True):
        self.calls.append(cmd)
        self.captures.append(capture)
        matches = [p for p in self._rules if cmd.startswith(p)]
        if not matches:
            return 127, "", f"unexpected command: {cmd}"
        rule = self._rules[max(matches, key=len)]
        if rule["effect"] is not None:
            rule["effect"](cmd)
        responses = rule["responses"]
        return responses.pop(0) if len(responses) > 1 else responses[0]

    def called(self, prefix):
        return [c for c in self.calls if c.startswith(prefix)]


def makehybrid_output(cmd):
    args = shlex.split(cmd)
    return Path(args[args.index("-o") + 1])


@pytest.fixture
def shell(monkeypatch):
    fake = FakeShell()
    monkeypatch.setattr(bd_burner, "run_cmd", fake)
    return fake


@pytest.fixture(autouse=True)
def _no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr(bd_burner.time, "sleep", lambda seconds: sleeps.append(seconds))
    return sleeps


@pytest.fixture
def image_file(tmp_path):
    img = tmp_path / "BD_BACKUP_20250101_120000.iso"
    img.write_bytes(b"\0" * 4096)
    return img


DRUTIL_NO_DEVICE = ""

DRUTIL_DEVICE_NO_MEDIA = """\
 Vendor   Product           Rev
 PIONEER  BD-RW   BDR-XD07  1.00

           Name: /dev/disk4
"""

DRUTIL_DEVICE_WITH_MEDIA = """\
 Vendor   Product           Rev
 PIONEER  BD-RW   BDR-XD07  1.00

           Type: BD-R                 Name: /dev/disk4
       Sessions: 0                  Tracks: 0
   Overwritable:   00:00:00         blocks:        0 /   0.00MB /   0.00MiB
     Space Free: 4402:06:61         blocks: 48828125 / 100.00GB /  93.13GiB
"""
