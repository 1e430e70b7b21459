import json
import os
import pytest
from chainvisor.protocol.types.plan import UpgradePlan
from chainvisor.upgrade.height import StaticHeightProbe
from chainvisor.upgrade.watcher import UpgradeFileWatcher, InvalidPlanPolicy


class RecordingDispatcher:
    """Stands in for CallbackDispatcher; records notifications instead of posting."""

    def __init__(self):
        self.detected = []
        self.height_reached = []
        self.encoded = 0

    def encode_event(self, event):
        self.encoded += 1
        return event.model_dump_json().encode("utf-8")

    def upgrade_detected(self, payload):
        self.detected.append(json.loads(payload))
        return True

    def upgrade_height_reached(self, payload):
        self.height_reached.append(json.loads(payload) if payload else None)
        return True


class CountingProbe(StaticHeightProbe):
    def __init__(self, height=0):
        super().__init__(height)
        self.calls = 0

    def current_height(self):
        self.calls += 1
        return super().current_height()


_mtime_counter = [1_700_000_000]


def write_plan(path, name="Upgrade-A", height=100, info="", mtime=None):
    """Write an upgrade-info.json and bump its mtime so the watcher sees a change."""
    # Replace atomically so a polling worker never sees a half-written file
    tmp_path = path + ".tmp"
    with open(tmp_path, "w") as f:
        json.dump({"name": name, "height": height, "info": info}, f)
    if mtime is None:
        _mtime_counter[0] += 10
        mtime = _mtime_counter[0]
    os.utime(tmp_path, (mtime, mtime))
    os.replace(tmp_path, path)
    return path


@pytest.fixture
def info_file(tmp_path):
    return str(tmp_path / "upgrade-info.json")


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def probe():
    return CountingProbe()


@pytest.fixture
def make_watcher(info_file, dispatcher, probe):
    def _make(**kwargs):
        kwargs.setdefault("interval", 0.01)
        kwargs.setdefault("height_probe", probe)
        kwargs.setdefault("dispatcher", dispatcher)
        kwargs.setdefault("on_invalid_plan", InvalidPlanPolicy.PROPAGATE)
        return UpgradeFileWatcher(info_file, **kwargs)
    return _make


@pytest.fixture
def genesis():
    return UpgradePlan()


@pytest.fixture
def write_info(info_file):
    def _write(name="Upgrade-A", height=100, info="", mtime=None):
        return write_plan(info_file, name=name, height=height, info=info, mtime=mtime)
    return _write
