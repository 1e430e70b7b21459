# MIT License
# Copyright (c) 2025 Hashborn

"""
Upgrade-info file watcher.

Polls the upgrade-info.json file written by the node when an upgrade
height is reached and tells the supervisor when a new upgrade is due.
"""

import os
import logging
import threading
from concurrent.futures import Future, InvalidStateError
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from ..protocol.types.plan import UpgradePlan, CallbackEvent
from ..protocol.types.errors import PlanFileError, HeightProbeError
from ..protocol.config.params import WatcherConfig
from ..observability import metrics
from .plan_file import parse_upgrade_info_file
from .version_url import version_and_repo_from_info
from .height import HeightProbe, SubprocessHeightProbe, UNKNOWN_HEIGHT
from .callbacks import CallbackDispatcher

logger = logging.getLogger(__name__)

EXIT_INVALID_PLAN = 2


class InvalidPlanPolicy(str, Enum):
    ABORT = "abort"          # terminate the process
    PROPAGATE = "propagate"  # raise PlanFileError to the caller


@dataclass(frozen=True)
class WatcherSnapshot:
    """Read-only view of the watcher state, safe to share across threads."""
    filename: str
    current_info: UpgradePlan
    last_mod_time: Optional[datetime]
    needs_update: bool
    initialized: bool
    last_height: int
    armed: bool

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "current_info": self.current_info.model_dump(),
            "last_mod_time": self.last_mod_time.isoformat() if self.last_mod_time else None,
            "needs_update": self.needs_update,
            "initialized": self.initialized,
            "last_height": self.last_height,
            "armed": self.armed,
        }


class UpgradeFileWatcher:
    """
    Watches an upgrade-info file for new upgrade plans.

    State is only mutated by the decision routine (check_update). While armed
    via monitor_update, that routine runs exclusively on the worker thread;
    other threads should read snapshot() instead.
    """

    def __init__(self,
                 filename: str,
                 interval: float,
                 height_probe: HeightProbe,
                 dispatcher: Optional[CallbackDispatcher] = None,
                 disable_recase: bool = False,
                 on_invalid_plan: InvalidPlanPolicy = InvalidPlanPolicy.ABORT,
                 info_timeout: float = 10.0):
        """
        Args:
            filename: Path of the upgrade-info file to watch
            interval: Poll interval in seconds
            height_probe: Source of the current block height
            dispatcher: Callback dispatcher (default: environment-driven)
            disable_recase: Keep plan names as written instead of lower-casing them
            on_invalid_plan: What to do with a malformed upgrade-info file
            info_timeout: Timeout for downloading a plan info referenced by URL

        Raises:
            ValueError: If the path or interval is invalid
        """
        if not filename:
            raise ValueError("filename undefined")
        if interval <= 0:
            raise ValueError(f"poll interval must be greater than 0, got {interval}")

        filename_abs = os.path.abspath(filename)
        dirname = os.path.dirname(filename_abs)
        if not os.path.isdir(dirname):
            raise ValueError(f"invalid path: {dirname} must be an existing directory")

        self.filename = filename_abs
        self.interval = interval
        self.height_probe = height_probe
        self.dispatcher = dispatcher or CallbackDispatcher()
        self.disable_recase = disable_recase
        self.on_invalid_plan = InvalidPlanPolicy(on_invalid_plan)
        self.info_timeout = info_timeout

        # Watcher state
        self.current_info = UpgradePlan()
        self.last_mod_time = 0  # st_mtime_ns of the last accepted file
        self.needs_update = False
        self.initialized = False
        self.last_height = UNKNOWN_HEIGHT

        self._thread: Optional[threading.Thread] = None
        self._armed = False
        self._cancel = threading.Event()
        self._snapshot = self._build_snapshot()

    @classmethod
    def from_config(cls,
                    cfg: WatcherConfig,
                    height_probe: Optional[HeightProbe] = None,
                    dispatcher: Optional[CallbackDispatcher] = None,
                    on_invalid_plan: InvalidPlanPolicy = InvalidPlanPolicy.ABORT) -> "UpgradeFileWatcher":
        """
        Build a watcher from the daemon configuration.

        Without an explicit probe, the current binary's `status` command is used.
        """
        if height_probe is None:
            height_probe = SubprocessHeightProbe(cfg.current_bin(), timeout=cfg.height_probe_timeout)
        if dispatcher is None:
            dispatcher = CallbackDispatcher(timeout=cfg.callback_timeout)
        return cls(
            filename=cfg.upgrade_info_file_path(),
            interval=cfg.poll_interval,
            height_probe=height_probe,
            dispatcher=dispatcher,
            disable_recase=cfg.disable_recase,
            on_invalid_plan=on_invalid_plan,
            info_timeout=cfg.callback_timeout,
        )

    # ─── Polling loop ────────────────────────────────────────────────

    @property
    def armed(self) -> bool:
        return self._armed

    def monitor_update(self, current_upgrade: UpgradePlan, reset_pending: bool = False) -> Future:
        """
        Start polling in the background.

        Args:
            current_upgrade: Upgrade the running binary belongs to
            reset_pending: Forget a previously accepted upgrade before the
                first tick (the supervisor has applied it)

        Returns:
            Future resolved with True once a new upgrade is due. It carries the
            PlanFileError under the PROPAGATE policy and is cancelled by stop().
        """
        if self.armed:
            raise RuntimeError("watcher is already monitoring")

        done: Future = Future()
        self._armed = True
        self._cancel = threading.Event()
        self._thread = threading.Thread(
            target=self._run_loop,
            args=(current_upgrade, done, self._cancel, reset_pending),
            name="upgrade-file-watcher",
            daemon=True,
        )
        self._thread.start()
        logger.info(f"Watching {self.filename} every {self.interval}s (current upgrade: {current_upgrade.name or 'genesis'})")
        return done

    def stop(self, wait: bool = True, timeout: Optional[float] = None):
        """Ask the worker to exit before its next tick."""
        self._cancel.set()
        if wait and self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _run_loop(self, current_upgrade: UpgradePlan, done: Future, cancel: threading.Event, reset_pending: bool):
        if reset_pending:
            self.needs_update = False

        while not cancel.wait(self.interval):
            if done.cancelled():
                break
            try:
                ready = self.check_update(current_upgrade)
            except PlanFileError as e:
                self._armed = False
                _resolve(done, exception=e)
                return
            except Exception as e:
                logger.error(f"Error in upgrade watcher loop: {e}")
                continue
            if ready:
                self._armed = False
                _resolve(done, result=True)
                return

        self._armed = False
        done.cancel()
        logger.info(f"Stopped watching {self.filename}")

    # ─── Decision routine ────────────────────────────────────────────

    def check_update(self, current_upgrade: UpgradePlan) -> bool:
        """
        Check the upgrade-info file for a new upgrade.

        Args:
            current_upgrade: Upgrade the running binary belongs to. On the first
                poll after start, a plan with a different name is reported as due.

        Returns:
            True if an upgrade must be applied

        Raises:
            PlanFileError: Malformed upgrade-info file under the PROPAGATE policy
        """
        if self.armed and threading.current_thread() is not self._thread:
            raise RuntimeError("check_update called while the watcher is monitoring")

        try:
            ready = self._check_update(current_upgrade)
        finally:
            self._snapshot = self._build_snapshot()
            metrics.update_metrics(self._snapshot)

        metrics.polls_total.labels(result="ready" if ready else "not_ready").inc()
        return ready

    def _check_update(self, current_upgrade: UpgradePlan) -> bool:
        if self.needs_update:
            return True

        try:
            stat = os.stat(self.filename)
        except OSError:
            # file doesn't exist yet
            return False

        if stat.st_mtime_ns <= self.last_mod_time:
            return False

        try:
            info = parse_upgrade_info_file(self.filename, self.disable_recase)
        except PlanFileError as e:
            self._escalate(e)
            raise

        metrics.plans_detected_total.inc()
        logger.info(f"Upgrade plan detected: {info.name} at height {info.height}")

        # callback even without a version, so the backend at least knows an upgrade is expected
        repo, version = version_and_repo_from_info(info.info, timeout=self.info_timeout)
        event = CallbackEvent(
            name=info.name,
            version=version,
            repo=repo,
            info=info.info,
            height=info.height,
        )
        payload = self.dispatcher.encode_event(event)
        if payload is not None:
            self.dispatcher.upgrade_detected(payload)

        # file exists but too early in height
        current_height = self._current_height()
        if current_height > UNKNOWN_HEIGHT and current_height < info.height:
            logger.debug(f"Upgrade {info.name} waits for height {info.height} (now {current_height})")
            return False

        if not self.initialized:
            # watcher has restarted
            self.initialized = True
            self.current_info = info
            self.last_mod_time = stat.st_mtime_ns

            # We cannot tell whether the upgrade was applied before the restart,
            # so compare against the name of the upgrade that is running.
            if current_upgrade.name.lower() != self.current_info.name.lower():
                self._accept(payload)
                return True

        if info.height > self.current_info.height:
            self.current_info = info
            self.last_mod_time = stat.st_mtime_ns
            self._accept(payload)
            return True

        return False

    def _accept(self, payload: Optional[bytes]):
        self.needs_update = True
        metrics.upgrades_ready_total.inc()
        logger.info(f"Upgrade {self.current_info.name} is due at height {self.current_info.height}")
        self.dispatcher.upgrade_height_reached(payload or b"")

    def _current_height(self) -> int:
        try:
            height = self.height_probe.current_height()
        except HeightProbeError as e:
            logger.debug(f"Block height unknown: {e}")
            metrics.probe_failures_total.labels(reason=type(e).__name__).inc()
            height = UNKNOWN_HEIGHT
        self.last_height = height
        return height

    def _escalate(self, err: PlanFileError):
        if self.on_invalid_plan == InvalidPlanPolicy.ABORT:
            logger.critical(f"Failed to parse upgrade info file: {err}")
            os._exit(EXIT_INVALID_PLAN)
        logger.error(f"Failed to parse upgrade info file: {err}")

    # ─── Diagnostics ─────────────────────────────────────────────────

    def snapshot(self) -> WatcherSnapshot:
        return replace(self._snapshot, armed=self.armed)

    def _build_snapshot(self) -> WatcherSnapshot:
        last_mod_time = None
        if self.last_mod_time:
            last_mod_time = datetime.fromtimestamp(self.last_mod_time / 1e9, tz=timezone.utc)
        return WatcherSnapshot(
            filename=self.filename,
            current_info=self.current_info,
            last_mod_time=last_mod_time,
            needs_update=self.needs_update,
            initialized=self.initialized,
            last_height=self.last_height,
            armed=self.armed,
        )


def _resolve(done: Future, result=None, exception: Optional[BaseException] = None):
    # The caller may have cancelled the future in the meantime
    try:
        if exception is not None:
            done.set_exception(exception)
        else:
            done.set_result(result)
    except InvalidStateError:
        logger.debug("Watcher result dropped, future already cancelled")
