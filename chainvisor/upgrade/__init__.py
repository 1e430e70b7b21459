# MIT License
# Copyright (c) 2025 Hashborn

"""
Upgrade Watcher

Detects pending chain upgrades from the node's upgrade-info file and
notifies the deployment backend.
"""

from .plan_file import parse_upgrade_info_file
from .version_url import get_version_and_repo_from_url, version_and_repo_from_info
from .height import HeightProbe, StaticHeightProbe, SubprocessHeightProbe
from .callbacks import CallbackDispatcher
from .watcher import UpgradeFileWatcher, WatcherSnapshot, InvalidPlanPolicy

__all__ = [
    "parse_upgrade_info_file",
    "get_version_and_repo_from_url",
    "version_and_repo_from_info",
    "HeightProbe",
    "StaticHeightProbe",
    "SubprocessHeightProbe",
    "CallbackDispatcher",
    "UpgradeFileWatcher",
    "WatcherSnapshot",
    "InvalidPlanPolicy",
]
