# MIT License
# Copyright (c) 2025 Hashborn

"""
Upgrade watcher error taxonomy.

Only PlanFileError is allowed to escape the watcher's decision routine.
Everything else is resolved to "not ready" by the watcher itself.
"""


class UpgradeWatcherError(Exception):
    pass


class PlanFileError(UpgradeWatcherError):
    """The upgrade-info file exists but cannot be turned into a valid plan."""


class PlanFileNotFoundError(PlanFileError):
    pass


class EmptyPlanFileError(PlanFileError):
    pass


class PlanDecodeError(PlanFileError):
    pass


class PlanValidationError(PlanFileError):
    pass


class PlanInfoError(UpgradeWatcherError):
    """The plan's info payload does not carry a usable binaries map."""


class HeightProbeError(UpgradeWatcherError):
    pass


class ProbeExecutionError(HeightProbeError):
    pass


class ProbeParseError(HeightProbeError):
    pass


class MissingHeightError(HeightProbeError):
    pass
