# MIT License
# Copyright (c) 2025 Hashborn

"""
Current block height probes.

The watcher asks the running binary for its sync status before accepting
an upgrade plan. A height of 0 means "unknown" and never blocks an upgrade.
"""

import logging
import re
import subprocess
from typing import Optional, Protocol, Sequence
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from ..protocol.types.errors import ProbeExecutionError, ProbeParseError, MissingHeightError

logger = logging.getLogger(__name__)

UNKNOWN_HEIGHT = 0

DECIMAL_HEIGHT = re.compile(r"[+-]?[0-9]+")


class SyncInfo(BaseModel):
    latest_block_height: str = ""


class StatusResponse(BaseModel):
    """Subset of the `<binary> status` output we care about."""
    model_config = ConfigDict(populate_by_name=True)

    sync_info: SyncInfo = Field(default_factory=SyncInfo, alias="SyncInfo")


class HeightProbe(Protocol):
    def current_height(self) -> int:
        ...


class StaticHeightProbe:
    """Reports a fixed height without touching any process."""

    def __init__(self, height: int = UNKNOWN_HEIGHT):
        self.height = height

    def current_height(self) -> int:
        return self.height


class SubprocessHeightProbe:
    """
    Queries the node binary with its `status` command.

    Expected stdout: {"SyncInfo": {"latest_block_height": "<n>"}}
    """

    def __init__(self, binary: str, args: Sequence[str] = ("status",), timeout: Optional[float] = None):
        self.binary = binary
        self.args = tuple(args)
        self.timeout = timeout

    def current_height(self) -> int:
        """
        Run the status command and return the latest block height.

        Raises:
            ProbeExecutionError: If the command cannot be run or fails
            ProbeParseError: If stdout is not the expected JSON
            MissingHeightError: If the height field is empty or absent
        """
        cmd = [self.binary, *self.args]
        try:
            result = subprocess.run(cmd, capture_output=True, check=True, timeout=self.timeout)
        except (OSError, subprocess.SubprocessError) as e:
            raise ProbeExecutionError(f"{' '.join(cmd)} failed: {e}") from e

        return parse_status_height(result.stdout)


def parse_status_height(output: bytes) -> int:
    try:
        resp = StatusResponse.model_validate_json(output)
    except ValidationError as e:
        raise ProbeParseError(f"invalid status output: {e}") from e

    raw_height = resp.sync_info.latest_block_height
    if not raw_height:
        raise MissingHeightError("latest block height is empty")

    if not DECIMAL_HEIGHT.fullmatch(raw_height):
        raise ProbeParseError(f"invalid latest block height {raw_height!r}")
    return int(raw_height)
