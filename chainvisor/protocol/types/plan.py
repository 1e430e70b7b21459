# MIT License
# Copyright (c) 2025 Hashborn

"""
Upgrade plan wire types.

UpgradePlan mirrors the upgrade-info.json document written by the chain's
upgrade module when an upgrade height is reached.
"""

import json
import re
from typing import Dict, Optional
from urllib.parse import urlparse

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import PlanInfoError, PlanValidationError


ZERO_TIME = "0001-01-01T00:00:00Z"

OS_ARCH_PATTERN = re.compile(r"[a-zA-Z0-9]+/[a-zA-Z0-9]+")


class UpgradePlan(BaseModel):
    """
    Named, height-targeted upgrade declaration.

    The default instance (empty name, height 0) stands for "no upgrade",
    i.e. the genesis binary is running.
    """
    model_config = ConfigDict(frozen=True, extra="ignore", strict=True)

    name: str = Field(default="", description="Upgrade name (e.g., 'v2-upgrade')")
    height: int = Field(default=0, description="Block height at which the upgrade applies")
    info: str = Field(default="", description="Opaque upgrade info, may carry a binaries map")
    time: Optional[str] = Field(default=None, description="Deprecated time-based trigger")

    def validate_basic(self):
        """
        Check the required fields.

        Raises:
            PlanValidationError: If name is empty, height is not positive
                or a time-based trigger is set
        """
        if self.time and self.time != ZERO_TIME:
            raise PlanValidationError("time-based upgrades have been deprecated")
        if not self.name:
            raise PlanValidationError("name cannot be empty")
        if self.height <= 0:
            raise PlanValidationError("height must be greater than 0")


class PlanInfo(BaseModel):
    """Binary download locations carried inside UpgradePlan.info."""
    binaries: Dict[str, str] = Field(default_factory=dict)

    def validate_basic(self):
        if not self.binaries:
            raise PlanInfoError('no "binaries" entries found')
        for platform, url in self.binaries.items():
            if platform != "any" and not OS_ARCH_PATTERN.search(platform):
                raise PlanInfoError(f'invalid os/arch format in key "{platform}"')
            if not is_url(url):
                raise PlanInfoError(f'invalid url "{url}" in binaries[{platform}]')

    def urls(self):
        return list(self.binaries.values())

    @classmethod
    def parse(cls, info: str, timeout: float = 10.0) -> "PlanInfo":
        """
        Parse an info payload.

        The payload is either the JSON document itself or a URL pointing
        to it, in which case the document is downloaded first.

        Raises:
            PlanInfoError: If the payload is blank, unreachable or malformed
        """
        info = info.strip()
        if not info:
            raise PlanInfoError("plan info must not be blank")

        if urlparse(info).scheme in ("http", "https"):
            try:
                resp = requests.get(info, timeout=timeout)
                resp.raise_for_status()
            except requests.RequestException as e:
                raise PlanInfoError(f"could not download plan info from {info}: {e}") from e
            info = resp.text

        try:
            data = json.loads(info)
        except ValueError as e:
            raise PlanInfoError(f"plan info is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise PlanInfoError("plan info must be a JSON object")

        try:
            plan_info = cls.model_validate(data)
        except ValidationError as e:
            raise PlanInfoError(f"invalid plan info: {e}") from e

        plan_info.validate_basic()
        return plan_info


class CallbackEvent(BaseModel):
    """Payload posted to the deployment backend on upgrade notifications."""
    name: str
    version: str = ""
    repo: str = ""
    info: str = ""
    height: int


def is_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https", "file") and bool(parsed.netloc or parsed.path)
