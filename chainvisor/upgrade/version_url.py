# MIT License
# Copyright (c) 2025 Hashborn

"""
Best-effort release version / source repository extraction from download URLs.

Used to tell the deployment backend which release an upgrade plan points at.
Both results may be empty; callers must cope with that.
"""

import re
import logging
from typing import Tuple
from ..protocol.types.plan import PlanInfo
from ..protocol.types.errors import PlanInfoError

logger = logging.getLogger(__name__)

GITHUB_HOST = "github.com"

# First segment that looks like a release tag wins, whatever follows the patch number
VERSION_TAG = re.compile(r"^[vV]\d+\.\d+\.\d+", re.ASCII)


def get_version_and_repo_from_url(url: str) -> Tuple[str, str]:
    """
    Split a download URL into (repo, version).

    Example:
        https://github.com/org/repo/releases/download/v1.2.3/bin
        -> ("https://github.com/org/repo", "v1.2.3")
    """
    segments = url.split("/")
    github_idx = -1
    repo = ""
    version = ""

    for idx, segment in enumerate(segments):
        if segment.lower() == GITHUB_HOST:
            github_idx = idx
        # host + org + repo name, nothing beyond
        if github_idx < 0 or idx <= github_idx + 2:
            if idx > 0:
                repo += "/"
            repo += segment
        if VERSION_TAG.match(segment):
            version = segment
            break

    if github_idx < 0:
        repo = ""
    return repo, version


def version_and_repo_from_info(info: str, timeout: float = 10.0) -> Tuple[str, str]:
    """
    Look for a release version in the binaries listed by a plan's info payload.

    Returns the (repo, version) of the first URL carrying a version, or
    ("", "") when there is none or the payload has no binaries map.
    """
    try:
        plan_info = PlanInfo.parse(info, timeout=timeout)
    except PlanInfoError as e:
        logger.debug(f"No binaries in upgrade info: {e}")
        return "", ""

    for url in plan_info.urls():
        repo, version = get_version_and_repo_from_url(url)
        if version:
            return repo, version
    return "", ""
