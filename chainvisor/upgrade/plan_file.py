# MIT License
# Copyright (c) 2025 Hashborn

"""
Upgrade-info file reader.
"""

import json
import logging
from pydantic import ValidationError
from ..protocol.types.plan import UpgradePlan
from ..protocol.types.errors import (
    PlanFileNotFoundError,
    EmptyPlanFileError,
    PlanDecodeError,
    PlanValidationError,
)

logger = logging.getLogger(__name__)


def parse_upgrade_info_file(filename: str, disable_recase: bool = False) -> UpgradePlan:
    """
    Read and validate an upgrade-info.json file.

    Args:
        filename: Path to the file
        disable_recase: Keep the plan name as written instead of lower-casing it

    Returns:
        The decoded plan

    Raises:
        PlanFileNotFoundError: If the file cannot be read
        EmptyPlanFileError: If the file is empty
        PlanDecodeError: If the content is not a JSON plan object
        PlanValidationError: If required fields are missing or invalid
    """
    try:
        with open(filename, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise PlanFileNotFoundError(f"cannot read {filename}: {e}") from e

    if len(raw) == 0:
        raise EmptyPlanFileError(f"empty upgrade-info.json: {filename}")

    try:
        data = json.loads(raw)
    except ValueError as e:
        raise PlanDecodeError(f"invalid JSON in {filename}: {e}") from e
    if not isinstance(data, dict):
        raise PlanDecodeError(f"{filename} must contain a JSON object")

    try:
        plan = UpgradePlan.model_validate(data)
    except ValidationError as e:
        raise PlanDecodeError(f"malformed upgrade plan in {filename}: {e}") from e

    # required values must be set
    try:
        plan.validate_basic()
    except PlanValidationError as e:
        raise PlanValidationError(f"invalid upgrade-info.json content: {e}, got: {plan}") from e

    # normalize name to prevent operator error in upgrade name case sensitivity errors
    if not disable_recase:
        plan = plan.model_copy(update={"name": plan.name.lower()})

    logger.debug(f"Parsed upgrade plan {plan.name} at height {plan.height} from {filename}")
    return plan
