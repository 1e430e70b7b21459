# MIT License
# Copyright (c) 2025 Hashborn

"""
Upgrade callbacks to the deployment backend.

Delivery is fire-and-forget: one POST per notification, no retries, and
failures never reach the caller.
"""

import os
import logging
from typing import Mapping, Optional
import requests
from ..protocol.types.plan import CallbackEvent
from ..protocol.config.params import (
    ENV_CALLBACK_API,
    ENV_NODE_ID,
    ENV_DEPLOYMENT_ID,
    DEFAULT_CALLBACK_TIMEOUT_SEC,
)
from ..observability import metrics

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/internal/cosmos/"
UPGRADE_DETECTED = "cosmos_notify_upgrade"
UPGRADE_HEIGHT_REACHED = "cosmos_upgrade_height_reached"


class CallbackDispatcher:
    def __init__(self,
                 environ: Optional[Mapping[str, str]] = None,
                 timeout: float = DEFAULT_CALLBACK_TIMEOUT_SEC,
                 session: Optional[requests.Session] = None):
        """
        Args:
            environ: Source of the callback target variables, read on every
                dispatch (default: the live process environment)
            timeout: Per-request timeout in seconds
            session: Optional requests session (default: module-level requests)
        """
        self.environ = environ
        self.timeout = timeout
        self.session = session

    def callback_url(self, suffix: str) -> str:
        env = os.environ if self.environ is None else self.environ
        return (
            env.get(ENV_CALLBACK_API, "")
            + CALLBACK_PATH
            + env.get(ENV_NODE_ID, "")
            + "/"
            + env.get(ENV_DEPLOYMENT_ID, "")
            + "/"
            + suffix
        )

    def encode_event(self, event: CallbackEvent) -> Optional[bytes]:
        """Serialize an event, or return None when it cannot be serialized."""
        try:
            return event.model_dump_json().encode("utf-8")
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to encode upgrade callback for {event.name}: {e}")
            return None

    def post(self, suffix: str, payload: bytes) -> bool:
        """
        POST a payload to one of the callback endpoints.

        Returns:
            True if the backend answered with a 2xx status
        """
        env = os.environ if self.environ is None else self.environ
        if not env.get(ENV_CALLBACK_API):
            logger.debug(f"{ENV_CALLBACK_API} not set, skipping {suffix} callback")
            metrics.callbacks_total.labels(endpoint=suffix, outcome="skipped").inc()
            return False

        url = self.callback_url(suffix)
        logger.info(f"Upgrade callback to {url}")

        sender = self.session if self.session is not None else requests
        try:
            resp = sender.post(
                url,
                data=payload,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Upgrade callback to {url} failed: {e}")
            metrics.callbacks_total.labels(endpoint=suffix, outcome="error").inc()
            return False

        if not resp.ok:
            logger.warning(f"Upgrade callback to {url} returned HTTP {resp.status_code}")
            metrics.callbacks_total.labels(endpoint=suffix, outcome="rejected").inc()
            return False

        metrics.callbacks_total.labels(endpoint=suffix, outcome="delivered").inc()
        return True

    def upgrade_detected(self, payload: bytes) -> bool:
        """Report that an upgrade plan showed up, whatever the current height."""
        return self.post(UPGRADE_DETECTED, payload)

    def upgrade_height_reached(self, payload: bytes) -> bool:
        """Report that the upgrade is due and the node should be switched."""
        return self.post(UPGRADE_HEIGHT_REACHED, payload)
