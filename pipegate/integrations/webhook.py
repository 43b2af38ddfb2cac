"""
PipeGate Webhook Notification

POSTs the JSON pipeline report to ``notify.webhook`` when a run finishes
(Slack workflow triggers, chat-ops bots, deployment dashboards...).
Delivery problems are logged and never change the pipeline outcome.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

logger = logging.getLogger(__name__)

NOTIFY_TIMEOUT = 10


def notify(url: str, payload: dict[str, Any]) -> bool:
    """Send the report. Returns True when the endpoint accepted it."""
    try:
        resp = requests.post(url, json=payload, timeout=NOTIFY_TIMEOUT)
    except requests.RequestException as exc:
        logger.warning("Webhook notification failed: %s", exc)
        return False

    if resp.status_code >= 400:
        logger.warning("Webhook notification rejected with HTTP %d", resp.status_code)
        return False

    logger.info("Webhook notified (HTTP %d)", resp.status_code)
    return True
