"""Audit trail for key lifecycle events"""

import logging
import time
from threading import Thread

import requests

from .errors import StorageFailure

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 5


def _post_webhook(url, event):
    try:
        resp = requests.post(url, json=event, timeout=WEBHOOK_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as e:
        logger.warning("Audit webhook failed for %s: %s", event.get("action"), e)


def log_audit(store, key, action, details, ip_address=None, webhook_url=None):
    """Log actions for security monitoring"""
    details = dict(details or {})
    if ip_address:
        details["ip"] = ip_address
    logger.info("audit %s key=%s %s", action, key, details)

    try:
        store.log_event(action, key, details)
    except StorageFailure as e:
        logger.error("Could not persist audit event %s: %s", action, e)

    if webhook_url:
        event = {"action": action, "key": key, "details": details, "timestamp": int(time.time())}
        Thread(target=_post_webhook, args=(webhook_url, event), daemon=True).start()
