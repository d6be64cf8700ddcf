import logging
from datetime import datetime
from typing import Optional

import requests

log = logging.getLogger(__name__)

SYSTEM_NAME = "Marketing Data System"


class AlertService:
    """
    Operator alerts for the nightly ETL.

    Alerts always go to the log. When a webhook URL is configured the alert is
    also POSTed there as JSON. Email addresses are only recorded in the log.
    """

    def __init__(
        self,
        enabled: bool = False,
        webhook_url: Optional[str] = None,
        email: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        self.enabled = enabled
        self.webhook_url = webhook_url
        self.email = email
        self.session = session or requests.Session()
        self.timeout = timeout

    def send_critical(self, message: str, detail: str) -> None:
        if not self.enabled:
            log.warning("alerts disabled, critical alert not sent: %s", message)
            return
        log.critical("CRITICAL ALERT: %s - %s", message, detail)
        self._deliver(self._body("CRITICAL", "HIGH", message, detail))

    def send_warning(self, message: str) -> None:
        if not self.enabled:
            return
        log.warning("WARNING ALERT: %s", message)
        self._deliver(self._body("WARNING", "MEDIUM", message))

    def _body(self, kind: str, severity: str, message: str, detail: Optional[str] = None) -> dict:
        body = {
            "type": kind,
            "message": message,
            "timestamp": datetime.now().isoformat(),
            "system": SYSTEM_NAME,
            "severity": severity,
        }
        if detail is not None:
            body["detail"] = detail
        return body

    def _deliver(self, body: dict) -> None:
        if not self.webhook_url and not self.email:
            log.warning("no alert destination configured (ALERT_WEBHOOK_URL / ALERT_EMAIL)")
            return
        if self.email:
            log.info("alert for %s: %s", self.email, body["message"])
        if not self.webhook_url:
            return
        try:
            r = self.session.post(self.webhook_url, json=body, timeout=self.timeout)
            r.raise_for_status()
            log.info("alert webhook delivered (status=%s)", r.status_code)
        except requests.RequestException as e:
            log.error("alert webhook failed: %s", e)
