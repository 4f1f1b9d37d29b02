from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Literal

import httpx

from tms_sync.observability import incr_metric, log_event


AlertType = Literal["dlq_overflow", "high_failure_rate", "reconciliation_drift", "sync_stale"]


def _alert_text(alert_type: AlertType, details: dict[str, Any]) -> str:
    if alert_type == "dlq_overflow":
        return f"PortPro DLQ Alert: {details.get('count')} failed webhooks"
    if alert_type == "high_failure_rate":
        return f"PortPro High Failure Rate: {details.get('rate')}%"
    if alert_type == "reconciliation_drift":
        if details.get("error"):
            return f"PortPro Reconciliation Failed: {details.get('error')}"
        return f"PortPro Reconciliation Drift: {details.get('discrepancies')} discrepancies"
    return f"PortPro Sync Stale: last sync {details.get('last_sync') or 'never'}"


class AlertNotifier:
    """Posts operational alerts to a Slack incoming webhook. Never raises."""

    def __init__(
        self,
        webhook_url: str | None,
        *,
        timeout_seconds: float = 5.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._http = http_client or httpx.Client(timeout=timeout_seconds)

    def close(self) -> None:
        self._http.close()

    def send(self, alert_type: AlertType, details: dict[str, Any]) -> bool:
        details = {"timestamp": datetime.now(timezone.utc).isoformat(), **details}
        if not self._webhook_url:
            log_event(
                "alert_not_sent",
                level=logging.WARNING,
                alert_type=alert_type,
                reason="slack_webhook_url not configured",
                details=details,
            )
            return False

        payload = {
            "text": _alert_text(alert_type, details),
            "alert_type": alert_type,
            "details": details,
        }
        try:
            response = self._http.post(self._webhook_url, json=payload)
        except httpx.HTTPError as exc:
            incr_metric("alerts.sent", alert_type=alert_type, outcome="error")
            log_event("alert_send_failed", level=logging.ERROR, alert_type=alert_type, error=str(exc))
            return False
        if response.status_code >= 400:
            incr_metric("alerts.sent", alert_type=alert_type, outcome="rejected")
            log_event(
                "alert_send_failed",
                level=logging.ERROR,
                alert_type=alert_type,
                status_code=response.status_code,
                body=response.text[:200],
            )
            return False
        incr_metric("alerts.sent", alert_type=alert_type, outcome="ok")
        log_event("alert_sent", alert_type=alert_type)
        return True
