from __future__ import annotations

import os
import urllib.parse
import urllib.request

from leasebot.config.models import ProgramConfig
from leasebot.core.notifications import OperatorAlert, render_operator_alert_message

PUSHOVER_URL = "https://api.pushover.net/1/messages.json"
# Pushover "high priority": bypasses the recipient's quiet hours.
OPERATOR_ALERT_PRIORITY = "1"


def send_pushover_alert(program: ProgramConfig, alert: OperatorAlert) -> bool:
    if not program.pushover_enabled:
        return False

    user_key = os.getenv(program.pushover_user_key_env)
    app_token = os.getenv(program.pushover_app_token_env)
    if not user_key or not app_token:
        return False

    payload = urllib.parse.urlencode(
        {
            "token": app_token,
            "user": user_key,
            "title": f"leasebot: operator attention for order {alert.order_id}",
            "message": render_operator_alert_message(alert),
            "priority": OPERATOR_ALERT_PRIORITY,
        }
    ).encode("utf-8")

    req = urllib.request.Request(PUSHOVER_URL, data=payload, method="POST")
    with urllib.request.urlopen(req, timeout=10):
        return True
