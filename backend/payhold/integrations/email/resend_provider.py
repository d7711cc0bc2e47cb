from __future__ import annotations

import os

import requests

from payhold.integrations.common import env_timeout
from payhold.integrations.email.base import EmailProvider, MessageResult


RESEND_BASE = "https://api.resend.com"


def _map_resend_error(status: int, message: str) -> str:
    msg = (message or "").lower()
    if status in (401, 403):
        return "EMAIL_AUTH_FAILED"
    if status == 429:
        return "EMAIL_RATE_LIMITED"
    if status in (400, 422):
        if "from" in msg or "domain" in msg:
            return "EMAIL_INVALID_SENDER"
        return "EMAIL_INVALID_RECIPIENT"
    return "EMAIL_PROVIDER_DOWN"


class ResendEmailProvider(EmailProvider):
    name = "resend"

    def __init__(self, *, api_key: str, sender: str, timeout: float | None = None):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout if timeout is not None else env_timeout("EMAIL_HTTP_TIMEOUT_SECONDS", 12)

    def send_email(self, *, to: str, subject: str, html: str, text: str = "", reference: str = "") -> MessageResult:
        payload = {
            "from": self.sender,
            "to": [(to or "").strip()],
            "subject": subject,
            "html": html,
        }
        if text:
            payload["text"] = text
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if reference:
            headers["Idempotency-Key"] = reference[:256]
        try:
            r = requests.post(f"{RESEND_BASE}/emails", json=payload, headers=headers, timeout=self.timeout)
            data = r.json() if r.content else {}
        except requests.Timeout:
            return MessageResult(ok=False, code="EMAIL_PROVIDER_DOWN", message="timeout")
        except (requests.RequestException, ValueError) as e:
            return MessageResult(ok=False, code="EMAIL_PROVIDER_DOWN", message=str(e)[:200])
        if 200 <= r.status_code < 300:
            return MessageResult(
                ok=True,
                code="OK",
                message="sent",
                provider_ref=str((data or {}).get("id") or ""),
                raw=data if isinstance(data, dict) else {"payload": data},
            )
        detail = ""
        if isinstance(data, dict):
            detail = str(data.get("message") or data.get("error") or "")
        return MessageResult(
            ok=False,
            code=_map_resend_error(r.status_code, detail),
            message=(detail or f"http_{r.status_code}")[:200],
            raw=data if isinstance(data, dict) else {"payload": data},
        )


def resend_health() -> dict:
    missing = []
    if not (os.getenv("RESEND_API_KEY") or "").strip():
        missing.append("RESEND_API_KEY")
    if not (os.getenv("EMAIL_FROM") or "").strip():
        missing.append("EMAIL_FROM")
    return {"missing": missing}
