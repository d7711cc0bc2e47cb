from __future__ import annotations

import os

from payhold.integrations.email.base import EmailProvider, MessageResult


class MockEmailProvider(EmailProvider):
    name = "mock"

    def __init__(self):
        self.outbox: list[dict] = []

    def _force_failure(self, subject: str) -> bool:
        return "[fail]" in (subject or "").lower() or (os.getenv("MOCK_NOTIFY_FORCE_FAIL") or "").strip() == "1"

    def send_email(self, *, to: str, subject: str, html: str, text: str = "", reference: str = "") -> MessageResult:
        if self._force_failure(subject):
            return MessageResult(ok=False, code="EMAIL_PROVIDER_DOWN", message="mock forced failure")
        self.outbox.append({"to": to, "subject": subject, "html": html, "text": text, "reference": reference})
        return MessageResult(
            ok=True,
            code="OK",
            message="mock_sent",
            provider_ref=f"mock-{len(self.outbox)}",
            raw={"to": to, "reference": reference},
        )
