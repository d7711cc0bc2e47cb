from __future__ import annotations

import os


class IntegrationDisabledError(RuntimeError):
    pass


class IntegrationMisconfiguredError(RuntimeError):
    pass


class ProviderCallError(RuntimeError):
    """A provider answered with an error or could not be reached."""

    def __init__(self, code: str, message: str = "", *, status: int | None = None):
        self.code = code
        self.status = status
        super().__init__(f"{code}:{message}" if message else code)


def env_timeout(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        value = float(raw) if raw else float(default)
    except ValueError:
        value = float(default)
    return max(1.0, min(value, 120.0))
