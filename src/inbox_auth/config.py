"""
Deployment configuration.

Environment variables:
    INBOX_AUTH_ENV - Deployment environment (default: production).
                     "development" enables open mode.
    INBOX_AUTH_TIMEOUT - Actor fetch timeout in seconds (default: 5.0)
    INBOX_AUTH_CLOCK_SKEW - Allowed signature clock skew in seconds (default: 300)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Protocol

DEVELOPMENT = "development"


class DeploymentGate(Protocol):
    def is_open_mode(self) -> bool: ...


class EnvironmentGate:
    """
    Open mode iff the deployment environment is `development`.

    Open mode does two things, both for local testing only:
    - client-to-server routes are served (elsewhere they answer 405, since
      client-to-server delivery is not supported yet)
    - unsigned deliveries from actors that publish a key are let through
    """

    def __init__(self, environment: str):
        self.environment = environment

    def is_open_mode(self) -> bool:
        return self.environment == DEVELOPMENT


@dataclass
class Settings:
    environment: str = "production"
    timeout_s: float = 5.0
    clock_skew: int = 300

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            environment=os.getenv("INBOX_AUTH_ENV", "production"),
            timeout_s=float(os.getenv("INBOX_AUTH_TIMEOUT", "5.0")),
            clock_skew=int(os.getenv("INBOX_AUTH_CLOCK_SKEW", "300")),
        )

    def gate(self) -> EnvironmentGate:
        return EnvironmentGate(self.environment)
