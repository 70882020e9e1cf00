"""In-memory progress record of a provisioning run."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from glinr.store import utc_now


class ProvisioningStage(str, Enum):
    VERIFICATION = "verification"
    CERTIFICATE_ISSUANCE = "certificate_issuance"
    PROXY_RELOAD = "proxy_reload"
    COMPLETE = "complete"


@dataclass
class ProvisioningProgress:
    """Where a run is and what it achieved so far.

    A run is finished when it reaches ``complete`` or when ``error`` is set;
    in the latter case ``stage`` is the stage that failed.
    """

    domain: str
    stage: ProvisioningStage = ProvisioningStage.VERIFICATION
    domain_verified: bool = False
    certificate_issued: bool = False
    proxy_reloaded: bool = False
    certificate_id: int | None = None
    message: str = ""
    error: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    last_update: datetime = field(default_factory=utc_now)

    @property
    def finished(self) -> bool:
        return self.error is not None or self.stage == ProvisioningStage.COMPLETE

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.stage == ProvisioningStage.COMPLETE

    def update(self, message: str, stage: ProvisioningStage | None = None) -> None:
        if stage is not None:
            self.stage = stage
        self.message = message
        self.last_update = utc_now()

    def fail(self, error: str) -> None:
        self.error = error
        self.message = error
        self.last_update = utc_now()

    def snapshot(self) -> ProvisioningProgress:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "stage": self.stage.value,
            "domain_verified": self.domain_verified,
            "certificate_issued": self.certificate_issued,
            "proxy_reloaded": self.proxy_reloaded,
            "certificate_id": self.certificate_id,
            "message": self.message,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "last_update": self.last_update.isoformat(),
        }
