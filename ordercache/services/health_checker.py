# ordercache/services/health_checker.py

"""Remote order service connectivity health checker."""

import logging
import time
from dataclasses import dataclass

from ordercache.models.search import GatewayQuery
from ordercache.services.gateway import RemoteOrderGateway

logger = logging.getLogger("ordercache.health")

_SLOW_MS = 5000


@dataclass
class HealthResult:
    """Result of a single gateway health probe."""

    source_id: str
    status: str  # "ok", "slow", "down"
    latency_ms: float
    message: str


class HealthChecker:
    """Probes the order gateway with a single-record query."""

    def __init__(
        self, gateway: RemoteOrderGateway, source_id: str = "orders",
    ) -> None:
        self.gateway = gateway
        self.source_id = source_id

    async def check(self) -> HealthResult:
        """Run one probe and classify it as ok, slow or down."""
        start = time.monotonic()
        try:
            page = await self.gateway.query(
                GatewayQuery(
                    filter={"status": {"$ne": "INITIALIZED"}}, limit=1,
                )
            )
        except Exception as exc:
            elapsed_ms = (time.monotonic() - start) * 1000
            result = HealthResult(
                source_id=self.source_id,
                status="down",
                latency_ms=elapsed_ms,
                message=str(exc)[:80],
            )
        else:
            elapsed_ms = (time.monotonic() - start) * 1000
            if elapsed_ms > _SLOW_MS:
                result = HealthResult(
                    source_id=self.source_id,
                    status="slow",
                    latency_ms=elapsed_ms,
                    message="High latency",
                )
            else:
                result = HealthResult(
                    source_id=self.source_id,
                    status="ok",
                    latency_ms=elapsed_ms,
                    message=f"{len(page.records)} record(s)",
                )

        logger.info(
            "Health check %s: %s (%.0fms) %s",
            result.source_id,
            result.status,
            result.latency_ms,
            result.message,
        )
        return result
