"""Health Check - Liveness and readiness for the proxy

K8s Integration:
- /health/live: Liveness probe (is the process up?)
- /health/ready: Readiness probe (identity service reachable, cipher working?)
"""

import time
from datetime import datetime, timezone
from typing import Dict

import structlog
from fastapi import status
from fastapi.responses import JSONResponse

from dataproxy.security.encryption import DecryptionError, FieldCipher

logger = structlog.get_logger()


class HealthStatus:
    """Health status constants"""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class HealthChecker:
    """Dependency checks for the proxy"""

    def __init__(self, identity, cipher: FieldCipher):
        self.identity = identity
        self.cipher = cipher
        self.start_time = time.time()

    async def check_identity(self) -> Dict:
        """Check Supabase Auth reachability"""
        start = time.time()
        reachable = await self.identity.ping()
        latency_ms = (time.time() - start) * 1000

        if reachable:
            return {
                "status": HealthStatus.HEALTHY,
                "latency_ms": round(latency_ms, 2),
                "message": "Identity service reachable"
            }
        return {
            "status": HealthStatus.UNHEALTHY,
            "message": "Identity service unreachable"
        }

    async def check_cipher(self) -> Dict:
        """Seal and open a probe value with the live key"""
        try:
            if self.cipher.decrypt(self.cipher.encrypt("health-probe")) != "health-probe":
                raise DecryptionError("Probe round trip mismatch")
            return {"status": HealthStatus.HEALTHY, "message": "Cipher operational"}
        except DecryptionError as e:
            logger.error("Cipher health check failed", error=str(e))
            return {"status": HealthStatus.UNHEALTHY, "message": "Cipher self-test failed"}

    async def liveness_check(self) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={
                "status": "alive",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "uptime_seconds": int(time.time() - self.start_time)
            }
        )

    async def readiness_check(self) -> JSONResponse:
        """Kubernetes readiness probe

        Returns:
            200 if the proxy can serve traffic, 503 if not
        """
        checks = {
            "identity": await self.check_identity(),
            "cipher": await self.check_cipher(),
        }
        is_ready = all(check["status"] == HealthStatus.HEALTHY for check in checks.values())

        return JSONResponse(
            status_code=status.HTTP_200_OK if is_ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "ready" if is_ready else "not_ready",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "checks": checks
            }
        )
