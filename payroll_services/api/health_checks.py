"""
Health check endpoints and system monitoring
"""
from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import psutil

from payroll_services.api.logging_config import get_logger

logger = get_logger("health")

# Track API startup time
API_START_TIME = time.time()


async def check_rpc_health(rpc_url: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, Any]:
    """
    Check ledger JSON-RPC connectivity with eth_blockNumber.

    Returns:
        dict with status, response_time_ms, block_number and error (if any)
    """
    try:
        start = time.time()
        async with httpx.AsyncClient(timeout=5.0, transport=transport) as client:
            response = await client.post(
                rpc_url,
                json={"jsonrpc": "2.0", "id": 1, "method": "eth_blockNumber", "params": []},
            )
            response.raise_for_status()
            body = response.json()
        if "error" in body:
            raise RuntimeError(body["error"])
        response_time = (time.time() - start) * 1000

        return {
            "status": "healthy",
            "response_time_ms": round(response_time, 2),
            "block_number": int(body["result"], 16),
            "rpc_url": rpc_url,
        }
    except Exception as e:
        logger.error(f"RPC health check failed: {e}")
        return {"status": "unhealthy", "error": str(e), "rpc_url": rpc_url}


async def check_relayer_health(relayer_url: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, Any]:
    """
    Check that the coprocessor relayer answers its key endpoint.
    Does not bootstrap a session.
    """
    url = relayer_url.rstrip("/") + "/v1/keyurl"
    try:
        start = time.time()
        async with httpx.AsyncClient(timeout=5.0, transport=transport) as client:
            response = await client.get(url)
            response.raise_for_status()
        return {
            "status": "healthy",
            "response_time_ms": round((time.time() - start) * 1000, 2),
            "relayer_url": relayer_url,
        }
    except Exception as e:
        logger.error(f"Relayer health check failed: {e}")
        return {"status": "unhealthy", "error": str(e), "relayer_url": relayer_url}


def get_system_metrics() -> Dict[str, Any]:
    """
    Get system resource metrics

    Returns:
        dict with CPU, memory, and disk usage
    """
    try:
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage("/")
        return {
            "cpu": {"usage_percent": round(psutil.cpu_percent(interval=0.1), 2)},
            "memory": {
                "usage_percent": round(memory.percent, 2),
                "used_mb": round(memory.used / (1024 * 1024), 2),
                "total_mb": round(memory.total / (1024 * 1024), 2),
            },
            "disk": {
                "usage_percent": round(disk.percent, 2),
                "used_gb": round(disk.used / (1024 ** 3), 2),
                "total_gb": round(disk.total / (1024 ** 3), 2),
            },
        }
    except Exception as e:
        logger.error(f"Failed to get system metrics: {e}")
        return {"error": str(e)}


def get_uptime() -> Dict[str, Any]:
    uptime_seconds = time.time() - API_START_TIME
    minutes = uptime_seconds / 60
    hours = minutes / 60
    days = hours / 24

    if days >= 1:
        uptime_str = f"{int(days)}d {int(hours % 24)}h"
    elif hours >= 1:
        uptime_str = f"{int(hours)}h {int(minutes % 60)}m"
    else:
        uptime_str = f"{int(minutes)}m {int(uptime_seconds % 60)}s"

    return {"uptime_seconds": round(uptime_seconds, 2), "uptime_formatted": uptime_str}


async def comprehensive_health_check(
    rpc_url: Optional[str] = None,
    relayer_url: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Perform comprehensive health check of all services

    Args:
        rpc_url: ledger JSON-RPC URL to check
        relayer_url: coprocessor relayer base URL to check

    Returns:
        dict with overall status and component statuses
    """
    checks: Dict[str, Any] = {}
    checks["rpc"] = await check_rpc_health(rpc_url) if rpc_url else {"status": "not_configured"}
    checks["relayer"] = await check_relayer_health(relayer_url) if relayer_url else {"status": "not_configured"}
    checks["system"] = get_system_metrics()
    checks["uptime"] = get_uptime()

    component_statuses = [checks["rpc"].get("status"), checks["relayer"].get("status")]
    overall = "healthy" if all(s in ("healthy", "not_configured") for s in component_statuses) else "unhealthy"

    return {
        "status": overall,
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "checks": checks,
    }


async def readiness_check(rpc_url: Optional[str] = None) -> bool:
    """
    Ready when the ledger RPC answers. The relayer does not gate readiness.
    """
    if not rpc_url:
        return True
    rpc = await check_rpc_health(rpc_url)
    return rpc["status"] == "healthy"


async def liveness_check() -> bool:
    return True
