"""
Health check system for the gateway's configuration and state store.
"""
import inspect
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Tuple, Union

from botbuilder.core import Storage

from config import Config

# Use the 'health' section logger for better organization
log = logging.getLogger("health")

# Statuses that still count as serving
HEALTHY_STATUSES = ["OK", "WARN", "NOT CONFIGURED"]

HEALTH_PROBE_KEY_PREFIX = "healthz/probe/"

CheckResult = Dict[str, Any]


async def _run_single_check(
    check_function: Callable[..., Union[CheckResult, Awaitable[CheckResult]]],
    service_name: str,
    *args,
    **kwargs
) -> Tuple[str, CheckResult]:
    """Runs a single health check with error handling and timing."""
    log.debug(f"Starting health check: {service_name}")
    start_time = time.monotonic()

    try:
        result = check_function(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        elapsed = time.monotonic() - start_time
        log.error(f"{service_name} check raised after {elapsed:.2f}s: {e}", exc_info=True)
        return service_name, {"status": "ERROR", "message": f"Check failed: {e}", "elapsed_time": elapsed}

    elapsed = time.monotonic() - start_time
    if not isinstance(result, dict) or "status" not in result:
        log.error(f"Invalid check result format from {service_name}")
        return service_name, {"status": "ERROR", "message": "Invalid check result format", "elapsed_time": elapsed}

    result["elapsed_time"] = elapsed
    status = result["status"]
    log.info(f"{service_name} check completed in {elapsed:.2f}s - Status: {status}")
    if status != "OK":
        log.warning(f"  Details: {result.get('message', 'No details provided')}")
    return service_name, result


async def check_state_store(storage: Storage) -> CheckResult:
    """Round-trips a probe bag through the store and removes it again."""
    probe_key = f"{HEALTH_PROBE_KEY_PREFIX}{uuid.uuid4()}"
    probe = {"probe": probe_key}
    await storage.write({probe_key: probe})
    try:
        items = await storage.read([probe_key])
    finally:
        await storage.delete([probe_key])
    if items.get(probe_key) != probe:
        return {"status": "ERROR", "message": "State store returned a different value than was written"}
    return {"status": "OK", "message": f"{type(storage).__name__} read/write OK"}


async def run_health_checks(config: Config, storage: Storage) -> Dict[str, CheckResult]:
    """
    Runs every health check and returns the results keyed by component name.
    """
    results: Dict[str, CheckResult] = {}
    for name, check, args in (
        ("Config", config.health_check, ()),
        ("State Store", check_state_store, (storage,)),
    ):
        component, result = await _run_single_check(check, name, *args)
        results[component] = result
    return results


def overall_status(results: Dict[str, CheckResult]) -> Tuple[str, int]:
    """Collapses component results into (status, http status code)."""
    if any(result.get("status") not in HEALTHY_STATUSES for result in results.values()):
        return "ERROR", 503
    if any(result.get("status") != "OK" for result in results.values()):
        return "DEGRADED", 200
    return "OK", 200
