"""
Smoke test against a running instance.

- GET /health
- POST /api/events (unique idempotency key per run)
- POST the same event again, expecting the same event back or a 409
- GET /api/events/{id} until the worker has dispatched it

Subscribers are not required: an event nobody listens to is still marked
processed by the worker.
"""

from __future__ import annotations

import os
import sys
import time
import uuid
from pathlib import Path

import httpx

# allow running from any directory (`python scripts/smoke_delivery.py`)
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from hookrelay.core.logging import get_logger, setup_logging  # noqa: E402


logger = get_logger(__name__)


def _base_url() -> str:
    port = os.environ.get("PORT", "8000")
    return os.environ.get("BASE_URL", f"http://127.0.0.1:{port}").rstrip("/")


def _timeout_seconds() -> float:
    return float(os.environ.get("SMOKE_TIMEOUT_SECONDS", "10"))


def _event_payload(key: str) -> dict:
    return {
        "event_type": "smoke.test",
        "event_name": "Smoke Test",
        "payload": {"run": key},
        "source": "smoke-script",
        "idempotency_key": key,
    }


def _check_status(resp: httpx.Response, *allowed: int) -> None:
    if resp.status_code not in allowed:
        raise RuntimeError(
            f"Unexpected status {resp.status_code} for {resp.request.method} {resp.request.url}. "
            f"Body: {(resp.text or '')[:500]}"
        )


def main() -> None:
    setup_logging(level="INFO", json_format=False, app_name="hookrelay-smoke")

    base_url = _base_url()
    timeout = _timeout_seconds()
    key = f"smoke-{uuid.uuid4()}"

    logger.info("Starting smoke tests", extra_data={"base_url": base_url, "timeout_seconds": timeout})

    with httpx.Client(timeout=timeout) as client:
        resp = client.get(f"{base_url}/health")
        _check_status(resp, 200)

        resp = client.post(f"{base_url}/api/events", json=_event_payload(key))
        _check_status(resp, 201)
        event_id = resp.json()["id"]
        logger.info("Event submitted", extra_data={"event_id": event_id})

        resp = client.post(f"{base_url}/api/events", json=_event_payload(key))
        _check_status(resp, 201, 409)
        if resp.status_code == 201 and resp.json()["id"] != event_id:
            raise RuntimeError("Duplicate submission created a second event")

        deadline = time.monotonic() + timeout
        while True:
            resp = client.get(f"{base_url}/api/events/{event_id}")
            _check_status(resp, 200)
            if resp.json()["processed_at"]:
                break
            if time.monotonic() > deadline:
                raise RuntimeError(f"Event {event_id} was not dispatched within {timeout}s")
            time.sleep(0.5)

    logger.info("Smoke tests completed successfully")


if __name__ == "__main__":
    main()
