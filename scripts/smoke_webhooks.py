"""
Smoke tests against a running instance.

Runs lightweight HTTP checks:
- GET /health
- GET on every chainhook endpoint (capability descriptor)
- POST an empty delivery to every chainhook endpoint

An empty delivery touches no projection, so this is safe against production.
Set CHAINHOOK_SECRET_TOKEN to the deployed token for the POST checks.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import httpx

# allow `python scripts/smoke_webhooks.py` from any directory
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from bitpay_ingest.core.logging import get_logger, setup_logging  # noqa: E402
from bitpay_ingest.ingest.registry import DOMAINS  # noqa: E402


logger = get_logger(__name__)


def _base_url() -> str:
    port = os.environ.get("PORT", "8000")
    return os.environ.get("BASE_URL", f"http://127.0.0.1:{port}").rstrip("/")


def _timeout_seconds() -> float:
    return float(os.environ.get("SMOKE_TIMEOUT_SECONDS", "10"))


def _check_status(resp: httpx.Response, expected_family: int = 2) -> None:
    family = resp.status_code // 100
    if family != expected_family:
        raise RuntimeError(
            f"Unexpected status {resp.status_code} for {resp.request.method} {resp.request.url}. "
            f"Body: {(resp.text or '')[:500]}"
        )


def main() -> None:
    setup_logging(level="INFO", json_format=False, app_name="bitpay-ingest-smoke")

    base_url = _base_url()
    timeout = _timeout_seconds()
    token = os.environ.get("CHAINHOOK_SECRET_TOKEN", "")

    logger.info("Starting smoke tests", extra_data={"base_url": base_url, "timeout_seconds": timeout})

    with httpx.Client(timeout=timeout) as client:
        resp = client.get(f"{base_url}/health")
        _check_status(resp)

        for slug, spec in DOMAINS.items():
            url = f"{base_url}/api/webhooks/chainhook/{slug}"

            resp = client.get(url)
            _check_status(resp)
            logger.info("Descriptor ok", extra_data={"domain": slug, "events": len(resp.json()["events"])})

            if not token:
                continue
            resp = client.post(
                url,
                json={"apply": [], "rollback": []},
                headers={"Authorization": f"Bearer {token}"},
            )
            _check_status(resp)
            if resp.json().get("eventType") != spec.event_type:
                raise RuntimeError(f"Unexpected eventType from {url}: {resp.text[:200]}")

        if not token:
            logger.warning("CHAINHOOK_SECRET_TOKEN not set, skipped POST checks")

    logger.info("Smoke tests completed successfully")


if __name__ == "__main__":
    main()
