# paywidget/services/status.py
# Read-only client for the backend payment-status endpoint.
#
# Contract: GET <BACKEND_URL><BACKEND_STATUS_PATH>?checkoutId=<id> -> JSON
#   - "subscription" object present  -> terminal success
#   - any other 2xx                   -> pending
#   - non-2xx / transport failure     -> transient error (StatusCheckError)

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from paywidget.errors import StatusCheckError

log = logging.getLogger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_PENDING = "pending"
OUTCOME_ERROR = "error"


def make_session(retries: int, user_agent: str = "paywidget-status/1") -> requests.Session:
    sess = requests.Session()
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=0.4,
        status_forcelist=[429, 502, 503, 504],
        allowed_methods=["GET", "HEAD"],
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=20)
    sess.mount("http://", adapter)
    sess.mount("https://", adapter)
    sess.headers.update({"User-Agent": user_agent, "Content-Type": "application/json"})
    return sess


def classify(payload: Any) -> str:
    """The presence of a subscription object is the only terminal signal."""
    if isinstance(payload, Mapping) and isinstance(payload.get("subscription"), Mapping):
        return OUTCOME_SUCCESS
    return OUTCOME_PENDING


@dataclass(frozen=True)
class StatusResult:
    outcome: str
    payload: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.outcome == OUTCOME_SUCCESS

    @property
    def plan_name(self) -> str:
        sub = self.payload.get("subscription") if self.payload else None
        plan = sub.get("plan") if isinstance(sub, Mapping) else None
        name = plan.get("name") if isinstance(plan, Mapping) else None
        return str(name) if name else "Unknown Plan"

    @classmethod
    def from_payload(cls, payload: Any) -> "StatusResult":
        data = dict(payload) if isinstance(payload, Mapping) else {"data": payload}
        return cls(outcome=classify(payload), payload=data)

    @classmethod
    def failed(cls, message: str) -> "StatusResult":
        return cls(outcome=OUTCOME_ERROR, error=message)


class StatusClient:
    def __init__(
        self,
        base_url: str,
        status_path: str = "/payment/hyperpay/status",
        *,
        timeout: float = 10.0,
        retries: int = 2,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.status_path = "/" + (status_path or "").lstrip("/")
        self.timeout = timeout
        self.session = session or make_session(retries)

    @classmethod
    def from_config(cls, config: Mapping[str, Any], session: Optional[requests.Session] = None) -> "StatusClient":
        return cls(
            str(config.get("BACKEND_URL") or ""),
            str(config.get("BACKEND_STATUS_PATH") or "/payment/hyperpay/status"),
            timeout=float(config.get("BACKEND_TIMEOUT") or 10.0),
            retries=int(config.get("BACKEND_RETRIES") or 0),
            session=session,
        )

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.status_path}"

    def lookup(self, checkout_id: str) -> Dict[str, Any]:
        """
        Raw backend payload. Raises StatusCheckError on transport failure,
        non-2xx status or a non-JSON body.
        """
        if not checkout_id:
            raise StatusCheckError("Checkout ID is required", status=400)

        log.info("Calling backend at: %s?checkoutId=%s", self.url, checkout_id)
        try:
            resp = self.session.get(self.url, params={"checkoutId": checkout_id}, timeout=self.timeout)
        except requests.RequestException as e:
            raise StatusCheckError(f"Backend request failed: {e}") from e

        if not resp.ok:
            body = resp.text or ""
            log.error("Backend error %s: %s", resp.status_code, body[:500])
            raise StatusCheckError(
                f"Backend API error: {resp.status_code} - {body}", status=resp.status_code, body=body
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise StatusCheckError(f"Backend returned non-JSON body: {e}", status=resp.status_code) from e

        log.debug("Backend response for %s: %s", checkout_id, data)
        return data

    def fetch(self, checkout_id: str) -> StatusResult:
        """Never raises: backend errors become an error result."""
        try:
            return StatusResult.from_payload(self.lookup(checkout_id))
        except StatusCheckError as e:
            log.warning("Status check for %s failed: %s", checkout_id, e)
            return StatusResult.failed(str(e))

    async def fetch_async(self, checkout_id: str) -> StatusResult:
        return await asyncio.to_thread(self.fetch, checkout_id)
