from __future__ import annotations

"""HTTP client for the remote training API.

Every reply is a JSON envelope `{"success": bool, "message": str, ...}`
with the payload under a named key (`progress`, `status`, `result`, ...).
Transport failures are raised as StoreError/StoreTimeout; a well-formed
`success: false` reply is returned as False/None.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..results.schema import AttemptResult, Mode, SessionSnapshot, TestDefinition, TestStatus
from .base import StoreError, StoreTimeout

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINTS = {
    "tests": "training_tests.php",
    "progress": "training_progress.php",
    "results": "training_results.php",
    "dashboard": "training_dashboard.php",
}
DEFAULT_TIMEOUTS = {"status": 10.0, "progress": 10.0, "result": 10.0, "tests": 15.0, "admin": 10.0}


class HttpTrainingStore:
    def __init__(
        self,
        base_url: str,
        *,
        endpoints: Optional[Dict[str, str]] = None,
        timeouts: Optional[Dict[str, float]] = None,
        client: Optional[httpx.Client] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.endpoints = {**DEFAULT_ENDPOINTS, **(endpoints or {})}
        self.timeouts = {**DEFAULT_TIMEOUTS, **{k: float(v) for k, v in (timeouts or {}).items()}}
        self._client = client or httpx.Client(base_url=base_url, transport=transport)

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], **kwargs: Any) -> "HttpTrainingStore":
        api = cfg.get("api", {})
        return cls(api["base_url"], endpoints=api.get("endpoints"), timeouts=api.get("timeouts"), **kwargs)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpTrainingStore":
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    def _request(
        self,
        method: str,
        endpoint: str,
        *,
        timeout: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        path = self.endpoints[endpoint]
        try:
            resp = self._client.request(method, path, params=params, json=body, timeout=self.timeouts[timeout])
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            raise StoreTimeout(f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} {path} failed: {exc}") from exc
        try:
            data = resp.json()
        except ValueError as exc:
            raise StoreError(f"{method} {path} returned a non-JSON body") from exc
        if not isinstance(data, dict):
            raise StoreError(f"{method} {path} returned an unexpected payload")
        if not data.get("success", False):
            logger.debug("%s %s declined: %s", method, path, data.get("message"))
        return data

    # Progress store
    def start_session(self, username: str, test_id: str, mode: Mode, total_questions: int) -> bool:
        data = self._request(
            "POST",
            "progress",
            timeout="progress",
            body={
                "action": "start",
                "username": username,
                "test_id": test_id,
                "mode": mode,
                "total_questions": total_questions,
            },
        )
        return bool(data.get("success"))

    def get_status(self, username: str, test_id: str) -> Optional[TestStatus]:
        data = self._request(
            "GET",
            "results",
            timeout="status",
            params={"username": username, "test_id": test_id, "action": "status"},
        )
        if data.get("success") and data.get("status") is not None:
            return TestStatus.from_json(data["status"])
        return None

    def update_progress(self, snapshot: SessionSnapshot) -> bool:
        body = {"action": "update", **snapshot.to_json()}
        data = self._request("POST", "progress", timeout="progress", body=body)
        return bool(data.get("success"))

    def clear_progress(self, username: str, test_id: str) -> bool:
        data = self._request(
            "POST",
            "progress",
            timeout="progress",
            body={"action": "clear", "username": username, "test_id": test_id},
        )
        return bool(data.get("success"))

    # Result store
    def submit_result(self, result: AttemptResult) -> Optional[AttemptResult]:
        body = {"action": "submit", **result.to_json()}
        body.pop("id", None)
        body.pop("completed_at", None)
        data = self._request("POST", "results", timeout="result", body=body)
        if data.get("success") and data.get("result") is not None:
            return AttemptResult.from_json(data["result"])
        return None

    def list_results(self, username: str) -> List[AttemptResult]:
        data = self._request("GET", "results", timeout="status", params={"username": username})
        if data.get("success") and data.get("results") is not None:
            return [AttemptResult.from_json(r) for r in data["results"]]
        return []

    # Catalogue
    def get_test(self, test_id: str) -> Optional[TestDefinition]:
        data = self._request("GET", "tests", timeout="tests", params={"id": test_id, "include_questions": 1})
        if data.get("success") and data.get("test") is not None:
            return TestDefinition.from_json(data["test"])
        return None

    # Attempt coordinator (admin)
    def reset_attempts(self, username: str, test_id: str, reset_by: str) -> bool:
        data = self._request(
            "POST",
            "dashboard",
            timeout="admin",
            body={"action": "reset_attempts", "username": username, "test_id": test_id, "reset_by": reset_by},
        )
        return bool(data.get("success"))

    def grant_attempts(self, username: str, test_id: str, extra_attempts: int, granted_by: str) -> bool:
        data = self._request(
            "POST",
            "dashboard",
            timeout="admin",
            body={
                "action": "grant_attempts",
                "username": username,
                "test_id": test_id,
                "extra_attempts": int(extra_attempts),
                "granted_by": granted_by,
            },
        )
        return bool(data.get("success"))
