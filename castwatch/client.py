# castwatch/client.py
#
# Thin HTTP client for the prediction service. Every method is blocking;
# the poller pushes them onto worker threads. All transport, JSON and
# payload problems come back as castwatch errors, never as raw requests
# exceptions.

import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import ValidationError

from .config import API_BASE_URL, LONG_REQUEST_TIMEOUT, PREDICT_STEPS, REQUEST_TIMEOUT
from .errors import ConnectivityFailure, FetchFailure, TrainFailure, UploadFailure
from .models import Alert, HealthStatus, PredictionBatch, Reading, UploadResult

logger = logging.getLogger(__name__)


def _json_or_empty(resp: requests.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _names(data: Dict[str, Any], key: str) -> List[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        logger.warning("Ignoring %s: expected a list, got %s", key, type(value).__name__)
        return []
    return [str(v) for v in value]


class BackendClient:
    def __init__(
        self,
        base_url: str = API_BASE_URL,
        timeout: float = REQUEST_TIMEOUT,
        long_timeout: float = LONG_REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.long_timeout = long_timeout
        self._session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _get_payload(
        self, source: str, path: str, params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        GET an endpoint and return its JSON body.

        Raises FetchFailure on transport errors, non-2xx answers, bodies that
        are not JSON objects, and any body whose `success` flag is falsy.
        """
        try:
            resp = self._session.get(self._url(path), params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise FetchFailure(source, str(exc)) from exc

        if not isinstance(data, dict):
            raise FetchFailure(source, "payload is not a JSON object")
        if not data.get("success"):
            raise FetchFailure(source, data.get("message") or "success flag missing or false")
        return data

    # -------------------------------------------------
    # Polling endpoints
    # -------------------------------------------------

    def check_health(self) -> HealthStatus:
        try:
            resp = self._session.get(self._url("health"), timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise ConnectivityFailure(f"health probe failed: {exc}") from exc

        data = _json_or_empty(resp)
        status = data.get("status")
        if status is not None and status != "healthy":
            raise ConnectivityFailure(f"backend reports status {status!r}")

        return HealthStatus(
            connected=True,
            status=status,
            feature_columns=_names(data, "feature_columns"),
        )

    def fetch_machines(self) -> List[str]:
        data = self._get_payload("machines", "machines")
        return _names(data, "machines")

    def fetch_predictions(self, steps: int = PREDICT_STEPS) -> PredictionBatch:
        data = self._get_payload("predictions", "predict", params={"steps": steps})
        rows = data.get("predictions") or []
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            raise FetchFailure("predictions", "prediction rows must be JSON objects")
        return PredictionBatch(
            readings=[Reading.from_row(row) for row in rows],
            feature_columns=_names(data, "feature_columns"),
        )

    def fetch_alerts(self) -> List[Alert]:
        data = self._get_payload("alerts", "alerts")
        rows = data.get("alerts") or []
        if not isinstance(rows, list):
            raise FetchFailure("alerts", "alerts must be a list")

        alerts = []
        for row in rows:
            try:
                alerts.append(Alert(**row))
            except (TypeError, ValidationError) as exc:
                logger.warning("Skipping malformed alert %r: %s", row, exc)
        return alerts

    def fetch_metrics(self) -> Dict[str, Dict[str, Any]]:
        data = self._get_payload("metrics", "metrics")
        metrics = data.get("metrics") or {}
        if not isinstance(metrics, dict):
            raise FetchFailure("metrics", "metrics must be keyed by machine")
        return metrics

    def fetch_current_data(self) -> Dict[str, Dict[str, Any]]:
        data = self._get_payload("current_data", "current-data")
        current = data.get("data") or {}
        if not isinstance(current, dict):
            raise FetchFailure("current_data", "current data must be keyed by machine")
        return current

    # -------------------------------------------------
    # User actions
    # -------------------------------------------------

    def train(self) -> str:
        try:
            resp = self._session.post(
                self._url("train"),
                headers={"Content-Type": "application/json"},
                timeout=self.long_timeout,
            )
        except requests.RequestException as exc:
            raise TrainFailure(str(exc)) from exc

        data = _json_or_empty(resp)
        if not resp.ok or not data.get("success"):
            backend_message = data.get("message")
            raise TrainFailure(
                backend_message or f"HTTP {resp.status_code}",
                backend_message=backend_message,
            )
        return str(data.get("message") or "")

    def upload(self, filename: str, content: bytes, auto_train: bool = True) -> UploadResult:
        """POST one spreadsheet as multipart `file` with an `auto_train` form flag."""
        try:
            resp = self._session.post(
                self._url("upload"),
                files={"file": (filename, content)},
                data={"auto_train": "true" if auto_train else "false"},
                timeout=self.long_timeout,
            )
        except requests.RequestException as exc:
            raise UploadFailure(str(exc)) from exc

        data = _json_or_empty(resp)
        if not resp.ok or not data.get("success"):
            backend_message = data.get("message")
            raise UploadFailure(
                backend_message or f"HTTP {resp.status_code}",
                backend_message=backend_message,
            )

        auto_status = data.get("auto_train_status")
        auto_message = auto_status.get("message") if isinstance(auto_status, dict) else None
        logger.info("Uploaded %s (auto_train=%s)", filename, auto_train)
        return UploadResult(
            message=str(data.get("message") or "File uploaded successfully"),
            auto_train_message=auto_message,
        )
