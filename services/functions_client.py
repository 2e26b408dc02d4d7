import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests


logger = logging.getLogger(__name__)


@dataclass
class FunctionResult:
    data: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FunctionsClient:
    """Calls named serverless functions that take a JSON body and answer with JSON."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 60, session=None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get_headers(self):
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "client-type": "curtain_app",
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return headers

    def invoke(self, name: str, body: dict) -> FunctionResult:
        """
        POST ``body`` to the named function.

        Transport failures and non-2xx answers come back as ``FunctionResult.error``
        rather than being raised.
        """
        url = f"{self.base_url}/functions/v1/{name}"
        try:
            response = self.session.post(url, json=body, headers=self._get_headers(), timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Function {name} unreachable: {e}")
            return FunctionResult(error=str(e))

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not response.ok:
            message = payload.get("error") if isinstance(payload, dict) and payload.get("error") else response.text
            logger.error(f"Function {name} returned {response.status_code}: {message}")
            return FunctionResult(error=f"Error {response.status_code}: {message}")

        if isinstance(payload, dict) and payload.get("error"):
            return FunctionResult(error=str(payload["error"]))

        return FunctionResult(data=payload)
