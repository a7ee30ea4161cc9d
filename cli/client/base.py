"""Base HTTP Client for the LabMatch admin API"""

import uuid
from typing import Any

import httpx
from rich.console import Console
from rich.panel import Panel

console = Console()

REQUEST_ID_HEADER = "X-Request-ID"


class LabMatchError(Exception):
    """Failed admin API call, with the HTTP status when the API answered"""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        request_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.request_id = request_id
        self.details = details or {}


class APIClient:
    """HTTP client for the LabMatch admin API (all paths under /v1)"""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        timeout: int = 30,
        headers: dict[str, str] | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout,
            headers={"Accept": "application/json", **(headers or {})},
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.client.close()

    def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        # Same id the API binds into its logs, quoted back on errors
        request_id = str(uuid.uuid4())
        try:
            response = self.client.request(
                method,
                f"/v1{path}",
                headers={REQUEST_ID_HEADER: request_id},
                **kwargs,
            )
        except httpx.RequestError as e:
            console.print(f"[red]Connection error: {e}[/red]")
            raise LabMatchError(f"Connection failed: {e}") from None

        return self._handle_response(response, request_id)

    def _handle_response(self, response: httpx.Response, request_id: str) -> dict[str, Any]:
        """Unwrap the {ok, data | error} envelope"""
        try:
            data = response.json()
        except ValueError:
            console.print(f"[red]Failed to parse response: {response.text}[/red]")
            raise LabMatchError(
                f"Invalid JSON response: {response.status_code}",
                status_code=response.status_code,
                request_id=request_id,
            ) from None

        if response.status_code >= 400 or data.get("ok") is False:
            error = data.get("error") or {}
            error_msg = error.get("message", "Unknown error")
            console.print(Panel(
                f"[red]{error_msg}[/red]\n[dim]request id: {request_id}[/dim]",
                title="API Error",
            ))
            raise LabMatchError(
                f"API Error {response.status_code}: {error_msg}",
                status_code=response.status_code,
                request_id=request_id,
                details=error.get("details"),
            )

        return data.get("data", {}) if "ok" in data else data

    def get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Make GET request"""
        return self._request("GET", path, params=params)

    def post(self, path: str, json: dict[str, Any] | None = None) -> dict[str, Any]:
        """Make POST request"""
        return self._request("POST", path, json=json)
