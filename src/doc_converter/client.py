"""HTTP client for the document converter API, used by the Streamlit panel."""

import mimetypes
import os
import time
from pathlib import Path

import requests

from doc_converter.conversion.service import ALLOWED_TYPES

API_BASE = os.getenv("DOC_CONVERTER_API_BASE", os.getenv("API_BASE", "http://localhost:8080")).rstrip("/")

# Statuses worth a short retry window (backend starting up, transient overload)
TRANSIENT_STATUSES = {429, 502, 503, 504}


class ClientError(Exception):
    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        super().__init__(f"API error {status_code}: {message}")


def content_type_for(filename: str) -> str:
    ext = Path(filename).suffix.lower()
    return ALLOWED_TYPES.get(ext) or mimetypes.guess_type(filename)[0] or "application/octet-stream"


class ConverterClient:
    def __init__(
        self,
        base_url: str = API_BASE,
        *,
        session: requests.Session | None = None,
        timeout: float = 60,
        max_attempts: int = 3,
        backoff: float = 0.5,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._backoff = backoff

    def _request(
        self, method: str, path: str, expected: set[int], *, retry: bool = True, **kwargs
    ) -> requests.Response:
        """Send one API call, retrying transient failures when the call is safe to repeat."""
        delay = self._backoff
        last_error = ""
        attempts = self._max_attempts if retry else 1
        for attempt in range(1, attempts + 1):
            try:
                resp = self._session.request(method, f"{self.base_url}{path}", timeout=self._timeout, **kwargs)
            except requests.RequestException as e:
                last_error = str(e)
                if attempt < attempts:
                    time.sleep(delay)
                    delay *= 1.5
                    continue
                raise ClientError(0, f"request failed: {e}") from e
            if resp.status_code in expected:
                return resp
            last_error = resp.text
            if resp.status_code in TRANSIENT_STATUSES and attempt < attempts:
                time.sleep(delay)
                delay *= 1.5
                continue
            raise ClientError(resp.status_code, _error_message(resp))
        raise ClientError(0, f"retries exhausted: {last_error}")

    def upload(self, filename: str, data: bytes, content_type: str | None = None) -> str:
        """Upload a document and return the new job id."""
        files = {"file": (filename, data, content_type or content_type_for(filename))}
        # A lost response may still have created the job, so uploads are sent once
        resp = self._request("POST", "/converts", {202}, retry=False, files=files)
        return str(resp.json()["id"])

    def list_jobs(self) -> list[dict[str, object]]:
        return self._request("GET", "/converts", {200}).json()

    def get_job(self, job_id: str) -> dict[str, object]:
        return self._request("GET", f"/converts/{job_id}", {200}).json()

    def download(self, job_id: str) -> bytes:
        return self._request("GET", f"/convert-outcomes/{job_id}", {200}).content

    def delete(self, job_id: str) -> None:
        self._request("DELETE", f"/converts/{job_id}", {204})


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    if not isinstance(body, dict):
        return resp.text
    detail = body.get("detail", resp.text)
    if isinstance(detail, dict):
        return str(detail.get("message", detail))
    return str(detail)
