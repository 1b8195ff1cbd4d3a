"""HTTP client for the publication tracker API.

Usage:
    from app.client import PubTrackClient

    with PubTrackClient.from_settings() as api:
        api.login("admin", "admin123")
        overview = api.statistics_overview(start_year=2020)

The API mode is decided once, when the client is built, and never changes for
the life of the client. Token freshness is checked by the client itself just
before each request: a token close to expiry is refreshed once, synchronously,
and if that fails the request fails too.
"""
from __future__ import annotations
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence
import logging

import httpx

from .config import Settings, get_settings
from .schemas import ImportResultOut, LoginResponse, RefreshResponse, UserOut
from .security import Clock, utcnow

logger = logging.getLogger(__name__)


class ApiMode(str, Enum):
    LIVE = "live"
    DEMO = "demo"

    @classmethod
    def resolve(cls, value: str) -> "ApiMode":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown API mode {value!r}; expected one of {[m.value for m in cls]}") from None


class ApiClientError(Exception):
    """Non-2xx response, or a local refusal to send (no/expired token)."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None,
                 reason: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.reason = reason
        self.details = details

    @classmethod
    def from_response(cls, resp: httpx.Response) -> "ApiClientError":
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        return cls(
            body.get("error") or f"HTTP {resp.status_code}",
            status_code=resp.status_code,
            code=body.get("code"),
            reason=body.get("reason"),
            details=body.get("details"),
        )


class PubTrackClient:
    def __init__(
        self,
        base_url: str,
        mode: ApiMode = ApiMode.LIVE,
        refresh_margin: timedelta = timedelta(minutes=5),
        clock: Clock = utcnow,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.mode = mode
        self.refresh_margin = refresh_margin
        self.clock = clock
        self.token: Optional[str] = None
        self.expires_at: Optional[datetime] = None
        self.user: Optional[UserOut] = None
        self._http = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs) -> "PubTrackClient":
        s = settings or get_settings()
        mode = ApiMode.resolve(s.API_MODE)
        base_url = s.DEMO_API_BASE_URL if mode is ApiMode.DEMO else s.API_BASE_URL
        kwargs.setdefault("refresh_margin", timedelta(seconds=s.CLIENT_REFRESH_MARGIN_SECONDS))
        logger.info("API client in %s mode against %s", mode.value, base_url)
        return cls(base_url, mode=mode, **kwargs)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "PubTrackClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -----------------------------
    # Session
    # -----------------------------
    def login(self, username: str, password: str) -> UserOut:
        resp = self._http.post("/api/auth/login", json={"username": username, "password": password})
        if resp.status_code != 200:
            raise ApiClientError.from_response(resp)
        data = LoginResponse.model_validate(resp.json())
        self.token = data.token
        self.expires_at = data.expires_at
        self.user = data.user
        return data.user

    def logout(self) -> None:
        self.token = None
        self.expires_at = None
        self.user = None

    def ensure_fresh_token(self) -> str:
        if not self.token or self.expires_at is None:
            raise ApiClientError("Not logged in", reason="TOKEN_MISSING")
        now = self.clock()
        if now >= self.expires_at:
            self.logout()
            raise ApiClientError("Session expired, please log in again", status_code=401, reason="TOKEN_EXPIRED")
        if self.expires_at - now > self.refresh_margin:
            return self.token

        resp = self._http.post("/api/auth/refresh", headers={"Authorization": f"Bearer {self.token}"})
        if resp.status_code != 200:
            self.logout()
            raise ApiClientError.from_response(resp)
        data = RefreshResponse.model_validate(resp.json())
        self.token = data.token
        self.expires_at = data.expires_at
        logger.debug("Token refreshed, new expiry %s", data.expires_at.isoformat())
        return self.token

    # -----------------------------
    # Requests
    # -----------------------------
    def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        token = self.ensure_fresh_token()
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {token}"
        resp = self._http.request(method, path, headers=headers, **kwargs)
        if resp.status_code >= 400:
            raise ApiClientError.from_response(resp)
        return resp

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=_drop_none(params)).json()

    def post(self, path: str, json: Any = None) -> Any:
        return self.request("POST", path, json=json).json()

    def patch(self, path: str, json: Any = None) -> Any:
        return self.request("PATCH", path, json=json).json()

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path).json()

    # -----------------------------
    # Domain helpers
    # -----------------------------
    def me(self) -> UserOut:
        return UserOut.model_validate(self.get("/api/auth/me")["user"])

    def list_publications(self, **params) -> Dict[str, Any]:
        return self.get("/api/publications", params=params)

    def import_publications(self, filename: str, content: bytes, department_id: Optional[int] = None) -> ImportResultOut:
        data = {"departmentId": str(department_id)} if department_id is not None else None
        resp = self.request("POST", "/api/publications/import", files={"file": (filename, content)}, data=data)
        return ImportResultOut.model_validate(resp.json())

    def import_journals(self, filename: str, content: bytes) -> ImportResultOut:
        resp = self.request("POST", "/api/journals/import", files={"file": (filename, content)})
        return ImportResultOut.model_validate(resp.json())

    def export_publications(self, fmt: str = "xlsx", **params) -> bytes:
        params["fmt"] = fmt
        return self.request("GET", "/api/publications/export", params=_drop_none(params)).content

    def export_journals(self, fmt: str = "xlsx", **params) -> bytes:
        params["fmt"] = fmt
        return self.request("GET", "/api/journals/export", params=_drop_none(params)).content

    def journal_categories(self) -> List[str]:
        return self.get("/api/journals/categories")["categories"]

    def statistics_department(self, department_id: Optional[int] = None, start_year: Optional[int] = None,
                              end_year: Optional[int] = None, fill_gaps: bool = False) -> Dict[str, Any]:
        return self.get("/api/statistics/department", params={
            "departmentId": department_id, "startYear": start_year, "endYear": end_year,
            "fillGaps": "true" if fill_gaps else None,
        })

    def statistics_overview(self, start_year: Optional[int] = None, end_year: Optional[int] = None) -> Dict[str, Any]:
        return self.get("/api/statistics/overview", params={"startYear": start_year, "endYear": end_year})

    def statistics_comparison(self, department_ids: Sequence[int], start_year: Optional[int] = None,
                              end_year: Optional[int] = None) -> Dict[str, Any]:
        return self.get("/api/statistics/comparison", params={
            "departmentIds": ",".join(str(i) for i in department_ids),
            "startYear": start_year, "endYear": end_year,
        })


def _drop_none(params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if params is None:
        return None
    return {k: v for k, v in params.items() if v is not None}
