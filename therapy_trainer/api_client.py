from __future__ import annotations

import logging
import os
import time

import requests

from .ports import SubmissionReceipt
from .results import game_log_payload
from .round_core import SessionSummary

logger = logging.getLogger(__name__)

API_URL_ENV = "THERAPY_TRAINER_API_URL"
API_TOKEN_ENV = "THERAPY_TRAINER_API_TOKEN"
GAME_LOG_PATH = "/api/me/game-log"


class GameLogError(RuntimeError):
    pass


class HttpScoringBackend:
    """Posts finished sessions to the XP-award game log endpoint."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str | None = None,
        timeout_s: float = 10.0,
        http: requests.Session | None = None,
    ) -> None:
        if not base_url.strip():
            raise ValueError("base_url must not be empty")
        self._url = base_url.strip().rstrip("/") + GAME_LOG_PATH
        self._token = token
        self._timeout_s = max(0.5, float(timeout_s))
        self._http = requests.Session() if http is None else http

    @property
    def url(self) -> str:
        return self._url

    @classmethod
    def from_env(cls) -> HttpScoringBackend | None:
        base_url = os.environ.get(API_URL_ENV, "").strip()
        if not base_url:
            return None
        token = os.environ.get(API_TOKEN_ENV, "").strip() or None
        return cls(base_url=base_url, token=token)

    def submit(self, summary: SessionSummary) -> SubmissionReceipt:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        resp = self._http.post(self._url, json=game_log_payload(summary), headers=headers, timeout=self._timeout_s)
        if not resp.ok:
            raise GameLogError(f"Game log failed ({resp.status_code}): {resp.text or 'Unknown error'}")

        remote_id: str | None = None
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            raw_id = body.get("_id") or body.get("id")
            remote_id = None if raw_id is None else str(raw_id)
        logger.debug("game log accepted by %s", self._url)
        return SubmissionReceipt(accepted_at=time.time(), remote_id=remote_id)
