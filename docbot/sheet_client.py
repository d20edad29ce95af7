from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

import requests
from pydantic import ValidationError

from .config import Settings
from .errors import CollaboratorError
from .models import QueryResult

logger = logging.getLogger("docbot.sheet")

APPEND_ACTION = "append"


class SheetClient:
    """Client for the spreadsheet web app that stores and searches records."""

    def __init__(self, settings: Settings) -> None:
        self._url = settings.sheet_url
        self._timeout = settings.http_timeout_seconds
        if not self._url:
            logger.warning("SHEET_URL is not configured - records cannot be stored or searched")

    def _post(self, payload: Dict[str, Any]) -> Optional[Any]:
        """Purpose: POST a JSON action to the web app and decode the answer.
        Inputs/Outputs: Input is the JSON payload; output is the decoded body, or None
            when the web app answered with an empty or non-JSON body.
        Failure Modes: Missing URL, network errors, non-2xx responses and bodies with
            "ok": false raise CollaboratorError.
        """
        if not self._url:
            raise CollaboratorError("sheet", "SHEET_URL is not configured")
        try:
            response = requests.post(self._url, json=payload, timeout=self._timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise CollaboratorError("sheet", f"{payload.get('action')} failed: {exc}") from exc
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict) and body.get("ok") is False:
            raise CollaboratorError("sheet", str(body.get("error") or "web app reported failure"))
        return body

    def persist(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        """Purpose: Store one structured record as a spreadsheet row.
        Inputs/Outputs: Input is the record dict; output is the web app's ack ({} when
            the body was empty).
        Failure Modes: See _post. Not idempotent: a retried call appends a second row.
        """
        body = self._post({"action": APPEND_ACTION, "record": dict(record)})
        logger.info("sheet append ok")
        return body if isinstance(body, dict) else {}

    def query(self, action: str, employee_code: str, params: Mapping[str, Any]) -> QueryResult:
        """Purpose: Run a search action scoped to one employee.
        Inputs/Outputs: Inputs are the action name (findById, findByHn, findByName,
            countByDate), the canonical employee code and filter params; output is a
            QueryResult with match, matches or count filled in.
        Side Effects / State: One HTTP POST to the Apps Script web app.
        Failure Modes: See _post; an answer that is not a JSON object raises
            CollaboratorError.
        """
        # The employee code scopes every search on the sheet side.
        payload = {"action": action, "employeeCode": employee_code, **dict(params)}
        body = self._post(payload)
        if not isinstance(body, dict):
            raise CollaboratorError("sheet", f"{action} returned no JSON object")
        try:
            return QueryResult.model_validate(body)
        except ValidationError as exc:
            raise CollaboratorError("sheet", f"{action} returned an unexpected shape") from exc
