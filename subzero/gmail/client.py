"""Blocking Gmail v1 API client for one mailbox (read-only)

The discovery Resource shares one httplib2 transport, which is not safe to
use from several threads at once. Message gets run concurrently in worker
threads, so each get executes on its own AuthorizedHttp.
"""

from __future__ import annotations

from typing import Any

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from subzero.errors import MailProviderError
from subzero.observability.logging import get_logger
from subzero.observability.telemetry import counter

logger = get_logger(__name__)


class GmailApiClient:
    """list/get over users.messages for the authenticated mailbox."""

    def __init__(self, credentials: Credentials):
        self.credentials = credentials
        self._service = build("gmail", "v1", credentials=credentials, cache_discovery=False)

    def _http(self) -> AuthorizedHttp:
        return AuthorizedHttp(self.credentials, http=httplib2.Http())

    def list_message_ids(self, query: str, max_results: int) -> list[str]:
        """
        Message ids matching a Gmail search query

        Raises:
            MailProviderError: If the list call fails
        """
        try:
            response = (
                self._service.users()
                .messages()
                .list(userId="me", q=query, maxResults=max_results)
                .execute(http=self._http())
            )
        except HttpError as e:
            counter("gmail.list_failed")
            raise MailProviderError(f"Gmail list failed: {e.resp.status}") from e

        return [m["id"] for m in response.get("messages", []) if m.get("id")]

    def get_message(self, message_id: str) -> dict[str, Any]:
        """
        Full-format message by id

        Raises:
            MailProviderError: If the get call fails
        """
        try:
            return (
                self._service.users()
                .messages()
                .get(userId="me", id=message_id, format="full")
                .execute(http=self._http())
            )
        except HttpError as e:
            counter("gmail.get_failed")
            raise MailProviderError(f"Gmail get failed: {e.resp.status}") from e
