"""
Thin Notion API client.

Notion API behaviour this client relies on:
  - Every request needs a Notion-Version header; without it the API answers
    400 missing_version. We pin one version so block payload keys
    (rich_text, caption, icon) don't shift under us.
  - List endpoints return at most 100 items per call plus has_more and
    next_cursor. The cursor is opaque and only valid for the same endpoint.
  - Errors come back as {"object": "error", "status": 404,
    "code": "object_not_found", "message": "..."} with a matching HTTP status.
  - The children endpoint does not return the parent page itself, so a page
    title needs a separate GET /pages/{id}.
  - Media URLs on "file" objects are pre-signed S3 links that expire after an
    hour. They must be fetched without the Notion Authorization header.
"""

import logging

import requests

from .errors import ApiError, DecodeError, TransportError
from .models import ListPage, Node

API_URL        = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"
PAGE_SIZE      = 100

log = logging.getLogger("notion-export")


class NotionClient:
    def __init__(self, token, timeout=30, session=None):
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers["Authorization"] = f"Bearer {token}"
        self.session.headers["Notion-Version"] = NOTION_VERSION
        # Downloads go through their own session: S3 rejects requests that
        # carry a foreign Authorization header
        self.download_session = requests.Session()

    def _request(self, method, path, what, **kwargs):
        """
        Make one authenticated request to {API_URL}{path} and return the decoded JSON body.

        `what` names the request in error messages, e.g. "block X children".
        No retries: any failure here fails the whole export.
        """
        try:
            resp = self.session.request(method, f"{API_URL}{path}", timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"Failed to get data for {what}: {e}") from e

        if not resp.ok:
            raise self._error_from(resp, what)

        try:
            return resp.json()
        except ValueError as e:
            raise DecodeError(f"Failed to parse JSON for {what}", resp.status_code) from e

    @staticmethod
    def _error_from(resp, what):
        try:
            body = resp.json()
        except ValueError:
            return DecodeError(f"Failed to parse ERROR JSON for {what}", resp.status_code)
        if not isinstance(body, dict):
            return DecodeError(f"Failed to parse ERROR JSON for {what}", resp.status_code)

        code, message = body.get("code"), body.get("message")
        if not isinstance(code, str) or not isinstance(message, str):
            return DecodeError(f"ERROR JSON for {what} has no code/message", resp.status_code)
        return ApiError(code, message, resp.status_code)

    def fetch_page(self, block_id, cursor=None):
        """One page (up to 100 items) of a block's children, starting at `cursor`."""
        params = {"page_size": PAGE_SIZE}
        if cursor:
            params["start_cursor"] = cursor
        what = f"block {block_id} children"
        body = self._request("GET", f"/blocks/{block_id}/children", what, params=params)
        return ListPage.from_json(body)

    def query_database(self, database_id, cursor=None):
        """
        One page of a database query. The query endpoint is a POST with the
        cursor in the JSON body rather than the query string.
        """
        payload = {"page_size": PAGE_SIZE}
        if cursor:
            payload["start_cursor"] = cursor
        what = f"database {database_id} pages"
        body = self._request("POST", f"/databases/{database_id}/query", what, json=payload)
        return ListPage.from_json(body)

    def get_page(self, page_id):
        """The page object itself: title, properties, url, timestamps. No body."""
        return Node.from_json(self._request("GET", f"/pages/{page_id}", f"page {page_id}"))

    def download(self, url):
        """Start a streamed GET for a media URL. The caller reads and closes the response."""
        try:
            resp = self.download_session.get(url, stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Could not download {url}: {e}") from e
        if not resp.ok:
            resp.close()
            raise TransportError(f"Download of {url} returned HTTP {resp.status_code}")
        return resp
