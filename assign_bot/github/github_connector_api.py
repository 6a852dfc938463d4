"""GitHub REST API issue tracker implementation."""

from __future__ import annotations

import re
from typing import Any

import requests

from assign_bot.engine.models import RepoRef
from assign_bot.github.github_auth import GitHubAuth
from assign_bot.github.github_connector import (
    NotFoundError,
    TrackerError,
    TrackerIssue,
    TransientTrackerError,
)

COMMENTS_PER_PAGE = 100
MAX_COMMENT_PAGES = 10
_PAGE_PARAM = re.compile(r"[?&]page=(\d+)")


class GitHubIssueTracker:
    def __init__(
        self,
        auth: GitHubAuth | None = None,
        base_url: str | None = None,
        session: requests.Session | None = None,
        timeout_s: float = 15,
    ) -> None:
        self.auth = auth or GitHubAuth(read_token=None, write_token=None)
        self.base_url = (base_url or self.auth.api_url).rstrip("/")
        self.session = session or requests.Session()
        self.timeout_s = timeout_s

    def get_issue(self, repo: RepoRef, issue_number: int) -> TrackerIssue:
        payload = self._request(
            "GET", _issue_path(repo, issue_number), authorization=self.auth.bearer()
        )
        if not isinstance(payload, dict):
            raise TrackerError("Unexpected issue payload", reason_code="github_bad_payload")
        return TrackerIssue.from_payload(payload)

    def add_assignee(self, repo: RepoRef, issue_number: int, login: str) -> None:
        self._request(
            "POST",
            f"{_issue_path(repo, issue_number)}/assignees",
            authorization=self._write_authorization(),
            json={"assignees": [login]},
        )

    def remove_assignee(self, repo: RepoRef, issue_number: int, login: str) -> None:
        self._request(
            "DELETE",
            f"{_issue_path(repo, issue_number)}/assignees",
            authorization=self._write_authorization(),
            json={"assignees": [login]},
        )

    def list_comments(self, repo: RepoRef, issue_number: int) -> list[dict[str, Any]]:
        """Return the issue's comments, oldest first.

        Long threads are capped at ``MAX_COMMENT_PAGES`` pages: the first page
        plus the newest pages, located through the ``Link`` header.
        """
        path = f"{_issue_path(repo, issue_number)}/comments"
        payload, last_page = self._get_comment_page(path, 1)
        pages = [payload]
        if last_page > MAX_COMMENT_PAGES:
            wanted = range(last_page - MAX_COMMENT_PAGES + 2, last_page + 1)
        else:
            wanted = range(2, last_page + 1)
        for page in wanted:
            payload, _ = self._get_comment_page(path, page)
            pages.append(payload)
        return [row for page_rows in pages for row in page_rows if isinstance(row, dict)]

    def _get_comment_page(self, path: str, page: int) -> tuple[list[Any], int]:
        response = self._send(
            "GET",
            path,
            authorization=self.auth.bearer(),
            params={"per_page": str(COMMENTS_PER_PAGE), "page": str(page)},
        )
        payload = _decode(response, path)
        if not isinstance(payload, list):
            return [], page
        return payload, _last_page(response, page)

    def create_comment(self, repo: RepoRef, issue_number: int, body: str) -> dict[str, Any]:
        payload = self._request(
            "POST",
            f"{_issue_path(repo, issue_number)}/comments",
            authorization=self._write_authorization(),
            json={"body": body},
        )
        return payload if isinstance(payload, dict) else {}

    def _write_authorization(self) -> str | None:
        if not self.auth.can_write:
            raise TrackerError("GitHub write token is not configured", "missing_write_token")
        return self.auth.bearer(write=True)

    def _request(
        self,
        method: str,
        path: str,
        authorization: str | None,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> Any:
        response = self._send(method, path, authorization, json=json, params=params)
        return _decode(response, path)

    def _send(
        self,
        method: str,
        path: str,
        authorization: str | None,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> requests.Response:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if authorization:
            headers["Authorization"] = authorization

        try:
            response = self.session.request(
                method=method,
                url=f"{self.base_url}{path}",
                headers=headers,
                json=json,
                params=params,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise TransientTrackerError(
                f"GitHub API request failed: {exc}", reason_code="github_network_error"
            ) from exc

        status = int(response.status_code)
        if status in {404, 410}:
            raise NotFoundError(f"GitHub resource not found: {path}", status=status)
        if status in {429, 403} and _looks_like_rate_limit(response):
            raise TransientTrackerError(
                "GitHub API rate limited",
                reason_code="github_rate_limited",
                status=status,
                retry_after_s=_parse_retry_after((response.headers or {}).get("Retry-After")),
            )
        if status in {500, 502, 503, 504}:
            raise TransientTrackerError(
                "GitHub API 5xx response",
                reason_code=f"github_{status}",
                status=status,
            )
        if status >= 400:
            raise TrackerError(f"GitHub API error {status}", f"github_{status}", status=status)
        return response


def _decode(response: requests.Response, path: str) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as exc:
        # Proxies and captive portals answer 2xx with HTML.
        raise TransientTrackerError(
            f"GitHub API returned a non-JSON body for {path}",
            reason_code="github_bad_payload",
            status=int(response.status_code),
        ) from exc


def _last_page(response: requests.Response, current: int) -> int:
    link = (getattr(response, "links", None) or {}).get("last")
    if not link:
        return current
    match = _PAGE_PARAM.search(str(link.get("url", "")))
    return max(current, int(match.group(1))) if match else current


def _issue_path(repo: RepoRef, issue_number: int) -> str:
    return f"/repos/{repo.owner}/{repo.name}/issues/{int(issue_number)}"


def _looks_like_rate_limit(response: requests.Response) -> bool:
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    if str((response.headers or {}).get("X-RateLimit-Remaining", "")) == "0":
        return True
    try:
        payload = response.json()
    except ValueError:
        return False
    message = str(payload.get("message", "")).lower() if isinstance(payload, dict) else ""
    return "rate limit" in message


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        parsed = float(value)
    except ValueError:
        return None
    return parsed if parsed >= 0 else None
