"""Tracker credentials: a read token for lookups, a write token for mutations.

``ASSIGN_BOT_GITHUB_TOKEN`` (or ``GITHUB_TOKEN``) fills whichever of the two
split tokens is unset, so a single token is enough for small installs.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_API_URL = "https://api.github.com"


@dataclass(frozen=True)
class GitHubAuth:
    read_token: str | None
    write_token: str | None
    api_url: str = DEFAULT_API_URL

    @property
    def can_write(self) -> bool:
        return bool(self.write_token)

    def bearer(self, write: bool = False) -> str | None:
        token = self.write_token if write else self.read_token
        return f"Bearer {token}" if token else None

    def redacted(self) -> dict[str, str]:
        return {
            "read_token": _mask(self.read_token),
            "write_token": _mask(self.write_token),
            "api_url": self.api_url,
        }


def load_github_auth_from_env(env: dict[str, str] | None = None) -> GitHubAuth:
    source = os.environ if env is None else env

    fallback = _token(source, "ASSIGN_BOT_GITHUB_TOKEN") or _token(source, "GITHUB_TOKEN")
    api_url = (source.get("ASSIGN_BOT_GITHUB_API_URL") or "").strip().rstrip("/")
    return GitHubAuth(
        read_token=_token(source, "ASSIGN_BOT_GITHUB_READ_TOKEN") or fallback,
        write_token=_token(source, "ASSIGN_BOT_GITHUB_WRITE_TOKEN") or fallback,
        api_url=api_url or DEFAULT_API_URL,
    )


def _token(source: dict[str, str], key: str) -> str | None:
    value = (source.get(key) or "").strip()
    return value or None


def _mask(token: str | None) -> str:
    if token is None:
        return "unset"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}...{token[-4:]}"
