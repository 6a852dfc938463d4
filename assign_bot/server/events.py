"""Webhook payload contracts for the events the engine reacts to."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from assign_bot.engine.models import RepoRef


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Account(_Payload):
    login: str = Field(min_length=1)
    type: str = "User"

    @property
    def is_bot(self) -> bool:
        return self.type == "Bot" or self.login.endswith("[bot]")


class Label(_Payload):
    name: str = ""


class Repository(_Payload):
    name: str = Field(min_length=1)
    owner: Account
    full_name: str = ""

    def ref(self) -> RepoRef:
        return RepoRef(owner=self.owner.login, name=self.name)


class Issue(_Payload):
    number: int = Field(gt=0)
    state: str = "open"
    labels: list[Label] = Field(default_factory=list)
    assignees: list[Account] = Field(default_factory=list)
    pull_request: dict | None = None

    @property
    def label_names(self) -> list[str]:
        return [label.name for label in self.labels if label.name]

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None


class Comment(_Payload):
    body: str = ""
    user: Account


class PullRequest(_Payload):
    number: int = Field(gt=0)
    merged: bool = False
    body: str | None = None
    user: Account


class IssuesEvent(_Payload):
    action: str
    issue: Issue
    repository: Repository


class IssueCommentEvent(_Payload):
    action: str
    issue: Issue
    comment: Comment
    repository: Repository


class PullRequestEvent(_Payload):
    action: str
    pull_request: PullRequest
    repository: Repository
