from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal


PullRequestState = Literal["open", "closed"]
ReconcileOutcome = Literal[
    "created",
    "updated",
    "skipped",
    "dry_run",
    "commit_failed",
    "push_failed",
    "unsupported_remote",
    "no_changes",
]


class ReconcileState(Enum):
    NO_EXISTING_PR = "no_existing_pr"
    EXISTING_SAME_TITLE = "existing_same_title"
    EXISTING_DIFFERENT_TITLE = "existing_different_title"


class ReconcileAction(Enum):
    CREATE = "create"
    SKIP = "skip"
    UPDATE = "update"


@dataclass(frozen=True)
class ReconciliationContext:
    """Identity and wording of one logical change, fixed for a whole pass."""

    title: str
    title_prefix: str
    commit_message: str
    pr_body: str
    comment: str
    dry_run: bool = False
    rebase_mode: bool = False
    labels: tuple[str, ...] = ()


@dataclass(frozen=True)
class RemotePullRequest:
    number: int
    title: str
    head_ref: str
    state: PullRequestState
    # None while GitHub is still computing mergeability.
    mergeable: bool | None
    html_url: str


@dataclass(frozen=True)
class ReconcileDecision:
    state: ReconcileState
    action: ReconcileAction
    pull_request: RemotePullRequest | None = None
    retitle: bool = False
    rebase_comment: bool = False


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    action: ReconcileAction | None = None
    branch: str | None = None
    pr_number: int | None = None
    pr_url: str | None = None
