from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
import logging
from typing import Literal
import uuid

from updatebot.config import RepoConfig
from updatebot.git_ops import GitBranchDriver
from updatebot.github_gateway import GitHubGateway
from updatebot.matcher import find_pull_request
from updatebot.models import (
    ReconcileAction,
    ReconcileDecision,
    ReconcileResult,
    ReconcileState,
    ReconciliationContext,
    RemotePullRequest,
)
from updatebot.observability import log_event


LOGGER = logging.getLogger("updatebot.reconciler")
BRANCH_PREFIX = "updatebot-"
REBASE_NOTICE = "[UpdateBot](https://github.com/fabric8io/updatebot) rebasing due to merge conflicts"


def new_branch_name() -> str:
    return f"{BRANCH_PREFIX}{uuid.uuid4()}"


def requires_mergeable_check(
    context: ReconciliationContext, existing: RemotePullRequest | None
) -> bool:
    return existing is not None and context.rebase_mode and existing.title == context.title


def decide(
    context: ReconciliationContext,
    existing: RemotePullRequest | None,
    *,
    mergeable: bool | None = None,
) -> ReconcileDecision:
    """Choose what a pass does to the remote, without side effects.

    ``mergeable`` only matters in rebase mode for a pull request whose title
    is already current; ``None`` (still being computed by GitHub) counts as
    not mergeable.
    """
    if existing is None:
        return ReconcileDecision(state=ReconcileState.NO_EXISTING_PR, action=ReconcileAction.CREATE)
    if existing.title != context.title:
        return ReconcileDecision(
            state=ReconcileState.EXISTING_DIFFERENT_TITLE,
            action=ReconcileAction.UPDATE,
            pull_request=existing,
            retitle=True,
        )
    if not context.rebase_mode:
        return ReconcileDecision(
            state=ReconcileState.EXISTING_SAME_TITLE,
            action=ReconcileAction.UPDATE,
            pull_request=existing,
        )
    if mergeable is True:
        return ReconcileDecision(
            state=ReconcileState.EXISTING_SAME_TITLE,
            action=ReconcileAction.SKIP,
            pull_request=existing,
        )
    return ReconcileDecision(
        state=ReconcileState.EXISTING_SAME_TITLE,
        action=ReconcileAction.UPDATE,
        pull_request=existing,
        rebase_comment=True,
    )


class PullRequestReconciler:
    """Creates or updates the single pull request that carries a logical change.

    Every commit is parented on the repo's default branch. Pull request writes
    (create, retitle, comments, labels) happen only after the force-push
    succeeds, so the rebase notice and the retitle follow the branch update
    rather than precede it.

    Git failures end the pass with a warning and a result describing where it
    stopped. GitHub failures propagate to the caller.
    """

    def __init__(
        self,
        *,
        repo: RepoConfig,
        github: GitHubGateway | None,
        git: GitBranchDriver,
        mergeable_poll_attempts: int = 3,
        mergeable_poll_interval_seconds: float = 2.0,
        branch_name_factory: Callable[[], str] = new_branch_name,
        logger: logging.Logger | None = None,
    ) -> None:
        self._repo = repo
        self._github = github
        self._git = git
        self._mergeable_poll_attempts = mergeable_poll_attempts
        self._mergeable_poll_interval_seconds = mergeable_poll_interval_seconds
        self._branch_name_factory = branch_name_factory
        self._logger = logger or LOGGER

    def run(self, context: ReconciliationContext, checkout_path: Path) -> ReconcileResult:
        _validate_context(context)
        if self._github is None:
            return self._unsupported_remote()
        existing = find_pull_request(
            self._github.list_open_pull_requests(),
            context.title_prefix,
            logger=self._logger,
        )
        return self.reconcile(context, checkout_path, existing)

    def run_for_pull_request(
        self,
        context: ReconciliationContext,
        checkout_path: Path,
        pull_request: RemotePullRequest | None,
    ) -> ReconcileResult:
        _validate_context(context)
        return self.reconcile(context, checkout_path, pull_request)

    def reconcile(
        self,
        context: ReconciliationContext,
        checkout_path: Path,
        existing: RemotePullRequest | None,
    ) -> ReconcileResult:
        github = self._github
        if github is None:
            return self._unsupported_remote()

        mergeable: bool | None = None
        if existing is not None and requires_mergeable_check(context, existing):
            mergeable = github.wait_for_mergeable(
                existing.number,
                attempts=self._mergeable_poll_attempts,
                interval_seconds=self._mergeable_poll_interval_seconds,
            )
        decision = decide(context, existing, mergeable=mergeable)
        log_event(
            self._logger,
            "reconcile_decided",
            repo_full_name=self._repo.full_name,
            state=decision.state.value,
            action=decision.action.value,
            pr_number=existing.number if existing else None,
            retitle=decision.retitle,
            rebase_comment=decision.rebase_comment,
        )

        if decision.action is ReconcileAction.SKIP and existing is not None:
            log_event(
                self._logger,
                "reconcile_skipped",
                repo_full_name=self._repo.full_name,
                pr_number=existing.number,
                pr_url=existing.html_url,
                reason="already_mergeable",
            )
            return ReconcileResult(
                outcome="skipped",
                action=decision.action,
                branch=existing.head_ref,
                pr_number=existing.number,
                pr_url=existing.html_url,
            )

        if context.dry_run:
            log_event(
                self._logger,
                "reconcile_dry_run",
                repo_full_name=self._repo.full_name,
                action=decision.action.value,
                pr_number=existing.number if existing else None,
            )
            return ReconcileResult(
                outcome="dry_run",
                action=decision.action,
                branch=existing.head_ref if existing else None,
                pr_number=existing.number if existing else None,
                pr_url=existing.html_url if existing else None,
            )

        self._git.set_remote_url(checkout_path, self._repo.effective_remote_url)
        if decision.pull_request is None:
            return self._create(github, context, checkout_path)
        return self._update(github, context, checkout_path, decision)

    def _create(
        self,
        github: GitHubGateway,
        context: ReconciliationContext,
        checkout_path: Path,
    ) -> ReconcileResult:
        branch = self._branch_name_factory()
        if not self._git.commit(
            checkout_path, branch, context.commit_message, base=self._repo.default_branch
        ):
            return self._aborted("commit_failed", ReconcileAction.CREATE, branch, None)
        if self._git.push(checkout_path, branch) != 0:
            # No pull request may point at a branch that never reached the remote.
            return self._aborted("push_failed", ReconcileAction.CREATE, branch, None)

        pull_request = github.create_pull_request(
            title=context.title,
            head=branch,
            base=self._repo.default_branch,
            body=context.pr_body,
        )
        if context.comment:
            github.post_issue_comment(pull_request.number, context.comment)
        if context.labels:
            github.set_labels(pull_request.number, context.labels)

        log_event(
            self._logger,
            "reconcile_completed",
            repo_full_name=self._repo.full_name,
            outcome="created",
            branch=branch,
            pr_number=pull_request.number,
            pr_url=pull_request.html_url,
        )
        return ReconcileResult(
            outcome="created",
            action=ReconcileAction.CREATE,
            branch=branch,
            pr_number=pull_request.number,
            pr_url=pull_request.html_url,
        )

    def _update(
        self,
        github: GitHubGateway,
        context: ReconciliationContext,
        checkout_path: Path,
        decision: ReconcileDecision,
    ) -> ReconcileResult:
        pull_request = decision.pull_request
        assert pull_request is not None
        remote_ref = pull_request.head_ref
        local_branch = remote_ref

        # Fails while the branch is checked out; the commit resets it anyway.
        self._git.delete_local_branch(checkout_path, local_branch)
        if not self._git.commit(
            checkout_path, local_branch, context.commit_message, base=self._repo.default_branch
        ):
            return self._aborted("commit_failed", ReconcileAction.UPDATE, local_branch, pull_request)
        if self._git.push(checkout_path, local_branch, remote_ref) != 0:
            return self._aborted("push_failed", ReconcileAction.UPDATE, local_branch, pull_request)

        if decision.retitle:
            github.set_pull_request_title(pull_request.number, context.title)
            if context.comment:
                github.post_issue_comment(pull_request.number, context.comment)
        elif decision.rebase_comment:
            github.post_issue_comment(pull_request.number, REBASE_NOTICE)

        log_event(
            self._logger,
            "reconcile_completed",
            repo_full_name=self._repo.full_name,
            outcome="updated",
            branch=remote_ref,
            pr_number=pull_request.number,
            pr_url=pull_request.html_url,
            retitled=decision.retitle,
        )
        return ReconcileResult(
            outcome="updated",
            action=ReconcileAction.UPDATE,
            branch=remote_ref,
            pr_number=pull_request.number,
            pr_url=pull_request.html_url,
        )

    def _aborted(
        self,
        outcome: Literal["commit_failed", "push_failed"],
        action: ReconcileAction,
        branch: str,
        pull_request: RemotePullRequest | None,
    ) -> ReconcileResult:
        log_event(
            self._logger,
            "reconcile_aborted",
            severity=logging.WARNING,
            repo_full_name=self._repo.full_name,
            remote_url=self._repo.effective_remote_url,
            reason=outcome,
            branch=branch,
            pr_url=pull_request.html_url if pull_request else None,
        )
        return ReconcileResult(
            outcome=outcome,
            action=action,
            branch=branch,
            pr_number=pull_request.number if pull_request else None,
            pr_url=pull_request.html_url if pull_request else None,
        )

    def _unsupported_remote(self) -> ReconcileResult:
        log_event(
            self._logger,
            "reconcile_unsupported_remote",
            severity=logging.WARNING,
            repo_id=self._repo.repo_id,
            remote_url=self._repo.effective_remote_url,
        )
        return ReconcileResult(outcome="unsupported_remote")


def _validate_context(context: ReconciliationContext) -> None:
    if not context.title_prefix:
        raise ValueError("title_prefix must be non-empty")
    # Titles must stay matchable by their own prefix on later passes.
    if not context.title.startswith(context.title_prefix):
        raise ValueError("title must start with title_prefix")
