from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
import logging

from updatebot.config import RepoConfig, RuntimeConfig
from updatebot.git_ops import GitBranchDriver
from updatebot.models import ReconcileResult, ReconciliationContext, RemotePullRequest
from updatebot.observability import log_event
from updatebot.reconciler import PullRequestReconciler


LOGGER = logging.getLogger("updatebot.version_push")
UPDATEBOT_LINK = "[UpdateBot](https://github.com/fabric8io/updatebot)"


@dataclass(frozen=True)
class PushVersionDetails:
    kind: str
    name: str
    version: str


class Updater(ABC):
    @abstractmethod
    def is_applicable(self, context: PushVersionChangesContext) -> bool:
        """Return whether this updater handles the files of the context's checkout."""

    @abstractmethod
    def push_versions(self, context: PushVersionChangesContext) -> bool:
        """Edit files in the checkout; return True only if something changed."""


class CommandContext:
    """Per-invocation state: the checkout, its repo and the changes applied so far."""

    def __init__(
        self,
        *,
        repo: RepoConfig,
        checkout_path: Path,
        updaters: Mapping[str, Updater],
    ) -> None:
        self.repo = repo
        self.checkout_path = checkout_path
        self._updaters = dict(updaters)
        self._children: list[PushVersionChangesContext] = []

    @property
    def children(self) -> tuple[PushVersionChangesContext, ...]:
        return tuple(self._children)

    def updater_for(self, kind: str) -> Updater:
        updater = self._updaters.get(kind)
        if updater is None:
            available = ", ".join(sorted(self._updaters))
            raise ValueError(f"No updater registered for kind {kind!r}; known kinds: {available}")
        return updater

    def add_child(self, step: PushVersionDetails) -> PushVersionChangesContext:
        child = PushVersionChangesContext(parent=self, step=step)
        self._children.append(child)
        return child

    def remove_child(self, child: PushVersionChangesContext) -> None:
        self._children = [existing for existing in self._children if existing is not child]


@dataclass(frozen=True, eq=False)
class PushVersionChangesContext:
    parent: CommandContext
    step: PushVersionDetails

    @property
    def checkout_path(self) -> Path:
        return self.parent.checkout_path

    @property
    def repo(self) -> RepoConfig:
        return self.parent.repo


def push_version(parent: CommandContext, step: PushVersionDetails) -> bool:
    updater = parent.updater_for(step.kind)
    context = parent.add_child(step)
    if not updater.is_applicable(context):
        parent.remove_child(context)
        log_event(LOGGER, "version_push_not_applicable", kind=step.kind, name=step.name)
        return False
    updated = updater.push_versions(context)
    if not updated:
        # Unchanged steps must not shape the commit or the pull request.
        parent.remove_child(context)
    log_event(
        LOGGER,
        "version_pushed",
        kind=step.kind,
        name=step.name,
        version=step.version,
        updated=updated,
    )
    return updated


def push_versions(parent: CommandContext, steps: Iterable[PushVersionDetails]) -> bool:
    answer = False
    for step in steps:
        if push_version(parent, step):
            answer = True
    return answer


def build_reconciliation_context(
    parent: CommandContext, runtime: RuntimeConfig
) -> ReconciliationContext:
    steps = [child.step for child in parent.children]
    if not steps:
        raise ValueError("No version changes were applied")

    if len(steps) == 1:
        title_prefix = f"Update {steps[0].name} to "
    else:
        title_prefix = "Update versions of " + ", ".join(step.name for step in steps) + " to "
    # The prefix names only the dependencies; the title adds their versions.
    title = title_prefix + ", ".join(step.version for step in steps)

    change_lines = "\n".join(f"* `{step.name}` to `{step.version}` ({step.kind})" for step in steps)
    return ReconciliationContext(
        title=title,
        title_prefix=title_prefix,
        commit_message=f"{title}\n\n{change_lines}",
        pr_body=f"UpdateBot pushed version changes:\n\n{change_lines}",
        comment=f"{UPDATEBOT_LINK} pushed {len(steps)} version change(s)",
        dry_run=runtime.dry_run,
        rebase_mode=runtime.rebase_mode,
        labels=runtime.pull_request_labels,
    )


def push_versions_and_reconcile(
    *,
    parent: CommandContext,
    steps: Iterable[PushVersionDetails],
    runtime: RuntimeConfig,
    git: GitBranchDriver,
    reconciler: PullRequestReconciler,
    pull_request: RemotePullRequest | None = None,
) -> ReconcileResult:
    git.stash_and_checkout_default_branch(parent.checkout_path, parent.repo.default_branch)
    if not push_versions(parent, steps):
        log_event(
            LOGGER,
            "reconcile_skipped",
            repo_full_name=parent.repo.full_name,
            reason="no_changes",
        )
        return ReconcileResult(outcome="no_changes")

    context = build_reconciliation_context(parent, runtime)
    if pull_request is not None:
        return reconciler.run_for_pull_request(context, parent.checkout_path, pull_request)
    return reconciler.run(context, parent.checkout_path)
