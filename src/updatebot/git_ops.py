from __future__ import annotations

from pathlib import Path
import logging

from updatebot.observability import log_event
from updatebot.shell import CommandError, run


LOGGER = logging.getLogger("updatebot.git_ops")


class GitBranchDriver:
    """Runs the git steps of a reconciliation pass inside one checkout.

    Failures are reported as exit codes or booleans rather than raised, so a
    failed git step ends only the current pass.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def set_remote_url(self, checkout_path: Path, remote_url: str) -> int:
        log_event(
            self._logger,
            "git_remote_set",
            checkout_path=str(checkout_path),
            remote_url=remote_url,
        )
        exit_code = self._run_ignore_output(
            checkout_path, ["remote", "set-url", "origin", remote_url]
        )
        if exit_code != 0:
            log_event(
                self._logger,
                "git_remote_set_failed",
                severity=logging.WARNING,
                checkout_path=str(checkout_path),
                remote_url=remote_url,
                exit_code=exit_code,
            )
        return exit_code

    def stash_and_checkout_default_branch(self, checkout_path: Path, default_branch: str) -> int:
        log_event(
            self._logger,
            "git_prepare_checkout",
            checkout_path=str(checkout_path),
            default_branch=default_branch,
        )
        self._run_ignore_output(checkout_path, ["stash"])
        exit_code = self._run_ignore_output(checkout_path, ["checkout", default_branch])
        if exit_code != 0:
            log_event(
                self._logger,
                "git_prepare_checkout_failed",
                severity=logging.WARNING,
                checkout_path=str(checkout_path),
                default_branch=default_branch,
                exit_code=exit_code,
            )
        return exit_code

    def delete_local_branch(self, checkout_path: Path, branch: str) -> int:
        exit_code = self._run_ignore_output(checkout_path, ["branch", "-D", branch])
        # Missing local branches are the common case.
        log_event(
            self._logger,
            "git_branch_deleted",
            severity=logging.DEBUG,
            checkout_path=str(checkout_path),
            branch=branch,
            deleted=exit_code == 0,
        )
        return exit_code

    def commit(
        self,
        checkout_path: Path,
        branch: str,
        commit_message: str,
        *,
        base: str | None = None,
    ) -> bool:
        """Commit the working tree as ``branch``, parented on ``base`` when given.

        ``checkout -B`` keeps the working tree and works even when ``branch`` is
        the one checked out, as on a checkout reused from an earlier pass. The
        soft reset then moves the branch onto ``base`` without touching files,
        so the new commit never carries an earlier pass's commits.
        """
        steps: list[tuple[str, list[str], bool]] = [("checkout", ["checkout", "-B", branch], True)]
        if base is not None:
            steps.append(("reset", ["reset", "--soft", base], True))
        steps.append(("add", ["add", "-A"], True))
        steps.append(("commit", ["commit", "-m", commit_message], False))
        for step, args, ignore_output in steps:
            if ignore_output:
                exit_code = self._run_ignore_output(checkout_path, args)
            else:
                exit_code = self._run(checkout_path, args)
            if exit_code != 0:
                log_event(
                    self._logger,
                    "git_commit_failed",
                    severity=logging.WARNING,
                    checkout_path=str(checkout_path),
                    branch=branch,
                    step=step,
                    exit_code=exit_code,
                )
                return False
        log_event(
            self._logger,
            "git_commit",
            checkout_path=str(checkout_path),
            branch=branch,
            base=base,
            has_message=bool(commit_message.strip()),
        )
        return True

    def push(self, checkout_path: Path, local_branch: str, remote_ref: str | None = None) -> int:
        refspec = local_branch
        if remote_ref is not None and remote_ref != local_branch:
            refspec = f"{local_branch}:{remote_ref}"
        log_event(
            self._logger,
            "git_push",
            checkout_path=str(checkout_path),
            refspec=refspec,
        )
        exit_code = self._run(checkout_path, ["push", "-f", "origin", refspec])
        if exit_code != 0:
            log_event(
                self._logger,
                "git_push_failed",
                severity=logging.WARNING,
                checkout_path=str(checkout_path),
                refspec=refspec,
                exit_code=exit_code,
            )
        return exit_code

    def _run(self, checkout_path: Path, args: list[str]) -> int:
        try:
            run(["git", "-C", str(checkout_path), *args])
        except CommandError as exc:
            return exc.exit_code
        return 0

    def _run_ignore_output(self, checkout_path: Path, args: list[str]) -> int:
        try:
            run(["git", "-C", str(checkout_path), *args], log_failure=False)
        except CommandError as exc:
            return exc.exit_code
        return 0
