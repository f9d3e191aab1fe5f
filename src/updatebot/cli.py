from __future__ import annotations

import argparse
from dataclasses import replace
from pathlib import Path

from updatebot.config import AppConfig, RepoConfig, load_config
from updatebot.git_ops import GitBranchDriver
from updatebot.github_gateway import GitHubGateway
from updatebot.models import ReconcileResult, ReconciliationContext
from updatebot.observability import configure_logging
from updatebot.reconciler import PullRequestReconciler


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="updatebot")
    subparsers = parser.add_subparsers(dest="command", required=True)

    reconcile_parser = subparsers.add_parser(
        "reconcile",
        help="Commit edits already present in a checkout and create or update their pull request",
    )
    reconcile_parser.add_argument("--config", type=Path, default=Path("updatebot.toml"))
    reconcile_parser.add_argument(
        "--repo", type=str, required=True, help="Repo id or owner/name from the config"
    )
    reconcile_parser.add_argument(
        "--dir", type=Path, required=True, help="Git checkout holding the edits"
    )
    reconcile_parser.add_argument("--title", type=str, required=True)
    reconcile_parser.add_argument(
        "--title-prefix",
        type=str,
        help="Stable title prefix identifying the change (defaults to the title)",
    )
    reconcile_parser.add_argument(
        "--commit-message", type=str, help="Defaults to the pull request title"
    )
    reconcile_parser.add_argument("--body", type=str, default="")
    reconcile_parser.add_argument("--comment", type=str, default="")
    reconcile_parser.add_argument(
        "--pr",
        type=int,
        help="Update this pull request instead of searching open pull requests by title prefix",
    )
    reconcile_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Decide and log the action without committing, pushing or calling GitHub writes",
    )
    reconcile_parser.add_argument(
        "--rebase",
        action="store_true",
        help="Leave an existing pull request alone while GitHub reports it mergeable",
    )
    reconcile_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose runtime logging to stderr",
    )

    return parser


def main() -> None:
    args = build_parser().parse_args()
    config = load_config(args.config)
    configure_logging(bool(getattr(args, "verbose", False)), state_dir=config.runtime.state_dir)

    if args.command == "reconcile":
        result = _cmd_reconcile(config, args)
        print(_format_result(result))
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_reconcile(config: AppConfig, args: argparse.Namespace) -> ReconcileResult:
    repo = config.repo_by_id(str(args.repo))
    runtime = config.runtime
    if args.dry_run:
        runtime = replace(runtime, dry_run=True)
    if args.rebase:
        runtime = replace(runtime, rebase_mode=True)

    title = str(args.title)
    context = ReconciliationContext(
        title=title,
        title_prefix=str(args.title_prefix) if args.title_prefix is not None else title,
        commit_message=str(args.commit_message) if args.commit_message is not None else title,
        pr_body=str(args.body),
        comment=str(args.comment),
        dry_run=runtime.dry_run,
        rebase_mode=runtime.rebase_mode,
        labels=runtime.pull_request_labels,
    )

    github = _build_gateway(repo)
    reconciler = PullRequestReconciler(
        repo=repo,
        github=github,
        git=GitBranchDriver(),
        mergeable_poll_attempts=runtime.mergeable_poll_attempts,
        mergeable_poll_interval_seconds=runtime.mergeable_poll_interval_seconds,
    )
    checkout_path = Path(args.dir).expanduser()
    if args.pr is not None and github is not None:
        pull_request = github.get_pull_request(int(args.pr))
        return reconciler.run_for_pull_request(context, checkout_path, pull_request)
    return reconciler.run(context, checkout_path)


def _build_gateway(repo: RepoConfig) -> GitHubGateway | None:
    if not repo.is_github:
        return None
    assert repo.owner is not None and repo.name is not None
    return GitHubGateway(repo.owner, repo.name)


def _format_result(result: ReconcileResult) -> str:
    parts = [f"outcome={result.outcome}"]
    if result.action is not None:
        parts.append(f"action={result.action.value}")
    if result.branch is not None:
        parts.append(f"branch={result.branch}")
    if result.pr_url is not None:
        parts.append(f"pr_url={result.pr_url}")
    return " ".join(parts)
