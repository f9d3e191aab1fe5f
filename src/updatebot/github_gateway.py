from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import time
from typing import cast
from urllib.parse import urlencode

from updatebot.models import PullRequestState, RemotePullRequest
from updatebot.observability import log_event
from updatebot.shell import run


LOGGER = logging.getLogger("updatebot.github_gateway")
_PAGE_SIZE = 100


class GitHubPollingError(RuntimeError):
    """GitHub read failure; the current reconciliation pass cannot continue."""


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    _etags_by_path: dict[str, str] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )
    _cached_get_payload_by_path: dict[str, object] = field(
        default_factory=dict,
        init=False,
        repr=False,
        compare=False,
    )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def list_open_pull_requests(self) -> list[RemotePullRequest]:
        pull_requests: list[RemotePullRequest] = []
        page = 1
        while True:
            query = urlencode({"state": "open", "per_page": _PAGE_SIZE, "page": page})
            path = f"/repos/{self.owner}/{self.name}/pulls?{query}"
            payload = self._api_json("GET", path)
            if payload is None:
                break
            if not isinstance(payload, list):
                raise RuntimeError("Unexpected GitHub response: expected list for pull requests")

            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is None:
                    continue
                pull_requests.append(_parse_pull_request(item_obj))
            if len(payload) < _PAGE_SIZE:
                break
            page += 1

        log_event(
            LOGGER,
            "github_read",
            endpoint="open_pull_requests",
            repo_full_name=self.full_name,
            count=len(pull_requests),
        )
        return pull_requests

    def get_pull_request(self, pr_number: int) -> RemotePullRequest:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise RuntimeError("Unexpected GitHub response: expected object for pull request")
        pull_request = _parse_pull_request(payload_obj)
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request",
            pr_number=pull_request.number,
            mergeable=pull_request.mergeable,
        )
        return pull_request

    def wait_for_mergeable(
        self,
        pr_number: int,
        *,
        attempts: int = 3,
        interval_seconds: float = 2.0,
    ) -> bool | None:
        if attempts < 1:
            raise ValueError("attempts must be >= 1")
        mergeable: bool | None = None
        for attempt in range(1, attempts + 1):
            mergeable = self.get_pull_request(pr_number).mergeable
            if mergeable is not None:
                break
            if attempt < attempts:
                time.sleep(interval_seconds)
        log_event(
            LOGGER,
            "github_mergeable_resolved",
            pr_number=pr_number,
            mergeable=mergeable,
        )
        return mergeable

    def create_pull_request(self, title: str, head: str, base: str, body: str) -> RemotePullRequest:
        path = f"/repos/{self.owner}/{self.name}/pulls"
        try:
            payload = self._api_json(
                "POST",
                path,
                payload={"title": title, "head": head, "base": base, "body": body},
            )
            payload_obj = _as_object_dict(payload)
            if payload_obj is None:
                raise RuntimeError("Unexpected GitHub response: expected object for PR")
            pull_request = _parse_pull_request(payload_obj)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_pr_create_failed",
                severity=logging.WARNING,
                repo_full_name=self.full_name,
                base=base,
                head=head,
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "github_pr_created",
            repo_full_name=self.full_name,
            pr_number=pull_request.number,
            pr_url=pull_request.html_url,
            base=base,
            head=head,
        )
        return pull_request

    def post_issue_comment(self, issue_number: int, body: str) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/comments"
        try:
            self._api_json("POST", path, payload={"body": body})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_issue_comment_failed",
                severity=logging.WARNING,
                repo_full_name=self.full_name,
                issue_number=issue_number,
                error_type=type(exc).__name__,
            )
            raise
        log_event(LOGGER, "github_issue_comment_posted", issue_number=issue_number)

    def set_pull_request_title(self, pr_number: int, title: str) -> None:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}"
        self._api_json("PATCH", path, payload={"title": title})
        log_event(LOGGER, "github_pr_retitled", pr_number=pr_number)

    def set_labels(self, issue_number: int, labels: tuple[str, ...]) -> None:
        # PUT replaces the label set; GitHub creates unknown labels on demand.
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/labels"
        self._api_json("PUT", path, payload={"labels": list(labels)})
        log_event(LOGGER, "github_labels_set", issue_number=issue_number, labels=labels)

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        method_upper = method.upper()
        if method_upper == "GET":
            cmd = ["gh", "api", "--method", method_upper]
            etag = self._etags_by_path.get(path)
            if etag:
                cmd.extend(["--header", f"If-None-Match: {etag}"])
            cmd.extend(["--include", path])

            raw = run(cmd, check=False)
            try:
                status_code, headers, body = _parse_http_response(raw)

                if status_code == 304:
                    cached_payload = self._cached_get_payload_by_path.get(path)
                    if cached_payload is None:
                        raise RuntimeError(f"GitHub returned 304 for uncached path: {path}")
                    return cached_payload

                if status_code < 200 or status_code >= 300:
                    message = body.strip() or "<empty>"
                    raise RuntimeError(
                        f"GitHub API request failed with status {status_code}: {message}"
                    )

                payload_obj = json.loads(body) if body.strip() else None
                etag = headers.get("etag")
                if etag:
                    self._etags_by_path[path] = etag
                    self._cached_get_payload_by_path[path] = payload_obj
                return payload_obj
            except Exception as exc:
                log_event(
                    LOGGER,
                    "github_get_failed",
                    severity=logging.WARNING,
                    path=path,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    raw_preview=_preview_for_log(raw),
                )
                raise GitHubPollingError(f"GitHub GET failed for path {path}: {exc}") from exc

        cmd = ["gh", "api", "--method", method_upper, path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        raw = run(cmd, input_text=stdin_payload)
        return json.loads(raw) if raw.strip() else None


def _parse_pull_request(item_obj: dict[str, object]) -> RemotePullRequest:
    head = _as_object_dict(item_obj.get("head"))
    return RemotePullRequest(
        number=_as_int(item_obj.get("number"), field="number"),
        title=_as_string(item_obj.get("title")),
        head_ref=_as_string(head.get("ref") if head else None),
        state=_as_pull_request_state(item_obj.get("state")),
        mergeable=_as_optional_bool(item_obj.get("mergeable")),
        html_url=_as_string(item_obj.get("html_url")),
    )


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")

    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index

    if status_line_index < 0:
        raise RuntimeError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}")

    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        if ":" not in line:
            continue
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()

    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise RuntimeError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise RuntimeError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise RuntimeError(f"Unexpected GitHub response type for {field}")


def _as_optional_bool(value: object) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    raise RuntimeError("Unexpected GitHub response type for optional bool field")


def _as_pull_request_state(value: object) -> PullRequestState:
    normalized = _as_string(value).strip().lower()
    if normalized == "closed":
        return "closed"
    return "open"
