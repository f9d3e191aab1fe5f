from __future__ import annotations

import json
from urllib.parse import parse_qs, urlparse

import pytest

from updatebot.github_gateway import (
    GitHubGateway,
    GitHubPollingError,
    _as_int,
    _as_optional_bool,
    _parse_http_response,
    _parse_pull_request,
    _preview_for_log,
)
from updatebot.shell import CommandError


@pytest.fixture(autouse=True)
def _disable_gateway_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("updatebot.github_gateway.time.sleep", lambda _: None)


def _pr_payload(number: int, title: str, *, mergeable: object = None) -> dict[str, object]:
    return {
        "number": number,
        "title": title,
        "state": "open",
        "mergeable": mergeable,
        "html_url": f"https://github.com/o/r/pull/{number}",
        "head": {"ref": f"updatebot-{number}", "sha": "abc"},
    }


def test_list_open_pull_requests_paginates_and_parses(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    pages: list[int] = []

    def fake_api(
        self: GitHubGateway, method: str, path: str, payload: dict[str, object] | None = None
    ) -> object:
        _ = self, payload
        assert method == "GET"
        params = parse_qs(urlparse(path).query)
        assert params["state"] == ["open"]
        page = int(params["page"][0])
        pages.append(page)
        if page == 1:
            return [_pr_payload(n, f"Update dep{n} to 1.0") for n in range(1, 101)]
        return [_pr_payload(101, "Update foo to 1.2.3"), "skip"]

    monkeypatch.setattr(GitHubGateway, "_api_json", fake_api)

    pull_requests = gateway.list_open_pull_requests()

    assert pages == [1, 2]
    assert len(pull_requests) == 101
    assert pull_requests[0].number == 1
    assert pull_requests[-1].title == "Update foo to 1.2.3"
    assert pull_requests[-1].head_ref == "updatebot-101"
    assert pull_requests[-1].mergeable is None


def test_list_open_pull_requests_treats_null_as_empty(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    monkeypatch.setattr(GitHubGateway, "_api_json", lambda self, method, path, payload=None: None)

    assert gateway.list_open_pull_requests() == []


def test_list_open_pull_requests_rejects_non_list(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    monkeypatch.setattr(
        GitHubGateway, "_api_json", lambda self, method, path, payload=None: {"bad": "shape"}
    )

    with pytest.raises(RuntimeError, match="expected list for pull requests"):
        gateway.list_open_pull_requests()


def test_get_pull_request_reads_mergeable(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    seen: list[str] = []

    def fake_api(
        self: GitHubGateway, method: str, path: str, payload: dict[str, object] | None = None
    ) -> object:
        _ = self, method, payload
        seen.append(path)
        return _pr_payload(7, "Update foo to 1.2.3", mergeable=False)

    monkeypatch.setattr(GitHubGateway, "_api_json", fake_api)

    pull_request = gateway.get_pull_request(7)

    assert seen == ["/repos/o/r/pulls/7"]
    assert pull_request.mergeable is False
    assert pull_request.state == "open"


def test_wait_for_mergeable_polls_until_known(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    answers = iter([None, None, True])
    sleeps: list[float] = []
    monkeypatch.setattr("updatebot.github_gateway.time.sleep", lambda s: sleeps.append(s))
    monkeypatch.setattr(
        GitHubGateway,
        "_api_json",
        lambda self, method, path, payload=None: _pr_payload(7, "t", mergeable=next(answers)),
    )

    assert gateway.wait_for_mergeable(7, attempts=5, interval_seconds=0.25) is True
    assert sleeps == [0.25, 0.25]


def test_wait_for_mergeable_gives_up_with_unknown(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    calls = {"count": 0}

    def fake_api(
        self: GitHubGateway, method: str, path: str, payload: dict[str, object] | None = None
    ) -> object:
        _ = self, method, path, payload
        calls["count"] += 1
        return _pr_payload(7, "t")

    monkeypatch.setattr(GitHubGateway, "_api_json", fake_api)

    assert gateway.wait_for_mergeable(7, attempts=3) is None
    assert calls["count"] == 3
    with pytest.raises(ValueError, match="attempts must be >= 1"):
        gateway.wait_for_mergeable(7, attempts=0)


def test_mutations_issue_expected_requests(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    calls: list[tuple[str, str, dict[str, object] | None]] = []

    def fake_api(
        self: GitHubGateway, method: str, path: str, payload: dict[str, object] | None = None
    ) -> object:
        _ = self
        calls.append((method, path, payload))
        if method == "POST" and path.endswith("/pulls"):
            return _pr_payload(123, "Update foo to 1.2.3")
        return {"ok": True}

    monkeypatch.setattr(GitHubGateway, "_api_json", fake_api)

    pr = gateway.create_pull_request("Update foo to 1.2.3", "updatebot-x", "main", "body")
    gateway.post_issue_comment(123, "hello")
    gateway.set_pull_request_title(123, "Update foo to 1.2.4")
    gateway.set_labels(123, ("updatebot", "deps"))

    assert pr.number == 123
    assert pr.html_url == "https://github.com/o/r/pull/123"
    assert calls == [
        (
            "POST",
            "/repos/o/r/pulls",
            {"title": "Update foo to 1.2.3", "head": "updatebot-x", "base": "main", "body": "body"},
        ),
        ("POST", "/repos/o/r/issues/123/comments", {"body": "hello"}),
        ("PATCH", "/repos/o/r/pulls/123", {"title": "Update foo to 1.2.4"}),
        ("PUT", "/repos/o/r/issues/123/labels", {"labels": ["updatebot", "deps"]}),
    ]


def test_create_pull_request_failure_propagates(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    gateway = GitHubGateway("o", "r")

    def fake_api(
        self: GitHubGateway, method: str, path: str, payload: dict[str, object] | None = None
    ) -> object:
        _ = self, method, path, payload
        raise CommandError("Command failed", exit_code=1)

    monkeypatch.setattr(GitHubGateway, "_api_json", fake_api)

    with pytest.raises(CommandError):
        gateway.create_pull_request("t", "h", "main", "b")
    with pytest.raises(CommandError):
        gateway.post_issue_comment(1, "b")


def test_api_json_get_uses_etag_cache(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    commands: list[list[str]] = []
    responses = iter(
        [
            'HTTP/2.0 200 OK\nETag: "v1"\n\n[{"number": 1}]',
            "HTTP/2.0 304 Not Modified\n\n",
        ]
    )

    def fake_run(cmd: list[str], **kwargs: object) -> str:
        _ = kwargs
        commands.append(cmd)
        return next(responses)

    monkeypatch.setattr("updatebot.github_gateway.run", fake_run)

    first = gateway._api_json("GET", "/repos/o/r/pulls")
    second = gateway._api_json("GET", "/repos/o/r/pulls")

    assert first == [{"number": 1}]
    assert second == first
    assert "If-None-Match: \"v1\"" in commands[1]


def test_api_json_get_failure_raises_polling_error(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    monkeypatch.setattr(
        "updatebot.github_gateway.run",
        lambda cmd, **kwargs: 'HTTP/2.0 401 Unauthorized\n\n{"message": "Bad credentials"}',
    )

    with pytest.raises(GitHubPollingError, match="status 401"):
        gateway._api_json("GET", "/repos/o/r/pulls")


def test_api_json_mutation_sends_payload_on_stdin(monkeypatch: pytest.MonkeyPatch) -> None:
    gateway = GitHubGateway("o", "r")
    seen: dict[str, object] = {}

    def fake_run(cmd: list[str], **kwargs: object) -> str:
        seen["cmd"] = cmd
        seen["input_text"] = kwargs.get("input_text")
        return ""

    monkeypatch.setattr("updatebot.github_gateway.run", fake_run)

    assert gateway._api_json("PUT", "/repos/o/r/issues/1/labels", {"labels": ["a"]}) is None
    assert seen["cmd"] == [
        "gh",
        "api",
        "--method",
        "PUT",
        "/repos/o/r/issues/1/labels",
        "--input",
        "-",
    ]
    assert json.loads(str(seen["input_text"])) == {"labels": ["a"]}


def test_parse_helpers() -> None:
    status, headers, body = _parse_http_response(
        "HTTP/1.1 100 Continue\r\n\r\nHTTP/2 200\r\nA: b\r\n\r\n{}"
    )
    assert status == 200
    assert headers == {"a": "b"}
    assert body == "{}"
    with pytest.raises(RuntimeError, match="missing HTTP status line"):
        _parse_http_response("nope")

    assert _as_int("12", field="number") == 12
    with pytest.raises(RuntimeError):
        _as_int(True, field="number")
    assert _as_optional_bool(None) is None
    with pytest.raises(RuntimeError):
        _as_optional_bool("yes")
    assert _preview_for_log("") == "<empty>"

    closed = _parse_pull_request({"number": 3, "title": None, "state": "closed"})
    assert closed.title == ""
    assert closed.head_ref == ""
    assert closed.state == "closed"
