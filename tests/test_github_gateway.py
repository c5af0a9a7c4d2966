from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest

from mergetrain.github_gateway import (
    GitHubGateway,
    _as_int,
    _as_object_dict,
    _as_string,
    _label_names,
)
from mergetrain.models import CombinedStatus, Issue, PullRequestSnapshot
from mergetrain.transport import ApiRequest, ApiResponse, GitHubApiError


class RecordingSend:
    def __init__(self, payload: object = None, *, error: Exception | None = None) -> None:
        self.payload = payload
        self.error = error
        self.requests: list[ApiRequest] = []

    def __call__(self, request: ApiRequest) -> ApiResponse:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return ApiResponse(200, {}, self.payload)


def test_list_open_issues_with_label_builds_query_and_flags_pull_requests() -> None:
    send = RecordingSend(
        [
            {
                "number": 7,
                "title": "Bump dependency",
                "labels": [{"name": "ready-to-merge"}, {"name": "deps"}],
                "pull_request": {"url": "https://api.github.com/repos/o/r/pulls/7"},
            },
            {"number": 8, "title": "Bug", "labels": [], "pull_request": None},
            "junk",
        ]
    )
    gateway = GitHubGateway("o", "r", send)

    issues = gateway.list_open_issues_with_label("ready-to-merge")

    assert issues == [
        Issue(
            number=7,
            title="Bump dependency",
            labels=("ready-to-merge", "deps"),
            is_pull_request=True,
        ),
        Issue(number=8, title="Bug", labels=(), is_pull_request=False),
    ]
    request = send.requests[0]
    assert request.method == "GET"
    parsed = urlparse(request.path)
    assert parsed.path == "/repos/o/r/issues"
    assert parse_qs(parsed.query) == {
        "state": ["open"],
        "labels": ["ready-to-merge"],
        "sort": ["created"],
        "direction": ["asc"],
        "per_page": ["100"],
    }


def test_list_open_issues_rejects_non_list_payload() -> None:
    gateway = GitHubGateway("o", "r", RecordingSend({"message": "nope"}))

    with pytest.raises(RuntimeError, match="expected list for issues"):
        gateway.list_open_issues_with_label("ready-to-merge")


def test_get_pull_request_parses_snapshot() -> None:
    send = RecordingSend(
        {
            "number": 166,
            "head": {"sha": "pr-166-sha-head"},
            "base": {"ref": "master"},
            "labels": [{"name": "ready-to-merge"}],
            "mergeable_state": "clean",
        }
    )
    gateway = GitHubGateway("o", "r", send)

    assert gateway.get_pull_request(166) == PullRequestSnapshot(
        number=166,
        head_sha="pr-166-sha-head",
        base_ref="master",
        labels=("ready-to-merge",),
        mergeable_state="clean",
    )
    assert send.requests[0].path == "/repos/o/r/pulls/166"


def test_get_pull_request_defaults_missing_mergeable_state_to_unknown() -> None:
    send = RecordingSend(
        {"number": 1, "head": {"sha": "s"}, "base": {"ref": "b"}, "mergeable_state": None}
    )

    assert GitHubGateway("o", "r", send).get_pull_request(1).mergeable_state == "unknown"


@pytest.mark.parametrize(
    "payload",
    [[], {"number": 1, "base": {"ref": "b"}}, {"number": 1, "head": {"sha": "s"}}],
)
def test_get_pull_request_rejects_malformed_payload(payload: object) -> None:
    with pytest.raises(RuntimeError, match="Unexpected GitHub response"):
        GitHubGateway("o", "r", RecordingSend(payload)).get_pull_request(1)


def test_get_combined_status_collects_individual_states() -> None:
    send = RecordingSend(
        {
            "sha": "abc",
            "state": "pending",
            "statuses": [{"state": "success"}, {"state": "pending"}, 3],
        }
    )
    gateway = GitHubGateway("o", "r", send)

    status = gateway.get_combined_status("feature/x")

    assert status == CombinedStatus(sha="abc", state="pending", statuses=("success", "pending"))
    assert status.any_pending
    assert send.requests[0].path == "/repos/o/r/commits/feature%2Fx/status"


def test_get_combined_status_requires_statuses_list() -> None:
    gateway = GitHubGateway("o", "r", RecordingSend({"sha": "abc", "state": "success"}))

    with pytest.raises(RuntimeError, match="expected list of statuses"):
        gateway.get_combined_status("abc")


def test_merge_pull_request_squashes() -> None:
    send = RecordingSend({"merged": True})

    GitHubGateway("o", "r", send).merge_pull_request(12)

    assert send.requests == [
        ApiRequest(
            method="PUT",
            path="/repos/o/r/pulls/12/merge",
            payload={"merge_method": "squash"},
        )
    ]


def test_merge_pull_request_failure_is_logged_and_raised(monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[tuple[str, dict[str, object]]] = []
    monkeypatch.setattr(
        "mergetrain.github_gateway.log_event",
        lambda logger, event, **fields: events.append((event, fields)),
    )
    error = GitHubApiError(405, {}, "Pull Request is not mergeable")
    gateway = GitHubGateway("o", "r", RecordingSend(error=error))

    with pytest.raises(GitHubApiError):
        gateway.merge_pull_request(12)

    assert events == [
        (
            "github_merge_failed",
            {"repo_full_name": "o/r", "pr_number": 12, "error_type": "GitHubApiError"},
        )
    ]


def test_post_issue_comment_posts_body() -> None:
    send = RecordingSend({"id": 1})

    GitHubGateway("o", "r", send).post_issue_comment(12, "thanks")

    assert send.requests[0].method == "POST"
    assert send.requests[0].path == "/repos/o/r/issues/12/comments"
    assert send.requests[0].payload == {"body": "thanks"}


def test_post_issue_comment_propagates_failures() -> None:
    gateway = GitHubGateway("o", "r", RecordingSend(error=GitHubApiError(403, {}, "forbidden")))

    with pytest.raises(GitHubApiError, match="status 403"):
        gateway.post_issue_comment(12, "thanks")


def test_payload_helpers() -> None:
    assert _label_names([{"name": "a"}, {"name": 3}, "b", {"name": "c"}]) == ("a", "c")
    assert _label_names(None) == ()
    assert _as_object_dict({1: "x"}) is None
    assert _as_object_dict({"k": 1}) == {"k": 1}
    assert _as_string(None) == ""
    assert _as_string(5) == "5"
    assert _as_int("12", field="number") == 12
    with pytest.raises(RuntimeError, match="number"):
        _as_int(True, field="number")
    with pytest.raises(RuntimeError, match="value for number"):
        _as_int("x", field="number")
    with pytest.raises(RuntimeError, match="type for number"):
        _as_int(None, field="number")
