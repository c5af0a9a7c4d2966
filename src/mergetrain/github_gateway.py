from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import cast
from urllib.parse import quote, urlencode

from mergetrain.models import CombinedStatus, Issue, PullRequestSnapshot
from mergetrain.observability import log_event
from mergetrain.transport import ApiRequest, Send


LOGGER = logging.getLogger("mergetrain.github_gateway")


@dataclass(frozen=True)
class GitHubGateway:
    owner: str
    name: str
    send: Send

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def list_open_issues_with_label(self, label: str) -> list[Issue]:
        query = urlencode(
            {
                "state": "open",
                "labels": label,
                "sort": "created",
                "direction": "asc",
                "per_page": "100",
            }
        )
        payload = self._api_json("GET", f"/repos/{self.owner}/{self.name}/issues?{query}")
        if not isinstance(payload, list):
            raise RuntimeError("Unexpected GitHub response: expected list for issues")

        issues: list[Issue] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            issues.append(
                Issue(
                    number=_as_int(item_obj.get("number"), field="number"),
                    title=_as_string(item_obj.get("title")),
                    labels=_label_names(item_obj.get("labels")),
                    # The issues endpoint also returns pull requests, flagged by this key.
                    is_pull_request=item_obj.get("pull_request") is not None,
                )
            )
        log_event(LOGGER, "github_read", endpoint="issues", label=label, count=len(issues))
        return issues

    def get_pull_request(self, pr_number: int) -> PullRequestSnapshot:
        payload = self._api_json("GET", f"/repos/{self.owner}/{self.name}/pulls/{pr_number}")
        payload_obj = _as_object_dict(payload)
        if payload_obj is None:
            raise RuntimeError("Unexpected GitHub response: expected object for pull request")
        head = _as_object_dict(payload_obj.get("head"))
        base = _as_object_dict(payload_obj.get("base"))
        if head is None or base is None:
            raise RuntimeError("Unexpected GitHub response: missing head/base for pull request")
        snapshot = PullRequestSnapshot(
            number=_as_int(payload_obj.get("number"), field="number"),
            head_sha=_as_string(head.get("sha")),
            base_ref=_as_string(base.get("ref")),
            labels=_label_names(payload_obj.get("labels")),
            mergeable_state=_as_string(payload_obj.get("mergeable_state")) or "unknown",
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request",
            pr_number=pr_number,
            mergeable_state=snapshot.mergeable_state,
        )
        return snapshot

    def get_combined_status(self, ref: str) -> CombinedStatus:
        path = f"/repos/{self.owner}/{self.name}/commits/{quote(ref, safe='')}/status"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise RuntimeError("Unexpected GitHub response: expected object for combined status")
        statuses_obj = payload_obj.get("statuses")
        if not isinstance(statuses_obj, list):
            raise RuntimeError("Unexpected GitHub response: expected list of statuses")
        states: list[str] = []
        for entry in statuses_obj:
            entry_obj = _as_object_dict(entry)
            if entry_obj is None:
                continue
            states.append(_as_string(entry_obj.get("state")))
        status = CombinedStatus(
            sha=_as_string(payload_obj.get("sha")) or ref,
            state=_as_string(payload_obj.get("state")),
            statuses=tuple(states),
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="combined_status",
            ref=ref,
            count=len(states),
        )
        return status

    def merge_pull_request(self, pr_number: int) -> None:
        path = f"/repos/{self.owner}/{self.name}/pulls/{pr_number}/merge"
        try:
            self._api_json("PUT", path, payload={"merge_method": "squash"})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_merge_failed",
                repo_full_name=self.full_name,
                pr_number=pr_number,
                error_type=type(exc).__name__,
            )
            raise
        log_event(LOGGER, "github_pr_merged", pr_number=pr_number)

    def post_issue_comment(self, issue_number: int, body: str) -> None:
        path = f"/repos/{self.owner}/{self.name}/issues/{issue_number}/comments"
        try:
            self._api_json("POST", path, payload={"body": body})
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_issue_comment_failed",
                repo_full_name=self.full_name,
                issue_number=issue_number,
                error_type=type(exc).__name__,
            )
            raise
        log_event(LOGGER, "github_issue_comment_posted", issue_number=issue_number)

    def _api_json(self, method: str, path: str, payload: dict[str, object] | None = None) -> object:
        response = self.send(ApiRequest(method=method, path=path, payload=payload))
        return response.payload


def _label_names(value: object) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    names: list[str] = []
    for entry in value:
        entry_obj = _as_object_dict(entry)
        if entry_obj is None:
            continue
        name = entry_obj.get("name")
        if isinstance(name, str):
            names.append(name)
    return tuple(names)


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
