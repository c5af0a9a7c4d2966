from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


EventKind = Literal["status", "labeled", "unlabeled", "ping"]
CandidateClassification = Literal[
    "ready",
    "pending",
    "excluded_code_freeze",
    "not_labeled",
    "blocked",
]


@dataclass(frozen=True)
class Issue:
    number: int
    title: str
    labels: tuple[str, ...]
    is_pull_request: bool


@dataclass(frozen=True)
class PullRequestSnapshot:
    number: int
    head_sha: str
    base_ref: str
    labels: tuple[str, ...]
    mergeable_state: str

    def has_label(self, label: str) -> bool:
        return label in self.labels


@dataclass(frozen=True)
class CombinedStatus:
    sha: str
    state: str
    statuses: tuple[str, ...]

    @property
    def any_pending(self) -> bool:
        return any(state == "pending" for state in self.statuses)


@dataclass(frozen=True)
class InboundEvent:
    kind: EventKind
    owner: str
    repository: str
    changeset_number: int | None = None
    label_name: str | None = None
