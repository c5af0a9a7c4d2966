from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
from typing import Callable, Sequence

from mergetrain.config import TrainConfig
from mergetrain.github_gateway import GitHubGateway
from mergetrain.merge_executor import MergeExecutor, render_numbers
from mergetrain.models import CandidateClassification, CombinedStatus, PullRequestSnapshot
from mergetrain.observability import log_event
from mergetrain.state import RepositoryState


LOGGER = logging.getLogger("mergetrain.evaluator")


@dataclass(frozen=True)
class CandidateSnapshot:
    pull_request: PullRequestSnapshot
    status: CombinedStatus


@dataclass(frozen=True)
class TrainPlan:
    new_train: tuple[int, ...]
    ready_to_merge: tuple[int, ...]

    @property
    def all_ready(self) -> bool:
        return len(self.new_train) == len(self.ready_to_merge)


def excluded_by_code_freeze(
    pull_request: PullRequestSnapshot, *, enforce: bool, branch_name: str
) -> bool:
    # An empty freeze branch matches nothing, so every candidate is excluded.
    if not enforce:
        return False
    return not branch_name or pull_request.base_ref != branch_name


def classify_candidate(
    candidate: CandidateSnapshot,
    *,
    ready_label: str,
    enforce_code_freeze: bool,
    code_freeze_branch_name: str,
) -> CandidateClassification:
    pull_request = candidate.pull_request
    if excluded_by_code_freeze(
        pull_request, enforce=enforce_code_freeze, branch_name=code_freeze_branch_name
    ):
        return "excluded_code_freeze"
    if not pull_request.has_label(ready_label):
        return "not_labeled"
    if pull_request.mergeable_state == "clean":
        return "ready"
    if candidate.status.any_pending:
        return "pending"
    return "blocked"


def plan_train(
    candidates: Sequence[CandidateSnapshot],
    classifications: Sequence[CandidateClassification],
) -> TrainPlan:
    new_train: list[int] = []
    ready_to_merge: list[int] = []
    for candidate, classification in zip(candidates, classifications, strict=True):
        number = candidate.pull_request.number
        if classification == "ready":
            ready_to_merge.append(number)
            new_train.append(number)
        elif classification == "pending":
            new_train.append(number)
    return TrainPlan(new_train=tuple(new_train), ready_to_merge=tuple(ready_to_merge))


class TrainEvaluator:
    def __init__(
        self,
        github: GitHubGateway,
        state: RepositoryState,
        merger: MergeExecutor,
        *,
        narrate: Callable[[str], None],
        settings: TrainConfig,
    ) -> None:
        self._github = github
        self._state = state
        self._merger = merger
        self._narrate = narrate
        self._settings = settings

    def evaluate(self) -> None:
        """Recompute the whole train; merge it when nothing is left pending.

        Any failure before the train is committed leaves it untouched.
        """
        try:
            self._evaluate()
        except Exception as exc:  # noqa: BLE001
            self._narrate(f"evaluation failed: {type(exc).__name__}: {exc}")
            log_event(
                LOGGER,
                "train_evaluation_failed",
                repo_full_name=self._github.full_name,
                error_type=type(exc).__name__,
                error=str(exc),
            )

    def check_single(self, pr_number: int) -> None:
        try:
            self._check_single(pr_number)
        except Exception as exc:  # noqa: BLE001
            self._narrate(f"{pr_number} check failed: {type(exc).__name__}: {exc}")
            log_event(
                LOGGER,
                "train_evaluation_failed",
                repo_full_name=self._github.full_name,
                pr_number=pr_number,
                error_type=type(exc).__name__,
                error=str(exc),
            )

    def _evaluate(self) -> None:
        current_train = self._state.train_snapshot()
        if current_train:
            candidates = current_train
        else:
            self._narrate("there are no proposed trains, building a new one")
            issues = self._github.list_open_issues_with_label(self._settings.ready_label)
            candidates = tuple(issue.number for issue in issues if issue.is_pull_request)

        snapshots = self._fetch_candidates(candidates)
        enforce = self._state.enforce_code_freeze
        branch_name = self._state.code_freeze_branch_name
        classifications: list[CandidateClassification] = []
        for snapshot in snapshots:
            classification = classify_candidate(
                snapshot,
                ready_label=self._settings.ready_label,
                enforce_code_freeze=enforce,
                code_freeze_branch_name=branch_name,
            )
            classifications.append(classification)
            self._narrate_candidate(snapshot, classification)

        plan = plan_train(snapshots, classifications)
        self._narrate(
            f"after recalculating, train: {render_numbers(candidates)} becomes new train "
            f"{render_numbers(plan.new_train)}"
        )

        if plan.all_ready:
            self._narrate(f"in train {render_numbers(plan.new_train)} all PRs ready to merge")
            # Reset regardless of the outcome; later events re-seed the train.
            self._merger.merge_batch(plan.new_train)
            self._state.reset_train()
            return

        self._narrate(
            f"in train {render_numbers(plan.new_train)} has "
            f"{render_numbers(plan.ready_to_merge)} ready to merge, some pending, waiting"
        )
        self._state.replace_train(plan.new_train)

    def _check_single(self, pr_number: int) -> None:
        if self._state.in_train(pr_number):
            return

        pull_request = self._github.get_pull_request(pr_number)
        if excluded_by_code_freeze(
            pull_request,
            enforce=self._state.enforce_code_freeze,
            branch_name=self._state.code_freeze_branch_name,
        ):
            self._narrate(
                f"{pull_request.number} is not pointing towards the code freeze branch. "
                "It will not be merged"
            )
            return

        if pull_request.has_label(self._settings.ready_label) and (
            pull_request.mergeable_state == "clean"
        ):
            if self._state.add_to_train(pull_request.number):
                self._narrate(
                    f"{pull_request.number} added to the proposed train: clean and ready to merge"
                )

    def _fetch_candidates(self, candidates: Sequence[int]) -> tuple[CandidateSnapshot, ...]:
        if not candidates:
            return ()
        with ThreadPoolExecutor(
            max_workers=min(self._settings.fetch_workers, len(candidates)),
            thread_name_prefix=f"mergetrain-fetch-{self._state.name}",
        ) as pool:
            return tuple(pool.map(self._fetch_candidate, candidates))

    def _fetch_candidate(self, pr_number: int) -> CandidateSnapshot:
        pull_request = self._github.get_pull_request(pr_number)
        status = self._github.get_combined_status(pull_request.head_sha)
        return CandidateSnapshot(pull_request=pull_request, status=status)

    def _narrate_candidate(
        self, snapshot: CandidateSnapshot, classification: CandidateClassification
    ) -> None:
        pull_request = snapshot.pull_request
        if classification == "excluded_code_freeze":
            self._narrate(
                f"{pull_request.number} is not pointing towards the code freeze branch. "
                "It will not be merged"
            )
            return
        pending = "pending" if snapshot.status.any_pending else "none pending"
        labeled = "labeled" if pull_request.has_label(self._settings.ready_label) else "not labeled"
        self._narrate(
            f"{pull_request.number} from the merge train: pending checks: {pending} "
            f"label: {labeled} {pull_request.mergeable_state} -> {classification}"
        )
