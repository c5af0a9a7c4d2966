from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import logging
from typing import Callable, Sequence

from mergetrain.github_gateway import GitHubGateway
from mergetrain.observability import log_event
from mergetrain.state import RepositoryState


LOGGER = logging.getLogger("mergetrain.merge_executor")


@dataclass(frozen=True)
class MergeOutcome:
    pr_number: int
    merged: bool
    error: str | None = None


@dataclass(frozen=True)
class MergeBatchResult:
    succeeded: tuple[int, ...]
    failed: tuple[int, ...]
    skipped: bool
    outcomes: tuple[MergeOutcome, ...] = ()


class MergeExecutor:
    def __init__(
        self,
        github: GitHubGateway,
        state: RepositoryState,
        *,
        narrate: Callable[[str], None],
        app_name: str,
        max_workers: int = 8,
    ) -> None:
        self._github = github
        self._state = state
        self._narrate = narrate
        self._app_name = app_name
        self._max_workers = max_workers

    def merge_batch(self, batch: Sequence[int]) -> MergeBatchResult:
        if not batch:
            return MergeBatchResult(succeeded=(), failed=(), skipped=False)

        self._narrate(f"attempting to merge {render_numbers(batch)}")
        if not self._state.mutation_enabled:
            self._narrate("ignoring merge; mutation off")
            return MergeBatchResult(succeeded=(), failed=(), skipped=True)

        log_event(
            LOGGER,
            "train_merge_attempted",
            repo_full_name=self._github.full_name,
            batch=tuple(batch),
        )
        # Each attempt settles on its own so one failure never blocks a sibling.
        with ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(batch)),
            thread_name_prefix=f"mergetrain-merge-{self._state.name}",
        ) as pool:
            futures = [pool.submit(self._merge_one, pr_number) for pr_number in batch]
            outcomes = tuple(future.result() for future in futures)

        succeeded = tuple(outcome.pr_number for outcome in outcomes if outcome.merged)
        failed = tuple(outcome.pr_number for outcome in outcomes if not outcome.merged)
        self._narrate(
            f"succeeded in merging {render_numbers(succeeded)}, "
            f"failed to merge {render_numbers(failed)}"
        )
        for outcome in outcomes:
            if not outcome.merged:
                self._narrate(f"{outcome.pr_number} failure reason: {outcome.error}")
        log_event(
            LOGGER,
            "train_merge_finished",
            repo_full_name=self._github.full_name,
            succeeded=succeeded,
            failed=failed,
        )
        return MergeBatchResult(
            succeeded=succeeded,
            failed=failed,
            skipped=False,
            outcomes=outcomes,
        )

    def _merge_one(self, pr_number: int) -> MergeOutcome:
        try:
            self._github.merge_pull_request(pr_number)
            self._github.post_issue_comment(
                pr_number,
                f"This PR was merged by {self._app_name}. Thanks for your contribution.",
            )
        except Exception as exc:  # noqa: BLE001
            return MergeOutcome(
                pr_number=pr_number,
                merged=False,
                error=f"{type(exc).__name__}: {exc}",
            )
        return MergeOutcome(pr_number=pr_number, merged=True)


def render_numbers(numbers: Sequence[int]) -> str:
    return "[" + ",".join(str(number) for number in numbers) + "]"
