from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import threading
from typing import Callable

from mergetrain.config import TrainConfig
from mergetrain.evaluator import TrainEvaluator
from mergetrain.github_gateway import GitHubGateway
from mergetrain.job_queue import JobQueue
from mergetrain.merge_executor import MergeExecutor
from mergetrain.models import InboundEvent
from mergetrain.observability import log_event, logging_repo_context
from mergetrain.state import RepositoryState


LOGGER = logging.getLogger("mergetrain.controller")

GatewayFactory = Callable[[str, str], GitHubGateway]


@dataclass(frozen=True)
class TrainJob:
    repository: str
    event: InboundEvent
    requested_at: datetime


class RepositoryController:
    """Entry point for every event addressed to one repository.

    Jobs run on the repository's own single-worker queue, which is what makes
    train mutation race-free. Disabling the repository only stops new jobs
    from being scheduled; work already queued still runs.
    """

    def __init__(
        self,
        state: RepositoryState,
        github: GitHubGateway,
        settings: TrainConfig,
    ) -> None:
        self._state = state
        self._github = github
        self._settings = settings
        self._merger = MergeExecutor(
            github,
            state,
            narrate=self._narrate,
            app_name=settings.app_name,
            max_workers=settings.merge_workers,
        )
        self._evaluator = TrainEvaluator(
            github,
            state,
            self._merger,
            narrate=self._narrate,
            settings=settings,
        )
        self._queue: JobQueue[TrainJob] = JobQueue(state.name, self._run_job)

    @property
    def state(self) -> RepositoryState:
        return self._state

    @property
    def queue(self) -> JobQueue[TrainJob]:
        return self._queue

    @property
    def full_name(self) -> str:
        return self._github.full_name

    def on_event(self, event: InboundEvent) -> bool:
        """Schedule the job for ``event``; returns whether anything was queued."""
        if event.kind == "ping":
            log_event(LOGGER, "repository_ping", repo_full_name=self.full_name)
            return False
        if event.kind in ("labeled", "unlabeled"):
            if event.label_name != self._settings.ready_label:
                return False
            if event.changeset_number is None:
                log_event(
                    LOGGER,
                    "event_ignored",
                    repo_full_name=self.full_name,
                    event_kind=event.kind,
                    reason="missing_pull_request_number",
                )
                return False
        return self._schedule(event)

    def close(self, timeout: float | None = None) -> None:
        self._queue.close(timeout=timeout)

    def _schedule(self, event: InboundEvent) -> bool:
        if not self._state.enabled:
            log_event(
                LOGGER,
                "train_job_dropped",
                repo_full_name=self.full_name,
                event_kind=event.kind,
                reason="disabled",
            )
            return False
        log_event(
            LOGGER,
            "train_job_enqueued",
            repo_full_name=self.full_name,
            event_kind=event.kind,
            pr_number=event.changeset_number,
            queue_size=self._queue.size,
        )
        self._queue.enqueue(
            TrainJob(
                repository=self._state.name,
                event=event,
                requested_at=datetime.now(timezone.utc),
            )
        )
        return True

    def _run_job(self, job: TrainJob) -> None:
        event = job.event
        with logging_repo_context(self.full_name):
            if (
                event.kind == "unlabeled"
                and event.changeset_number is not None
                and not self._state.in_train(event.changeset_number)
            ):
                # The previous job's log stays visible.
                log_event(
                    LOGGER,
                    "train_job_skipped",
                    repo_full_name=self.full_name,
                    event_kind=event.kind,
                    pr_number=event.changeset_number,
                    reason="not_in_train",
                )
                return
            self._state.clear_decision_log()
            processed_at = datetime.now(timezone.utc)
            self._narrate(
                f"request at: {job.requested_at.isoformat()} processed at "
                f"{processed_at.isoformat()} event type {event.kind}"
            )
            if event.kind == "status":
                self._evaluator.evaluate()
            elif event.kind == "labeled" and event.changeset_number is not None:
                self._on_labeled(event.changeset_number)
            elif event.kind == "unlabeled" and event.changeset_number is not None:
                self._on_unlabeled(event.changeset_number)
            self._narrate("request complete")

    def _on_labeled(self, pr_number: int) -> None:
        if not self._state.train_snapshot():
            self._narrate(f"PR {pr_number} labeled; proposed trains empty, starting")
            self._evaluator.evaluate()
            return
        self._evaluator.check_single(pr_number)

    def _on_unlabeled(self, pr_number: int) -> None:
        train = self._state.train_snapshot()
        if not self._state.remove_from_train(pr_number):
            return
        self._narrate(
            f"PR {pr_number} was part of proposed train {list(train)}, but was unlabeled. "
            "Removing"
        )
        self._evaluator.evaluate()

    def _narrate(self, message: str) -> None:
        self._state.append_decision(message)
        log_event(LOGGER, "train_decision", repo_full_name=self.full_name, message=message)


class RepositoryRegistry:
    """Owns one controller per repository name, created on the first event."""

    def __init__(self, gateway_factory: GatewayFactory, settings: TrainConfig) -> None:
        self._gateway_factory = gateway_factory
        self._settings = settings
        self._controllers: dict[str, RepositoryController] = {}
        self._lock = threading.Lock()
        self._enforce_code_freeze = settings.enforce_code_freeze
        self._code_freeze_branch_name = settings.code_freeze_branch_name

    @property
    def enforce_code_freeze(self) -> bool:
        with self._lock:
            return self._enforce_code_freeze

    @property
    def code_freeze_branch_name(self) -> str:
        with self._lock:
            return self._code_freeze_branch_name

    def dispatch(self, event: InboundEvent) -> bool:
        controller = self.controller_for(event.owner, event.repository)
        with logging_repo_context(controller.full_name):
            return controller.on_event(event)

    def controller_for(self, owner: str, name: str) -> RepositoryController:
        with self._lock:
            controller = self._controllers.get(name)
            if controller is not None:
                return controller
            state = RepositoryState(
                name=name,
                enabled=self._settings.mutate,
                mutation_enabled=self._settings.mutate,
                enforce_code_freeze=self._enforce_code_freeze,
                code_freeze_branch_name=self._code_freeze_branch_name,
            )
            controller = RepositoryController(
                state,
                self._gateway_factory(owner, name),
                self._settings,
            )
            self._controllers[name] = controller
        log_event(LOGGER, "repository_registered", repo_full_name=controller.full_name)
        return controller

    def get(self, name: str) -> RepositoryController | None:
        with self._lock:
            return self._controllers.get(name)

    def controllers(self) -> tuple[RepositoryController, ...]:
        with self._lock:
            return tuple(self._controllers[name] for name in sorted(self._controllers))

    def set_code_freeze_all(self, *, enforce: bool, branch_name: str) -> None:
        with self._lock:
            self._enforce_code_freeze = enforce
            self._code_freeze_branch_name = branch_name
            controllers = tuple(self._controllers.values())
        for controller in controllers:
            controller.state.set_code_freeze(enforce=enforce, branch_name=branch_name)
        log_event(
            LOGGER,
            "code_freeze_changed",
            enforce=enforce,
            branch_name=branch_name,
            repo_count=len(controllers),
        )

    def drain_all(self, timeout: float | None = None) -> bool:
        return all(controller.queue.drain(timeout=timeout) for controller in self.controllers())

    def close(self, timeout: float | None = None) -> None:
        for controller in self.controllers():
            controller.close(timeout=timeout)
