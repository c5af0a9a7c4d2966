from __future__ import annotations

from dataclasses import dataclass
import logging

from mergetrain.cache import ConditionalCache
from mergetrain.controller import RepositoryController, RepositoryRegistry
from mergetrain.observability import log_event


LOGGER = logging.getLogger("mergetrain.admin")


@dataclass(frozen=True)
class RepositoryStatus:
    name: str
    full_name: str
    enabled: bool
    mutation_enabled: bool
    enforce_code_freeze: bool
    code_freeze_branch_name: str
    train: tuple[int, ...]
    decision_log: tuple[str, ...]
    queue_size: int


@dataclass(frozen=True)
class AdminSnapshot:
    repositories: tuple[RepositoryStatus, ...]
    enforce_code_freeze: bool
    code_freeze_branch_name: str
    cache_size: int
    rate_limit_remaining: str
    rate_limit_total: str


class AdminSurface:
    """Read model and the fixed set of operator switches."""

    def __init__(self, registry: RepositoryRegistry, cache: ConditionalCache) -> None:
        self._registry = registry
        self._cache = cache

    def snapshot(self) -> AdminSnapshot:
        return AdminSnapshot(
            repositories=tuple(_status(item) for item in self._registry.controllers()),
            enforce_code_freeze=self._registry.enforce_code_freeze,
            code_freeze_branch_name=self._registry.code_freeze_branch_name,
            cache_size=self._cache.size,
            rate_limit_remaining=self._cache.rate_limit_remaining,
            rate_limit_total=self._cache.rate_limit_total,
        )

    def toggle_enabled(self, repo_name: str) -> bool:
        enabled = self._controller(repo_name).state.toggle_enabled()
        log_event(LOGGER, "repository_enabled_changed", repo=repo_name, enabled=enabled)
        return enabled

    def toggle_mutation(self, repo_name: str) -> bool:
        mutation_enabled = self._controller(repo_name).state.toggle_mutation_enabled()
        log_event(
            LOGGER,
            "repository_mutation_changed",
            repo=repo_name,
            mutation_enabled=mutation_enabled,
        )
        return mutation_enabled

    def toggle_code_freeze_all(self, branch_name: str) -> bool:
        """Flip code-freeze enforcement for every repository at once."""
        enforce = not self._registry.enforce_code_freeze
        self._registry.set_code_freeze_all(enforce=enforce, branch_name=branch_name.strip())
        return enforce

    def _controller(self, repo_name: str) -> RepositoryController:
        controller = self._registry.get(repo_name)
        if controller is None:
            raise KeyError(f"Unknown repository: {repo_name}")
        return controller


def _status(controller: RepositoryController) -> RepositoryStatus:
    state = controller.state
    return RepositoryStatus(
        name=state.name,
        full_name=controller.full_name,
        enabled=state.enabled,
        mutation_enabled=state.mutation_enabled,
        enforce_code_freeze=state.enforce_code_freeze,
        code_freeze_branch_name=state.code_freeze_branch_name,
        train=state.train_snapshot(),
        decision_log=state.decision_log_snapshot(),
        queue_size=controller.queue.size,
    )
