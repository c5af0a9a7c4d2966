from __future__ import annotations

from dataclasses import dataclass, field
import threading
from typing import Iterable


@dataclass
class RepositoryState:
    """In-memory train state for one repository, alive for the process lifetime.

    The train is only mutated from the repository's job queue worker. Flags are
    written by the administrative surface from other threads, so they go
    through the lock together with the snapshot helpers.
    """

    name: str
    enabled: bool
    mutation_enabled: bool
    enforce_code_freeze: bool = False
    code_freeze_branch_name: str = ""
    train: list[int] = field(default_factory=list)
    decision_log: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(
        default_factory=threading.Lock,
        init=False,
        repr=False,
        compare=False,
    )

    def train_snapshot(self) -> tuple[int, ...]:
        with self._lock:
            return tuple(self.train)

    def decision_log_snapshot(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self.decision_log)

    def in_train(self, number: int) -> bool:
        with self._lock:
            return number in self.train

    def add_to_train(self, number: int) -> bool:
        with self._lock:
            if number in self.train:
                return False
            self.train.append(number)
            return True

    def remove_from_train(self, number: int) -> bool:
        with self._lock:
            if number not in self.train:
                return False
            self.train.remove(number)
            return True

    def replace_train(self, numbers: Iterable[int]) -> None:
        with self._lock:
            self.train[:] = list(dict.fromkeys(numbers))

    def reset_train(self) -> None:
        with self._lock:
            self.train.clear()

    def clear_decision_log(self) -> None:
        with self._lock:
            self.decision_log.clear()

    def append_decision(self, message: str) -> None:
        with self._lock:
            self.decision_log.append(message)

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            self.enabled = enabled

    def set_mutation_enabled(self, mutation_enabled: bool) -> None:
        with self._lock:
            self.mutation_enabled = mutation_enabled

    def toggle_enabled(self) -> bool:
        with self._lock:
            self.enabled = not self.enabled
            return self.enabled

    def toggle_mutation_enabled(self) -> bool:
        with self._lock:
            self.mutation_enabled = not self.mutation_enabled
            return self.mutation_enabled

    def set_code_freeze(self, *, enforce: bool, branch_name: str) -> None:
        with self._lock:
            self.enforce_code_freeze = enforce
            self.code_freeze_branch_name = branch_name
