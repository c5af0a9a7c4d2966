from __future__ import annotations

from dataclasses import dataclass
import logging
from threading import Event
from typing import Callable, Literal

from mergetrain.cache import ConditionalCache
from mergetrain.config import AppConfig
from mergetrain.controller import RepositoryRegistry
from mergetrain.github_gateway import GitHubGateway
from mergetrain.models import InboundEvent
from mergetrain.observability import log_event, logging_repo_context
from mergetrain.transport import GhApiTransport, Send


LOGGER = logging.getLogger("mergetrain.service_runner")

ServiceSignalKind = Literal["poll_completed", "fatal_error"]


@dataclass(frozen=True)
class ServiceSignal:
    kind: ServiceSignalKind
    detail: str | None = None


def build_registry(
    config: AppConfig,
    cache: ConditionalCache,
    *,
    transport: Send | None = None,
) -> RepositoryRegistry:
    send = cache.wrap(transport if transport is not None else GhApiTransport())

    def gateway_factory(owner: str, name: str) -> GitHubGateway:
        return GitHubGateway(owner, name, send)

    return RepositoryRegistry(gateway_factory, config.train)


@dataclass(frozen=True)
class ServiceRunner:
    """Polling stand-in for webhook delivery.

    Each round sends a ``status`` event to every configured repository; the
    conditional cache keeps the resulting re-evaluations cheap.
    """

    config: AppConfig
    registry: RepositoryRegistry

    def run(
        self,
        *,
        once: bool,
        stop_event: Event | None = None,
        signal_sink: Callable[[ServiceSignal], None] | None = None,
    ) -> None:
        stop = stop_event if stop_event is not None else Event()
        try:
            for repo in self.config.repos:
                self.registry.dispatch(
                    InboundEvent(kind="ping", owner=repo.owner, repository=repo.name)
                )
            while True:
                self.poll_once()
                if signal_sink is not None:
                    signal_sink(ServiceSignal(kind="poll_completed"))
                if once:
                    self.registry.drain_all()
                    return
                if stop.wait(self.config.runtime.poll_interval_seconds):
                    log_event(LOGGER, "service_stopped")
                    return
        except Exception as exc:
            log_event(
                LOGGER,
                "service_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            if signal_sink is not None:
                signal_sink(
                    ServiceSignal(kind="fatal_error", detail=f"{type(exc).__name__}: {exc}")
                )
            raise

    def poll_once(self) -> None:
        scheduled = 0
        for repo in self.config.repos:
            with logging_repo_context(repo.full_name):
                if self.registry.dispatch(
                    InboundEvent(kind="status", owner=repo.owner, repository=repo.name)
                ):
                    scheduled += 1
        log_event(
            LOGGER,
            "poll_completed",
            repo_count=len(self.config.repos),
            scheduled_count=scheduled,
        )


def run_service(
    *,
    config: AppConfig,
    registry: RepositoryRegistry,
    once: bool,
    stop_event: Event | None = None,
    signal_sink: Callable[[ServiceSignal], None] | None = None,
) -> None:
    ServiceRunner(config=config, registry=registry).run(
        once=once,
        stop_event=stop_event,
        signal_sink=signal_sink,
    )
