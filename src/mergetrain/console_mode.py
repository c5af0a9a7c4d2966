from __future__ import annotations

from queue import SimpleQueue
import sys
from threading import Event, Thread

from mergetrain.admin import AdminSurface
from mergetrain.admin_tui import run_console_tui
from mergetrain.config import AppConfig
from mergetrain.controller import RepositoryRegistry
from mergetrain.service_runner import ServiceSignal, run_service


def run_console_mode(
    *,
    config: AppConfig,
    registry: RepositoryRegistry,
    admin: AdminSurface,
) -> None:
    if not _is_interactive_terminal():
        raise RuntimeError(
            "Console mode requires an interactive terminal. Use `mergetrain service` instead."
        )

    stop_event = Event()
    service_signals: SimpleQueue[ServiceSignal] = SimpleQueue()
    service_errors: list[BaseException] = []

    def run_service_thread() -> None:
        try:
            run_service(
                config=config,
                registry=registry,
                once=False,
                stop_event=stop_event,
                signal_sink=service_signals.put,
            )
        except BaseException as exc:  # noqa: BLE001
            service_errors.append(exc)
            stop_event.set()

    service_thread = Thread(target=run_service_thread, name="mergetrain-service", daemon=True)
    service_thread.start()

    tui_error: BaseException | None = None
    try:
        run_console_tui(
            admin=admin,
            refresh_seconds=config.runtime.console_refresh_seconds,
            service_signal_queue=service_signals,
            on_shutdown=stop_event.set,
        )
    except BaseException as exc:  # noqa: BLE001
        tui_error = exc
    finally:
        stop_event.set()
        service_thread.join(timeout=_service_join_timeout_seconds(config))

    if service_thread.is_alive():
        raise RuntimeError("Service thread did not stop after console shutdown.")
    if service_errors:
        error = service_errors[0]
        if isinstance(error, Exception):
            raise error
        raise RuntimeError("Service thread failed with a non-Exception error.") from error
    if tui_error is not None:
        raise tui_error


def _service_join_timeout_seconds(config: AppConfig) -> float:
    return max(1.0, float(config.runtime.poll_interval_seconds) + 5.0)


def _is_interactive_terminal() -> bool:
    return bool(sys.stdin.isatty() and sys.stdout.isatty())
