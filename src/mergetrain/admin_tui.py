from __future__ import annotations

from queue import Empty, SimpleQueue
from typing import Callable

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical, VerticalScroll
from textual.widgets import DataTable, Footer, Header, Input, Static

from mergetrain.admin import AdminSnapshot, AdminSurface, RepositoryStatus
from mergetrain.service_runner import ServiceSignal


_SERVICE_SIGNAL_DRAIN_SECONDS = 0.2


class MergeTrainApp(App[None]):
    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("r", "refresh", "Refresh"),
        Binding("e", "toggle_enabled", "Turn On/Off"),
        Binding("m", "toggle_mutation", "Pause/Unpause Merging"),
        Binding("z", "toggle_code_freeze", "Code Freeze (all repos)"),
        Binding("tab", "cycle_focus", "Focus"),
    ]
    CSS = """
    Screen {
        layout: vertical;
    }
    .panel-title {
        text-style: bold;
        padding-left: 1;
    }
    #summary {
        height: 3;
        padding: 0 1;
    }
    #repos-table {
        height: 1fr;
    }
    #decision-log-scroll {
        height: 1fr;
        border: round $boost;
        padding: 0 1;
    }
    """

    def __init__(
        self,
        *,
        admin: AdminSurface,
        refresh_seconds: int = 2,
        service_signal_queue: SimpleQueue[ServiceSignal] | None = None,
        on_shutdown: Callable[[], None] | None = None,
    ) -> None:
        super().__init__()
        self._admin = admin
        self._refresh_seconds = refresh_seconds
        self._service_signal_queue = service_signal_queue
        self._on_shutdown = on_shutdown
        self._shutdown_notified = False
        self._rows: tuple[RepositoryStatus, ...] = ()
        self._fatal_service_error: str | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with Vertical():
            yield Static("", id="summary", markup=False)
            yield Static("Repositories", classes="panel-title")
            yield DataTable(id="repos-table")
            yield Static("Code freeze branch (applies to all repositories)", classes="panel-title")
            yield Input(placeholder="release branch name", id="freeze-branch")
            yield Static("Decision Log", classes="panel-title")
            with VerticalScroll(id="decision-log-scroll"):
                yield Static("", id="decision-log", markup=False)
        yield Footer()

    def on_mount(self) -> None:
        table = self.query_one("#repos-table", DataTable)
        table.cursor_type = "row"
        table.add_columns("Repo", "Enabled", "Merging", "Code Freeze", "Train", "Queue")
        self.refresh_data()
        self.set_interval(self._refresh_seconds, self.refresh_data)
        if self._service_signal_queue is not None:
            self.set_interval(_SERVICE_SIGNAL_DRAIN_SECONDS, self._drain_service_signals)

    @property
    def fatal_service_error(self) -> str | None:
        return self._fatal_service_error

    def action_refresh(self) -> None:
        self.refresh_data()

    def action_cycle_focus(self) -> None:
        self.screen.focus_next()

    def action_toggle_enabled(self) -> None:
        selected = self._selected_row()
        if selected is None:
            return
        self._admin.toggle_enabled(selected.name)
        self.refresh_data()

    def action_toggle_mutation(self) -> None:
        selected = self._selected_row()
        if selected is None:
            return
        self._admin.toggle_mutation(selected.name)
        self.refresh_data()

    def action_toggle_code_freeze(self) -> None:
        branch_name = self.query_one("#freeze-branch", Input).value
        self._admin.toggle_code_freeze_all(branch_name)
        self.refresh_data()

    async def action_quit(self) -> None:
        self._notify_shutdown()
        await super().action_quit()

    def on_data_table_row_highlighted(self, event: DataTable.RowHighlighted) -> None:
        if event.data_table.id != "repos-table":
            return
        self._refresh_decision_log()

    def refresh_data(self) -> None:
        snapshot = self._admin.snapshot()
        self.query_one("#summary", Static).update(_summary_text(snapshot))
        table = self.query_one("#repos-table", DataTable)
        selected = self._selected_row()
        previous_name = selected.name if selected is not None else None
        self._rows = snapshot.repositories
        table.clear(columns=False)
        for row in self._rows:
            table.add_row(
                row.full_name,
                "yes" if row.enabled else "no",
                "enabled" if row.mutation_enabled else "disabled",
                _render_code_freeze(row),
                _render_train(row.train),
                str(row.queue_size),
            )
        self._restore_selection(previous_name)
        self._refresh_decision_log()

    def _selected_row(self) -> RepositoryStatus | None:
        table = self.query_one("#repos-table", DataTable)
        row_index = table.cursor_row
        if row_index < 0 or row_index >= len(self._rows) or table.row_count == 0:
            return None
        return self._rows[row_index]

    def _restore_selection(self, previous_name: str | None) -> None:
        table = self.query_one("#repos-table", DataTable)
        if table.row_count < 1:
            return
        row_index = 0
        for index, row in enumerate(self._rows):
            if row.name == previous_name:
                row_index = index
                break
        table.move_cursor(row=row_index, animate=False)

    def _refresh_decision_log(self) -> None:
        selected = self._selected_row()
        self.query_one("#decision-log", Static).update(_decision_log_text(selected))

    def _drain_service_signals(self) -> None:
        if self._service_signal_queue is None:
            return

        requested_refresh = False
        while True:
            try:
                signal = self._service_signal_queue.get_nowait()
            except Empty:
                break

            if signal.kind == "fatal_error":
                if self._fatal_service_error is None:
                    self._fatal_service_error = signal.detail or "Service runner failed."
                self._notify_shutdown()
                self.exit()
                return
            requested_refresh = True

        if requested_refresh:
            self.refresh_data()

    def _notify_shutdown(self) -> None:
        if self._shutdown_notified:
            return
        self._shutdown_notified = True
        if self._on_shutdown is None:
            return
        self._on_shutdown()


def run_console_tui(
    *,
    admin: AdminSurface,
    refresh_seconds: int,
    service_signal_queue: SimpleQueue[ServiceSignal] | None = None,
    on_shutdown: Callable[[], None] | None = None,
) -> None:
    app = MergeTrainApp(
        admin=admin,
        refresh_seconds=refresh_seconds,
        service_signal_queue=service_signal_queue,
        on_shutdown=on_shutdown,
    )
    app.run()
    if app.fatal_service_error is not None:
        raise RuntimeError(app.fatal_service_error)


def _summary_text(snapshot: AdminSnapshot) -> str:
    freeze = (
        f"enforced on {snapshot.code_freeze_branch_name or '<none>'}"
        if snapshot.enforce_code_freeze
        else "off"
    )
    rate_limit = (
        f"{snapshot.rate_limit_remaining} of {snapshot.rate_limit_total}"
        if snapshot.rate_limit_total
        else "unknown"
    )
    return " | ".join(
        [
            f"repos={len(snapshot.repositories)}",
            f"code_freeze={freeze}",
            f"cache_size={snapshot.cache_size}",
            f"rate_limit_remaining={rate_limit}",
        ]
    )


def _render_code_freeze(row: RepositoryStatus) -> str:
    if not row.enforce_code_freeze:
        return "-"
    return row.code_freeze_branch_name or "<none>"


def _render_train(train: tuple[int, ...]) -> str:
    if not train:
        return "-"
    return ", ".join(f"#{number}" for number in train)


def _decision_log_text(row: RepositoryStatus | None) -> str:
    if row is None:
        return "No repositories yet."
    if not row.decision_log:
        return f"{row.full_name}: no decisions recorded yet."
    return "\n".join([f"{row.full_name}:", *row.decision_log])
