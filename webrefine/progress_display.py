"""
Progress display for batch runs.

ProgressDisplay is a pure observer: it subscribes to the EventBus and
re-renders a rich Live dashboard from a fresh JobStore snapshot on every
JobUpdatedEvent. It never mutates the store or talks to the pipeline beyond
reading progress().

Modes:
- TUI (default): live jobs table + statistics panel, final summary panel
- no_tui: one log-style line per finished job, plain-text summary
- quiet: nothing but the final summary line
"""

import logging
import threading
import time
from typing import TYPE_CHECKING, Callable, List, Optional, Sequence

from rich import box
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from webrefine.config import (
    DEFAULT_TERMINAL_WIDTH,
    MAX_FAILED_URLS_TO_SHOW,
    STATS_PROGRESS_BAR_WIDTH,
    TUI_REFRESH_FPS,
)
from webrefine.event_system import (
    EventBus,
    JobUpdatedEvent,
    RunFinishedEvent,
    RunStartedEvent,
)
from webrefine.job_store import Job, StageState
from webrefine.terminal_utils import (
    Symbols,
    TerminalCapabilities,
    calculate_eta,
    detect_terminal_capabilities,
    format_duration,
    truncate_url,
)

if TYPE_CHECKING:
    from webrefine.pipeline import BatchPipeline, RunSummary

logger = logging.getLogger(__name__)

# Rows taken by the statistics panel, table header and borders
_DASHBOARD_CHROME_LINES = 16


class ProgressDisplay:
    """
    Live view of a BatchPipeline run.

    Thread Safety:
    - Event handlers run on the publishing thread; _render_lock serializes
      renders so a signal-triggered refresh never interleaves with one
      triggered by a job update
    """

    def __init__(
        self,
        pipeline: "BatchPipeline",
        event_bus: EventBus,
        cost_source: Optional[Callable[[], float]] = None,
        no_tui: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        capabilities: Optional[TerminalCapabilities] = None,
    ) -> None:
        self.pipeline = pipeline
        self.event_bus = event_bus
        self.cost_source = cost_source
        self.quiet = quiet
        self.no_tui = no_tui or quiet
        self.capabilities = capabilities or detect_terminal_capabilities()
        self.console = console or Console()
        self.live: Optional[Live] = None

        self._render_lock = threading.Lock()
        self._start_time: Optional[float] = None
        self._subscribed = False

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def attach(self) -> "ProgressDisplay":
        if not self._subscribed:
            self.event_bus.subscribe(RunStartedEvent, self._on_run_started)
            self.event_bus.subscribe(JobUpdatedEvent, self._on_job_updated)
            self.event_bus.subscribe(RunFinishedEvent, self._on_run_finished)
            self._subscribed = True
        return self

    def detach(self) -> None:
        if self._subscribed:
            self.event_bus.unsubscribe(RunStartedEvent, self._on_run_started)
            self.event_bus.unsubscribe(JobUpdatedEvent, self._on_job_updated)
            self.event_bus.unsubscribe(RunFinishedEvent, self._on_run_finished)
            self._subscribed = False
        self.stop_live_display()

    def __enter__(self) -> "ProgressDisplay":
        return self.attach()

    def __exit__(self, *exc_info: object) -> None:
        self.detach()

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_run_started(self, event: RunStartedEvent) -> None:
        self._start_time = time.monotonic()
        if self.no_tui:
            if not self.quiet:
                self.console.print(
                    f"Processing {event.queued} of {event.total} URLs..."
                )
            return
        self.start_live_display()

    def _on_job_updated(self, event: JobUpdatedEvent) -> None:
        if self.no_tui:
            if not self.quiet and self._is_newly_finished(event):
                self._print_job_line(event.job)
            return
        self.refresh()

    def _on_run_finished(self, event: RunFinishedEvent) -> None:
        self.refresh()
        self.stop_live_display()

    def _is_newly_finished(self, event: JobUpdatedEvent) -> bool:
        previous = event.previous
        if previous is None:
            return False
        job = event.job
        if job.has_failed and not previous.has_failed:
            return True
        if job.transform_state == StageState.SUCCESS != previous.transform_state:
            return True
        # Extraction-only runs finish at extraction success
        return (
            not self.pipeline.transform_spec.is_active
            and job.extraction_state == StageState.SUCCESS
            and previous.extraction_state != StageState.SUCCESS
        )

    def _print_job_line(self, job: Job) -> None:
        completed, total = self.pipeline.progress()
        symbol = Symbols.get(Symbols.FAILED if job.has_failed else Symbols.COMPLETE)
        detail = job.error if job.has_failed else job.title
        self.console.print(
            f"[{completed}/{total}] {symbol} {truncate_url(job.url)} - {detail}",
            markup=False,
            highlight=False,
        )

    # ------------------------------------------------------------------
    # Live dashboard
    # ------------------------------------------------------------------

    def start_live_display(self) -> None:
        if self.no_tui or self.live is not None:
            return
        try:
            self.live = Live(
                self._create_dashboard(),
                console=self.console,
                refresh_per_second=TUI_REFRESH_FPS,
                transient=False,
            )
            self.live.start()
            logger.debug(f"Live display started at {TUI_REFRESH_FPS} FPS")
        except Exception as e:
            # Rich can fail on odd terminals; fall back to plain output
            logger.error(f"Failed to start live display: {e}")
            self.live = None
            self.no_tui = True

    def refresh(self) -> None:
        if self.live is None:
            return
        with self._render_lock:
            self.live.update(self._create_dashboard())

    def stop_live_display(self) -> None:
        if self.live is None:
            return
        try:
            self.live.stop()
        except Exception as e:
            logger.error(f"Failed to stop live display cleanly: {e}")
        finally:
            self.live = None

    def _elapsed(self) -> float:
        if self._start_time is None:
            return 0.0
        return max(0.0, time.monotonic() - self._start_time)

    def _create_dashboard(self) -> Group:
        snapshot = self.pipeline.store.snapshot()
        return Group(self._create_stats_panel(snapshot), self._create_jobs_table(snapshot))

    def _create_stats_panel(self, snapshot: Sequence[Job]) -> Panel:
        completed, total = self.pipeline.progress()
        progress_pct = completed / total * 100 if total else 0.0
        progress_bar = Symbols.make_progress_bar(progress_pct, STATS_PROGRESS_BAR_WIDTH)
        eta_seconds = calculate_eta(completed, total, self._elapsed())
        failed = sum(1 for job in snapshot if job.has_failed)

        table = Table(show_header=False, box=None, expand=True)
        table.add_column("Metric", style="cyan", width=20)
        table.add_column("Value", style="bold green", justify="left")
        table.add_row("Overall Progress", f"{progress_bar} {progress_pct:.0f}%")
        table.add_row("ETA", format_duration(eta_seconds) if eta_seconds else "--")
        table.add_row("Completed", f"{completed}/{total}")
        table.add_row(
            "Failed", f"[red]{failed}[/red]" if failed else f"{failed}"
        )
        if self.cost_source is not None:
            table.add_row("Total Cost", f"${self.cost_source():.4f}")

        border_style = "yellow" if self.pipeline.cancel_requested else "green"
        title = Symbols.get(Symbols.CHART) + " WebRefine"
        if self.pipeline.cancel_requested:
            title += " (stopping after current job)"
        return Panel(
            table,
            title=f"[bold cyan]{title}[/bold cyan]",
            box=box.ROUNDED,
            border_style=border_style,
        )

    def _visible_jobs(self, snapshot: Sequence[Job]) -> List[tuple]:
        """Window of (index, job) rows that fits the terminal, following the active job."""
        max_rows = max(5, self.capabilities.height - _DASHBOARD_CHROME_LINES)
        indexed = list(enumerate(snapshot, start=1))
        if len(indexed) <= max_rows:
            return indexed
        active = next(
            (i for i, job in indexed if job.is_pending),
            next((i for i, job in indexed if job.extraction_state == StageState.IDLE), len(indexed)),
        )
        start = min(max(0, active - max_rows // 2), len(indexed) - max_rows)
        return indexed[start : start + max_rows]

    def _create_jobs_table(self, snapshot: Sequence[Job]) -> Table:
        table = Table(box=box.SIMPLE, expand=True)
        table.add_column("#", justify="right", width=4)
        table.add_column("URL", overflow="ellipsis", no_wrap=True)
        table.add_column("Extract", justify="center", width=8)
        table.add_column("Transform", justify="center", width=9)
        table.add_column("Title / Error", overflow="ellipsis", no_wrap=True)

        for index, job in self._visible_jobs(snapshot):
            detail = f"[red]{job.error}[/red]" if job.error else job.title
            table.add_row(
                str(index),
                truncate_url(job.url),
                job.extraction_state.get_symbol(),
                job.transform_state.get_symbol(),
                detail,
            )
        return table

    # ------------------------------------------------------------------
    # Final summary
    # ------------------------------------------------------------------

    def show_final_summary(
        self, summary: "RunSummary", output_path: Optional[str] = None
    ) -> None:
        self.stop_live_display()
        failed_jobs = [job for job in self.pipeline.store.snapshot() if job.has_failed]
        total_cost = self.cost_source() if self.cost_source is not None else None

        if self.no_tui:
            self._print_simple_summary(summary, failed_jobs, total_cost, output_path)
            return

        title = "RUN CANCELLED" if summary.cancelled else "BATCH PROCESSING COMPLETE"
        style = "yellow" if summary.cancelled or summary.failed else "green"

        stats_table = Table(
            show_header=True, box=box.ROUNDED, expand=False, width=DEFAULT_TERMINAL_WIDTH
        )
        stats_table.add_column("Metric", style="cyan", width=25)
        stats_table.add_column("Value", style="bold green", width=15)
        stats_table.add_column("Details", style="yellow", width=35)

        success_rate = (
            (summary.completed - len(failed_jobs)) / summary.total * 100
            if summary.total
            else 0.0
        )
        stats_table.add_row(
            "Success Rate",
            f"{success_rate:.1f}%",
            f"{summary.completed}/{summary.total} jobs finished",
        )
        stats_table.add_row("Extracted", str(summary.extracted), "this run")
        stats_table.add_row("Transformed", str(summary.transformed), "this run")
        stats_table.add_row("Skipped", str(summary.skipped), "already processed")
        stats_table.add_row("Processing Time", format_duration(summary.duration), "")
        if total_cost is not None:
            stats_table.add_row("Total Cost", f"${total_cost:.5f}", "")

        self.console.print()
        self.console.print(
            Panel(stats_table, title=f"[bold {style}]{title}[/]", border_style=style, expand=False)
        )

        if failed_jobs:
            warning = Symbols.get(Symbols.WARNING)
            self.console.print(f"[yellow]{warning}[/yellow] {len(failed_jobs)} URLs failed")
            for job in failed_jobs[:MAX_FAILED_URLS_TO_SHOW]:
                self.console.print(
                    f"  [red]-[/red] {truncate_url(job.url)}: {job.error}", highlight=False
                )
            if len(failed_jobs) > MAX_FAILED_URLS_TO_SHOW:
                remaining = len(failed_jobs) - MAX_FAILED_URLS_TO_SHOW
                self.console.print(f"  [dim]... and {remaining} more[/dim]")

        if output_path:
            file_sym = Symbols.get(Symbols.FILE)
            self.console.print(f"{file_sym} Results written to [blue]{output_path}[/blue]")
        self.console.print()

    def _print_simple_summary(
        self,
        summary: "RunSummary",
        failed_jobs: Sequence[Job],
        total_cost: Optional[float],
        output_path: Optional[str],
    ) -> None:
        if self.quiet:
            self.console.print(
                f"{summary.completed}/{summary.total} complete, {len(failed_jobs)} failed",
                highlight=False,
            )
            return
        lines = [
            "=" * 60,
            "RUN CANCELLED" if summary.cancelled else "BATCH PROCESSING COMPLETE",
            "=" * 60,
            f"Completed: {summary.completed}/{summary.total}",
            f"Failed: {len(failed_jobs)}",
            f"Processing Time: {format_duration(summary.duration)}",
        ]
        if total_cost is not None:
            lines.append(f"Total Cost: ${total_cost:.5f}")
        if output_path:
            lines.append(f"Output: {output_path}")
        lines.append("=" * 60)
        self.console.print("\n".join(lines), markup=False, highlight=False)
