"""
WebRefine command line interface.

Two modes:
- Single page: webrefine --url URL [--prompt TEXT | --preset NAME] [--sample FILE]
  Extracts one page, optionally transforms it, saves the result (and an
  optional .docx) and prints it.
- Batch: webrefine --input urls.xlsx [--prompt ...] [--output results.xlsx]
  Runs every URL of a spreadsheet/csv/txt/json file through the pipeline with
  a live progress table and exports one row per URL.

Ctrl+C during a batch run stops after the in-flight job; the partial
results are still exported. A second Ctrl+C exits immediately.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from signal import SIGINT, SIGTERM, getsignal, signal
from types import FrameType
from typing import Any, Callable, Dict, List, Optional, Tuple

from rich.console import Console
from rich.panel import Panel

from webrefine import __version__
from webrefine.config import (
    DEFAULT_RESULTS_FILE,
    DEFAULT_TEMPLATE_FILE,
    PROMPT_PRESETS,
    SUPPORTED_MODELS,
    WebRefineConfig,
    generate_example_config,
    load_config,
    validate_url,
)
from webrefine.documents import (
    default_docx_path,
    default_result_path,
    save_text_result,
    write_docx,
)
from webrefine.error_handler import InputFormatError, WebRefineError
from webrefine.event_system import EventBus, JobUpdatedEvent
from webrefine.extractor import LLMContentExtractor
from webrefine.job_store import Job, JobStore, StageState
from webrefine.llm_client import LLMClient, OpenAIClient
from webrefine.mock_api import MockLLMClient
from webrefine.pipeline import BatchPipeline, RunSummary, TransformSpec
from webrefine.progress_display import ProgressDisplay
from webrefine.sample_loader import SampleTemplate, load_sample_template
from webrefine.spreadsheet import (
    SUPPORTED_EXPORT_SUFFIXES,
    ResultExporter,
    read_url_list,
)
from webrefine.terminal_utils import (
    Symbols,
    TerminalCapabilities,
    detect_terminal_capabilities,
)
from webrefine.transformer import LLMContentTransformer

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
CONFIG_FILE_NAME = "webrefine_config.yaml"
EXIT_CANCELLED = 130

HandlersAndLevel = Tuple[List[logging.Handler], int]


# ============================================================================
# Logging
# ============================================================================


def configure_logging(no_tui: bool, quiet: bool) -> None:
    """
    Configure the root logger.

    Quiet mode only shows warnings; the TUI keeps INFO so that messages logged
    before and after the live display stay readable.
    """
    if quiet:
        level = logging.WARNING
    elif no_tui:
        level = logging.DEBUG if os.environ.get("WEBREFINE_DEBUG") else logging.INFO
    else:
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)
    # The SDK's HTTP client logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def suppress_console_logging() -> HandlersAndLevel:
    """
    Detach console handlers from the root logger while the live display runs.

    Returns the removed handlers and original level for restore_console_logging().
    """
    root_logger = logging.getLogger()
    removed_handlers: List[logging.Handler] = []
    original_level = root_logger.level

    for handler in root_logger.handlers[:]:
        if isinstance(handler, logging.StreamHandler) and handler.stream in (
            sys.stderr,
            sys.stdout,
        ):
            root_logger.removeHandler(handler)
            removed_handlers.append(handler)

    # Higher than CRITICAL: nothing reaches a handler we missed
    root_logger.setLevel(logging.CRITICAL + 1)
    return removed_handlers, original_level


def restore_console_logging(handlers_and_level: HandlersAndLevel) -> None:
    handlers, original_level = handlers_and_level
    root_logger = logging.getLogger()
    root_logger.setLevel(original_level)
    for handler in handlers:
        root_logger.addHandler(handler)


# ============================================================================
# Signal handling
# ============================================================================


class InterruptHandler:
    """
    SIGINT/SIGTERM handler that asks the pipeline to stop after the current job.

    The handler only sets a flag; the pipeline checks it between jobs. A second
    signal exits immediately.
    """

    def __init__(self, pipeline: BatchPipeline, console: Console) -> None:
        self.pipeline = pipeline
        self.console = console
        self.interrupted = False
        self._previous: Dict[int, Any] = {}

    def __call__(self, signum: int, frame: Optional[FrameType]) -> None:
        if self.interrupted:
            logger.warning("Second interrupt received. Forcing immediate exit...")
            os._exit(1)

        self.interrupted = True
        signal_name = "SIGINT" if signum == SIGINT else "SIGTERM"
        logger.info(f"Received {signal_name}. Finishing the current job...")
        self.pipeline.cancel()

    def install(self) -> "InterruptHandler":
        for signum in (SIGINT, SIGTERM):
            self._previous[signum] = getsignal(signum)
            signal(signum, self)
        return self

    def uninstall(self) -> None:
        for signum, previous in self._previous.items():
            signal(signum, previous)
        self._previous.clear()

    def __enter__(self) -> "InterruptHandler":
        return self.install()

    def __exit__(self, *exc_info: object) -> None:
        self.uninstall()


# ============================================================================
# Wiring
# ============================================================================


def build_client(config: WebRefineConfig, mock: bool) -> LLMClient:
    if mock:
        logger.info("MOCK MODE enabled: using simulated API responses (no token costs)")
        return MockLLMClient()
    return OpenAIClient(config)


def load_sample(config: WebRefineConfig) -> Optional[SampleTemplate]:
    if not config.sample_file:
        return None
    sample = load_sample_template(config.sample_file)
    if sample.is_empty:
        logger.warning(f"Sample file {sample.name} is empty and will be ignored")
        return None
    logger.info(f"Loaded sample template {sample.name} ({sample.format.value})")
    return sample


def build_pipeline(
    store: JobStore,
    client: LLMClient,
    config: WebRefineConfig,
    sample: Optional[SampleTemplate],
    event_bus: EventBus,
) -> BatchPipeline:
    return BatchPipeline(
        store,
        LLMContentExtractor(client, config),
        LLMContentTransformer(client, config),
        TransformSpec.from_config(config, sample),
        extraction_timeout=config.extraction_timeout,
        transform_timeout=config.transform_timeout,
        event_bus=event_bus,
    )


def warn_invalid_urls(urls: List[str]) -> int:
    """Log every URL that is not a well-formed http(s) URL; they are still processed."""
    invalid = [url for url in urls if url.strip() and not validate_url(url.strip())]
    for url in invalid:
        logger.warning(f"Not a valid http(s) URL, the job will likely fail: {url}")
    return len(invalid)


# ============================================================================
# Single page mode
# ============================================================================


def _stage_status_updater(status: Any) -> Callable[[JobUpdatedEvent], None]:
    def on_job_updated(event: JobUpdatedEvent) -> None:
        job = event.job
        if job.extraction_state == StageState.PENDING:
            status.update(f"{Symbols.get(Symbols.EXTRACTING)} Extracting {job.url}...")
        elif job.transform_state == StageState.PENDING:
            status.update(f"{Symbols.get(Symbols.TRANSFORMING)} Transforming content...")

    return on_job_updated


def run_single(
    url: str,
    config: WebRefineConfig,
    client: LLMClient,
    console: Console,
    docx_path: Optional[str] = None,
) -> int:
    """
    Process one URL and save its result.

    Returns:
        Process exit code
    """
    sample = load_sample(config)
    event_bus = EventBus()
    store = JobStore.create([url], event_bus=event_bus)
    if len(store) == 0:
        raise InputFormatError("URL is empty")
    pipeline = build_pipeline(store, client, config, sample, event_bus)

    with InterruptHandler(pipeline, console):
        if config.no_tui:
            asyncio.run(pipeline.run())
        else:
            with console.status(f"Extracting {url}...") as status:
                event_bus.subscribe(JobUpdatedEvent, _stage_status_updater(status))
                asyncio.run(pipeline.run())

    job = store.snapshot()[0]
    if job.extracted is None and not job.has_failed:
        console.print("[yellow]Cancelled before the page was processed[/yellow]")
        return EXIT_CANCELLED
    if job.has_failed:
        console.print(f"[red]{Symbols.get(Symbols.FAILED)} {job.error}[/red]", highlight=False)
        return 1

    transformed = job.transform_state == StageState.SUCCESS
    text = job.transformed if transformed else job.extracted.content
    instruction = pipeline.transform_spec.instruction
    if config.output_file:
        output_path = Path(config.output_file)
    else:
        output_path = default_result_path(
            Path.cwd(),
            instruction if transformed else "",
            sample.name if sample and transformed else None,
        )
    save_text_result(text, output_path)

    saved = [output_path]
    if docx_path is not None:
        target = Path(docx_path) if docx_path else default_docx_path(Path.cwd(), job.title)
        saved.append(write_docx(text, target, title=job.title))

    _print_single_result(job, text, saved, config, console)
    return 0


def _print_single_result(
    job: Job, text: str, saved: List[Path], config: WebRefineConfig, console: Console
) -> None:
    if config.quiet:
        for path in saved:
            console.print(str(path), markup=False, highlight=False)
        return
    if config.no_tui:
        console.print(f"Title: {job.title}", markup=False, highlight=False)
        console.print(text, markup=False, highlight=False)
    else:
        console.print(Panel(text, title=f"[bold cyan]{job.title}[/bold cyan]", expand=False))
    for path in saved:
        console.print(f"{Symbols.get(Symbols.FILE)} Saved to {path}", highlight=False)


# ============================================================================
# Batch mode
# ============================================================================


def run_batch(
    input_path: str,
    config: WebRefineConfig,
    client: LLMClient,
    console: Console,
    capabilities: Optional[TerminalCapabilities] = None,
) -> int:
    """
    Process every URL of an input file and export the results.

    Returns:
        Process exit code (EXIT_CANCELLED when interrupted)
    """
    url_list = read_url_list(input_path)
    warn_invalid_urls(url_list.urls)
    sample = load_sample(config)

    event_bus = EventBus()
    store = JobStore.create(url_list.urls, url_list.metadata, event_bus=event_bus)
    if not len(store):
        console.print(f"[yellow]No URLs found in {input_path}[/yellow]")
        return 1

    pipeline = build_pipeline(store, client, config, sample, event_bus)
    display = ProgressDisplay(
        pipeline,
        event_bus,
        cost_source=lambda: client.total_cost,
        no_tui=config.no_tui,
        quiet=config.quiet,
        console=console,
        capabilities=capabilities,
    )
    output_path = config.output_file or DEFAULT_RESULTS_FILE
    if Path(output_path).suffix.lower() not in SUPPORTED_EXPORT_SUFFIXES:
        raise InputFormatError(
            f"Unsupported export format: {Path(output_path).suffix}. Use .xlsx or .csv"
        )

    handlers_and_level: HandlersAndLevel = ([], logging.getLogger().level)
    if not config.no_tui:
        handlers_and_level = suppress_console_logging()

    summary: Optional[RunSummary] = None
    written: Optional[Path] = None
    try:
        with display, InterruptHandler(pipeline, console):
            summary = asyncio.run(pipeline.run())
    finally:
        restore_console_logging(handlers_and_level)
        # Partial results are exported even when the run was aborted
        if summary is not None or any(
            job.extraction_state != StageState.IDLE for job in store
        ):
            written = ResultExporter().export(
                store.snapshot(), output_path, include_extracted=config.include_extracted
            )

    assert summary is not None
    display.show_final_summary(summary, str(written))
    return EXIT_CANCELLED if summary.cancelled else 0


# ============================================================================
# Entry point
# ============================================================================


def _create_parser() -> argparse.ArgumentParser:
    presets = ", ".join(sorted(PROMPT_PRESETS))
    parser = argparse.ArgumentParser(
        prog="webrefine",
        description="WebRefine - extract web page content and reshape it with an LLM",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
EXAMPLES:
  Single page:
    webrefine --url "https://example.com/product" --preset product
    webrefine --url "https://example.com/post" --prompt "Summarize in 3 bullets" --docx ""

  Map a page into the structure of an example output:
    webrefine --url "https://example.com/product" --sample example.csv

  Batch mode (spreadsheet with a URL column):
    webrefine --generate-template urls.xlsx
    webrefine --input urls.xlsx --prompt "Extract price and rating" --output results.xlsx

  Headless/CI mode:
    webrefine --input urls.csv --preset summary --quiet
""",
    )

    source = parser.add_argument_group("input")
    source.add_argument("-u", "--url", type=str, default=None, help="Single page to process", metavar="URL")
    source.add_argument(
        "-i",
        "--input",
        type=str,
        default=None,
        help="Bulk input file (.xlsx, .xls, .csv with a URL column, .txt, .json)",
        metavar="FILE",
    )

    transform = parser.add_argument_group("transformation")
    transform.add_argument("-p", "--prompt", type=str, default=None, help="Instruction applied to every page", metavar="TEXT")
    transform.add_argument(
        "--preset",
        type=str,
        default=None,
        choices=sorted(PROMPT_PRESETS),
        help=f"Predefined instruction ({presets}); --prompt wins when both are set",
    )
    transform.add_argument(
        "-s",
        "--sample",
        type=str,
        default=None,
        help="Example output whose structure is mirrored (.txt, .md, .csv, .json, .xlsx, .xls, .docx)",
        metavar="FILE",
    )

    output = parser.add_argument_group("output")
    output.add_argument(
        "-o",
        "--output",
        type=str,
        default=None,
        help=f"Result file (batch: .xlsx or .csv, default {DEFAULT_RESULTS_FILE})",
        metavar="FILE",
    )
    output.add_argument(
        "--docx",
        type=str,
        nargs="?",
        const="",
        default=None,
        help="Also save the single-page result as a Word document (default name: page title)",
        metavar="FILE",
    )
    output.add_argument(
        "--include-extracted",
        action="store_true",
        default=False,
        help="Add the raw extracted text as a column of the batch export",
    )

    settings = parser.add_argument_group("settings")
    settings.add_argument(
        "-c",
        "--config",
        type=str,
        default=None,
        help="Path to YAML/JSON configuration file (see --generate-config)",
        metavar="FILE",
    )
    settings.add_argument(
        "--generate-config",
        action="store_true",
        default=False,
        help=f"Generate example configuration file ({CONFIG_FILE_NAME}) and exit",
    )
    settings.add_argument(
        "--generate-template",
        type=str,
        nargs="?",
        const=DEFAULT_TEMPLATE_FILE,
        default=None,
        help=f"Write a bulk input template (default {DEFAULT_TEMPLATE_FILE}) and exit",
        metavar="FILE",
    )
    settings.add_argument(
        "--model",
        type=str,
        default=None,
        help=f"Transformation model. Options: {', '.join(SUPPORTED_MODELS)}",
        metavar="MODEL",
    )
    settings.add_argument(
        "--extraction-model",
        type=str,
        default=None,
        help="Search-grounded model used to read pages",
        metavar="MODEL",
    )
    settings.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for each extraction and transformation call",
        metavar="SECONDS",
    )

    ui = parser.add_argument_group("display")
    ui.add_argument("--no-tui", action="store_true", default=False, help="Disable Rich TUI (plain text output for scripts/CI)")
    ui.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        default=False,
        help="Minimal output (implies --no-tui)",
    )
    ui.add_argument(
        "--mock",
        action="store_true",
        default=False,
        help="Use the simulated API (no network, no token costs)",
    )
    ui.add_argument("--version", action="version", version=f"WebRefine version {__version__}")
    return parser


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {
        "prompt": args.prompt,
        "preset": args.preset,
        "sample_file": args.sample,
        "output_file": args.output,
        "include_extracted": args.include_extracted or None,
        "model": args.model,
        "extraction_model": args.extraction_model,
        "extraction_timeout": args.timeout,
        "transform_timeout": args.timeout,
        "no_tui": args.no_tui or None,
        "quiet": args.quiet or None,
    }
    # None values let config file values take precedence
    return {k: v for k, v in overrides.items() if v is not None}


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the WebRefine CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)
    console = Console()

    if args.generate_config:
        generate_example_config(CONFIG_FILE_NAME)
        print(f"Generated example configuration: {CONFIG_FILE_NAME}")
        print(f"Edit the file and use with: webrefine --config {CONFIG_FILE_NAME} --url <URL>")
        sys.exit(0)

    if args.generate_template is not None:
        path = ResultExporter().write_bulk_template(args.generate_template)
        print(f"Bulk upload template written to: {path}")
        sys.exit(0)

    if (args.url is None) == (args.input is None):
        parser.print_help()
        print("\nError: specify exactly one of --url or --input")
        sys.exit(1)
    if args.url is not None and not args.url.strip():
        print("Error: --url must not be empty")
        sys.exit(1)
    if args.docx is not None and args.input:
        print("Error: --docx is only valid with --url")
        sys.exit(1)

    try:
        config = load_config(config_path=args.config, cli_overrides=_cli_overrides(args))
    except (WebRefineError, FileNotFoundError) as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    configure_logging(config.no_tui, config.quiet)
    capabilities = detect_terminal_capabilities()
    client = build_client(config, args.mock)

    try:
        if args.url is not None:
            warn_invalid_urls([args.url])
            exit_code = run_single(args.url, config, client, console, args.docx)
        else:
            exit_code = run_batch(args.input, config, client, console, capabilities)
    except WebRefineError as e:
        logger.debug("Run aborted", exc_info=True)
        console.print(f"[red]Error:[/red] {e}", highlight=False)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
