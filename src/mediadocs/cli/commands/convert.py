"""CLI commands for converting a video into a styled document."""

from __future__ import annotations

import asyncio
import json
from typing import Callable, Dict, List, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, TaskID, TextColumn, TimeElapsedColumn
from rich.table import Table

from mediadocs.models.job import AsrEngineId, DocumentStyle, Job, KeyframeStrategyId
from mediadocs.services.jobs import JobManager
from mediadocs.utils.errors import ErrorKind, SourceInvalidError, UnsupportedOptionError
from mediadocs.utils.progress import ProgressEvent

# Builds a job manager logging to the given console; called inside the running event loop.
ManagerFactory = Callable[[Console], JobManager]


class ConvertExitCode:
    """Mapping of meaningful CLI exit codes."""

    SUCCESS = 0
    INVALID_INPUT = 1
    DOWNLOAD_FAILED = 2
    TRANSCRIPTION_FAILED = 3
    CAPTURE_FAILED = 4
    CONNECTOR_UNAVAILABLE = 5
    GENERATION_FAILED = 6
    CANCELLED = 7


EXIT_CODES: Dict[ErrorKind, int] = {
    ErrorKind.SOURCE_INVALID: ConvertExitCode.INVALID_INPUT,
    ErrorKind.DOWNLOAD_FAILED: ConvertExitCode.DOWNLOAD_FAILED,
    ErrorKind.TRANSCRIPTION_FAILED: ConvertExitCode.TRANSCRIPTION_FAILED,
    ErrorKind.CAPTURE_FAILED: ConvertExitCode.CAPTURE_FAILED,
    ErrorKind.CONNECTOR_UNAVAILABLE: ConvertExitCode.CONNECTOR_UNAVAILABLE,
    ErrorKind.GENERATION_FAILED: ConvertExitCode.GENERATION_FAILED,
    ErrorKind.CANCELLED: ConvertExitCode.CANCELLED,
}


def _default_manager(console: Console) -> JobManager:
    return JobManager(console=console)


def register(app: typer.Typer, console: Console, *, manager_factory: Optional[ManagerFactory] = None) -> None:
    """Register the ``convert`` and ``options`` commands."""

    build_manager = manager_factory or _default_manager

    async def convert_pipeline(
        *,
        source: str,
        style: str,
        asr: str,
        strategy: str,
        language: Optional[str],
        keyframe_config: Dict[str, object],
        submit_options: Dict[str, Optional[bool]],
        service_console: Console,
        on_event: Optional[Callable[[ProgressEvent], None]],
    ) -> Job:
        manager = build_manager(service_console)
        try:
            job_id = manager.submit(
                source,
                style,
                asr,
                strategy,
                language=language,
                keyframe_config=keyframe_config or None,
                **submit_options,
            )
            async with manager.subscribe(job_id) as subscription:
                async for event in subscription:
                    if on_event is not None:
                        on_event(event)
            return await manager.wait(job_id)
        finally:
            await manager.shutdown()

    @app.command("convert")
    def convert(  # pylint: disable=too-many-arguments
        source: str = typer.Argument(..., help="YouTube or Bilibili URL, or a bare video id"),
        style: str = typer.Option(DocumentStyle.NOTE.value, "--style", "-s", help="Document style"),
        asr: str = typer.Option(AsrEngineId.CAPTIONS.value, "--asr", help="Transcription engine"),
        strategy: str = typer.Option(KeyframeStrategyId.UNIFORM.value, "--strategy", help="Keyframe strategy"),
        frames: Optional[int] = typer.Option(None, "--frames", min=1, help="Number of keyframes to capture"),
        keywords: Optional[List[str]] = typer.Option(
            None, "--keyword", "-k", help="Keyword for the keyword strategy (repeatable)"
        ),
        language: Optional[str] = typer.Option(None, "--language", help="Spoken language hint, e.g. 'en'"),
        force_asr: bool = typer.Option(False, "--force-asr", help="Transcribe again even if a transcript is cached"),
        force_keyframes: bool = typer.Option(
            False, "--force-keyframes", help="Capture keyframes again instead of reusing cached ones"
        ),
        vision: Optional[bool] = typer.Option(
            None, "--vision/--no-vision", help="Send keyframe images to the model (default: LLM_VISION)"
        ),
        quiet: bool = typer.Option(False, "--quiet", "-q", help="Print the result as JSON only"),
    ) -> None:
        keyframe_config: Dict[str, object] = {}
        if frames is not None:
            keyframe_config["target_count"] = frames
        if keywords:
            keyframe_config["keywords"] = list(keywords)

        progress: Optional[Progress] = None
        if not quiet:
            progress = Progress(
                TextColumn("{task.description}"),
                BarColumn(),
                TextColumn("{task.percentage:>3.0f}%"),
                TimeElapsedColumn(),
                console=console,
                transient=True,
            )
        service_console = Console(quiet=True) if quiet else console

        def run(on_event: Optional[Callable[[ProgressEvent], None]]) -> Job:
            return asyncio.run(
                convert_pipeline(
                    source=source,
                    style=style,
                    asr=asr,
                    strategy=strategy,
                    language=language,
                    keyframe_config=keyframe_config,
                    submit_options={
                        "force_transcription": force_asr,
                        "force_keyframes": force_keyframes,
                        "vision": vision,
                    },
                    service_console=service_console,
                    on_event=on_event,
                )
            )

        try:
            if progress is None:
                job = run(None)
            else:
                with progress as running_progress:
                    task_id = running_progress.add_task("Queued", total=100)
                    job = run(_progress_handler_factory(running_progress, task_id))
        except (SourceInvalidError, UnsupportedOptionError) as exc:
            console.print(f"[red]Error:[/red] {exc}")
            raise typer.Exit(code=ConvertExitCode.INVALID_INPUT) from exc

        if quiet:
            typer.echo(json.dumps(_build_json_payload(job), ensure_ascii=False, indent=2))
        elif job.error is None:
            console.print(Panel.fit(f"Converted: [bold]{job.title or job.video_id}[/bold]", border_style="green"))
            console.print(f"Job ID: {job.id}")
            console.print(f"Document: {job.document_path}")
            console.print(f"Keyframes: {len(job.keyframes)}")
            for warning in job.warnings:
                console.print(f"[yellow]Warning:[/yellow] {warning}")
            console.print()
            console.print(Panel(job.result or "", title=f"{job.style.value} document", border_style="blue"))

        if job.error is not None:
            if not quiet:
                console.print(f"[red]{job.error.kind.value}:[/red] {job.error.message}")
            raise typer.Exit(code=EXIT_CODES[job.error.kind])

    @app.command("options")
    def options(
        json_output: bool = typer.Option(False, "--json", help="Output the supported options as JSON"),
    ) -> None:
        """List document styles, transcription engines and keyframe strategies."""

        groups = {
            "styles": [member.value for member in DocumentStyle],
            "asr_engines": [member.value for member in AsrEngineId],
            "keyframe_strategies": [member.value for member in KeyframeStrategyId],
        }
        if json_output:
            typer.echo(json.dumps(groups, indent=2))
            return

        table = Table(title="Conversion Options")
        table.add_column("Option", style="cyan")
        table.add_column("Values")
        table.add_row("--style", ", ".join(groups["styles"]))
        table.add_row("--asr", ", ".join(groups["asr_engines"]))
        table.add_row("--strategy", ", ".join(groups["keyframe_strategies"]))
        console.print(table)


def _progress_handler_factory(progress: Progress, task_id: TaskID) -> Callable[[ProgressEvent], None]:
    def handler(event: ProgressEvent) -> None:
        description = event.message or event.stage.value.replace("-", " ").title()
        progress.update(task_id, completed=event.progress, description=description)

    return handler


def _build_json_payload(job: Job) -> Dict[str, object]:
    return {
        "id": job.id,
        "source": job.source,
        "stage": job.stage.value,
        "progress": job.progress,
        "title": job.title,
        "style": job.style.value,
        "document_path": job.document_path,
        "keyframes": len(job.keyframes),
        "warnings": list(job.warnings),
        "error": job.error.model_dump(mode="json") if job.error else None,
    }


__all__ = ["ConvertExitCode", "EXIT_CODES", "ManagerFactory", "register"]
