"""Job manager orchestrating the video-to-document pipeline with LangGraph."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple, Type, TypedDict, TypeVar
from uuid import uuid4

from langgraph.graph import END, START, StateGraph
from rich.console import Console

from mediadocs.config.settings import Settings, get_settings
from mediadocs.db.connection import close_pools, get_connection
from mediadocs.db.job_repository import HistoryRepository, JobRepository
from mediadocs.models.job import (
    AsrEngineId,
    DocumentStyle,
    HistoryEntry,
    Job,
    JobErrorInfo,
    KeyframeStrategyId,
)
from mediadocs.models.keyframe import KeyframeConfig
from mediadocs.models.media import MediaAssets
from mediadocs.services import SupportsAsyncClose
from mediadocs.services.cache import (
    keyframe_source_matches,
    load_transcript,
    save_keyframe_source,
    save_transcript,
)
from mediadocs.services.connector import ResourceConnector
from mediadocs.services.keyframes import KeyframeExtractor, load_keyframes
from mediadocs.services.media import MediaFetcher
from mediadocs.services.progress import ProgressBus, ProgressSubscription
from mediadocs.services.rate_limit import RateLimiterRegistry
from mediadocs.services.storage import InMemoryRepository, Repository
from mediadocs.services.subtitles import SubtitleFetcher
from mediadocs.services.synthesis import DocumentSynthesizer
from mediadocs.services.transcription import TranscriptionEngine, build_engine
from mediadocs.utils.errors import (
    CaptureFailedError,
    ErrorKind,
    InvalidJobStateError,
    JobCancelledError,
    JobNotFoundError,
    PipelineError,
    TranscriptionFailedError,
    UnsupportedOptionError,
)
from mediadocs.utils.progress import ProcessingStage, ProgressEvent, StageProgress, StageWeights, stage_rank
from mediadocs.utils.validation import SourceReference, parse_source, sanitize_title

EnumT = TypeVar("EnumT", DocumentStyle, AsrEngineId, KeyframeStrategyId)

# Kind reported when a stage fails with an exception outside the pipeline error hierarchy.
DEFAULT_ERROR_KINDS: Dict[ProcessingStage, ErrorKind] = {
    ProcessingStage.DOWNLOADING: ErrorKind.DOWNLOAD_FAILED,
    ProcessingStage.TRANSCRIBING: ErrorKind.TRANSCRIPTION_FAILED,
    ProcessingStage.EXTRACTING_KEYFRAMES: ErrorKind.CAPTURE_FAILED,
    ProcessingStage.GENERATING: ErrorKind.GENERATION_FAILED,
}

# Share of the downloading stage given to media, subtitles and engine preparation.
_DOWNLOAD_SPLIT = (80.0, 90.0)


class PipelineState(TypedDict, total=False):
    """Workflow state propagated through the LangGraph pipeline."""

    job_id: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_repositories(settings: Settings) -> Tuple[Repository[Job], Repository[HistoryEntry]]:
    """Postgres repositories when ``DATABASE_URL`` is set, in-memory stores otherwise."""

    if settings.database_url is not None:
        return JobRepository(get_connection), HistoryRepository(get_connection)
    return InMemoryRepository[Job](), InMemoryRepository[HistoryEntry]()


class JobManager:
    """Own every job for its lifetime and drive it through the stage workflow.

    Each job runs on its own task. Stages run strictly in order; the cancellation flag is
    checked only between stages, so an in-flight external call always finishes first. Stage
    failures end that job in ``error`` and never escape the task.
    """

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
        bus: Optional[ProgressBus] = None,
        store: Optional[Repository[Job]] = None,
        history_store: Optional[Repository[HistoryEntry]] = None,
        fetcher: Optional[MediaFetcher] = None,
        subtitle_fetcher: Optional[SubtitleFetcher] = None,
        engines: Optional[Mapping[AsrEngineId, TranscriptionEngine]] = None,
        extractor: Optional[KeyframeExtractor] = None,
        synthesizer: Optional[DocumentSynthesizer] = None,
        rate_limiters: Optional[RateLimiterRegistry] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._console = console or Console()
        self._bus = bus or ProgressBus(buffer_size=self._settings.progress_buffer_size)

        self._owns_database = store is None and self._settings.database_url is not None
        if store is None or history_store is None:
            default_store, default_history = default_repositories(self._settings)
            store = store or default_store
            history_store = history_store or default_history
        self._store = store
        self._history_store = history_store

        self._fetcher = fetcher or MediaFetcher(console=self._console)
        self._subtitle_fetcher = subtitle_fetcher or SubtitleFetcher(console=self._console)
        self._engines: Dict[AsrEngineId, TranscriptionEngine] = dict(engines or {})
        self._extractor = extractor or KeyframeExtractor(
            connector=ResourceConnector(
                max_attempts=self._settings.connector_max_attempts,
                retry_delay=self._settings.connector_retry_delay_seconds,
                console=self._console,
            ),
            media_root=self._settings.output_root,
            console=self._console,
        )
        self._synthesizer = synthesizer or DocumentSynthesizer(settings=self._settings, console=self._console)
        self._rate_limiters = rate_limiters or RateLimiterRegistry(self._settings.rate_limits, console=self._console)

        self._weights = StageWeights(
            downloading=self._settings.stage_weight_download,
            transcribing=self._settings.stage_weight_transcribe,
            extracting_keyframes=self._settings.stage_weight_keyframes,
            generating=self._settings.stage_weight_generate,
        )
        limit = self._settings.max_concurrent_jobs
        self._semaphore = asyncio.Semaphore(limit) if limit > 0 else None

        self._jobs: Dict[str, Job] = {}
        self._assets: Dict[str, MediaAssets] = {}
        self._resume_from: Dict[str, ProcessingStage] = {}
        self._tasks: Dict[str, asyncio.Task[None]] = {}
        # Terminal jobs whose final state has not reached the store stay in memory.
        self._unsaved: Set[str] = set()
        self._workflow = self._build_workflow()

    @property
    def bus(self) -> ProgressBus:
        return self._bus

    @property
    def history_store(self) -> Repository[HistoryEntry]:
        return self._history_store

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #
    def submit(
        self,
        source: str,
        style: DocumentStyle | str,
        asr_engine: AsrEngineId | str,
        keyframe_strategy: KeyframeStrategyId | str,
        *,
        language: Optional[str] = None,
        keyframe_config: Optional[KeyframeConfig | Mapping[str, Any]] = None,
        force_transcription: bool = False,
        force_keyframes: bool = False,
        vision: Optional[bool] = None,
    ) -> str:
        """Validate the request, create the job and schedule it; returns the job id immediately.

        Must be called from within a running event loop. ``force_transcription`` and
        ``force_keyframes`` ignore artifacts cached by earlier runs. ``vision`` sends the
        keyframe images to the model and defaults to the ``LLM_VISION`` setting.

        Raises
        ------
        UnsupportedOptionError
            If the style, engine or strategy is not supported.
        SourceInvalidError
            If ``source`` is empty or not a recognised video reference.
        """

        return self._submit(
            source,
            style,
            asr_engine,
            keyframe_strategy,
            language=language,
            keyframe_config=keyframe_config,
            force_transcription=force_transcription,
            force_keyframes=force_keyframes,
            vision=self._settings.llm_vision if vision is None else vision,
        )

    def get_status(self, job_id: str) -> Job:
        """Return a snapshot of the job; mutating it does not affect the live job."""

        job = self._jobs.get(job_id)
        if job is not None:
            return job.model_copy(deep=True)
        stored = self._store.get(job_id)
        if stored is None:
            raise JobNotFoundError(job_id)
        return stored

    def list_jobs(self) -> List[Job]:
        """Stored jobs plus the live state of jobs still running here, oldest first."""

        jobs = {job.id: job for job in self._store.list()}
        jobs.update((job.id, job.model_copy(deep=True)) for job in self._jobs.values())
        return sorted(jobs.values(), key=lambda job: job.created_at)

    def cancel(self, job_id: str) -> bool:
        """Request cooperative cancellation; returns ``False`` if the job already finished."""

        job = self._jobs.get(job_id)
        if job is None:
            self.get_status(job_id)
            return False
        if job.stage.is_terminal:
            return False
        job.cancel_requested = True
        self._console.log(f"Cancellation requested for job {job_id} during {job.stage.value}")
        return True

    async def wait(self, job_id: str) -> Job:
        """Wait for the job task to finish and return the final snapshot."""

        task = self._tasks.get(job_id)
        if task is not None:
            await task
        return self.get_status(job_id)

    def subscribe(self, job_id: str) -> ProgressSubscription:
        """Subscribe to a job's progress; a finished job yields its final state and ends."""

        if job_id in self._jobs:
            return self._bus.subscribe(job_id)
        return self._bus.subscribe(job_id, snapshot=self._event_for(self.get_status(job_id)))

    def retry(self, job_id: str) -> str:
        """Resubmit a failed or cancelled job with the same parameters.

        Artifacts committed by the previous attempt are reused, so stages it completed run
        quickly from cache.
        """

        previous = self.get_status(job_id)
        if previous.stage is not ProcessingStage.ERROR:
            raise InvalidJobStateError(f"Job {job_id} is {previous.stage.value}; only failed jobs can be retried.")
        return self._submit(
            previous.source,
            previous.style,
            previous.asr_engine,
            previous.keyframe_strategy,
            language=previous.language,
            keyframe_config=previous.keyframe_config,
            vision=previous.vision,
            retry_of=previous.id,
            resume_from=previous.furthest_stage,
        )

    async def shutdown(self) -> None:
        """Cancel running jobs and release browser, engine and database resources."""

        pending = [task for task in self._tasks.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self._extractor.close()
        for engine in self._engines.values():
            if isinstance(engine, SupportsAsyncClose):
                await engine.close()
        if self._owns_database:
            close_pools()

    # ------------------------------------------------------------------ #
    # Submission                                                         #
    # ------------------------------------------------------------------ #
    def _submit(
        self,
        source: str,
        style: DocumentStyle | str,
        asr_engine: AsrEngineId | str,
        keyframe_strategy: KeyframeStrategyId | str,
        *,
        language: Optional[str],
        keyframe_config: Optional[KeyframeConfig | Mapping[str, Any]],
        force_transcription: bool = False,
        force_keyframes: bool = False,
        vision: bool = False,
        retry_of: Optional[str] = None,
        resume_from: Optional[ProcessingStage] = None,
    ) -> str:
        resolved_style = self._parse_option(DocumentStyle, style, "document style")
        resolved_engine = self._parse_option(AsrEngineId, asr_engine, "ASR engine")
        resolved_strategy = self._parse_option(KeyframeStrategyId, keyframe_strategy, "keyframe strategy")
        reference = parse_source(source)
        loop = asyncio.get_running_loop()

        job = Job(
            id=uuid4().hex,
            source=source.strip(),
            platform=reference.platform,
            video_id=reference.video_id,
            style=resolved_style,
            asr_engine=resolved_engine,
            keyframe_strategy=resolved_strategy,
            keyframe_config=self._keyframe_config(keyframe_config),
            language=language or self._settings.language,
            force_transcription=force_transcription,
            force_keyframes=force_keyframes,
            vision=vision,
            message="Queued",
            retry_of=retry_of,
        )
        self._jobs[job.id] = job
        if resume_from is not None:
            self._resume_from[job.id] = resume_from
        self._store.create(job.model_copy(deep=True))
        self._publish(job)

        self._tasks[job.id] = loop.create_task(self._run(job.id), name=f"mediadocs-job-{job.id}")
        self._console.log(
            f"Submitted job {job.id} ({reference.platform}:{reference.video_id}, style={resolved_style.value}, "
            f"asr={resolved_engine.value}, keyframes={resolved_strategy.value})"
        )
        return job.id

    @staticmethod
    def _parse_option(enum_type: Type[EnumT], value: Any, label: str) -> EnumT:
        try:
            return enum_type(value)
        except ValueError as exc:
            choices = ", ".join(member.value for member in enum_type)
            raise UnsupportedOptionError(f"Unsupported {label} {value!r}; expected one of: {choices}") from exc

    def _keyframe_config(self, config: Optional[KeyframeConfig | Mapping[str, Any]]) -> KeyframeConfig:
        defaults = {
            "max_count": self._settings.keyframe_max_count,
            "min_interval": self._settings.keyframe_min_interval_seconds,
            "caption_window": self._settings.keyframe_caption_window_seconds,
            "scene_sample_interval": self._settings.keyframe_scene_sample_seconds,
            "semantic_weight": self._settings.keyframe_hybrid_semantic_weight,
        }
        if config is None:
            return KeyframeConfig(**defaults)
        if isinstance(config, KeyframeConfig):
            return config.model_copy(deep=True)
        return KeyframeConfig(**{**defaults, **dict(config)})

    # ------------------------------------------------------------------ #
    # Workflow                                                           #
    # ------------------------------------------------------------------ #
    def _build_workflow(self) -> Any:
        """Construct the LangGraph workflow; every edge between stages checks for cancellation."""

        graph = StateGraph(PipelineState)
        graph.add_node(ProcessingStage.DOWNLOADING.value, self._download_node)
        graph.add_node(ProcessingStage.TRANSCRIBING.value, self._transcribe_node)
        graph.add_node(ProcessingStage.EXTRACTING_KEYFRAMES.value, self._keyframes_node)
        graph.add_node(ProcessingStage.GENERATING.value, self._generate_node)
        graph.add_node(ProcessingStage.COMPLETED.value, self._complete_node)
        graph.add_node("cancelled", self._cancelled_node)

        sequence = [
            START,
            ProcessingStage.DOWNLOADING.value,
            ProcessingStage.TRANSCRIBING.value,
            ProcessingStage.EXTRACTING_KEYFRAMES.value,
            ProcessingStage.GENERATING.value,
            ProcessingStage.COMPLETED.value,
        ]
        for current, following in zip(sequence, sequence[1:]):
            graph.add_conditional_edges(
                current,
                self._route_next,
                {"continue": following, "cancel": "cancelled"},
            )
        graph.add_edge(ProcessingStage.COMPLETED.value, END)
        graph.add_edge("cancelled", END)
        return graph.compile()

    def _route_next(self, state: PipelineState) -> str:
        return "cancel" if self._jobs[state["job_id"]].cancel_requested else "continue"

    async def _run(self, job_id: str) -> None:
        if self._semaphore is None:
            await self._execute(job_id)
            return
        async with self._semaphore:
            await self._execute(job_id)

    async def _execute(self, job_id: str) -> None:
        try:
            await self._workflow.ainvoke({"job_id": job_id})
        except PipelineError as exc:
            await self._fail(job_id, exc.kind, str(exc))
        except asyncio.CancelledError:
            job = self._mark_failed(job_id, ErrorKind.CANCELLED, "Job cancelled during shutdown")
            if job is not None:
                try:
                    self._store.update(job.model_copy(deep=True))
                    self._unsaved.discard(job_id)
                except Exception as exc:
                    self._unsaved.add(job_id)
                    self._console.log(f"[red]Failed to persist job {job_id}:[/red] {exc}")
            raise
        except Exception as exc:
            stage = self._jobs[job_id].stage
            kind = DEFAULT_ERROR_KINDS.get(stage, ErrorKind.GENERATION_FAILED)
            self._console.log(f"[red]Job {job_id} failed unexpectedly during {stage.value}:[/red] {exc!r}")
            await self._fail(job_id, kind, str(exc) or exc.__class__.__name__)
        finally:
            self._assets.pop(job_id, None)
            self._resume_from.pop(job_id, None)
            self._release(job_id)

    async def _download_node(self, state: PipelineState) -> PipelineState:
        job = self._jobs[state["job_id"]]
        stage = ProcessingStage.DOWNLOADING
        await self._enter_stage(job, stage, "Downloading media")
        report = self._stage_reporter(job.id, stage)
        media_share, subtitle_share = _DOWNLOAD_SPLIT
        output_dir = self._output_dir(job)

        assets = await self._fetcher.fetch(
            SourceReference(platform=job.platform, video_id=job.video_id),
            output_dir,
            on_progress=lambda percent, message: report(percent * media_share / 100.0, message),
        )
        self._assets[job.id] = assets
        job.title = assets.title
        job.duration = assets.duration
        job.output_dir = str(output_dir)
        job.audio_path = assets.audio_path
        job.video_path = assets.video_path

        if self._settings.download_subtitles and assets.subtitle_tracks:
            subtitles = await self._subtitle_fetcher.fetch_all(
                assets.subtitle_tracks,
                sanitize_title(assets.title, fallback=job.video_id),
                output_dir,
            )
            for failure in subtitles.failures:
                self._warn(job, failure)
        report(subtitle_share, "Preparing transcription engine")

        engine = self._engine(job.asr_engine)
        await engine.prepare(lambda percent, message: report(subtitle_share + percent * (100 - subtitle_share) / 100.0, message))
        await self._commit_stage(job, stage)
        return {}

    async def _transcribe_node(self, state: PipelineState) -> PipelineState:
        job = self._jobs[state["job_id"]]
        stage = ProcessingStage.TRANSCRIBING
        await self._enter_stage(job, stage, "Transcribing audio")
        output_dir = self._output_dir(job)

        segments = None
        if not job.force_transcription:
            segments = load_transcript(output_dir, job.asr_engine.value, language=job.language)
        if segments is not None:
            self._console.log(f"Using cached transcript for job {job.id}")
        else:
            if job.asr_engine is AsrEngineId.CLOUD:
                await self._rate_limiters.apply("cloud_asr")
            segments = await self._engine(job.asr_engine).transcribe(
                self._assets[job.id],
                language=job.language,
                on_progress=self._stage_reporter(job.id, stage),
            )
            if not segments:
                raise TranscriptionFailedError("Transcription produced no speech segments.")
            save_transcript(output_dir, job.asr_engine.value, segments, language=job.language)

        job.transcript = segments
        await self._commit_stage(job, stage)
        return {}

    async def _keyframes_node(self, state: PipelineState) -> PipelineState:
        job = self._jobs[state["job_id"]]
        stage = ProcessingStage.EXTRACTING_KEYFRAMES
        await self._enter_stage(job, stage, "Extracting keyframes")
        output_dir = self._output_dir(job)

        source = self._keyframe_source(job)
        reuse = not job.force_keyframes and (
            self._can_resume(job.id, stage)
            or (not job.force_transcription and keyframe_source_matches(output_dir, source))
        )
        cached = load_keyframes(output_dir) if reuse else None
        if cached is not None:
            self._console.log(f"Using cached keyframes for job {job.id}")
            job.keyframes = cached
        else:
            if not job.video_path:
                raise CaptureFailedError("No video stream was downloaded; cannot capture keyframes.")
            result = await self._extractor.extract(
                job.video_path,
                job.transcript,
                job.keyframe_strategy,
                job.keyframe_config,
                output_dir=output_dir,
                duration=job.duration,
                on_progress=self._stage_reporter(job.id, stage),
            )
            for warning in result.warnings:
                self._warn(job, warning)
            job.keyframes = result.keyframes
            save_keyframe_source(output_dir, source)

        await self._commit_stage(job, stage)
        return {}

    async def _generate_node(self, state: PipelineState) -> PipelineState:
        job = self._jobs[state["job_id"]]
        stage = ProcessingStage.GENERATING
        await self._enter_stage(job, stage, "Generating document")

        await self._rate_limiters.apply("llm")
        document = await self._synthesizer.synthesize(
            job.transcript,
            job.keyframes,
            job.style,
            vision=job.vision,
            on_progress=self._stage_reporter(job.id, stage),
        )
        title = sanitize_title(job.title or "", fallback=job.video_id)
        document_path = self._output_dir(job) / f"{title}-{job.style.value}.md"
        document_path.parent.mkdir(parents=True, exist_ok=True)
        document_path.write_text(document, encoding="utf-8")

        job.result = document
        job.document_path = str(document_path)
        await self._commit_stage(job, stage)
        return {}

    async def _complete_node(self, state: PipelineState) -> PipelineState:
        job = self._jobs[state["job_id"]]
        now = _utcnow()
        job.stage = ProcessingStage.COMPLETED
        job.furthest_stage = ProcessingStage.COMPLETED
        job.progress = 100
        job.message = f"Completed with {len(job.keyframes)} keyframes"
        job.updated_at = now
        job.completed_at = now

        entry = HistoryEntry(
            id=job.id,
            source=job.source,
            title=job.title or job.video_id,
            style=job.style,
            asr_engine=job.asr_engine,
            keyframe_strategy=job.keyframe_strategy,
            keyframe_count=len(job.keyframes),
            word_count=len((job.result or "").split()),
            document_path=job.document_path,
            created_at=job.created_at,
            completed_at=now,
        )
        try:
            await asyncio.to_thread(self._history_store.update, entry)
        except Exception as exc:
            self._console.log(f"[red]Failed to record history for job {job.id}:[/red] {exc}")
            job.warnings.append(f"History not recorded: {exc}")

        await self._persist(job)
        self._publish(job)
        self._console.log(f"[green]Job {job.id} completed[/green] -> {job.document_path}")
        return {}

    async def _cancelled_node(self, state: PipelineState) -> PipelineState:
        raise JobCancelledError("Cancelled by request")

    # ------------------------------------------------------------------ #
    # State transitions                                                  #
    # ------------------------------------------------------------------ #
    async def _enter_stage(self, job: Job, stage: ProcessingStage, message: str) -> None:
        job.stage = stage
        job.progress = max(job.progress, self._weights.overall(stage, 0))
        job.message = message
        job.updated_at = _utcnow()
        self._publish(job)
        await self._persist(job)

    async def _commit_stage(self, job: Job, stage: ProcessingStage) -> None:
        """Record that ``stage`` finished and its artifacts are on disk."""

        job.furthest_stage = stage
        job.progress = max(job.progress, self._weights.overall(stage, 100))
        job.updated_at = _utcnow()
        self._publish(job)
        await self._persist(job)

    def _stage_reporter(self, job_id: str, stage: ProcessingStage) -> StageProgress:
        """Map stage-local percentages onto the job's overall, never-decreasing progress."""

        def report(percent: float, message: Optional[str] = None) -> None:
            job = self._jobs.get(job_id)
            if job is None or job.stage is not stage:
                return
            overall = max(job.progress, self._weights.overall(stage, percent))
            if overall == job.progress and (message is None or message == job.message):
                return
            job.progress = overall
            if message:
                job.message = message
            self._publish(job)

        return report

    def _warn(self, job: Job, warning: str) -> None:
        job.warnings.append(warning)
        job.message = f"Warning: {warning}"
        self._publish(job)

    def _mark_failed(self, job_id: str, kind: ErrorKind, message: str) -> Optional[Job]:
        job = self._jobs.get(job_id)
        if job is None or job.stage.is_terminal:
            return None
        job.stage = ProcessingStage.ERROR
        job.error = JobErrorInfo(kind=kind, message=message)
        job.message = message
        job.updated_at = _utcnow()
        # Only a completed job has a document.
        if job.document_path:
            Path(job.document_path).unlink(missing_ok=True)
        job.result = None
        job.document_path = None
        self._publish(job)
        return job

    async def _fail(self, job_id: str, kind: ErrorKind, message: str) -> None:
        job = self._mark_failed(job_id, kind, message)
        if job is None:
            return
        colour = "yellow" if kind is ErrorKind.CANCELLED else "red"
        self._console.log(f"[{colour}]Job {job_id} ended with {kind.value}:[/{colour}] {message}")
        await self._persist(job)

    @staticmethod
    def _event_for(job: Job) -> ProgressEvent:
        return ProgressEvent(
            job_id=job.id,
            stage=job.stage,
            progress=job.progress,
            message=job.message,
            error=job.error.message if job.error else None,
            error_kind=job.error.kind.value if job.error else None,
        )

    def _publish(self, job: Job) -> ProgressEvent:
        return self._bus.publish(self._event_for(job))

    async def _persist(self, job: Job) -> None:
        snapshot = job.model_copy(deep=True)
        try:
            await asyncio.to_thread(self._store.update, snapshot)
        except Exception as exc:
            self._unsaved.add(job.id)
            self._console.log(f"[red]Failed to persist job {job.id}:[/red] {exc}")
        else:
            self._unsaved.discard(job.id)

    def _release(self, job_id: str) -> None:
        """Drop a finished job from memory once the store holds its final state."""

        self._tasks.pop(job_id, None)
        job = self._jobs.get(job_id)
        if job is None or not job.stage.is_terminal or job_id in self._unsaved:
            return
        del self._jobs[job_id]
        self._bus.clear(job_id)

    # ------------------------------------------------------------------ #
    # Helpers                                                            #
    # ------------------------------------------------------------------ #
    def _engine(self, engine_id: AsrEngineId) -> TranscriptionEngine:
        engine = self._engines.get(engine_id)
        if engine is None:
            engine = self._engines[engine_id] = build_engine(engine_id, settings=self._settings, console=self._console)
        return engine

    def _output_dir(self, job: Job) -> Path:
        return Path(self._settings.output_root) / job.video_id

    @staticmethod
    def _keyframe_source(job: Job) -> Dict[str, Any]:
        return {
            "strategy": job.keyframe_strategy.value,
            "config": job.keyframe_config.model_dump(mode="json"),
            "asr_engine": job.asr_engine.value,
            "language": job.language,
        }

    def _can_resume(self, job_id: str, stage: ProcessingStage) -> bool:
        resume_from = self._resume_from.get(job_id)
        return resume_from is not None and stage_rank(resume_from) >= stage_rank(stage)


__all__ = ["DEFAULT_ERROR_KINDS", "JobManager", "PipelineState", "default_repositories"]
