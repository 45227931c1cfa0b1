"""Document synthesis on top of Pydantic AI."""

from __future__ import annotations

import mimetypes
import time
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Union

from pydantic_ai import Agent
from pydantic_ai.messages import BinaryContent
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider
from rich.console import Console

from mediadocs.config.settings import Settings, get_settings
from mediadocs.models.job import DocumentStyle
from mediadocs.models.keyframe import Keyframe
from mediadocs.models.transcript import TranscriptSegment
from mediadocs.utils.errors import GenerationFailedError, UnsupportedOptionError
from mediadocs.utils.progress import StageProgress

try:  # pragma: no cover - optional anthropic provider
    from pydantic_ai.models.anthropic import AnthropicModel
    from pydantic_ai.providers.anthropic import AnthropicProvider
except ImportError:  # pragma: no cover - optional anthropic provider
    AnthropicModel = None  # type: ignore[assignment]

_KEYFRAME_GUIDANCE = (
    "The transcript is annotated with [MM:SS] timestamps. Lines marked [Keyframe N] describe a "
    "captured video frame; where a frame illustrates a point, embed it with Markdown image syntax "
    "using the given image reference."
)
_VISION_GUIDANCE = (
    "The frames themselves are attached after the transcript, each preceded by its [Keyframe N] "
    "label. Describe what they show where it adds to the spoken content."
)

# Prompt parts accepted by Agent.run: text and inline binary images.
PromptPart = Union[str, BinaryContent]

STYLE_PROMPTS: Dict[DocumentStyle, str] = {
    DocumentStyle.NOTE: (
        "You are an expert note-taker who turns spoken transcripts into structured study notes.\n"
        "- Use Markdown: # for the topic, ## for main sections, ### for individual points.\n"
        "- Keep every important fact, figure, example and ordered step; put formulas or code in code blocks.\n"
        "- Follow the order of the talk and mark key conclusions with > quotes.\n"
        "- Stay faithful to the source and do not add information it does not contain."
    ),
    DocumentStyle.SUMMARY: (
        "You are a summarisation expert.\n"
        "- Condense the transcript into 2-4 paragraphs of 3-5 sentences (300-500 words).\n"
        "- Open with the topic and central claim, cover 2-3 key points, close with the conclusion.\n"
        "- Use precise written language and keep essential data and facts."
    ),
    DocumentStyle.ARTICLE: (
        "You are a seasoned writer who rewrites talks as polished articles.\n"
        "- Start with a compelling title, then 2-3 introductory paragraphs.\n"
        "- Organise the body into 3-5 sections with ## headings and finish with a short conclusion.\n"
        "- Rewrite spoken language as prose, bold key ideas and quote memorable lines with >."
    ),
    DocumentStyle.MINDMAP: (
        "You are a mind-map specialist.\n"
        "- Put the central topic (a short phrase) in a single # heading.\n"
        "- Below it use nested Markdown lists: 3-6 main branches, 2-5 points each, at most three levels.\n"
        "- Each node is a 3-8 word keyword phrase, never a full sentence."
    ),
    DocumentStyle.SOCIAL_MEDIA_POST: (
        "You are a social media editor.\n"
        "- Open with a hook: a question, a striking number or a personal reaction.\n"
        "- Share the 2-3 most valuable points in 150-300 words of short lines.\n"
        "- Use 2-4 emoji, bold key words, end with a question inviting comments and 3-5 #hashtags."
    ),
    DocumentStyle.TABLE: (
        "You are an information-structuring specialist.\n"
        "- Extract content suited to tables: comparisons, lists of features, steps or timelines.\n"
        "- Produce 1-3 Markdown tables with 2-5 short column headers, each under a ## title and one-line description.\n"
        "- Keep cells concise and accurate; if the content does not suit a table, say why."
    ),
}


class TextGenerator(Protocol):
    """Narrow language-model capability: prompt in, text out."""

    async def generate(self, prompt: str, *, system_prompt: str, attachments: Sequence[PromptPart] = ()) -> str:
        """Return the model's text for ``prompt`` followed by ``attachments``."""


class PydanticAIGenerator:
    """Text generator backed by a Pydantic AI agent (OpenAI or Anthropic)."""

    def __init__(self, *, settings: Optional[Settings] = None, model_name: Optional[str] = None) -> None:
        self._settings = settings or get_settings()
        self._model_name = model_name or self._settings.llm_model_name
        self._agents: Dict[str, Agent[None, str]] = {}

    @property
    def model_name(self) -> str:
        return self._model_name

    async def generate(self, prompt: str, *, system_prompt: str, attachments: Sequence[PromptPart] = ()) -> str:
        agent = self._agents.get(system_prompt)
        if agent is None:
            agent = self._agents[system_prompt] = self._create_agent(system_prompt)
        result = await agent.run([prompt, *attachments] if attachments else prompt)
        return result.output

    def _create_agent(self, system_prompt: str) -> Agent[None, str]:
        """Instantiate the Pydantic AI agent using available provider credentials."""

        openai_key = (
            self._settings.openai_api_key.get_secret_value()
            if self._settings.openai_api_key is not None
            else None
        )
        anthropic_key = (
            self._settings.anthropic_api_key.get_secret_value()
            if self._settings.anthropic_api_key is not None
            else None
        )

        if openai_key:
            model = OpenAIChatModel(self._model_name, provider=OpenAIProvider(api_key=openai_key))
        elif anthropic_key:
            if AnthropicModel is None:
                raise GenerationFailedError(
                    "Anthropic support is unavailable. Install anthropic extras or provide an OpenAI API key."
                )
            model = AnthropicModel(self._model_name, provider=AnthropicProvider(api_key=anthropic_key))
        else:
            raise GenerationFailedError(
                "No language model credentials configured. Set OPENAI_API_KEY or ANTHROPIC_API_KEY."
            )

        return Agent(model=model, output_type=str, system_prompt=system_prompt)


def format_timestamp(seconds: float) -> str:
    """Format seconds as ``MM:SS`` (minutes keep growing past an hour)."""

    total = int(max(seconds, 0.0))
    return f"{total // 60:02d}:{total % 60:02d}"


def build_context(transcript: Sequence[TranscriptSegment], keyframes: Sequence[Keyframe]) -> str:
    """Interleave keyframe markers with timestamped transcript lines.

    Each keyframe is placed just before the first segment that starts after its timestamp;
    keyframes after the last segment are appended at the end.
    """

    ordered = sorted(keyframes, key=lambda keyframe: keyframe.timestamp)
    lines: List[str] = []
    cursor = 0

    def marker(index: int, keyframe: Keyframe) -> str:
        reference = keyframe.image_url or keyframe.image_path
        caption = f" {keyframe.text}" if keyframe.text else ""
        return f"[{format_timestamp(keyframe.timestamp)}] [Keyframe {index}] (image: {reference}){caption}"

    for segment in transcript:
        while cursor < len(ordered) and ordered[cursor].timestamp < segment.start:
            lines.append(marker(cursor + 1, ordered[cursor]))
            cursor += 1
        lines.append(f"[{format_timestamp(segment.start)}] {segment.text}")

    for index in range(cursor, len(ordered)):
        lines.append(marker(index + 1, ordered[index]))
    return "\n".join(lines)


class DocumentSynthesizer:
    """Render transcript and keyframes into a document of the requested style."""

    def __init__(
        self,
        *,
        generator: Optional[TextGenerator] = None,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._console = console or Console()
        self._generator = generator or PydanticAIGenerator(settings=self._settings)

    @staticmethod
    def resolve_style(style: DocumentStyle | str) -> DocumentStyle:
        try:
            return DocumentStyle(style)
        except ValueError as exc:
            raise UnsupportedOptionError(f"Unsupported document style: {style!r}") from exc

    def system_prompt(self, style: DocumentStyle | str, *, vision: bool = False) -> str:
        prompt = f"{STYLE_PROMPTS[self.resolve_style(style)]}\n\n{_KEYFRAME_GUIDANCE}"
        return f"{prompt}\n{_VISION_GUIDANCE}" if vision else prompt

    def image_attachments(self, keyframes: Sequence[Keyframe]) -> List[PromptPart]:
        """Labelled keyframe images, evenly thinned to ``LLM_VISION_MAX_IMAGES``.

        Labels use the same numbering as :func:`build_context`. Unreadable images are skipped.
        """

        ordered = sorted(keyframes, key=lambda keyframe: keyframe.timestamp)
        limit = self._settings.llm_vision_max_images
        indices: Sequence[int] = range(len(ordered))
        if len(ordered) > limit:
            indices = [position * len(ordered) // limit for position in range(limit)]

        parts: List[PromptPart] = []
        for index in indices:
            path = Path(ordered[index].image_path)
            try:
                data = path.read_bytes()
            except OSError as exc:
                self._console.log(f"[yellow]Skipping keyframe image {path}:[/yellow] {exc}")
                continue
            media_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
            parts.append(f"[Keyframe {index + 1}]")
            parts.append(BinaryContent(data=data, media_type=media_type))
        return parts

    def build_prompt(self, transcript: Sequence[TranscriptSegment], keyframes: Sequence[Keyframe]) -> str:
        context = build_context(transcript, keyframes)
        limit = self._settings.max_transcript_chars
        if len(context) > limit:
            context = context[:limit] + "\n...[truncated]"
        return f"Here is the content to process:\n\n---\n\n{context}"

    async def synthesize(
        self,
        transcript: Sequence[TranscriptSegment],
        keyframes: Sequence[Keyframe],
        style: DocumentStyle | str,
        *,
        vision: bool = False,
        on_progress: Optional[StageProgress] = None,
    ) -> str:
        """Generate the document text.

        With ``vision`` the keyframe images are attached to the request; when none can be
        read the request falls back to text only.

        Raises
        ------
        UnsupportedOptionError
            If ``style`` is not a known document style; raised before any model call.
        GenerationFailedError
            If the transcript is empty, the model call fails or the output is blank.
        """

        self.resolve_style(style)
        if not transcript:
            raise GenerationFailedError("Transcript is empty; nothing to generate from.")

        attachments = self.image_attachments(keyframes) if vision else []
        if vision and not attachments:
            self._console.log("[yellow]No keyframe images available; generating from text only[/yellow]")
        system_prompt = self.system_prompt(style, vision=bool(attachments))
        prompt = self.build_prompt(transcript, keyframes)
        if on_progress:
            on_progress(10, "Generating document")

        start_time = time.perf_counter()
        try:
            if attachments:
                content = await self._generator.generate(prompt, system_prompt=system_prompt, attachments=attachments)
            else:
                content = await self._generator.generate(prompt, system_prompt=system_prompt)
        except GenerationFailedError:
            raise
        except Exception as exc:
            self._console.log(f"[red]Generation failed after {time.perf_counter() - start_time:.2f}s:[/red] {exc}")
            raise GenerationFailedError(f"Language model call failed: {exc}") from exc

        if not content or not content.strip():
            raise GenerationFailedError("Language model returned an empty document.")

        self._console.log(
            f"Generation succeeded (duration={time.perf_counter() - start_time:.2f}s, chars={len(content)})"
        )
        if on_progress:
            on_progress(100, "Document generated")
        return content.strip()


__all__ = [
    "DocumentSynthesizer",
    "PromptPart",
    "PydanticAIGenerator",
    "STYLE_PROMPTS",
    "TextGenerator",
    "build_context",
    "format_timestamp",
]
