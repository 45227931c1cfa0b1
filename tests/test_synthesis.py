import asyncio
from pathlib import Path
from types import SimpleNamespace

import pytest
from pydantic_ai.messages import BinaryContent

from mediadocs.config.settings import Settings
from mediadocs.models.job import DocumentStyle
from mediadocs.models.keyframe import Keyframe
from mediadocs.models.transcript import TranscriptSegment
from mediadocs.services.synthesis import (
    STYLE_PROMPTS,
    DocumentSynthesizer,
    PydanticAIGenerator,
    build_context,
    format_timestamp,
)
from mediadocs.utils.errors import GenerationFailedError, UnsupportedOptionError

from conftest import FakeGenerator, make_segments


def _synthesizer(settings, console, generator):
    return DocumentSynthesizer(generator=generator, settings=settings, console=console)


def test_every_style_has_a_prompt():
    assert set(STYLE_PROMPTS) == set(DocumentStyle)


def test_format_timestamp_keeps_counting_minutes():
    assert format_timestamp(65.9) == "01:05"
    assert format_timestamp(3725) == "62:05"


def test_context_interleaves_keyframes_before_following_segment():
    segments = [
        TranscriptSegment(start=0.0, end=10.0, text="intro"),
        TranscriptSegment(start=10.0, end=20.0, text="middle"),
    ]
    keyframes = [
        Keyframe(timestamp=25.0, image_path="/tmp/b.jpg"),
        Keyframe(timestamp=5.0, image_path="/tmp/a.jpg", image_url="/media-files/a.jpg", text="intro"),
    ]

    assert build_context(segments, keyframes).splitlines() == [
        "[00:00] intro",
        "[00:05] [Keyframe 1] (image: /media-files/a.jpg) intro",
        "[00:10] middle",
        "[00:25] [Keyframe 2] (image: /tmp/b.jpg)",
    ]


def test_synthesize_returns_stripped_document(settings, console):
    generator = FakeGenerator(["\n# Summary\n\nBread.\n\n"])
    synthesizer = _synthesizer(settings, console, generator)

    document = asyncio.run(synthesizer.synthesize(make_segments(), [], "summary"))

    assert document == "# Summary\n\nBread."
    assert generator.system_prompts[0].startswith(STYLE_PROMPTS[DocumentStyle.SUMMARY])
    assert "[00:08] First we feed the starter" in generator.prompts[0]


def test_long_transcripts_are_truncated(tmp_path, console):
    settings = Settings(OUTPUT_ROOT=tmp_path, MAX_TRANSCRIPT_CHARS=40)
    generator = FakeGenerator()
    asyncio.run(_synthesizer(settings, console, generator).synthesize(make_segments(), [], "note"))

    assert generator.prompts[0].endswith("...[truncated]")


def test_unknown_style_fails_before_calling_model(settings, console):
    generator = FakeGenerator()

    with pytest.raises(UnsupportedOptionError):
        asyncio.run(_synthesizer(settings, console, generator).synthesize(make_segments(), [], "poem"))
    assert generator.prompts == []


@pytest.mark.parametrize("response", ["", "   \n", RuntimeError("upstream 500")])
def test_empty_or_failed_generation_raises(settings, console, response):
    generator = FakeGenerator([response])

    with pytest.raises(GenerationFailedError):
        asyncio.run(_synthesizer(settings, console, generator).synthesize(make_segments(), [], "article"))


def test_empty_transcript_is_rejected(settings, console):
    with pytest.raises(GenerationFailedError):
        asyncio.run(_synthesizer(settings, console, FakeGenerator()).synthesize([], [], "note"))


def _frames(tmp_path, count):
    keyframes = []
    for index in range(count):
        path = tmp_path / f"frame_{index + 1:03d}.jpg"
        path.write_bytes(b"\xff\xd8" + bytes([index]))
        keyframes.append(Keyframe(timestamp=float(index * 10), image_path=str(path)))
    return keyframes


def test_vision_attaches_labelled_images(settings, console, tmp_path):
    generator = FakeGenerator()
    keyframes = _frames(tmp_path, 2)

    asyncio.run(_synthesizer(settings, console, generator).synthesize(make_segments(), keyframes, "note", vision=True))

    label, image = generator.attachments[0][:2]
    assert label == "[Keyframe 1]"
    assert isinstance(image, BinaryContent)
    assert image.media_type == "image/jpeg"
    assert image.data == b"\xff\xd8\x00"
    assert len(generator.attachments[0]) == 4


def test_vision_thins_images_and_skips_missing_files(tmp_path, console):
    settings = Settings(OUTPUT_ROOT=tmp_path, LLM_VISION_MAX_IMAGES=3)
    keyframes = _frames(tmp_path, 6)
    Path(keyframes[2].image_path).unlink()

    parts = _synthesizer(settings, console, FakeGenerator()).image_attachments(keyframes)

    assert [part for part in parts if isinstance(part, str)] == ["[Keyframe 1]", "[Keyframe 5]"]


def test_vision_without_readable_images_falls_back_to_text(settings, console):
    generator = FakeGenerator()
    keyframes = [Keyframe(timestamp=5.0, image_path="/nonexistent/frame.jpg")]

    asyncio.run(_synthesizer(settings, console, generator).synthesize(make_segments(), keyframes, "note", vision=True))

    assert generator.attachments == [[]]
    assert "attached" not in generator.system_prompts[0]


def test_pydantic_ai_generator_sends_attachments_with_prompt(settings):
    class RecordingAgent:
        def __init__(self):
            self.prompts = []

        async def run(self, prompt):
            self.prompts.append(prompt)
            return SimpleNamespace(output="# Done")

    agent = RecordingAgent()
    generator = PydanticAIGenerator(settings=settings)
    generator._create_agent = lambda _system_prompt: agent
    image = BinaryContent(data=b"\xff\xd8", media_type="image/jpeg")

    async def scenario():
        await generator.generate("text only", system_prompt="system")
        return await generator.generate("with image", system_prompt="system", attachments=["[Keyframe 1]", image])

    assert asyncio.run(scenario()) == "# Done"
    assert agent.prompts == ["text only", ["with image", "[Keyframe 1]", image]]
