import json
from datetime import datetime, timezone

import pytest
from rich.console import Console
from typer.testing import CliRunner

from mediadocs.cli.commands.convert import ConvertExitCode
from mediadocs.cli.main import create_app
from mediadocs.config.settings import get_settings
from mediadocs.models.job import AsrEngineId, DocumentStyle, HistoryEntry, KeyframeStrategyId
from mediadocs.services.storage import InMemoryRepository
from mediadocs.utils.errors import TranscriptionFailedError

from conftest import VIDEO_ID, make_segments

runner = CliRunner()


@pytest.fixture
def history_store():
    store = InMemoryRepository()
    now = datetime(2026, 1, 2, 3, 4, tzinfo=timezone.utc)
    store.create(
        HistoryEntry(
            id="job-1",
            source=VIDEO_ID,
            title="Sourdough Basics",
            style=DocumentStyle.MINDMAP,
            asr_engine=AsrEngineId.LOCAL,
            keyframe_strategy=KeyframeStrategyId.HYBRID,
            keyframe_count=8,
            word_count=300,
            created_at=now,
            completed_at=now,
        )
    )
    return store


@pytest.fixture
def app(build_manager, history_store):
    return create_app(
        Console(width=200),
        manager_factory=build_manager,
        history_store_factory=lambda: history_store,
    )


def test_convert_quiet_prints_json_summary(app):
    result = runner.invoke(app, ["convert", VIDEO_ID, "--frames", "5", "--style", "summary", "--quiet"])

    assert result.exit_code == ConvertExitCode.SUCCESS, result.output
    payload = json.loads(result.stdout)
    assert payload["stage"] == "completed"
    assert payload["keyframes"] == 5
    assert payload["style"] == "summary"
    assert payload["document_path"].endswith("SourdoughBasics-summary.md")


def test_convert_prints_document(app):
    result = runner.invoke(app, ["convert", f"https://youtu.be/{VIDEO_ID}", "--frames", "3"])

    assert result.exit_code == 0, result.output
    assert "Document:" in result.output
    assert "Bake with steam." in result.output


def test_convert_keyword_option_reaches_strategy(app, capturer):
    result = runner.invoke(
        app, ["convert", VIDEO_ID, "--strategy", "keyword", "--keyword", "gluten", "--quiet"]
    )

    assert result.exit_code == 0, result.output
    segment_midpoint = (make_segments()[2].start + make_segments()[2].end) / 2
    assert capturer.timestamps == [segment_midpoint]


def test_convert_maps_error_kind_to_exit_code(app, engine):
    engine.error = TranscriptionFailedError("invalid api key", reason="auth")

    result = runner.invoke(app, ["convert", VIDEO_ID, "--asr", "cloud"])

    assert result.exit_code == ConvertExitCode.TRANSCRIPTION_FAILED
    assert "TranscriptionFailed" in result.output


def test_convert_rejects_invalid_input(app):
    bad_style = runner.invoke(app, ["convert", VIDEO_ID, "--style", "poem"])
    bad_source = runner.invoke(app, ["convert", "https://vimeo.com/1"])

    assert bad_style.exit_code == ConvertExitCode.INVALID_INPUT
    assert "Unsupported document style" in bad_style.output
    assert bad_source.exit_code == ConvertExitCode.INVALID_INPUT


def test_convert_force_flags_bypass_cached_artifacts(app, engine, capturer):
    first = runner.invoke(app, ["convert", VIDEO_ID, "--frames", "2", "--quiet"])
    cached = runner.invoke(app, ["convert", VIDEO_ID, "--frames", "2", "--quiet"])
    calls_after_cache = (engine.transcribe_calls, len(capturer.timestamps))
    forced = runner.invoke(app, ["convert", VIDEO_ID, "--frames", "2", "--force-asr", "--force-keyframes", "--quiet"])

    assert [result.exit_code for result in (first, cached, forced)] == [0, 0, 0]
    assert calls_after_cache == (1, 2)
    assert (engine.transcribe_calls, len(capturer.timestamps)) == (2, 4)


def test_convert_vision_flag_sends_images(app, generator):
    result = runner.invoke(app, ["convert", VIDEO_ID, "--frames", "2", "--vision", "--quiet"])

    assert result.exit_code == 0, result.output
    assert len(generator.attachments[0]) == 4


def test_options_lists_every_choice(app):
    result = runner.invoke(app, ["options", "--json"])

    payload = json.loads(result.stdout)
    assert "social-media-post" in payload["styles"]
    assert payload["asr_engines"] == ["local", "cloud", "captions"]
    assert "hybrid" in payload["keyframe_strategies"]


def test_history_renders_entries(app):
    as_json = runner.invoke(app, ["history", "--json"])
    as_table = runner.invoke(app, ["history"])

    assert json.loads(as_json.stdout)[0]["title"] == "Sourdough Basics"
    assert "Sourdough Basics" in as_table.output
    assert "mindmap" in as_table.output


def test_cache_commands(app, tmp_path):
    (tmp_path / VIDEO_ID).mkdir()
    (tmp_path / VIDEO_ID / "audio.m4a").write_bytes(b"1234")

    listed = runner.invoke(app, ["cache", "list", "--root", str(tmp_path), "--json"])
    assert [entry["key"] for entry in json.loads(listed.stdout)] == [VIDEO_ID]

    cleared = runner.invoke(app, ["cache", "clear-expired", "--root", str(tmp_path)])
    assert "Removed 0 expired cache(s)." in cleared.output

    deleted = runner.invoke(app, ["cache", "delete", VIDEO_ID, "--root", str(tmp_path)])
    assert deleted.exit_code == 0
    assert not (tmp_path / VIDEO_ID).exists()

    missing = runner.invoke(app, ["cache", "delete", VIDEO_ID, "--root", str(tmp_path)])
    assert missing.exit_code == 1


def test_migrate_requires_database_url(app, monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    get_settings.cache_clear()
    try:
        result = runner.invoke(app, ["migrate"])
    finally:
        get_settings.cache_clear()

    assert result.exit_code == 1
    assert "DATABASE_URL" in result.output
