import asyncio
from unittest.mock import MagicMock

import pytest
import requests

from mediadocs.models.media import SubtitleLine, SubtitleTrackRef
from mediadocs.services.subtitles import SubtitleFetcher, format_srt_time, lines_to_srt, parse_subtitle_payload

BODY_PAYLOAD = {
    "body": [
        {"from": 0.0, "to": 1.5, "content": "Hello"},
        {"from": 1.5, "to": 3.25, "content": "World"},
    ]
}
JSON3_PAYLOAD = {
    "events": [
        {"tStartMs": 1000, "dDurationMs": 2000, "segs": [{"utf8": "Good "}, {"utf8": "morning"}]},
        {"tStartMs": 3000, "dDurationMs": 500, "segs": [{"utf8": "\n"}]},
        {"segs": [{"utf8": "no timing"}]},
    ]
}


def _response(payload=None, error=None):
    response = MagicMock()
    if error is not None:
        response.raise_for_status.side_effect = error
    response.json.return_value = payload
    return response


def test_format_srt_time():
    assert format_srt_time(0) == "00:00:00,000"
    assert format_srt_time(3661.5) == "01:01:01,500"


def test_lines_to_srt_numbers_blocks():
    srt = lines_to_srt(parse_subtitle_payload(BODY_PAYLOAD))
    assert srt.startswith("1\n00:00:00,000 --> 00:00:01,500\nHello\n")
    assert "2\n00:00:01,500 --> 00:00:03,250\nWorld\n" in srt


def test_parse_json3_events_skips_blank_and_untimed():
    lines = parse_subtitle_payload(JSON3_PAYLOAD)
    assert lines == [SubtitleLine(start=1.0, end=3.0, content="Good morning")]


def test_parse_rejects_unknown_payload():
    with pytest.raises(ValueError):
        parse_subtitle_payload({"captions": []})


def test_one_failing_track_does_not_fail_the_others(tmp_path, console):
    responses = {
        "https://subs.example/en.json": _response(BODY_PAYLOAD),
        "https://subs.example/fr.json": _response(error=requests.HTTPError("404 Not Found")),
    }
    http_get = MagicMock(side_effect=lambda url, **_kwargs: responses[url])
    failures = []
    fetcher = SubtitleFetcher(console=console, http_get=http_get)
    tracks = [
        SubtitleTrackRef(url="//subs.example/en.json", title="English"),
        SubtitleTrackRef(url="https://subs.example/fr.json", title="French"),
    ]

    result = asyncio.run(fetcher.fetch_all(tracks, "My Talk", tmp_path, on_failure=failures.append))

    assert [track.title for track in result.tracks] == ["English"]
    assert (tmp_path / "MyTalk-English.srt").read_text(encoding="utf-8").startswith("1\n")
    assert len(failures) == 1 and "French" in failures[0]
    assert result.failures == failures
    assert all(call.kwargs["timeout"] == 15 for call in http_get.call_args_list)


def test_no_tracks_returns_empty(tmp_path, console):
    fetcher = SubtitleFetcher(console=console, http_get=MagicMock())
    result = asyncio.run(fetcher.fetch_all([], "x", tmp_path))
    assert result.tracks == [] and result.failures == []


def test_parse_bilibili_body_ignores_extra_entry_fields():
    payload = {
        "font_size": 0.4,
        "body": [
            {"from": 0.5, "to": 2.3, "sid": 1, "location": 2, "content": "hello", "music": 0.0},
            {"from": 2.3, "to": 4.0, "sid": 2, "location": 2, "content": "world", "music": 0.0},
        ],
    }

    lines = parse_subtitle_payload(payload)

    assert [(line.start, line.end, line.content) for line in lines] == [(0.5, 2.3, "hello"), (2.3, 4.0, "world")]


def test_concurrent_fetches_keep_failures_separate(tmp_path, console):
    responses = {
        "https://subs.example/a.json": _response({"body": "not a list"}),
        "https://subs.example/b.json": _response(BODY_PAYLOAD),
    }
    fetcher = SubtitleFetcher(console=console, http_get=lambda url, **_kwargs: responses[url])

    async def scenario():
        return await asyncio.gather(
            fetcher.fetch_all([SubtitleTrackRef(url="https://subs.example/a.json", title="A")], "one", tmp_path / "a"),
            fetcher.fetch_all([SubtitleTrackRef(url="https://subs.example/b.json", title="B")], "two", tmp_path / "b"),
        )

    first, second = asyncio.run(scenario())

    assert first.tracks == [] and len(first.failures) == 1 and "'A'" in first.failures[0]
    assert [track.title for track in second.tracks] == ["B"]
    assert second.failures == []
