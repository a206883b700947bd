import asyncio
import json

from extraction.collector import (
    CandidateCollector,
    content_length_from_headers,
    container_from_url,
    media_kind_for_response,
    quality_from_url,
    strip_byte_range,
)
from extraction.extractors import extract_src_from_embed, run_script_rules, unescape_url
from extraction.streams import AUDIO, PROGRESSIVE, SEGMENTED, UNKNOWN, VIDEO
from tests.fakes import FakeSession, efg, response


def test_byte_range_duplicates_collapse_to_higher_bitrate():
    c = CandidateCollector()
    base = "https://video.example.net/v/t42/clip.mp4?oh=abc&oe=65F0"
    c.add(base + "&bytestart=0&byteend=1000", VIDEO, bitrate=400_000, observed_at=1.0)
    c.add(base + "&bytestart=1001&byteend=9000", VIDEO, bitrate=900_000, observed_at=2.0)

    cands = c.candidates()
    assert len(cands) == 1
    assert cands[0].url == base
    assert cands[0].bitrate_hint == 900_000
    assert cands[0].observed_at == 1.0


def test_lower_bitrate_duplicate_does_not_replace():
    c = CandidateCollector()
    url = "https://video.example.net/clip.mp4"
    c.add(url, VIDEO, bitrate=900_000, quality=None)
    c.add(url + "?bytestart=0", VIDEO, bitrate=100_000, quality=720)

    [cand] = c.candidates()
    assert cand.bitrate_hint == 900_000
    assert cand.quality_hint == 720


def test_same_url_different_kind_is_not_a_duplicate():
    c = CandidateCollector()
    c.add("https://video.example.net/stream.mp4", VIDEO)
    c.add("https://video.example.net/stream.mp4", AUDIO)
    assert len(c.candidates()) == 2


def test_strip_byte_range_keeps_other_params_verbatim():
    url = "https://cdn.example/a.mp4?efg=eyJhIjoxfQ%3D%3D&bytestart=10&_nc_ht=x&byteend=20"
    assert strip_byte_range(url) == "https://cdn.example/a.mp4?efg=eyJhIjoxfQ%3D%3D&_nc_ht=x"
    assert strip_byte_range("https://cdn.example/a.mp4") == "https://cdn.example/a.mp4"


def test_hints_from_url_and_embedded_params():
    tagged = f"https://cdn.example/v.mp4?efg={efg(vencode_tag='dash_h264-basic-gen2_1080p', video_id=77)}"
    assert quality_from_url(tagged, {"vencode_tag": "dash_h264-basic-gen2_1080p"}) == 1080
    assert quality_from_url("https://cdn.example/clip_480p.mp4") == 480
    assert quality_from_url("https://cdn.example/hd/clip.mp4") == 720
    assert quality_from_url("https://cdn.example/clip.mp4") is None

    assert container_from_url("https://cdn.example/seg-1.m4s") == SEGMENTED
    assert container_from_url("https://cdn.example/clip.mp4?bytestart=0") == SEGMENTED
    assert container_from_url("https://cdn.example/clip.mp4") == PROGRESSIVE
    assert container_from_url("https://cdn.example/videoplayback?id=1") == UNKNOWN


def test_collector_reads_asset_id_and_target_match():
    c = CandidateCollector(target="1234567890123")
    cand = c.add(f"https://cdn.example/v.mp4?efg={efg(xpv_asset_id=1234567890123, bitrate=700000)}", VIDEO)
    assert cand.asset_id == "1234567890123"
    assert cand.matches_target
    assert cand.bitrate_hint == 700000


def test_media_kind_for_response():
    assert media_kind_for_response("https://cdn.example/a", "audio/mp4") == AUDIO
    assert media_kind_for_response("https://cdn.example/a.mp4", "video/mp4") == VIDEO
    assert media_kind_for_response("https://cdn.example/a.mp4", "", {"vencode_tag": "dash_audio"}) == AUDIO
    assert media_kind_for_response("https://cdn.example/master.m3u8", "application/x-mpegURL") == VIDEO
    assert media_kind_for_response("https://cdn.example/app.js", "application/javascript") is None
    assert media_kind_for_response("https://cdn.example/thumb.jpg", "image/jpeg") is None


def test_content_length_prefers_content_range_total():
    assert content_length_from_headers({"Content-Range": "bytes 0-999/40000000", "Content-Length": "1000"}) == 40000000
    assert content_length_from_headers({"content-length": "2048"}) == 2048
    assert content_length_from_headers({}) is None


def test_unescape_url():
    raw = "https:\\/\\/video.example.net\\/v\\/clip.mp4?a=1\\u0026b=2&amp;c=3"
    assert unescape_url(raw) == "https://video.example.net/v/clip.mp4?a=1&b=2&c=3"


def test_structured_fields_rank_above_bare_urls():
    text = (
        'var x = {"video": "https:\\/\\/cdn.example\\/bare.mp4"};'
        '{"playable_url":"https:\\/\\/cdn.example\\/sd.mp4","playable_url_quality_hd":"https:\\/\\/cdn.example\\/hd.mp4"}'
    )
    hits = run_script_rules([{"type": "", "text": text}])
    assert [h.source for h in hits] == ["playable_url_quality_hd", "playable_url", "bare_media_url"]
    assert hits[0].url == "https://cdn.example/hd.mp4"
    assert hits[0].quality == 720 and hits[0].container == PROGRESSIVE
    assert hits[1].quality == 360


def test_bare_url_needs_nearby_keyword():
    hits = run_script_rules([{"type": "", "text": 'var unrelated = "https://cdn.example/x.mp4";'}])
    assert hits == []


def test_broken_json_fragment_is_skipped_not_fatal():
    good = json.dumps(
        {
            "representations": [
                {"base_url": "https://cdn.example/v720.mp4", "bandwidth": 1500000, "height": 720, "mime_type": "video/mp4"},
                {"base_url": "https://cdn.example/a.mp4", "bandwidth": 96000, "mime_type": "audio/mp4"},
            ]
        }
    )
    scripts = [
        {"type": "", "text": '{"representations":[{"base_url": "https://cdn.example/broken.mp4", '},
        {"type": "application/ld+json", "text": "{not json"},
        {"type": "", "text": good},
    ]
    hits = run_script_rules(scripts)
    by_url = {h.url: h for h in hits}
    assert "https://cdn.example/broken.mp4" not in by_url
    assert by_url["https://cdn.example/v720.mp4"].quality == 720
    assert by_url["https://cdn.example/v720.mp4"].container == SEGMENTED
    assert by_url["https://cdn.example/a.mp4"].media_kind == AUDIO


def test_json_ld_video_object():
    ld = {
        "@context": "https://schema.org",
        "@type": "VideoObject",
        "name": "Sunset timelapse",
        "contentUrl": "https://cdn.example/sunset.mp4",
        "height": "1080",
        "thumbnailUrl": ["https://cdn.example/sunset.jpg"],
        "duration": "PT1M5S",
    }
    session = FakeSession(scripts=[{"type": "application/ld+json", "text": json.dumps(ld)}])
    c = CandidateCollector()
    asyncio.run(c.collect_scripts(session))

    [cand] = c.candidates()
    assert cand.url == "https://cdn.example/sunset.mp4"
    assert cand.quality_hint == 1080
    assert cand.source == "json_ld"
    assert c.metadata.title == "Sunset timelapse"
    assert c.metadata.thumbnail == "https://cdn.example/sunset.jpg"
    assert c.metadata.duration == 65.0
    assert c.is_sufficient()


def test_dom_strategy_ignores_blob_sources():
    session = FakeSession(
        videos=[
            {"src": "blob:https://www.example.com/abc", "poster": None, "duration": None, "height": 720},
            {"src": "https://cdn.example/clip.mp4", "poster": "https://cdn.example/p.jpg", "duration": 12.5, "height": 540},
        ]
    )
    c = CandidateCollector()
    asyncio.run(c.collect_dom(session))

    [cand] = c.candidates()
    assert cand.quality_hint == 540
    assert cand.source == "dom"
    assert c.metadata.thumbnail == "https://cdn.example/p.jpg"
    assert c.metadata.duration == 12.5


def test_network_strategy_records_headers_only_and_interaction_time():
    early = response("https://cdn.example/early.mp4", at=50.0, headers={"content-length": "100"})
    late = response("https://cdn.example/late_720p.mp4", at=150.0)
    audio = response("https://cdn.example/track", mime="audio/mp4", at=151.0)
    page_js = response("https://cdn.example/app.js", mime="application/javascript", at=10.0)
    session = FakeSession(responses=[page_js, early], late_responses=[late, audio], interaction_at=100.0)

    c = CandidateCollector()
    asyncio.run(c.collect_network(session, wait_seconds=0))

    assert session.subscribed and session.interacted
    assert c.interaction_at == 100.0
    urls = {x.url: x for x in c.candidates()}
    assert set(urls) == {"https://cdn.example/early.mp4", "https://cdn.example/late_720p.mp4", "https://cdn.example/track"}
    assert urls["https://cdn.example/early.mp4"].content_length == 100
    assert urls["https://cdn.example/late_720p.mp4"].quality_hint == 720
    assert urls["https://cdn.example/track"].media_kind == AUDIO


def test_is_sufficient_requires_quality_or_audio():
    c = CandidateCollector()
    c.add("https://cdn.example/clip.mp4", VIDEO)
    assert not c.is_sufficient()
    c.add("https://cdn.example/track.m4a", AUDIO)
    assert c.is_sufficient()


def test_extract_src_from_embed_unwraps_plugin_href():
    markup = (
        '<iframe src="https://www.facebook.com/plugins/video.php?height=476&amp;'
        'href=https%3A%2F%2Fwww.facebook.com%2Freel%2F123456789&amp;show_text=false" width="267"></iframe>'
    )
    assert extract_src_from_embed(markup) == "https://www.facebook.com/reel/123456789"
    assert extract_src_from_embed('<video src="https://cdn.example/a.mp4">') == "https://cdn.example/a.mp4"
    assert extract_src_from_embed("") is None
