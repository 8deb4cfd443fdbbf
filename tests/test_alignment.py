import asyncio
import threading
import time

import pytest

from overlaysync.alignment import (
    AlignmentAdapter, AlignmentService, AlignmentStrategy, ForcedAlignmentStrategy,
    LinearSpreadStrategy, TranscriptMatcher
)
from overlaysync.exceptions import AlignmentError, AlignmentInProgressError
from overlaysync.models import (
    AlignedSegment, AlignmentOptions, AlignmentResult, AlignmentTranscript,
    SyncLevel, SyncStatus, SyncUnit
)
from overlaysync.serializer import SyncBlockSerializer


class FakeService(AlignmentService):
    def __init__(self, segments, error=None):
        self.segments = segments
        self.error = error
        self.calls = 0

    def align(self, text_units, audio_path, language):
        self.calls += 1
        if self.error:
            raise self.error
        return AlignmentTranscript(segments=list(self.segments), language=language)


class SlowStrategy(AlignmentStrategy):
    name = "slow"

    def __init__(self, release=None, delay=0.0):
        self.release = release
        self.delay = delay

    def align(self, units, audio_path, options):
        if self.release is not None:
            self.release.wait(5)
        if self.delay:
            time.sleep(self.delay)
        return AlignmentResult(synced=[(u.id, 0.0, 1.0) for u in units[:1]], method=self.name)


def page_sentences(store):
    return store.units_on_page(1, SyncLevel.SENTENCE)


def test_forced_alignment_skips_units_missing_from_transcript(store):
    service = FakeService([
        AlignedSegment("page1_p1_s1", 0.0, 1.5),
        AlignedSegment("page1_p1_s3", 2.0, 3.0),
    ])
    adapter = AlignmentAdapter(store, ForcedAlignmentStrategy(service))

    result = asyncio.run(adapter.auto_sync("page-1", page_sentences(store), "book.mp3"))

    assert result.skipped == ["page1_p1_s2"]
    assert store.get("page1_p1_s1").status is SyncStatus.SYNCED
    assert store.get("page1_p1_s3").status is SyncStatus.SYNCED
    skipped = store.get("page1_p1_s2")
    assert skipped.status is SyncStatus.SKIPPED
    assert skipped.start is None
    assert store.get("page1_p1_s1_w2").end == 1.5

    block_ids = [b.unit_id for b in SyncBlockSerializer().serialize(store)]
    assert "page1_p1_s2" not in block_ids
    assert "page1_p1_s1" in block_ids and "page1_p1_s3" in block_ids


def test_forced_alignment_ignores_unknown_and_invalid_segments(store):
    service = FakeService([
        AlignedSegment("page1_p1_s1", 0.0, 1.0),
        AlignedSegment("ghost", 1.0, 2.0),
        AlignedSegment("page1_p1_s2", 3.0, 2.0),
    ])
    result = ForcedAlignmentStrategy(service).align(page_sentences(store), "book.mp3", AlignmentOptions())
    assert result.synced == [("page1_p1_s1", 0.0, 1.0)]
    assert result.skipped == ["page1_p1_s2", "page1_p1_s3"]


def test_rerun_replaces_previous_results(store):
    units = page_sentences(store)
    linear = AlignmentAdapter(store, LinearSpreadStrategy())
    asyncio.run(linear.auto_sync("page-1", units, "book.mp3", AlignmentOptions(window_end=9.0)))
    assert store.get("page1_p1_s2_w1").is_synced

    forced = AlignmentAdapter(store, ForcedAlignmentStrategy(FakeService([
        AlignedSegment("page1_p1_s1", 0.0, 1.5),
        AlignedSegment("page1_p1_s3", 2.0, 3.0),
    ])))
    asyncio.run(forced.auto_sync("page-1", units, "book.mp3"))
    assert store.get("page1_p1_s2").status is SyncStatus.SKIPPED
    assert store.get("page1_p1_s2_w1").status is SyncStatus.UNSYNCED
    assert store.get("page1_p1_s1").end == 1.5


def test_service_failure_leaves_store_unchanged(store):
    store.upsert("page1_p1_s1", 5.0, 6.0)
    before = dict(store.snapshot().entries)
    adapter = AlignmentAdapter(store, ForcedAlignmentStrategy(FakeService([], error=ConnectionError("down"))))

    with pytest.raises(AlignmentError) as excinfo:
        asyncio.run(adapter.auto_sync("page-1", page_sentences(store), "book.mp3"))

    assert excinfo.value.retryable
    assert dict(store.snapshot().entries) == before
    assert not adapter.is_running("page-1")


def test_timeout_leaves_store_unchanged(store):
    before = dict(store.snapshot().entries)
    adapter = AlignmentAdapter(store, SlowStrategy(delay=0.3))
    options = AlignmentOptions(timeout_seconds=0.05)

    with pytest.raises(AlignmentError):
        asyncio.run(adapter.auto_sync("page-1", page_sentences(store), "book.mp3", options))

    assert dict(store.snapshot().entries) == before


def test_reentrant_call_for_same_target_is_rejected(store):
    release = threading.Event()
    adapter = AlignmentAdapter(store, SlowStrategy(release=release))
    units = page_sentences(store)

    async def scenario():
        first = asyncio.create_task(adapter.auto_sync("page-1", units, "book.mp3"))
        await asyncio.sleep(0)
        assert adapter.is_running("page-1")
        with pytest.raises(AlignmentInProgressError):
            await adapter.auto_sync("page-1", units, "book.mp3")
        release.set()
        return await first

    result = asyncio.run(scenario())
    assert result.method == "slow"
    assert not adapter.is_running("page-1")


def test_linear_spread_by_character_count():
    units = [
        SyncUnit("a", SyncLevel.SENTENCE, None, "ab", 1, 0),
        SyncUnit("b", SyncLevel.SENTENCE, None, "abcde", 1, 1),
    ]
    result = LinearSpreadStrategy().align(units, "x.mp3", AlignmentOptions(window_end=7.0))
    assert result.synced == [("a", 0.0, 2.0), ("b", 2.0, 7.0)]
    assert result.skipped == []


def test_linear_spread_uses_duration_provider_and_window_start():
    units = [SyncUnit("a", SyncLevel.SENTENCE, None, "abc", 1, 0)]
    strategy = LinearSpreadStrategy(duration_provider=lambda path: 12.5)
    result = strategy.align(units, "x.mp3", AlignmentOptions(window_start=2.5))
    assert result.synced == [("a", 2.5, 12.5)]


def test_linear_spread_rejects_empty_window():
    units = [SyncUnit("a", SyncLevel.SENTENCE, None, "abc", 1, 0)]
    with pytest.raises(AlignmentError) as excinfo:
        LinearSpreadStrategy().align(units, "x.mp3", AlignmentOptions(window_start=5.0, window_end=5.0))
    assert not excinfo.value.retryable


def test_transcript_matcher_skips_unspoken_units():
    units = [
        SyncUnit("s1", SyncLevel.SENTENCE, None, "Hi, there!", 1, 0),
        SyncUnit("caption", SyncLevel.SENTENCE, None, "Illustration credits follow", 1, 1),
        SyncUnit("s2", SyncLevel.SENTENCE, None, "The cat sat.", 1, 2),
    ]
    words = [
        ("Hi", 0.0, 0.3), ("there", 0.3, 0.8),
        ("The", 1.0, 1.2), ("cat", 1.2, 1.5), ("sat.", 1.5, 1.9),
    ]
    transcript = TranscriptMatcher(lookahead_words=10, min_ratio=0.6).match(units, words)
    assert [(s.unit_id, s.start, s.end) for s in transcript.segments] == [
        ("s1", 0.0, 0.8),
        ("s2", 1.0, 1.9),
    ]
    assert transcript.skipped_ids == ["caption"]


def test_transcript_matcher_with_no_words_skips_everything():
    units = [SyncUnit("s1", SyncLevel.SENTENCE, None, "Hello", 1, 0)]
    transcript = TranscriptMatcher().match(units, [])
    assert transcript.segments == []
    assert transcript.skipped_ids == ["s1"]
