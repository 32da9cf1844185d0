"""
Index Manager Tests - Verify build/update/delete lifecycle and index search.

Tests:
- Full builds (scope, events, size cap, cancellation)
- Incremental updates (idempotence, changes, removals)
- Index queries (AND of terms, ranking, filters, regex, case)
- Lifecycle (delete, reload, version mismatch, storage failure)
"""

import dataclasses
import os
import sqlite3
import threading

import pytest

from filesearch.config import IndexConfiguration
from filesearch.errors import IndexStorageError, IndexUnavailableError, InvalidQueryError
from filesearch.events import IndexCompleted, IndexFailed, IndexProgress
from filesearch.manager import IndexManager, combine_scores
from filesearch.models import IndexState, MatchType, SearchOptions


def content_search(term: str, **kwargs) -> SearchOptions:
    return SearchOptions(search_term=term, search_in_name=False, **kwargs)


class EventRecorder:
    def __init__(self, manager: IndexManager):
        self.events = []
        manager.subscribe(self.events.append)

    def of_type(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]


class TestBuild:
    """Tests for IndexManager.build_index."""

    @pytest.mark.asyncio
    async def test_build_indexes_scope(self, manager, sample_files):
        """Eligible files are indexed; hidden and excluded directories are not."""
        stats = await manager.build_index()

        status = manager.get_status()
        assert status.state == IndexState.AVAILABLE
        assert status.is_available
        assert not status.is_building
        assert status.document_count == 4
        assert stats.files_indexed == 4

        paths = manager.store.indexed_paths()
        assert str(sample_files["nested"]) in paths
        assert str(sample_files["hidden"]) not in paths
        assert str(sample_files["node_modules"]) not in paths

    @pytest.mark.asyncio
    async def test_index_file_not_indexed(self, manager, sample_files, test_config):
        """The index database never indexes itself."""
        await manager.build_index()
        await manager.update_index()

        assert not any(p.startswith(str(test_config.index_path)) for p in manager.store.indexed_paths())

    @pytest.mark.asyncio
    async def test_events(self, manager, sample_files):
        """At least one progress event per file and exactly one completion."""
        recorder = EventRecorder(manager)

        await manager.build_index()

        progress = recorder.of_type(IndexProgress)
        completed = recorder.of_type(IndexCompleted)
        assert len(progress) >= 4
        assert [e.documents_processed for e in progress] == sorted(e.documents_processed for e in progress)
        assert len(completed) == 1
        assert completed[0].total_documents == 4
        assert recorder.events[-1] is completed[0]
        assert not recorder.of_type(IndexFailed)

    @pytest.mark.asyncio
    async def test_status_timing_fields(self, manager, sample_files):
        await manager.build_index()

        status = manager.get_status()
        assert status.created is not None
        assert status.last_updated is not None
        assert status.files_processed == 4
        assert status.progress_percentage == 100
        assert status.index_size > 0
        assert status.version

    @pytest.mark.asyncio
    async def test_revenue_scenario(self, manager, temp_dir, make_pdf):
        """Content search finds both a text file and a PDF."""
        (temp_dir / "report.txt").write_text("quarterly revenue")
        make_pdf("notes.pdf", "revenue projections")
        await manager.build_index()

        results = await manager.search_index(content_search("revenue"))

        by_name = {r.name: r for r in results}
        assert set(by_name) == {"report.txt", "notes.pdf"}
        assert all(r.match_type == MatchType.CONTENT for r in results)
        scores = [r.relevance_score for r in results]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_oversize_file_matches_by_name_only(self, temp_dir, test_config):
        """Content of files above max_file_size is skipped, names still match."""
        config = dataclasses.replace(test_config, max_file_size=1024)
        big = temp_dir / "budget_forecast.txt"
        big.write_text("zebra " * 341 + "ab")   # 2048 bytes
        assert big.stat().st_size == 2048

        manager = IndexManager(config)
        try:
            stats = await manager.build_index()

            assert stats.content_skipped == 1
            assert await manager.search_index(content_search("zebra")) == []
            results = await manager.search_index(SearchOptions(search_term="budget"))
            assert [r.path for r in results] == [str(big)]
            assert results[0].match_type == MatchType.NAME
        finally:
            manager.close()

    @pytest.mark.asyncio
    async def test_names_only_index(self, temp_dir, test_config):
        """index_content=False still indexes file names."""
        config = dataclasses.replace(test_config, index_content=False)
        (temp_dir / "invoice.txt").write_text("payment overdue")

        manager = IndexManager(config)
        try:
            await manager.build_index()
            assert await manager.search_index(content_search("payment")) == []
            assert len(await manager.search_index(SearchOptions(search_term="invoice"))) == 1
        finally:
            manager.close()

    @pytest.mark.asyncio
    async def test_cancel_after_n_files(self, temp_dir, test_config):
        """Cancelling after N of M files leaves N documents and no completion event."""
        for i in range(10):
            (temp_dir / f"file{i:02d}.txt").write_text(f"document number {i}")
        config = dataclasses.replace(test_config, extractor_concurrency=1)
        manager = IndexManager(config)
        cancel = threading.Event()
        recorder = EventRecorder(manager)

        def stop_after_three(event: IndexProgress):
            if event.documents_processed == 3:
                cancel.set()

        manager.subscribe(stop_after_three, IndexProgress)
        try:
            stats = await manager.build_index(cancel=cancel)

            status = manager.get_status()
            assert stats.cancelled
            assert status.document_count == 3
            assert status.state == IndexState.AVAILABLE
            assert recorder.of_type(IndexCompleted) == []
            assert recorder.of_type(IndexFailed) == []
        finally:
            manager.close()

    @pytest.mark.asyncio
    async def test_max_documents(self, temp_dir, test_config):
        for i in range(5):
            (temp_dir / f"note{i}.txt").write_text("capped")
        config = dataclasses.replace(test_config, max_documents=2)
        manager = IndexManager(config)
        try:
            stats = await manager.build_index()

            assert manager.get_status().document_count == 2
            assert stats.files_skipped == 3
        finally:
            manager.close()


class TestUpdate:
    """Tests for IndexManager.update_index."""

    @pytest.mark.asyncio
    async def test_unchanged_postings_identical(self, manager, sample_files):
        """Documents with unchanged fingerprints keep identical postings."""
        await manager.build_index()
        doc = manager.store.get_by_path(sample_files["txt"])
        before = manager.store.postings_for(doc.id)

        stats = await manager.update_index()

        assert stats.files_unchanged == 4
        assert stats.files_indexed == 0
        assert manager.store.get_by_path(sample_files["txt"]).id == doc.id
        assert manager.store.postings_for(doc.id) == before

    @pytest.mark.asyncio
    async def test_modified_file_reindexed(self, manager, sample_files):
        await manager.build_index()
        sample_files["txt"].write_text("Entirely rewritten about photosynthesis, and longer than before.")

        stats = await manager.update_index()

        assert stats.files_indexed == 1
        assert len(await manager.search_index(content_search("photosynthesis"))) == 1
        assert await manager.search_index(content_search("purposes")) == []

    @pytest.mark.asyncio
    async def test_removed_file_never_returned(self, manager, sample_files):
        await manager.build_index()
        assert await manager.search_index(content_search("deeply"))
        sample_files["nested"].unlink()

        stats = await manager.update_index()

        assert stats.files_removed == 1
        assert await manager.search_index(content_search("deeply")) == []
        assert manager.get_status().document_count == 3

    @pytest.mark.asyncio
    async def test_new_file_added(self, manager, sample_files, temp_dir):
        await manager.build_index()
        (temp_dir / "fresh.txt").write_text("newly created kangaroo notes")

        await manager.update_index()

        results = await manager.search_index(content_search("kangaroo"))
        assert [r.name for r in results] == ["fresh.txt"]

    @pytest.mark.asyncio
    async def test_out_of_scope_removed(self, manager, sample_files, test_config):
        """Files no longer eligible under the new configuration are removed."""
        await manager.build_index()
        manager.reconfigure(dataclasses.replace(
            test_config,
            excluded_extensions=test_config.excluded_extensions | {".md"},
        ))

        stats = await manager.update_index()

        assert stats.files_removed == 1
        assert str(sample_files["md"]) not in manager.store.indexed_paths()

    @pytest.mark.asyncio
    async def test_update_without_index_builds(self, manager, sample_files):
        recorder = EventRecorder(manager)

        await manager.update_index()

        assert manager.state == IndexState.AVAILABLE
        assert manager.get_status().document_count == 4
        assert len(recorder.of_type(IndexCompleted)) == 1


class TestSearch:
    """Tests for IndexManager.search_index."""

    @pytest.fixture
    def corpus(self, temp_dir):
        files = {
            "both": ("revenue.txt", "revenue figures for the year"),
            "content": ("summary.txt", "the revenue grew this year"),
            "name": ("revenue_plan.md", "nothing relevant in here"),
            "other": ("unrelated.txt", "completely unrelated text"),
        }
        paths = {}
        for key, (name, text) in files.items():
            path = temp_dir / name
            path.write_text(text)
            paths[key] = path
        return paths

    @pytest.mark.asyncio
    async def test_match_types_and_ranking(self, manager, corpus):
        """Name+content ranks above either alone."""
        await manager.build_index()

        results = await manager.search_index(SearchOptions(search_term="revenue"))

        by_path = {r.path: r for r in results}
        assert by_path[str(corpus["both"])].match_type == MatchType.BOTH
        assert by_path[str(corpus["content"])].match_type == MatchType.CONTENT
        assert by_path[str(corpus["name"])].match_type == MatchType.NAME
        assert str(corpus["other"]) not in by_path
        assert results[0].path == str(corpus["both"])

    @pytest.mark.asyncio
    async def test_both_fields_outrank_single_field(self, manager, temp_dir):
        """Length normalization never pulls a name+content hit below a content-only hit."""
        long_name = "revenue_" + "_".join(f"w{i}" for i in range(30)) + ".txt"
        (temp_dir / long_name).write_text("revenue " + "filler " * 15000)
        (temp_dir / "summary.txt").write_text("revenue " * 50)
        for i in range(10):
            (temp_dir / f"short{i}.txt").write_text("brief note")
        await manager.build_index()

        results = await manager.search_index(SearchOptions(search_term="revenue"))

        assert [(r.name, r.match_type) for r in results] == [
            (long_name, MatchType.BOTH),
            ("summary.txt", MatchType.CONTENT),
        ]
        assert combine_scores(0.001, 0.001, True) > combine_scores(0.0, 0.999, False)

    @pytest.mark.asyncio
    async def test_and_of_terms(self, manager, corpus):
        await manager.build_index()

        results = await manager.search_index(content_search("revenue grew"))

        assert [r.path for r in results] == [str(corpus["content"])]

    @pytest.mark.asyncio
    async def test_term_frequency_orders_results(self, manager, temp_dir):
        (temp_dir / "a.txt").write_text("apple apple apple pear")
        (temp_dir / "b.txt").write_text("apple pear pear pear")
        await manager.build_index()

        results = await manager.search_index(content_search("apple"))

        assert [r.name for r in results] == ["a.txt", "b.txt"]
        assert results[0].relevance_score > results[1].relevance_score

    @pytest.mark.asyncio
    async def test_max_results(self, manager, temp_dir):
        for i in range(20):
            (temp_dir / f"doc{i}.txt").write_text("common term")
        await manager.build_index()

        results = await manager.search_index(content_search("common", max_results=5))

        assert len(results) == 5

    @pytest.mark.asyncio
    async def test_filters(self, manager, corpus, temp_dir):
        sub = temp_dir / "archive"
        sub.mkdir()
        (sub / "old.log").write_text("revenue log line")
        await manager.build_index()

        by_ext = await manager.search_index(SearchOptions(search_term="revenue", include_extensions=frozenset({"md"})))
        assert [r.path for r in by_ext] == [str(corpus["name"])]

        by_dir = await manager.search_index(SearchOptions(search_term="revenue", include_directories=(sub,)))
        assert [r.name for r in by_dir] == ["old.log"]

        excluded = await manager.search_index(
            SearchOptions(search_term="revenue", exclude_directories=frozenset({"archive"}))
        )
        assert "old.log" not in {r.name for r in excluded}

        small = await manager.search_index(SearchOptions(search_term="revenue", max_file_size=17))
        assert {r.name for r in small} == {"old.log"}

    @pytest.mark.asyncio
    async def test_case_sensitive(self, manager, temp_dir):
        (temp_dir / "upper.txt").write_text("Revenue report")
        (temp_dir / "lower.txt").write_text("revenue report")
        await manager.build_index()

        insensitive = await manager.search_index(content_search("Revenue"))
        sensitive = await manager.search_index(content_search("Revenue", case_sensitive=True))

        assert {r.name for r in insensitive} == {"upper.txt", "lower.txt"}
        assert [r.name for r in sensitive] == ["upper.txt"]

    @pytest.mark.asyncio
    async def test_case_sensitive_terms_need_not_be_adjacent(self, manager, temp_dir):
        (temp_dir / "report.txt").write_text("Quarterly figures.\nRevenue went up.")
        (temp_dir / "folded.txt").write_text("quarterly figures.\nRevenue went up.")
        await manager.build_index()

        results = await manager.search_index(content_search("Quarterly Revenue", case_sensitive=True))

        assert [r.name for r in results] == ["report.txt"]

    @pytest.mark.asyncio
    async def test_regex(self, manager, corpus):
        await manager.build_index()

        results = await manager.search_index(content_search(r"rev\w+ (grew|figures)", use_regex=True))

        assert {r.path for r in results} == {str(corpus["both"]), str(corpus["content"])}

    @pytest.mark.asyncio
    async def test_invalid_regex(self, manager, corpus):
        await manager.build_index()

        with pytest.raises(InvalidQueryError):
            await manager.search_index(SearchOptions(search_term="(unclosed", use_regex=True))

    @pytest.mark.asyncio
    async def test_excerpts(self, manager, temp_dir):
        (temp_dir / "log.txt").write_text("first line\nsecond has revenue\nthird line")
        await manager.build_index()

        [result] = await manager.search_index(content_search("revenue"))

        assert result.matching_lines == ["second has revenue"]
        assert "revenue" in result.content
        assert result.match_count == 1
        assert result.source == "index"

    @pytest.mark.asyncio
    async def test_unavailable_before_build(self, manager):
        with pytest.raises(IndexUnavailableError):
            await manager.search_index(SearchOptions(search_term="anything"))


class TestLifecycle:
    """Tests for delete, reload, compaction and failures."""

    @pytest.mark.asyncio
    async def test_delete(self, manager, sample_files, test_config):
        await manager.build_index()

        await manager.delete_index()

        assert manager.state == IndexState.EMPTY
        assert manager.get_status().document_count == 0
        assert not test_config.index_path.exists()
        with pytest.raises(IndexUnavailableError):
            await manager.search_index(SearchOptions(search_term="sample"))

    @pytest.mark.asyncio
    async def test_status_is_snapshot(self, manager, sample_files):
        before = manager.get_status()

        await manager.build_index()

        assert before.state == IndexState.EMPTY
        with pytest.raises(dataclasses.FrozenInstanceError):
            manager.get_status().document_count = 0

    @pytest.mark.asyncio
    async def test_reload_existing_index(self, manager, sample_files, test_config):
        await manager.build_index()
        manager.close()

        reopened = IndexManager(test_config)
        try:
            assert reopened.state == IndexState.AVAILABLE
            assert reopened.get_status().document_count == 4
            results = await reopened.search_index(content_search("deeply"))
            assert len(results) == 1
        finally:
            reopened.close()

    def test_version_mismatch_starts_empty(self, test_config):
        conn = sqlite3.connect(str(test_config.index_path))
        conn.execute("CREATE TABLE meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)")
        conn.execute("INSERT INTO meta VALUES ('schema_version', 'ancient')")
        conn.commit()
        conn.close()

        manager = IndexManager(test_config)
        try:
            assert manager.state == IndexState.EMPTY
            assert manager.store.get_meta("schema_version") != "ancient"
        finally:
            manager.close()

    @pytest.mark.asyncio
    async def test_compact(self, manager, sample_files):
        await manager.build_index()
        sample_files["txt"].unlink()
        await manager.update_index()

        purged = await manager.compact()

        assert purged == 1
        assert manager.store.tombstone_count() == 0

    @pytest.mark.asyncio
    async def test_storage_failure(self, temp_dir, sample_files):
        """Unwritable storage: ERROR state, one IndexFailed, IndexStorageError."""
        blocker = temp_dir / "blocker"
        blocker.write_text("a file where a directory should be")
        config = IndexConfiguration(
            indexed_directories=[temp_dir],
            index_path=blocker / "index.db",
        )
        manager = IndexManager(config)
        recorder = EventRecorder(manager)
        try:
            with pytest.raises(IndexStorageError):
                await manager.build_index()

            status = manager.get_status()
            assert status.state == IndexState.ERROR
            assert status.error_message
            assert len(recorder.of_type(IndexFailed)) == 1
            assert recorder.of_type(IndexCompleted) == []
        finally:
            manager.close()

    @pytest.mark.asyncio
    async def test_content_fingerprints(self, temp_dir, test_config):
        """Content digests detect edits that keep size and mtime."""
        config = dataclasses.replace(test_config, fingerprint_content=True)
        path = temp_dir / "same_size.txt"
        path.write_text("alpha")
        manager = IndexManager(config)
        try:
            await manager.build_index()
            st = path.stat()
            path.write_text("omega")
            os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns))

            stats = await manager.update_index()

            assert stats.files_indexed == 1
            assert len(await manager.search_index(content_search("omega"))) == 1
        finally:
            manager.close()
