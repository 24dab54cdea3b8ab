"""
Property-based tests for the bulk import service.

IANA is replaced by an in-memory discovery fake, so every poll is
deterministic and no network is touched.
"""

import asyncio
import tempfile
import threading
from pathlib import Path
from typing import Optional

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from domain_resolver.enums import ImportStatus, ImportType, ServerSource
from domain_resolver.exceptions import (
    ImportConflictError,
    ImportNotFoundError,
    NetworkError,
    ValidationError,
)
from domain_resolver.iana_discovery import BootstrapData, TldListData
from domain_resolver.import_log import ImportLogStore
from domain_resolver.models import TldServerEntry
from domain_resolver.tld_directory import TldServerDirectory
from domain_resolver.bulk_import import BulkImportService


SECRET = "bulk-import-test-secret-0123456789"


class FakeDiscovery:
    """In-memory stand-in for IanaDiscoveryClient."""

    def __init__(
        self,
        tlds: Optional[list[str]] = None,
        tld_version: str = "2026101800",
        services: Optional[dict[str, list[str]]] = None,
        publication: str = "2026-10-18T00:00:00Z",
        whois: Optional[dict[str, str]] = None,
        pages: Optional[dict[str, dict]] = None,
    ) -> None:
        self.tlds = tlds if tlds is not None else ["com", "net", "org"]
        self.tld_version = tld_version
        self.services = services if services is not None else {
            "com": ["https://rdap.verisign.test/com/v1/"],
            "net": ["https://rdap.verisign.test/net/v1/"],
        }
        self.publication = publication
        self.whois = whois or {}
        self.pages = pages or {}
        self.tld_list_down = False
        self.bootstrap_down = False
        self.tld_list_fetches = 0
        self.fail_once: set[str] = set()

    async def fetch_tld_list(self) -> TldListData:
        self.tld_list_fetches += 1
        if self.tld_list_down:
            raise NetworkError(code="iana_unreachable", message="TLD list unreachable")
        return TldListData(version=self.tld_version, last_updated=None, tlds=list(self.tlds))

    async def fetch_bootstrap(self, force: bool = False) -> BootstrapData:
        if self.bootstrap_down:
            raise NetworkError(code="iana_unreachable", message="bootstrap unreachable")
        return BootstrapData(publication=self.publication, services=dict(self.services))

    async def lookup_iana_whois(self, tld: str) -> Optional[str]:
        if tld in self.fail_once:
            self.fail_once.discard(tld)
            raise RuntimeError(f"connection reset while querying {tld}")
        return self.whois.get(tld)

    async def fetch_root_db_page(self, tld: str) -> dict:
        return self.pages.get(tld, {})


def _service(tmpdir: str, discovery: FakeDiscovery, batch_size: int = 2) -> BulkImportService:
    return BulkImportService(
        directory=TldServerDirectory(Path(tmpdir) / "tld_servers.json", SECRET),
        log_store=ImportLogStore(Path(tmpdir) / "import_logs.json", SECRET),
        discovery=discovery,
        batch_size=batch_size,
    )


def _directory(tmpdir: str) -> TldServerDirectory:
    return TldServerDirectory(Path(tmpdir) / "tld_servers.json", SECRET)


def _drain(service: BulkImportService, log_id: int, limit: int = 100) -> list:
    results = []
    for _ in range(limit):
        result = asyncio.run(service.process_next_batch(log_id))
        results.append(result)
        if result.status != ImportStatus.RUNNING:
            break
    return results


class TestStartImport:
    """Opening runs."""

    def test_unknown_type_is_validation_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ValidationError) as exc_info:
                _service(tmpdir, FakeDiscovery()).start_import("everything")
            assert exc_info.value.code == "unknown_import_type"

    def test_string_type_accepted(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            log = _service(tmpdir, FakeDiscovery()).start_import("TLD_LIST")
            assert log.import_type == ImportType.TLD_LIST
            assert log.status == ImportStatus.RUNNING

    def test_duplicate_running_import_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            service = _service(tmpdir, FakeDiscovery())
            service.start_import(ImportType.RDAP)
            with pytest.raises(ImportConflictError):
                service.start_import(ImportType.RDAP)

    def test_concurrent_start_across_services(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            workers = 4
            barrier = threading.Barrier(workers)
            started: list[int] = []
            rejected: list[int] = []

            def start() -> None:
                service = _service(tmpdir, FakeDiscovery())
                barrier.wait()
                try:
                    started.append(service.start_import(ImportType.TLD_LIST).id)
                except ImportConflictError:
                    rejected.append(1)

            threads = [threading.Thread(target=start) for _ in range(workers)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            assert len(started) == 1
            assert len(rejected) == workers - 1

    def test_unknown_log_id(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ImportNotFoundError):
                asyncio.run(_service(tmpdir, FakeDiscovery()).process_next_batch(99))


class TestBatching:
    """Cursor advances by at most batch_size per poll."""

    @given(
        count=st.integers(min_value=0, max_value=30),
        batch_size=st.integers(min_value=1, max_value=7),
    )
    @settings(max_examples=50, deadline=None)
    def test_tld_list_batches(self, count: int, batch_size: int) -> None:
        tlds = [f"t{i:02d}" for i in range(count)]
        with tempfile.TemporaryDirectory() as tmpdir:
            service = _service(tmpdir, FakeDiscovery(tlds=tlds), batch_size=batch_size)
            log = service.start_import(ImportType.TLD_LIST)

            results = _drain(service, log.id)

            assert all(r.processed <= batch_size for r in results)
            assert sum(r.processed for r in results) == count
            assert results[-1].status == ImportStatus.COMPLETE
            assert results[-1].remaining == 0

            final = service.log_store.get(log.id)
            assert final.cursor == count
            assert final.total == count
            assert final.new == count
            assert [e.tld for e in _directory(tmpdir).list_entries()] == ["." + t for t in tlds]

    def test_input_set_captured_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            discovery = FakeDiscovery(tlds=["a1", "a2", "a3"])
            service = _service(tmpdir, discovery, batch_size=1)
            log = service.start_import(ImportType.TLD_LIST)

            asyncio.run(service.process_next_batch(log.id))
            discovery.tlds = ["zz"]
            _drain(service, log.id)

            assert discovery.tld_list_fetches == 1
            assert _directory(tmpdir).get("zz") is None
            assert service.log_store.get(log.id).total == 3

    def test_existing_entries_are_unchanged(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            _directory(tmpdir).upsert(TldServerEntry(tld=".com", whois_server="whois.verisign.test"))
            service = _service(tmpdir, FakeDiscovery(), batch_size=10)
            log = service.start_import(ImportType.TLD_LIST)
            _drain(service, log.id)

            final = service.log_store.get(log.id)
            assert final.new == 2
            assert final.processed == 3
            assert _directory(tmpdir).get("com").whois_server == "whois.verisign.test"
            assert _directory(tmpdir).get_version("tld_list") == "2026101800"

    def test_repoll_of_finished_import_is_idempotent(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            service = _service(tmpdir, FakeDiscovery(), batch_size=10)
            log = service.start_import(ImportType.TLD_LIST)
            _drain(service, log.id)
            before = service.log_store.get(log.id)

            again = asyncio.run(service.process_next_batch(log.id))

            assert again.status == ImportStatus.COMPLETE
            assert again.processed == 0
            assert service.log_store.get(log.id).processed == before.processed

    def test_another_service_instance_resumes(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            discovery = FakeDiscovery(tlds=["a1", "a2", "a3", "a4"])
            log = _service(tmpdir, discovery, batch_size=2).start_import(ImportType.TLD_LIST)

            asyncio.run(_service(tmpdir, discovery, batch_size=2).process_next_batch(log.id))
            result = asyncio.run(_service(tmpdir, discovery, batch_size=2).process_next_batch(log.id))

            assert result.status == ImportStatus.COMPLETE
            assert len(_directory(tmpdir).list_entries()) == 4

    def test_retry_after_unit_error_counts_each_unit_once(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            directory = _directory(tmpdir)
            for tld in ("a1", "a2", "a3", "a4"):
                directory.ensure(tld)
            discovery = FakeDiscovery(whois={t: f"whois.nic.{t}.test" for t in ("a1", "a2", "a3", "a4")})
            discovery.fail_once = {"a3"}
            service = _service(tmpdir, discovery, batch_size=10)
            log = service.start_import(ImportType.WHOIS)

            with pytest.raises(RuntimeError):
                asyncio.run(service.process_next_batch(log.id))

            checkpoint = service.log_store.get(log.id)
            assert checkpoint.status == ImportStatus.RUNNING
            assert (checkpoint.cursor, checkpoint.processed, checkpoint.updated) == (2, 2, 2)

            retry = asyncio.run(service.process_next_batch(log.id))

            assert retry.status == ImportStatus.COMPLETE
            assert retry.processed == 2
            final = service.log_store.get(log.id)
            assert (final.cursor, final.processed, final.updated, final.failed) == (4, 4, 4, 0)
            assert _directory(tmpdir).get("a3").whois_server == "whois.nic.a3.test"

    def test_overlapping_poll_does_no_work(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            service = _service(tmpdir, FakeDiscovery(), batch_size=10)
            log = service.start_import(ImportType.TLD_LIST)
            service.log_store.claim_batch(log.id)

            result = asyncio.run(_service(tmpdir, FakeDiscovery(), batch_size=10).process_next_batch(log.id))

            assert result.status == ImportStatus.RUNNING
            assert result.processed == 0
            assert _directory(tmpdir).list_entries() == []
            assert service.log_store.get(log.id).processed == 0

    def test_finished_logs_drop_captured_inputs(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            service = _service(tmpdir, FakeDiscovery(), batch_size=10)
            log = service.start_import(ImportType.TLD_LIST)
            _drain(service, log.id)

            final = service.log_store.get(log.id)
            assert final.status == ImportStatus.COMPLETE
            assert "items" not in final.details
            assert final.total == 3
            assert final.details["source_version"] == "2026101800"

    def test_failed_log_drops_captured_inputs(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            discovery = FakeDiscovery()
            service = _service(tmpdir, discovery, batch_size=1)
            log = service.start_import(ImportType.COMPLETE_WORKFLOW)
            asyncio.run(service.process_next_batch(log.id))
            assert service.log_store.get(log.id).details["phase_items"]

            discovery.bootstrap_down = True
            results = _drain(service, log.id)

            assert results[-1].status == ImportStatus.FAILED
            stored = service.log_store.get(log.id)
            assert "phase_items" not in stored.details
            assert "items" not in stored.details


class TestImportTypes:
    """Per-type unit semantics."""

    def test_rdap_import(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            _directory(tmpdir).upsert(TldServerEntry(tld=".com", whois_server="whois.verisign.test"))
            _directory(tmpdir).upsert(TldServerEntry(
                tld=".net", rdap_base_url="https://rdap.verisign.test/net/v1/",
            ))
            discovery = FakeDiscovery(services={
                "com": ["https://rdap.verisign.test/com/v1/"],
                "net": ["https://rdap.verisign.test/net/v1/"],
                "app": ["https://rdap.google.test/"],
            })
            service = _service(tmpdir, discovery, batch_size=10)
            log = service.start_import(ImportType.RDAP)
            _drain(service, log.id)

            final = service.log_store.get(log.id)
            assert (final.new, final.updated, final.processed) == (1, 1, 3)

            com = _directory(tmpdir).get("com")
            assert com.rdap_base_url == "https://rdap.verisign.test/com/v1/"
            assert com.whois_server == "whois.verisign.test"
            assert com.source == ServerSource.IANA_RDAP
            assert _directory(tmpdir).get_version("rdap") == "2026-10-18T00:00:00Z"

    def test_whois_import_uses_html_fallback(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            directory = _directory(tmpdir)
            directory.upsert(TldServerEntry(tld=".com"))
            directory.upsert(TldServerEntry(tld=".de"))
            directory.upsert(TldServerEntry(tld=".xx"))
            directory.upsert(TldServerEntry(tld=".io", whois_server="whois.nic.io"))
            directory.upsert(TldServerEntry(tld=".off"))
            directory.set_active(".off", False)

            discovery = FakeDiscovery(
                whois={"com": "WHOIS.VERISIGN.TEST"},
                pages={"de": {"whois_server": "whois.denic.test", "registry_url": "https://denic.test/"}},
            )
            service = _service(tmpdir, discovery, batch_size=10)
            log = service.start_import(ImportType.WHOIS)
            _drain(service, log.id)

            final = service.log_store.get(log.id)
            assert final.total == 3
            assert (final.updated, final.failed) == (2, 1)

            directory = _directory(tmpdir)
            assert directory.get("com").whois_server == "whois.verisign.test"
            assert directory.get("com").source == ServerSource.IANA_WHOIS
            assert directory.get("de").source == ServerSource.IANA_HTML
            assert directory.get("de").registry_url == "https://denic.test/"
            assert directory.get("off").whois_server is None

    def test_setup_failure_marks_log_failed(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            discovery = FakeDiscovery()
            discovery.tld_list_down = True
            service = _service(tmpdir, discovery)
            log = service.start_import(ImportType.TLD_LIST)

            result = asyncio.run(service.process_next_batch(log.id))

            assert result.status == ImportStatus.FAILED
            assert "TLD list unreachable" in result.message
            stored = service.log_store.get(log.id)
            assert stored.status == ImportStatus.FAILED
            assert stored.error_message == result.message
            # The failed run no longer blocks a new one
            assert service.start_import(ImportType.TLD_LIST).id != log.id


class TestCompleteWorkflow:
    """tld_list, then rdap, then whois under one log."""

    def test_phases_run_in_order(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            discovery = FakeDiscovery(
                tlds=["com", "net", "org"],
                whois={"org": "whois.pir.test"},
            )
            service = _service(tmpdir, discovery, batch_size=2)
            log = service.start_import(ImportType.COMPLETE_WORKFLOW)

            results = _drain(service, log.id)

            assert results[-1].status == ImportStatus.COMPLETE
            final = service.log_store.get(log.id)
            assert final.details["completed_phases"] == ["tld_list", "rdap", "whois"]
            assert "phase_items" not in final.details
            # 3 TLDs, 2 RDAP services, then the 3 entries still without WHOIS
            assert final.total == 3 + 2 + 3
            assert final.cursor == final.total

            directory = _directory(tmpdir)
            assert directory.get("com").rdap_base_url == "https://rdap.verisign.test/com/v1/"
            assert directory.get("org").whois_server == "whois.pir.test"
            assert directory.get_version("tld_list") == "2026101800"
            assert directory.get_version("rdap") == "2026-10-18T00:00:00Z"

    def test_no_poll_exceeds_batch_size(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            service = _service(tmpdir, FakeDiscovery(tlds=[f"t{i}" for i in range(7)]), batch_size=3)
            log = service.start_import(ImportType.COMPLETE_WORKFLOW)

            results = _drain(service, log.id)
            assert all(r.processed <= 3 for r in results)
            assert results[-1].status == ImportStatus.COMPLETE

    @given(
        count=st.integers(min_value=0, max_value=6),
        batch_size=st.integers(min_value=1, max_value=4),
    )
    @settings(max_examples=20, deadline=None)
    def test_remaining_is_zero_only_at_the_end(self, count: int, batch_size: int) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            discovery = FakeDiscovery(tlds=[f"t{i}" for i in range(count)])
            service = _service(tmpdir, discovery, batch_size=batch_size)
            log = service.start_import(ImportType.COMPLETE_WORKFLOW)

            results = _drain(service, log.id)

            assert results[-1].status == ImportStatus.COMPLETE
            assert results[-1].remaining == 0
            assert all(r.remaining > 0 for r in results[:-1])


class TestCheckUpdates:
    """Version comparison against the directory's markers."""

    def test_fresh_directory_needs_update(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            check = asyncio.run(_service(tmpdir, FakeDiscovery()).check_for_updates())

            assert check.needs_update
            assert check.details["tld_list"] == {"current_version": "2026101800", "last_version": None}
            assert check.errors == []

    def test_current_directory_needs_nothing(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            directory = _directory(tmpdir)
            directory.set_version("tld_list", "2026101800")
            directory.set_version("rdap", "2026-10-18T00:00:00Z")

            check = asyncio.run(_service(tmpdir, FakeDiscovery()).check_for_updates())
            assert not check.needs_update

    def test_check_updates_import_records_result(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            discovery = FakeDiscovery()
            discovery.bootstrap_down = True
            service = _service(tmpdir, discovery)
            log = service.start_import(ImportType.CHECK_UPDATES)

            result = asyncio.run(service.process_next_batch(log.id))

            assert result.status == ImportStatus.COMPLETE
            stored = service.log_store.get(log.id)
            assert stored.details["needs_update"] is True
            assert stored.failed == 1
            assert len(stored.details["errors"]) == 1
            # The directory is not modified by a check
            assert _directory(tmpdir).list_entries() == []

    def test_both_sources_down_fails_import(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            discovery = FakeDiscovery()
            discovery.bootstrap_down = True
            discovery.tld_list_down = True
            service = _service(tmpdir, discovery)
            log = service.start_import(ImportType.CHECK_UPDATES)

            result = asyncio.run(service.process_next_batch(log.id))
            assert result.status == ImportStatus.FAILED


class TestLogQueries:
    """Listing helpers delegate to the log store."""

    def test_list_and_statistics(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            service = _service(tmpdir, FakeDiscovery(), batch_size=10)
            log = service.start_import(ImportType.TLD_LIST)
            _drain(service, log.id)
            service.start_import(ImportType.RDAP)

            assert [entry.import_type for entry in service.list_logs()] == [
                ImportType.RDAP, ImportType.TLD_LIST,
            ]
            stats = service.get_import_statistics()
            assert stats["by_status"]["complete"] == 1
            assert stats["by_status"]["running"] == 1
