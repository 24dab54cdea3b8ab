"""
Bulk Import Service for the TLD directory.

Populates and refreshes the TLD directory from IANA sources in small,
resumable batches. An import is opened with ``start_import`` and then
driven by repeated ``process_next_batch`` polls; the ImportLog cursor is
the only progress state, so any process may take over the next poll.

The input set of a run is captured into the log on its first batch so the
cursor always indexes the same list, however long the run takes.
"""

from typing import Optional, Union

from domain_resolver.audit_logger import AuditLogger
from domain_resolver.config import SystemConfig
from domain_resolver.enums import ImportStatus, ImportType, ServerSource
from domain_resolver.exceptions import (
    ImportSetupError,
    NetworkError,
    PersistenceError,
    ProtocolError,
    ValidationError,
)
from domain_resolver.iana_discovery import IanaDiscoveryClient
from domain_resolver.import_log import ImportLogStore
from domain_resolver.models import BatchResult, DiscoveryResult, ImportLog, UpdateCheckResult
from domain_resolver.tld_directory import TldServerDirectory


COMPONENT = "bulk_import"

WORKFLOW_PHASES = (ImportType.TLD_LIST, ImportType.RDAP, ImportType.WHOIS)

# Directory version marker names
TLD_LIST_VERSION = "tld_list"
RDAP_PUBLICATION = "rdap"


def _remaining(log: ImportLog) -> int:
    return max(0, log.total - log.cursor)


def _drop_inputs(log: ImportLog) -> None:
    # Captured input sets are only needed while the run can still advance
    for key in ("items", "phase_items", "phase_version", "phase_cursor"):
        log.details.pop(key, None)


class BulkImportService:
    """
    Checkpointed import workflow.

    At most ``batch_size`` units are processed per poll. Per-unit failures
    are counted and skipped; only setup errors fail the whole run.
    """

    def __init__(
        self,
        directory: TldServerDirectory,
        log_store: ImportLogStore,
        discovery: IanaDiscoveryClient,
        batch_size: int = 25,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")

        self._directory = directory
        self._logs = log_store
        self._discovery = discovery
        self._batch_size = batch_size
        self._logger = logger

    @classmethod
    def from_config(
        cls,
        config: SystemConfig,
        discovery: Optional[IanaDiscoveryClient] = None,
        logger: Optional[AuditLogger] = None,
    ) -> "BulkImportService":
        """Build the service and its stores from SystemConfig."""
        return cls(
            directory=TldServerDirectory(
                config.persistence.directory_file_path,
                config.persistence.hmac_secret,
                logger=logger,
            ),
            log_store=ImportLogStore(
                config.persistence.import_log_file_path,
                config.persistence.hmac_secret,
                stale_after_seconds=config.imports.stale_after_seconds,
                logger=logger,
            ),
            discovery=discovery or IanaDiscoveryClient(
                config=config.iana,
                http_timeout=config.network.http_timeout_seconds,
                user_agent=config.network.user_agent,
                logger=logger,
            ),
            batch_size=config.imports.batch_size,
            logger=logger,
        )

    @property
    def log_store(self) -> ImportLogStore:
        return self._logs

    def start_import(self, import_type: Union[ImportType, str]) -> ImportLog:
        """
        Open a new import run.

        Raises:
            ValidationError: If ``import_type`` is not a known import type
            ImportConflictError: If an import of this type is already running
        """
        if not isinstance(import_type, ImportType):
            try:
                import_type = ImportType(str(import_type).lower())
            except ValueError:
                raise ValidationError(
                    code="unknown_import_type",
                    message=f"Unknown import type: {import_type}",
                    details={"allowed": [t.value for t in ImportType]},
                )

        log = self._logs.create_if_not_running(import_type)
        if self._logger:
            self._logger.info(COMPONENT, "Import started", {
                "log_id": log.id,
                "import_type": import_type.value,
            })
        return log

    async def process_next_batch(self, log_id: int) -> BatchResult:
        """
        Process the next batch of an import.

        Polling a finished log returns its final state without doing work,
        as does a poll that overlaps another one on the same log. If a unit
        raises unexpectedly, the units finished before it are checkpointed
        and the error propagates; the next poll resumes at the failed unit.

        ``remaining`` reaches 0 only when the run has ended: a workflow
        loads the input of its next phase as soon as a phase finishes.

        Raises:
            ImportNotFoundError: If no log has this id
        """
        log, claimed = self._logs.claim_batch(log_id)
        if log.is_terminal:
            return BatchResult(
                log_id=log.id,
                status=log.status,
                processed=0,
                remaining=0,
                message=log.error_message or "Import already finished",
            )
        if not claimed:
            return BatchResult(
                log_id=log.id,
                status=log.status,
                processed=0,
                remaining=_remaining(log),
                message="Another poll is processing this import",
            )

        try:
            if log.import_type == ImportType.CHECK_UPDATES:
                processed = await self._run_check_updates(log)
            elif log.import_type == ImportType.COMPLETE_WORKFLOW:
                processed = await self._run_workflow_batch(log)
            else:
                processed = await self._run_simple_batch(log)
        except ImportSetupError as e:
            return self._fail(log, e.message)
        except Exception:
            self._logs.save(log, release=True)
            raise

        if log.is_terminal:
            _drop_inputs(log)
        self._logs.save(log, release=True)
        remaining = _remaining(log)

        if self._logger:
            self._logger.info(COMPONENT, "Import batch processed", {
                "log_id": log.id,
                "import_type": log.import_type.value,
                "status": log.status.value,
                "processed": processed,
                "remaining": remaining,
                "new": log.new,
                "updated": log.updated,
                "failed": log.failed,
            })

        return BatchResult(
            log_id=log.id,
            status=log.status,
            processed=processed,
            remaining=remaining,
            message="Import complete" if log.status == ImportStatus.COMPLETE else "",
        )

    def _fail(self, log: ImportLog, message: str) -> BatchResult:
        log.status = ImportStatus.FAILED
        log.error_message = message
        _drop_inputs(log)
        self._logs.save(log, release=True)
        if self._logger:
            self._logger.log_error(COMPONENT, "Import failed", additional_data={
                "log_id": log.id,
                "import_type": log.import_type.value,
                "error": message,
            })
        return BatchResult(
            log_id=log.id,
            status=log.status,
            processed=0,
            remaining=0,
            message=message,
        )

    # Input sets

    async def _load_items(self, import_type: ImportType, details: dict) -> list:
        """
        Capture the input set of one import type.

        Version markers of the source are written into ``details``.

        Raises:
            ImportSetupError: If the source cannot be read
        """
        try:
            if import_type == ImportType.TLD_LIST:
                tld_list = await self._discovery.fetch_tld_list()
                details["source_version"] = tld_list.version
                return list(tld_list.tlds)

            if import_type == ImportType.RDAP:
                bootstrap = await self._discovery.fetch_bootstrap(force=True)
                details["source_version"] = bootstrap.publication
                return [[tld, urls[0]] for tld, urls in sorted(bootstrap.services.items())]

            if import_type == ImportType.WHOIS:
                return [
                    entry.tld
                    for entry in self._directory.list_entries(active=True, has_whois=False)
                ]
        except (NetworkError, ProtocolError) as e:
            raise ImportSetupError(
                code="import_setup",
                message=f"IANA source unavailable: {e.message}",
            )
        except PersistenceError as e:
            raise ImportSetupError(
                code="import_setup",
                message=f"TLD directory unavailable: {e.message}",
            )

        raise ImportSetupError(
            code="import_setup",
            message=f"No input set for import type {import_type.value}",
        )

    # Units

    async def _process_unit(self, import_type: ImportType, item) -> str:
        """
        Apply one unit to the directory.

        Returns:
            'new', 'updated', 'unchanged' or 'failed'
        """
        if import_type == ImportType.TLD_LIST:
            return "new" if self._directory.ensure(item) else "unchanged"

        if import_type == ImportType.RDAP:
            tld, url = item
            existing = self._directory.get(tld)
            if existing is not None and existing.rdap_base_url == url:
                return "unchanged"
            is_new = self._directory.set_rdap_base_url(tld, url, ServerSource.IANA_RDAP)
            return "new" if is_new else "updated"

        if import_type == ImportType.WHOIS:
            label = item.strip(".")
            server = await self._discovery.lookup_iana_whois(label)
            source = ServerSource.IANA_WHOIS
            page: dict = {}
            if not server:
                page = await self._discovery.fetch_root_db_page(label)
                server = page.get("whois_server")
                source = ServerSource.IANA_HTML
            if not server:
                return "failed"
            self._directory.record_discovery(item, DiscoveryResult(
                tld=item,
                whois_server=server.lower(),
                source=source,
                registry_url=page.get("registry_url"),
                record_last_updated=page.get("record_last_updated"),
                registration_date=page.get("registration_date"),
            ))
            return "updated"

        return "failed"

    async def _process_items(
        self,
        log: ImportLog,
        import_type: ImportType,
        items: list,
        phase_cursor: bool = False,
    ) -> int:
        """
        Process up to batch_size items from the cursor; returns how many were consumed.

        The cursor moves after every unit, so a unit that raises is the
        first unit of the next poll.
        """
        start = log.details["phase_cursor"] if phase_cursor else log.cursor
        batch = items[start:start + self._batch_size]
        for item in batch:
            try:
                outcome = await self._process_unit(import_type, item)
            except PersistenceError as e:
                raise ImportSetupError(
                    code="import_setup",
                    message=f"TLD directory unavailable: {e.message}",
                )

            log.processed += 1
            if outcome == "new":
                log.new += 1
            elif outcome == "updated":
                log.updated += 1
            elif outcome == "failed":
                log.failed += 1
                if self._logger:
                    self._logger.debug(COMPONENT, "Import unit failed", {
                        "log_id": log.id,
                        "import_type": import_type.value,
                        "item": item,
                    })

            log.cursor += 1
            if phase_cursor:
                log.details["phase_cursor"] += 1
        return len(batch)

    def _store_version(self, import_type: ImportType, version: Optional[str]) -> None:
        if not version:
            return
        if import_type == ImportType.TLD_LIST:
            self._directory.set_version(TLD_LIST_VERSION, version)
        elif import_type == ImportType.RDAP:
            self._directory.set_version(RDAP_PUBLICATION, version)

    # Runs

    async def _run_simple_batch(self, log: ImportLog) -> int:
        if "items" not in log.details:
            log.details["items"] = await self._load_items(log.import_type, log.details)
            log.total = len(log.details["items"])

        items = log.details["items"]
        consumed = await self._process_items(log, log.import_type, items)

        if log.cursor >= len(items):
            log.status = ImportStatus.COMPLETE
            self._store_version(log.import_type, log.details.get("source_version"))
        return consumed

    async def _run_workflow_batch(self, log: ImportLog) -> int:
        if "phase" not in log.details:
            await self._enter_phase(log, 0)

        consumed = 0
        details = log.details
        if log.status == ImportStatus.RUNNING:
            phase = ImportType(details["phase"])
            consumed = await self._process_items(log, phase, details["phase_items"], phase_cursor=True)
            if details["phase_cursor"] >= len(details["phase_items"]):
                self._complete_phase(log)
                await self._enter_phase(log, WORKFLOW_PHASES.index(phase) + 1)
        return consumed

    async def _enter_phase(self, log: ImportLog, position: int) -> None:
        """Load the first phase from ``position`` that has work, or complete the run."""
        details = log.details
        while position < len(WORKFLOW_PHASES):
            phase = WORKFLOW_PHASES[position]
            phase_details: dict = {}
            items = await self._load_items(phase, phase_details)

            details["phase"] = phase.value
            details["phase_cursor"] = 0
            details["phase_items"] = items
            details["phase_version"] = phase_details.get("source_version")
            log.total += len(items)
            if items:
                return
            self._complete_phase(log)
            position += 1

        log.status = ImportStatus.COMPLETE

    def _complete_phase(self, log: ImportLog) -> None:
        details = log.details
        phase = ImportType(details["phase"])
        self._store_version(phase, details.get("phase_version"))
        completed = details.setdefault("completed_phases", [])
        if phase.value not in completed:
            completed.append(phase.value)

    async def _run_check_updates(self, log: ImportLog) -> int:
        log.total = 1
        try:
            check = await self.check_for_updates()
        except PersistenceError as e:
            raise ImportSetupError(
                code="import_setup",
                message=f"TLD directory unavailable: {e.message}",
            )

        if not check.details:
            raise ImportSetupError(
                code="import_setup",
                message="IANA sources unavailable: " + "; ".join(check.errors),
            )

        log.details["needs_update"] = check.needs_update
        log.details["versions"] = check.details
        log.details["errors"] = check.errors
        log.processed += 1
        if check.errors:
            log.failed += 1
        log.cursor = 1
        log.status = ImportStatus.COMPLETE
        return 1

    async def check_for_updates(self) -> UpdateCheckResult:
        """
        Compare IANA's published versions with the ones stored in the directory.

        The directory is not modified. A source that cannot be read is
        reported in ``errors``.
        """
        result = UpdateCheckResult(needs_update=False)

        try:
            tld_list = await self._discovery.fetch_tld_list()
            last_version = self._directory.get_version(TLD_LIST_VERSION)
            result.details["tld_list"] = {
                "current_version": tld_list.version,
                "last_version": last_version,
            }
            if tld_list.version and tld_list.version != last_version:
                result.needs_update = True
        except (NetworkError, ProtocolError) as e:
            result.errors.append(f"TLD list: {e.message}")

        try:
            bootstrap = await self._discovery.fetch_bootstrap(force=True)
            last_publication = self._directory.get_version(RDAP_PUBLICATION)
            result.details["rdap"] = {
                "current_publication": bootstrap.publication,
                "last_publication": last_publication,
            }
            if bootstrap.publication and bootstrap.publication != last_publication:
                result.needs_update = True
        except (NetworkError, ProtocolError) as e:
            result.errors.append(f"RDAP bootstrap: {e.message}")

        if self._logger:
            self._logger.info(COMPONENT, "Update check finished", {
                "needs_update": result.needs_update,
                "errors": result.errors,
            })
        return result

    def list_logs(
        self,
        import_type: Optional[ImportType] = None,
        limit: Optional[int] = None,
    ) -> list[ImportLog]:
        return self._logs.list_logs(import_type=import_type, limit=limit)

    def get_import_statistics(self) -> dict:
        return self._logs.get_import_statistics()
