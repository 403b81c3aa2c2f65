"""Export Orchestrator.

Drives one connector through a full export into an export directory:

1. Fetch normalization metadata (degrades to fallback tables, never fatal)
2. Page through tickets, appending each normalized ticket immediately
3. Fetch each ticket's sub-resources; a failure is logged and skipped
4. Export the top-level sections (users, organizations, KB, rules); a failing
   section is logged and the next one still runs
5. Write manifest.json last

Every entity is written at most once per id; a record seen again (page
drift, incremental re-delivery) is dropped and counted.

ConfigError and AuthError raised while reading tickets propagate: they are
fatal for the whole connector run and no manifest is written.
"""

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from connectors.base import ExportSection, HelpdeskConnector
from connectors.errors import AuthError, ConfigError, HelpdeskError, PartialFailure
from core.models.canonical import ExportCounts, ExportManifest
from core.observability.logging import get_logger, with_correlation
from core.storage.artifacts import MANIFEST_FILE, ExportStore, JsonlWriter

logger = get_logger(__name__)

# Errors that abort the connector run instead of being counted
FATAL_ERRORS = (AuthError, ConfigError)

# Record-level failures: API errors plus payloads that don't match expectations
RECORD_ERRORS = (HelpdeskError, ValueError, KeyError, TypeError)


@dataclass
class ExportResult:
    """Outcome of one export run.

    Attributes:
        manifest: Manifest written to disk
        out_dir: Export directory
        skipped_tickets: Raw tickets that could not be normalized
        duplicate_records: Records dropped because their id was already written
        partial_failures: Sub-resource and section failures (counted, not fatal)
    """
    manifest: ExportManifest
    out_dir: Path
    skipped_tickets: int = 0
    duplicate_records: int = 0
    partial_failures: List[PartialFailure] = field(default_factory=list)

    @property
    def manifest_path(self) -> Path:
        return self.out_dir / MANIFEST_FILE


class ExportOrchestrator:
    """Runs a full export for one connector.

    Usage:
        async with create_connector(config) as connector:
            result = await ExportOrchestrator(connector).run("./exports/zendesk")
    """

    def __init__(self, connector: HelpdeskConnector, run_id: Optional[str] = None):
        self.connector = connector
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.duplicates = 0
        self._seen: Dict[str, Set[str]] = {}

    async def run(self, out_dir: Union[str, Path]) -> ExportResult:
        """Execute the export.

        Args:
            out_dir: Export directory; entity files are truncated first

        Returns:
            ExportResult with the written manifest

        Raises:
            AuthError: Credentials rejected while reading tickets
            ConfigError: Connector misconfigured
        """
        store = ExportStore(out_dir)
        failures: List[PartialFailure] = []
        skipped = 0
        self.duplicates = 0
        self._seen = {}

        with with_correlation(connector=self.connector.name, run_id=self.run_id):
            logger.info(f"Starting {self.connector.name} export into {store.base_path}")
            writers = store.open_writers()
            try:
                # Step 1: Normalization metadata
                with with_correlation(stage="metadata"):
                    await self._load_metadata()

                # Step 2-3: Tickets and their conversations
                with with_correlation(stage="tickets"):
                    skipped = await self._export_tickets(writers, failures)
                logger.info(
                    f"{writers['tickets'].count} tickets exported ({writers['messages'].count} messages)"
                )

                # Step 4: Independent top-level sections
                for section in self.connector.sections():
                    with with_correlation(stage=section.name):
                        await self._export_section(section, writers, failures)
            finally:
                for writer in writers.values():
                    writer.close()

            # Step 5: Manifest last; its presence marks a completed export
            counts = ExportCounts(**{entity: writer.count for entity, writer in writers.items()})
            manifest = ExportManifest(source=self.connector.name, counts=counts)
            store.write_manifest(manifest)
            if self.duplicates:
                logger.info(f"{self.duplicates} duplicate records dropped")
            logger.info(f"Export complete -> {store.resolve_path(MANIFEST_FILE)}")

        return ExportResult(
            manifest=manifest,
            out_dir=store.base_path,
            skipped_tickets=skipped,
            duplicate_records=self.duplicates,
            partial_failures=failures,
        )

    async def _load_metadata(self) -> None:
        try:
            await self.connector.load_metadata()
        except FATAL_ERRORS:
            raise
        except HelpdeskError as e:
            logger.warning(f"Metadata fetch failed, using fallback tables: {e}")

    async def _export_tickets(self, writers: Dict[str, JsonlWriter], failures: List[PartialFailure]) -> int:
        skipped = 0
        async for raw in self.connector.iter_raw_tickets():
            try:
                ticket = self.connector.normalize_ticket(raw)
            except RECORD_ERRORS as e:
                skipped += 1
                logger.warning(f"Skipping malformed ticket record: {e}")
                continue

            if not self._write_once(writers, "tickets", ticket):
                continue

            with with_correlation(ticket_id=ticket.id):
                for sub_resource in self.connector.ticket_sub_resources(raw):
                    try:
                        messages = await sub_resource.fetch()
                    except FATAL_ERRORS:
                        raise
                    except RECORD_ERRORS as e:
                        logger.warning(f"{sub_resource.name} fetch failed for {ticket.id}: {e}")
                        failures.append(PartialFailure(f"{sub_resource.name} for {ticket.id}: {e}", failed=1))
                        continue
                    for message in messages:
                        self._write_once(writers, "messages", message)

            if writers["tickets"].count % 100 == 0:
                logger.info(f"Exporting tickets... {writers['tickets'].count} exported")

        return skipped

    def _write_once(self, writers: Dict[str, JsonlWriter], entity: str, record: Any) -> bool:
        """Write a record unless its id was already written this run."""
        seen = self._seen.setdefault(entity, set())
        if record.id in seen:
            self.duplicates += 1
            logger.debug(f"Dropping duplicate {entity} record {record.id}")
            return False
        seen.add(record.id)
        writers[entity].write(record)
        return True

    async def _export_section(
        self,
        section: ExportSection,
        writers: Dict[str, JsonlWriter],
        failures: List[PartialFailure],
    ) -> None:
        """Export one section. Any failure, including a 403 on an admin-only
        endpoint, is a warning: records already streamed are kept."""
        written = 0
        try:
            async for record in section.fetch():
                if self._write_once(writers, section.entity, record):
                    written += 1
        except RECORD_ERRORS as e:
            logger.warning(f"{section.name}: {e} ({written} exported before failure)")
            failures.append(PartialFailure(f"{section.name}: {e}", failed=1))
            return
        logger.info(f"{written} {section.name} exported")
