"""Migration Engine.

Replays an export directory into a different target connector:

1. Skip tickets already present in the migration map (resume)
2. Sort each ticket's messages; the earliest becomes the ticket body
3. Create the ticket on the target; a failure skips this ticket only
4. Persist the map entry immediately after creation
5. Replay follow-ups in order (reply or note); each failure is counted

Dry-run performs steps 1-2 and makes no network calls.
"""

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

from connectors.base import HelpdeskConnector, MigrationContext, TicketDraft
from connectors.errors import AuthError, ConfigError
from core.models.canonical import Customer, Message, MigrationEntry, Ticket
from core.observability.logging import get_logger, with_correlation
from core.storage.artifacts import ExportStore, load_migration_map, migration_map_path, save_migration_map

logger = get_logger(__name__)


@dataclass
class TicketPreview:
    """What a dry run would create for one ticket."""
    source_id: str
    subject: str
    requester: str
    follow_ups: int


@dataclass
class MigrationResult:
    """Outcome of one migration run.

    Attributes:
        target: Target connector id
        succeeded: Tickets created on the target
        failed: Tickets whose creation failed
        failed_messages: Follow-up messages that could not be replayed
        skipped: Tickets already in the migration map
        dry_run: True when no network calls were made
        previews: Planned tickets (dry run only)
        map_path: Migration map file
    """
    target: str
    succeeded: int = 0
    failed: int = 0
    failed_messages: int = 0
    skipped: int = 0
    dry_run: bool = False
    previews: List[TicketPreview] = field(default_factory=list)
    map_path: Optional[Path] = None

    @property
    def nothing_to_migrate(self) -> bool:
        return self.succeeded == 0 and self.failed == 0 and not self.previews


def build_draft(ticket: Ticket, messages: List[Message], context: MigrationContext) -> TicketDraft:
    """Target-neutral creation payload for a ticket and its sorted messages."""
    customer = context.find_customer(ticket.requester)
    body = messages[0].body if messages and messages[0].body else ticket.subject
    return TicketDraft(
        source_id=ticket.id,
        subject=ticket.subject,
        body=body,
        status=ticket.status,
        priority=ticket.priority,
        tags=ticket.tags,
        requester=customer.email if customer and customer.email else ticket.requester,
        requester_name=customer.name if customer else None,
    )


def pending_tickets(tickets: List[Ticket], migrated: Dict[str, MigrationEntry]) -> List[Ticket]:
    """Tickets not yet in the migration map, first occurrence of each id only."""
    pending = []
    queued = set()
    for ticket in tickets:
        if ticket.id in migrated or ticket.id in queued:
            continue
        queued.add(ticket.id)
        pending.append(ticket)
    return pending


def group_messages(messages: List[Message]) -> Dict[str, List[Message]]:
    """Messages per ticket id, each list in chronological order.

    A message id repeated in the export is kept once.
    """
    grouped: Dict[str, List[Message]] = {}
    seen = set()
    for message in messages:
        if message.id in seen:
            continue
        seen.add(message.id)
        grouped.setdefault(message.ticket_id, []).append(message)
    for thread in grouped.values():
        thread.sort(key=Message.sort_key)
    return grouped


class MigrationEngine:
    """Recreates exported tickets on a target platform.

    Usage:
        async with create_connector(load_connector_config("freshdesk")) as target:
            engine = MigrationEngine("./exports/zendesk", "freshdesk", target)
            result = await engine.run(limit=10)
    """

    def __init__(
        self,
        source_dir: Union[str, Path],
        target_name: str,
        connector: Optional[HelpdeskConnector] = None,
    ):
        self.source_dir = Path(source_dir)
        self.target_name = target_name
        self.connector = connector
        self.run_id = uuid.uuid4().hex[:12]

    async def run(self, dry_run: bool = False, limit: Optional[int] = None) -> MigrationResult:
        """Execute the migration.

        Args:
            dry_run: Plan only; zero network calls
            limit: Maximum tickets to process, applied after resume filtering;
                None or a non-positive value means no limit

        Returns:
            MigrationResult with counts and the map path

        Raises:
            ConfigError: Live run without a target connector
            AuthError: Target rejected the credentials
        """
        store = ExportStore(self.source_dir)
        map_path = migration_map_path(self.source_dir, self.target_name)
        result = MigrationResult(target=self.target_name, dry_run=dry_run, map_path=map_path)

        with with_correlation(connector=self.target_name, run_id=self.run_id, stage="migrate"):
            tickets = store.read("tickets", Ticket)
            threads = group_messages(store.read("messages", Message))
            context = MigrationContext(customers=store.read("customers", Customer))

            # Step 1: Resume filtering, then limit
            migrated = load_migration_map(self.source_dir, self.target_name)
            pending = pending_tickets(tickets, migrated)
            result.skipped = sum(1 for t in tickets if t.id in migrated)
            if len(pending) + result.skipped < len(tickets):
                logger.warning(f"{len(tickets) - len(pending) - result.skipped} duplicate ticket records ignored")
            if limit is not None and limit > 0:
                pending = pending[:limit]

            if not pending:
                logger.info("No tickets to migrate.")
                return result

            if dry_run:
                self._preview(pending, threads, context, result)
                return result

            if self.connector is None:
                raise ConfigError(f"No connector available for migration target {self.target_name}")

            logger.info(
                f"Migrating {len(pending)} tickets to {self.target_name} ({result.skipped} already migrated)"
            )
            for ticket in pending:
                with with_correlation(ticket_id=ticket.id):
                    await self._migrate_ticket(ticket, threads.get(ticket.id, []), context, migrated, result)

            logger.info(
                f"Migration finished: {result.succeeded} succeeded, {result.failed} failed, "
                f"{result.failed_messages} messages failed. Map: {map_path}"
            )
        return result

    def _preview(
        self,
        pending: List[Ticket],
        threads: Dict[str, List[Message]],
        context: MigrationContext,
        result: MigrationResult,
    ) -> None:
        logger.info(f"[dry run] {len(pending)} tickets would be migrated to {self.target_name}")
        for ticket in pending:
            messages = threads.get(ticket.id, [])
            draft = build_draft(ticket, messages, context)
            preview = TicketPreview(
                source_id=ticket.id,
                subject=draft.subject,
                requester=draft.requester,
                follow_ups=max(len(messages) - 1, 0),
            )
            result.previews.append(preview)
            logger.info(
                f"[dry run] {preview.source_id}: {preview.subject!r} from {preview.requester} "
                f"(+{preview.follow_ups} messages)"
            )

    async def _migrate_ticket(
        self,
        ticket: Ticket,
        messages: List[Message],
        context: MigrationContext,
        migrated: Dict[str, MigrationEntry],
        result: MigrationResult,
    ) -> None:
        draft = build_draft(ticket, messages, context)

        # Step 3: Create; nothing exists remotely if this fails
        try:
            created = await self.connector.create_ticket(draft, context)
        except AuthError:
            raise
        except Exception as e:
            result.failed += 1
            logger.warning(f"Failed to create {ticket.id}: {e}")
            return

        # Step 4: Persist before replaying follow-ups
        migrated[ticket.id] = MigrationEntry(dest_id=created.id)
        save_migration_map(self.source_dir, self.target_name, migrated)
        result.succeeded += 1

        # Step 5: Follow-ups in chronological order
        for message in messages[1:]:
            try:
                if message.is_note and self.connector.supports_notes:
                    await self.connector.add_note(created.id, message.body, context)
                else:
                    await self.connector.reply(created.id, message.body, context)
            except Exception as e:
                result.failed_messages += 1
                logger.warning(f"Failed to replay {message.id} onto {created.id}: {e}")

        logger.info(f"{ticket.id} -> {created.display_id or created.id}")
