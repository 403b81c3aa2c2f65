"""HelpCrunch connector.

Chats are exported as tickets. Listings use offset/limit; timestamps are UNIX
seconds. HelpCrunch has no priority, tags on create, or internal notes, so
notes are posted as regular messages.
"""

from typing import Any, AsyncIterator, List, Optional, Set

from connectors.auth import AuthStrategy, BearerAuth
from connectors.base import (
    CreatedTicketRef,
    ExportSection,
    HelpdeskConnector,
    MigrationContext,
    SubResource,
    TicketDraft,
    VerifyResult,
    items_at,
    register_connector,
)
from connectors.client import ExecutorConfig
from connectors.errors import AuthError, HelpdeskError
from connectors.normalizer import epoch_to_iso, message_type, normalize_status
from connectors.pagination import CursorPagination, with_query
from core.models.canonical import Customer, Message, Organization, Ticket, TicketPriority
from core.observability.logging import get_logger

logger = get_logger(__name__)


@register_connector("helpcrunch")
class HelpcrunchConnector(HelpdeskConnector):
    """HelpCrunch connector.

    Required configuration:
    - HELPCRUNCH_API_KEY
    """

    PAGE_SIZE = 100
    supports_notes = False

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._company_names: Set[str] = set()

    def executor_config(self) -> ExecutorConfig:
        return ExecutorConfig(base_url="https://api.helpcrunch.com/v1", source_name="HelpCrunch")

    def auth_strategy(self) -> AuthStrategy:
        return BearerAuth(self.config.get("HELPCRUNCH_API_KEY"))

    def _pages(self, path: str) -> AsyncIterator[Any]:
        return self.iter_listing(
            path,
            "data",
            CursorPagination(self.PAGE_SIZE),
            lambda offset: {"offset": offset, "limit": self.PAGE_SIZE},
        )

    async def _verify(self) -> VerifyResult:
        agents = await self.request("/agents")
        chats = await self.request("/chats?offset=0&limit=1")
        return VerifyResult(
            success=True,
            detail=f"{len(items_at(agents, 'data'))} agents",
            ticket_count=(chats.get("meta") or {}).get("total"),
        )

    # =========================================================================
    # Export
    # =========================================================================

    def iter_raw_tickets(self) -> AsyncIterator[Any]:
        return self._pages("/chats")

    def normalize_ticket(self, raw: Any) -> Ticket:
        chat_id = raw["id"]
        customer = raw.get("customer") or {}
        assignee = raw.get("assignee") or {}
        department = raw.get("department") or {}
        created_at = epoch_to_iso(raw.get("createdAt"))
        return Ticket(
            id=self.cid(chat_id),
            external_id=str(chat_id),
            source=self.name,
            subject=(raw.get("lastMessageText") or "")[:100] or f"Chat #{chat_id}",
            status=normalize_status(self.name, raw.get("status")),
            priority=TicketPriority.NORMAL,
            assignee=str(assignee["id"]) if assignee.get("id") else None,
            requester=str(customer["id"]) if customer.get("id") else "unknown",
            tags=[department.get("name") or f"dept-{department['id']}"] if department.get("id") else [],
            created_at=created_at,
            updated_at=epoch_to_iso(raw["lastMessageAt"]) if raw.get("lastMessageAt") else created_at,
        )

    def ticket_sub_resources(self, raw: Any) -> List[SubResource]:
        chat_id = raw["id"]
        customer_id = (raw.get("customer") or {}).get("id")

        async def messages() -> List[Message]:
            result = []
            async for m in self._pages(f"/chats/{chat_id}/messages"):
                agent = m.get("agent") or {}
                if m.get("from") == "agent" and agent.get("id"):
                    author = str(agent["id"])
                else:
                    author = str(customer_id or "customer")
                result.append(Message(
                    id=self.cid(m["id"], "msg"),
                    ticket_id=self.cid(chat_id),
                    author=author,
                    body=m.get("text") or "",
                    type=message_type(False),
                    created_at=epoch_to_iso(m.get("createdAt")),
                ))
            return result

        return [SubResource("messages", messages)]

    def sections(self) -> List[ExportSection]:
        return [
            ExportSection("customers", "customers", self._customers),
            ExportSection("agents", "customers", self._agents),
            ExportSection("organizations", "organizations", self._organizations),
        ]

    async def _customers(self) -> AsyncIterator[Customer]:
        self._company_names.clear()
        async for c in self._pages("/customers"):
            company = c.get("company")
            if company:
                self._company_names.add(company)
            yield Customer(
                id=self.cid(c["id"], "user"),
                external_id=str(c["id"]),
                source=self.name,
                name=c.get("name") or c.get("email") or f"Customer {c['id']}",
                email=c.get("email") or "",
                phone=c.get("phone"),
                org_id=self.cid(company, "org") if company else None,
            )

    async def _agents(self) -> AsyncIterator[Customer]:
        for a in items_at(await self.request("/agents"), "data"):
            yield Customer(
                id=self.cid(a["id"], "agent"),
                external_id=f"agent-{a['id']}",
                source=self.name,
                name=a.get("name") or "",
                email=a.get("email") or "",
            )

    async def _organizations(self) -> AsyncIterator[Organization]:
        for name in sorted(self._company_names):
            yield Organization(id=self.cid(name, "org"), external_id=name, source=self.name, name=name)

    # =========================================================================
    # Migration
    # =========================================================================

    async def resolve_customer(self, email: str, context: MigrationContext, name: Optional[str] = None) -> str:
        """Remote customer id for an email: cache, then search, then create."""
        if email in context.customer_cache:
            return context.customer_cache[email]

        try:
            found = items_at(await self.request(with_query("/customers", {"email": email, "limit": 1})), "data")
        except AuthError:
            raise
        except HelpdeskError as e:
            logger.debug(f"Customer search for {email} failed, creating instead: {e}")
            found = []

        if found:
            customer_id = str(found[0]["id"])
        else:
            name = name or email.split("@")[0] or "Migrated User"
            created = await self.request("/customers", method="POST", body={"email": email, "name": name})
            customer_id = str(created["id"])

        context.customer_cache[email] = customer_id
        return customer_id

    async def create_ticket(self, draft: TicketDraft, context: MigrationContext) -> CreatedTicketRef:
        customer_id = await self.resolve_customer(draft.requester, context, draft.requester_name)
        customer = int(customer_id) if customer_id.isdigit() else customer_id
        result = await self.request(
            "/chats", method="POST", body={"customer": customer, "message": {"text": draft.body}}
        )
        return CreatedTicketRef(id=str(result["id"]))

    async def reply(self, ticket_id: str, body: str, context: MigrationContext) -> None:
        await self.request(f"/chats/{ticket_id}/messages", method="POST", body={"text": body, "type": "message"})
