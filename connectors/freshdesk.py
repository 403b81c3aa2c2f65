"""Freshdesk connector.

REST+JSON, Basic auth with ``<apiKey>:X``, page/per_page listings whose
response body is the bare array. Conversations flagged ``private`` are notes.
"""

from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from connectors.auth import AuthStrategy, BasicAuth
from connectors.base import (
    CreatedTicketRef,
    ExportSection,
    HelpdeskConnector,
    MigrationContext,
    SubResource,
    TicketDraft,
    VerifyResult,
    register_connector,
)
from connectors.client import ExecutorConfig, RetryConfig
from connectors.errors import HelpdeskError
from connectors.normalizer import (
    message_type,
    normalize_priority,
    normalize_status,
    to_target_priority,
    to_target_status,
)
from connectors.pagination import CursorPagination
from core.models.canonical import Customer, KBArticle, Message, Organization, Rule, Ticket, utc_now_iso
from core.observability.logging import get_logger

logger = get_logger(__name__)


class FreshdeskModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class FreshdeskTicket(FreshdeskModel):
    """Maps to: /api/v2/tickets

    status: 2=Open 3=Pending 4=Resolved 5=Closed; priority: 1=Low .. 4=Urgent
    """
    id: int
    subject: Optional[str] = None
    status: Optional[int] = None
    priority: Optional[int] = None
    responder_id: Optional[int] = None
    requester_id: Optional[int] = None
    tags: Optional[List[str]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class FreshdeskConversation(FreshdeskModel):
    """Maps to: /api/v2/tickets/{id}/conversations"""
    id: int
    body: Optional[str] = None
    body_text: Optional[str] = None
    user_id: Optional[int] = None
    private: bool = False
    created_at: Optional[str] = None


class FreshdeskContact(FreshdeskModel):
    id: int
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    company_id: Optional[int] = None


@register_connector("freshdesk")
class FreshdeskConnector(HelpdeskConnector):
    """Freshdesk connector.

    Required configuration:
    - FRESHDESK_SUBDOMAIN
    - FRESHDESK_API_KEY
    """

    PAGE_SIZE = 100

    @property
    def subdomain(self) -> str:
        return self.config.get("FRESHDESK_SUBDOMAIN")

    def executor_config(self) -> ExecutorConfig:
        return ExecutorConfig(
            base_url=f"https://{self.subdomain}.freshdesk.com",
            source_name="Freshdesk",
            retry_config=RetryConfig(default_retry_after=30.0),
        )

    def auth_strategy(self) -> AuthStrategy:
        return BasicAuth(self.config.get("FRESHDESK_API_KEY"), "X")

    def _pages(self, path: str) -> AsyncIterator[Any]:
        return self.iter_listing(
            path,
            None,
            CursorPagination(self.PAGE_SIZE, page_numbers=True),
            lambda page: {"per_page": self.PAGE_SIZE, "page": page},
        )

    async def _verify(self) -> VerifyResult:
        me = await self.request("/api/v2/agents/me")
        tickets = await self.request("/api/v2/tickets?per_page=1")
        name = (me.get("contact") or {}).get("name", "unknown")
        return VerifyResult(success=True, detail=f"Authenticated as {name}", ticket_count=len(tickets or []))

    # =========================================================================
    # Export
    # =========================================================================

    def iter_raw_tickets(self) -> AsyncIterator[Any]:
        return self._pages("/api/v2/tickets")

    def normalize_ticket(self, raw: Any) -> Ticket:
        t = FreshdeskTicket.model_validate(raw)
        return Ticket(
            id=self.cid(t.id),
            external_id=str(t.id),
            source=self.name,
            subject=t.subject or f"Ticket #{t.id}",
            status=normalize_status(self.name, t.status),
            priority=normalize_priority(self.name, t.priority),
            assignee=str(t.responder_id) if t.responder_id else None,
            requester=str(t.requester_id) if t.requester_id else "",
            tags=t.tags or [],
            created_at=t.created_at or utc_now_iso(),
            updated_at=t.updated_at or t.created_at or utc_now_iso(),
        )

    def ticket_sub_resources(self, raw: Any) -> List[SubResource]:
        ticket_id = raw["id"]

        async def conversations() -> List[Message]:
            messages = []
            async for item in self._pages(f"/api/v2/tickets/{ticket_id}/conversations"):
                c = FreshdeskConversation.model_validate(item)
                messages.append(Message(
                    id=self.cid(c.id, "msg"),
                    ticket_id=self.cid(ticket_id),
                    author=str(c.user_id or ""),
                    body=c.body_text or c.body or "",
                    body_html=c.body,
                    type=message_type(c.private),
                    created_at=c.created_at or utc_now_iso(),
                ))
            return messages

        return [SubResource("conversations", conversations)]

    def sections(self) -> List[ExportSection]:
        return [
            ExportSection("contacts", "customers", self._contacts),
            ExportSection("agents", "customers", self._agents),
            ExportSection("companies", "organizations", self._companies),
            ExportSection("kb articles", "kb_articles", self._articles),
            ExportSection("sla policies", "rules", self._sla_policies),
        ]

    async def _contacts(self) -> AsyncIterator[Customer]:
        async for item in self._pages("/api/v2/contacts"):
            c = FreshdeskContact.model_validate(item)
            yield Customer(
                id=self.cid(c.id, "user"),
                external_id=str(c.id),
                source=self.name,
                name=c.name or c.email or f"Contact {c.id}",
                email=c.email or "",
                phone=c.phone or c.mobile,
                org_id=self.cid(c.company_id, "org") if c.company_id else None,
            )

    async def _agents(self) -> AsyncIterator[Customer]:
        async for a in self._pages("/api/v2/agents"):
            contact = a.get("contact") or {}
            yield Customer(
                id=self.cid(a["id"], "agent"),
                external_id=f"agent-{a['id']}",
                source=self.name,
                name=contact.get("name") or "",
                email=contact.get("email") or "",
                phone=contact.get("phone"),
            )

    async def _companies(self) -> AsyncIterator[Organization]:
        async for o in self._pages("/api/v2/companies"):
            yield Organization(
                id=self.cid(o["id"], "org"),
                external_id=str(o["id"]),
                source=self.name,
                name=o.get("name") or "",
                domains=o.get("domains") or [],
            )

    async def _articles(self) -> AsyncIterator[KBArticle]:
        """Walk categories -> folders -> articles; a broken folder is skipped."""
        categories = await self.request("/api/v2/solutions/categories")
        for category in categories or []:
            folders = await self.request(f"/api/v2/solutions/categories/{category['id']}/folders")
            for folder in folders or []:
                try:
                    async for a in self._pages(f"/api/v2/solutions/folders/{folder['id']}/articles"):
                        yield KBArticle(
                            id=self.cid(a["id"], "kb"),
                            external_id=str(a["id"]),
                            source=self.name,
                            title=a.get("title") or "",
                            body=a.get("description") or "",
                            category_path=[category.get("name") or "", folder.get("name") or ""],
                        )
                except HelpdeskError as e:
                    logger.warning(f"Skipping KB folder {folder.get('id')}: {e}")

    async def _sla_policies(self) -> AsyncIterator[Rule]:
        for s in await self.request("/api/v2/sla_policies") or []:
            yield Rule(
                id=self.cid(s["id"], "sla"),
                external_id=str(s["id"]),
                source=self.name,
                type="sla",
                title=s.get("name") or "",
                conditions=s.get("applicable_to"),
                actions=s.get("sla_target"),
                active=bool(s.get("active", True)),
            )

    # =========================================================================
    # Migration
    # =========================================================================

    async def create_ticket(self, draft: TicketDraft, context: MigrationContext) -> CreatedTicketRef:
        # Freshdesk requires a requester email on create
        email = draft.requester if "@" in draft.requester else f"devops@{self.subdomain}.freshdesk.com"
        ticket: Dict[str, Any] = {
            "subject": draft.subject,
            "description": draft.body,
            "email": email,
            "status": to_target_status(self.name, draft.status),
            "priority": to_target_priority(self.name, draft.priority),
        }
        if draft.requester_name:
            ticket["name"] = draft.requester_name
        if draft.tags:
            ticket["tags"] = draft.tags

        result = await self.request("/api/v2/tickets", method="POST", body=ticket)
        return CreatedTicketRef(id=str(result["id"]))

    async def reply(self, ticket_id: str, body: str, context: MigrationContext) -> None:
        await self.request(f"/api/v2/tickets/{ticket_id}/reply", method="POST", body={"body": body})

    async def add_note(self, ticket_id: str, body: str, context: MigrationContext) -> None:
        await self.request(
            f"/api/v2/tickets/{ticket_id}/notes", method="POST", body={"body": body, "private": True}
        )
