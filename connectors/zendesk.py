"""Zendesk connector.

REST+JSON, Basic auth with ``<email>/token:<token>``. Tickets and users come from
the incremental cursor export; everything else uses page/per_page listings.
Comments with ``public=false`` are internal notes.
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
from connectors.client import ExecutorConfig
from connectors.normalizer import (
    message_type,
    normalize_priority,
    normalize_status,
    to_target_priority,
    to_target_status,
)
from connectors.pagination import CursorPagination, NextCursorPagination
from core.models.canonical import Customer, KBArticle, Message, Organization, Rule, Ticket, utc_now_iso


# =============================================================================
# Zendesk API Models
# =============================================================================

class ZendeskModel(BaseModel):
    """Base model for Zendesk API payloads; unknown fields are ignored."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ZendeskTicket(ZendeskModel):
    """Maps to: /api/v2/incremental/tickets/cursor.json"""
    id: int
    subject: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    assignee_id: Optional[int] = None
    requester_id: Optional[int] = None
    tags: Optional[List[str]] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ZendeskComment(ZendeskModel):
    """Maps to: /api/v2/tickets/{id}/comments.json"""
    id: int
    author_id: Optional[int] = None
    body: Optional[str] = None
    html_body: Optional[str] = None
    public: bool = True
    created_at: Optional[str] = None


class ZendeskUser(ZendeskModel):
    id: int
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    organization_id: Optional[int] = None


@register_connector("zendesk")
class ZendeskConnector(HelpdeskConnector):
    """Zendesk Support connector.

    Required configuration:
    - ZENDESK_SUBDOMAIN
    - ZENDESK_EMAIL
    - ZENDESK_TOKEN
    """

    PAGE_SIZE = 100

    def executor_config(self) -> ExecutorConfig:
        subdomain = self.config.get("ZENDESK_SUBDOMAIN")
        return ExecutorConfig(base_url=f"https://{subdomain}.zendesk.com", source_name="Zendesk")

    def auth_strategy(self) -> AuthStrategy:
        return BasicAuth(f"{self.config.get('ZENDESK_EMAIL')}/token", self.config.get("ZENDESK_TOKEN"))

    def _pages(self, path: str, key: str) -> AsyncIterator[Any]:
        return self.iter_listing(
            path,
            key,
            CursorPagination(self.PAGE_SIZE, page_numbers=True),
            lambda page: {"page": page, "per_page": self.PAGE_SIZE},
        )

    def _incremental(self, entity: str) -> AsyncIterator[Any]:
        # Offset paging stops at 100 pages; the cursor export has no such cap
        return self.iter_cursor_listing(
            NextCursorPagination(f"/api/v2/incremental/{entity}/cursor.json", {"start_time": 0}),
            entity,
        )

    async def _verify(self) -> VerifyResult:
        me = await self.request("/api/v2/users/me.json")
        count = await self.request("/api/v2/tickets/count.json")
        return VerifyResult(
            success=True,
            detail=f"Authenticated as {me.get('user', {}).get('name', 'unknown')}",
            ticket_count=count.get("count", {}).get("value"),
        )

    # =========================================================================
    # Export
    # =========================================================================

    def iter_raw_tickets(self) -> AsyncIterator[Any]:
        return self._incremental("tickets")

    def normalize_ticket(self, raw: Any) -> Ticket:
        t = ZendeskTicket.model_validate(raw)
        return Ticket(
            id=self.cid(t.id),
            external_id=str(t.id),
            source=self.name,
            subject=t.subject or f"Ticket #{t.id}",
            status=normalize_status(self.name, t.status),
            priority=normalize_priority(self.name, t.priority),
            assignee=str(t.assignee_id) if t.assignee_id else None,
            requester=str(t.requester_id) if t.requester_id else "",
            tags=t.tags or [],
            created_at=t.created_at or utc_now_iso(),
            updated_at=t.updated_at or t.created_at or utc_now_iso(),
        )

    def ticket_sub_resources(self, raw: Any) -> List[SubResource]:
        ticket_id = raw["id"]

        async def comments() -> List[Message]:
            messages = []
            async for item in self._pages(f"/api/v2/tickets/{ticket_id}/comments.json", "comments"):
                c = ZendeskComment.model_validate(item)
                messages.append(Message(
                    id=self.cid(c.id, "msg"),
                    ticket_id=self.cid(ticket_id),
                    author=str(c.author_id or ""),
                    body=c.body or "",
                    body_html=c.html_body,
                    type=message_type(not c.public),
                    created_at=c.created_at or utc_now_iso(),
                ))
            return messages

        return [SubResource("comments", comments)]

    def sections(self) -> List[ExportSection]:
        return [
            ExportSection("users", "customers", self._users),
            ExportSection("organizations", "organizations", self._organizations),
            ExportSection("kb articles", "kb_articles", self._articles),
            ExportSection("macros", "rules", lambda: self._rules("/api/v2/macros.json", "macros", "macro")),
            ExportSection("triggers", "rules", lambda: self._rules("/api/v2/triggers.json", "triggers", "trigger")),
            ExportSection(
                "automations", "rules",
                lambda: self._rules("/api/v2/automations.json", "automations", "automation"),
            ),
            ExportSection("sla policies", "rules", self._sla_policies),
        ]

    async def _users(self) -> AsyncIterator[Customer]:
        async for item in self._incremental("users"):
            u = ZendeskUser.model_validate(item)
            yield Customer(
                id=self.cid(u.id, "user"),
                external_id=str(u.id),
                source=self.name,
                name=u.name or u.email or f"User {u.id}",
                email=u.email or "",
                phone=u.phone,
                org_id=self.cid(u.organization_id, "org") if u.organization_id else None,
            )

    async def _organizations(self) -> AsyncIterator[Organization]:
        async for o in self._pages("/api/v2/organizations.json", "organizations"):
            yield Organization(
                id=self.cid(o["id"], "org"),
                external_id=str(o["id"]),
                source=self.name,
                name=o.get("name") or "",
                domains=o.get("domain_names") or [],
            )

    async def _articles(self) -> AsyncIterator[KBArticle]:
        async for a in self._pages("/api/v2/help_center/articles.json", "articles"):
            yield KBArticle(
                id=self.cid(a["id"], "kb"),
                external_id=str(a["id"]),
                source=self.name,
                title=a.get("title") or "",
                body=a.get("body") or "",
                category_path=[str(a["section_id"])] if a.get("section_id") else [],
            )

    async def _rules(self, path: str, key: str, kind: str) -> AsyncIterator[Rule]:
        async for r in self._pages(path, key):
            yield Rule(
                id=self.cid(r["id"], kind),
                external_id=str(r["id"]),
                source=self.name,
                type=kind,
                title=r.get("title") or "",
                # Macros carry a restriction instead of conditions
                conditions=r.get("conditions", r.get("restriction")),
                actions=r.get("actions"),
                active=bool(r.get("active", True)),
            )

    async def _sla_policies(self) -> AsyncIterator[Rule]:
        data = await self.request("/api/v2/slas/policies.json")
        for s in data.get("sla_policies") or []:
            yield Rule(
                id=self.cid(s["id"], "sla"),
                external_id=str(s["id"]),
                source=self.name,
                type="sla",
                title=s.get("title") or "",
                conditions=s.get("filter"),
                actions=s.get("policy_metrics"),
                active=True,
            )

    # =========================================================================
    # Migration
    # =========================================================================

    async def create_ticket(self, draft: TicketDraft, context: MigrationContext) -> CreatedTicketRef:
        ticket: Dict[str, Any] = {
            "subject": draft.subject,
            "comment": {"body": draft.body},
            "status": to_target_status(self.name, draft.status),
            "priority": to_target_priority(self.name, draft.priority),
        }
        if draft.tags:
            ticket["tags"] = draft.tags
        if "@" in draft.requester:
            ticket["requester"] = {"email": draft.requester, "name": draft.requester_name or draft.requester}

        result = await self.request("/api/v2/tickets.json", method="POST", body={"ticket": ticket})
        return CreatedTicketRef(id=str(result["ticket"]["id"]))

    async def _comment(self, ticket_id: str, body: str, public: bool) -> None:
        await self.request(
            f"/api/v2/tickets/{ticket_id}.json",
            method="PUT",
            body={"ticket": {"comment": {"body": body, "public": public}}},
        )

    async def reply(self, ticket_id: str, body: str, context: MigrationContext) -> None:
        await self._comment(ticket_id, body, public=True)

    async def add_note(self, ticket_id: str, body: str, context: MigrationContext) -> None:
        await self._comment(ticket_id, body, public=False)
