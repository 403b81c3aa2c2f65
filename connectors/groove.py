"""Groove connector.

REST+JSON with a bearer token. Groove answers 503 as well as 429 when
throttling (~30 requests/minute). Tickets have no priority and customers are
keyed by email; organizations are synthesized from customer company names.
"""

from typing import Any, AsyncIterator, Dict, List, Optional, Set

from connectors.auth import AuthStrategy, BearerAuth
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
from connectors.normalizer import message_type, normalize_priority, normalize_status, to_target_status
from connectors.pagination import CursorPagination
from core.models.canonical import Customer, KBArticle, Message, Organization, Ticket, utc_now_iso


def id_from_href(href: Optional[str]) -> Optional[str]:
    """Last path segment of an API link (``.../customers/jo@example.com``)."""
    if not href:
        return None
    return href.rstrip("/").rsplit("/", 1)[-1] or None


def _link(raw: Dict[str, Any], name: str) -> Optional[str]:
    return id_from_href(((raw.get("links") or {}).get(name) or {}).get("href"))


@register_connector("groove")
class GrooveConnector(HelpdeskConnector):
    """Groove connector.

    Required configuration:
    - GROOVE_API_TOKEN
    """

    PAGE_SIZE = 50

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._company_names: Set[str] = set()

    def executor_config(self) -> ExecutorConfig:
        return ExecutorConfig(
            base_url="https://api.groovehq.com/v1",
            source_name="Groove",
            retry_config=RetryConfig(default_retry_after=90.0, rate_limit_statuses=(429, 503)),
        )

    def auth_strategy(self) -> AuthStrategy:
        return BearerAuth(self.config.get("GROOVE_API_TOKEN"))

    def _pages(self, path: str, key: str) -> AsyncIterator[Any]:
        return self.iter_listing(
            path,
            key,
            CursorPagination(self.PAGE_SIZE, page_numbers=True),
            lambda page: {"per_page": self.PAGE_SIZE, "page": page},
        )

    async def _verify(self) -> VerifyResult:
        data = await self.request("/agents")
        return VerifyResult(success=True, detail=f"{len(data.get('agents') or [])} agents")

    # =========================================================================
    # Export
    # =========================================================================

    def iter_raw_tickets(self) -> AsyncIterator[Any]:
        return self._pages("/tickets", "tickets")

    def normalize_ticket(self, raw: Any) -> Ticket:
        number = raw["number"]
        return Ticket(
            id=self.cid(number),
            external_id=str(number),
            source=self.name,
            subject=raw.get("title") or f"Ticket #{number}",
            status=normalize_status(self.name, raw.get("state")),
            priority=normalize_priority(self.name, raw.get("priority")),
            assignee=_link(raw, "assignee"),
            requester=_link(raw, "customer") or "unknown",
            tags=raw.get("tags") or [],
            created_at=raw.get("created_at") or utc_now_iso(),
            updated_at=raw.get("updated_at") or raw.get("created_at") or utc_now_iso(),
        )

    def ticket_sub_resources(self, raw: Any) -> List[SubResource]:
        number = raw["number"]

        async def messages() -> List[Message]:
            result = []
            async for m in self._pages(f"/tickets/{number}/messages", "messages"):
                result.append(Message(
                    id=self.cid(id_from_href(m.get("href")), "msg"),
                    ticket_id=self.cid(number),
                    author=_link(m, "author") or "unknown",
                    body=m.get("plain_text_body") or m.get("body") or "",
                    body_html=m.get("body"),
                    type=message_type(m.get("note")),
                    created_at=m.get("created_at") or utc_now_iso(),
                ))
            return result

        return [SubResource("messages", messages)]

    def sections(self) -> List[ExportSection]:
        return [
            ExportSection("customers", "customers", self._customers),
            ExportSection("agents", "customers", self._agents),
            ExportSection("organizations", "organizations", self._organizations),
            ExportSection("kb articles", "kb_articles", self._articles),
        ]

    async def _customers(self) -> AsyncIterator[Customer]:
        self._company_names.clear()
        async for c in self._pages("/customers", "customers"):
            company = c.get("company_name")
            if company:
                self._company_names.add(company)
            yield Customer(
                id=self.cid(c["email"], "user"),
                external_id=c["email"],
                source=self.name,
                name=c.get("name") or c["email"],
                email=c["email"],
                phone=c.get("phone_number"),
                org_id=self.cid(company, "org") if company else None,
            )

    async def _agents(self) -> AsyncIterator[Customer]:
        data = await self.request("/agents")
        for a in data.get("agents") or []:
            yield Customer(
                id=self.cid(a["email"], "agent"),
                external_id=f"agent-{a['email']}",
                source=self.name,
                name=f"{a.get('first_name') or ''} {a.get('last_name') or ''}".strip(),
                email=a["email"],
            )

    async def _organizations(self) -> AsyncIterator[Organization]:
        for name in sorted(self._company_names):
            yield Organization(id=self.cid(name, "org"), external_id=name, source=self.name, name=name)

    async def _articles(self) -> AsyncIterator[KBArticle]:
        data = await self.request("/kb")
        for kb in data.get("knowledge_bases") or []:
            async for a in self._pages(f"/kb/{kb['id']}/articles/search", "articles"):
                yield KBArticle(
                    id=self.cid(a["id"], "kb"),
                    external_id=str(a["id"]),
                    source=self.name,
                    title=a.get("title") or "",
                    body=a.get("body") or "",
                    category_path=[p for p in (kb.get("title"), a.get("category_id")) if p],
                )

    # =========================================================================
    # Migration
    # =========================================================================

    async def create_ticket(self, draft: TicketDraft, context: MigrationContext) -> CreatedTicketRef:
        # No priority concept on Groove tickets
        ticket: Dict[str, Any] = {
            "to": draft.requester,
            "body": draft.body,
            "subject": draft.subject,
            "state": to_target_status(self.name, draft.status),
        }
        if draft.tags:
            ticket["tags"] = draft.tags

        result = await self.request("/tickets", method="POST", body=ticket)
        number = str(result["ticket"]["number"])
        return CreatedTicketRef(id=number, display_id=number)

    async def _post_message(self, ticket_id: str, body: str, note: bool) -> None:
        await self.request(f"/tickets/{ticket_id}/messages", method="POST", body={"body": body, "note": note})

    async def reply(self, ticket_id: str, body: str, context: MigrationContext) -> None:
        await self._post_message(ticket_id, body, note=False)

    async def add_note(self, ticket_id: str, body: str, context: MigrationContext) -> None:
        await self._post_message(ticket_id, body, note=True)
