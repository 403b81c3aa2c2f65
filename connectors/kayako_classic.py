"""Kayako Classic connector.

REST+XML against ``https://<domain>/api/index.php?e=<endpoint>``. Every
attempt is signed with a fresh salt (HmacAuth); credentials ride in the query
string for GET and in the form body for POST/PUT.

Tickets carry numeric status/priority ids, translated through maps fetched
from /Tickets/TicketStatus and /Tickets/TicketPriority. When those endpoints
fail, the hard-coded fallback tables are used instead.
"""

from typing import Any, AsyncIterator, Dict, List, Optional

from connectors.auth import AuthStrategy, HmacAuth
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
from connectors.errors import HelpdeskError, MalformedResponse
from connectors.normalizer import (
    KAYAKO_CLASSIC_PRIORITY_FALLBACK,
    KAYAKO_CLASSIC_STATUS_FALLBACK,
    PRIORITY_BUCKETS,
    STATUS_BUCKETS,
    XML_ARRAY_TAGS,
    LabelLookup,
    epoch_to_iso,
    get_number,
    get_text,
    message_type,
    split_tags,
)
from connectors.pagination import MarkerPagination, OffsetWindowPagination, paginate
from core.models.canonical import Customer, KBArticle, Message, MessageType, Organization, Rule, Ticket
from core.observability.logging import get_logger

logger = get_logger(__name__)

TICKET_WINDOW = "/Tickets/Ticket/ListAll/-1/-1/-1/-1/{count}/{start}"
DEFAULT_DEPARTMENT_ID = "1"


def field_text(item: Any, name: str) -> str:
    """Text of a child element, falling back to an attribute of the same name."""
    if not isinstance(item, dict):
        return ""
    if name in item:
        return get_text(item[name]).strip()
    return str(item.get(f"@_{name}", "")).strip()


@register_connector("kayako-classic")
class KayakoClassicConnector(HelpdeskConnector):
    """Kayako Classic connector.

    Required configuration:
    - KAYAKO_CLASSIC_DOMAIN
    - KAYAKO_CLASSIC_API_KEY
    - KAYAKO_CLASSIC_SECRET_KEY

    Optional configuration:
    - KAYAKO_CLASSIC_DEPARTMENT_ID: department for migrated tickets (default: 1)
    """

    PAGE_SIZE = 100
    USER_PAGE_SIZE = 1000

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.statuses = LabelLookup(fallback=dict(KAYAKO_CLASSIC_STATUS_FALLBACK), buckets=STATUS_BUCKETS)
        self.priorities = LabelLookup(fallback=dict(KAYAKO_CLASSIC_PRIORITY_FALLBACK), buckets=PRIORITY_BUCKETS)
        self._metadata_loaded = False

    def executor_config(self) -> ExecutorConfig:
        return ExecutorConfig(
            base_url=f"https://{self.config.get('KAYAKO_CLASSIC_DOMAIN')}/api/index.php",
            source_name="Kayako Classic",
            response_format="xml",
            body_format="form",
            endpoint_param="e",
            xml_array_tags=XML_ARRAY_TAGS,
        )

    def auth_strategy(self) -> AuthStrategy:
        return HmacAuth(self.config.get("KAYAKO_CLASSIC_API_KEY"), self.config.get("KAYAKO_CLASSIC_SECRET_KEY"))

    @property
    def department_id(self) -> str:
        return self.config.get("KAYAKO_CLASSIC_DEPARTMENT_ID") or DEFAULT_DEPARTMENT_ID

    async def _verify(self) -> VerifyResult:
        departments = items_at(await self.request("/Base/Department"), "departments.department")
        return VerifyResult(
            success=True,
            detail=f"{len(departments)} departments",
            ticket_count=await self._ticket_count(),
        )

    async def _ticket_count(self) -> Optional[int]:
        """Sum of per-department totals; None when the endpoint is not permitted."""
        try:
            data = await self.request("/Tickets/TicketCount")
        except HelpdeskError as e:
            logger.debug(f"Ticket count unavailable: {e}")
            return None
        counts = items_at(data, "ticketcount.departments.department")
        return sum(get_number(d.get("totalitems")) for d in counts if isinstance(d, dict))

    # =========================================================================
    # Metadata
    # =========================================================================

    async def _fetch_labels(self, endpoint: str, key: str) -> Dict[str, str]:
        try:
            data = await self.request(endpoint)
        except HelpdeskError as e:
            logger.warning(f"{endpoint} unavailable, using fallback table: {e}")
            return {}
        return {field_text(item, "id"): field_text(item, "title") for item in items_at(data, key)}

    async def load_metadata(self) -> None:
        self.statuses.load(await self._fetch_labels("/Tickets/TicketStatus", "ticketstatuses.ticketstatus"))
        self.priorities.load(await self._fetch_labels("/Tickets/TicketPriority", "ticketpriorities.ticketpriority"))
        self._metadata_loaded = True

    # =========================================================================
    # Export
    # =========================================================================

    async def iter_raw_tickets(self) -> AsyncIterator[Any]:
        strategy = OffsetWindowPagination(TICKET_WINDOW, self.PAGE_SIZE)

        async def fetch_page(start: int) -> List[Any]:
            return items_at(await self.request(strategy.window(start)), "tickets.ticket")

        async for batch in paginate(strategy, fetch_page):
            for raw in batch:
                yield raw

    def normalize_ticket(self, raw: Any) -> Ticket:
        ticket_id = field_text(raw, "id")
        if not ticket_id:
            raise MalformedResponse("Ticket element without an id", "/Tickets/Ticket/ListAll")
        created_at = epoch_to_iso(field_text(raw, "creationtime"))
        return Ticket(
            id=self.cid(ticket_id),
            external_id=ticket_id,
            source=self.name,
            subject=field_text(raw, "subject"),
            status=self.statuses.classify(field_text(raw, "statusid")),
            priority=self.priorities.classify(field_text(raw, "priorityid")),
            assignee=field_text(raw, "ownerstaffname") or None,
            requester=(
                field_text(raw, "email") or field_text(raw, "fullname") or str(get_number(raw.get("userid")))
            ),
            tags=split_tags(field_text(raw, "tags")),
            created_at=created_at,
            updated_at=epoch_to_iso(field_text(raw, "lastactivity")) if field_text(raw, "lastactivity") else created_at,
        )

    def ticket_sub_resources(self, raw: Any) -> List[SubResource]:
        ticket_id = field_text(raw, "id")

        async def posts() -> List[Message]:
            data = await self.request(f"/Tickets/TicketPost/ListAll/{ticket_id}")
            messages = []
            for p in items_at(data, "ticketposts.ticketpost"):
                contents = field_text(p, "contents")
                messages.append(Message(
                    id=self.cid(field_text(p, "ticketpostid") or field_text(p, "id"), "msg"),
                    ticket_id=self.cid(ticket_id),
                    author=field_text(p, "fullname") or field_text(p, "email") or "Unknown",
                    body=contents,
                    body_html=contents if field_text(p, "ishtml") == "1" else None,
                    type=message_type(field_text(p, "isprivate")),
                    created_at=epoch_to_iso(field_text(p, "dateline")),
                ))
            return messages

        async def notes() -> List[Message]:
            data = await self.request(f"/Tickets/TicketNote/ListAll/{ticket_id}")
            messages = []
            for n in items_at(data, "ticketnotes.ticketnote"):
                messages.append(Message(
                    id=self.cid(field_text(n, "ticketnoteid") or field_text(n, "id"), "note"),
                    ticket_id=self.cid(ticket_id),
                    author=field_text(n, "creatorstaffname") or str(get_number(n.get("creatorstaffid"))),
                    body=field_text(n, "contents"),
                    type=MessageType.NOTE,
                    created_at=epoch_to_iso(field_text(n, "creationdate")),
                ))
            return messages

        return [SubResource("posts", posts), SubResource("notes", notes)]

    def sections(self) -> List[ExportSection]:
        return [
            ExportSection("users", "customers", self._users),
            ExportSection("organizations", "organizations", self._organizations),
            ExportSection("kb articles", "kb_articles", self._articles),
            ExportSection("departments", "rules", self._departments),
        ]

    async def _users(self) -> AsyncIterator[Customer]:
        strategy = MarkerPagination(self.USER_PAGE_SIZE, id_of=lambda u: int(field_text(u, "id")))

        async def fetch_page(marker: int) -> List[Any]:
            data = await self.request(f"/Base/User/Filter/{marker}/{self.USER_PAGE_SIZE}")
            return items_at(data, "users.user")

        async for batch in paginate(strategy, fetch_page):
            for u in batch:
                user_id = field_text(u, "id")
                org_id = field_text(u, "userorganizationid")
                yield Customer(
                    id=self.cid(user_id, "user"),
                    external_id=user_id,
                    source=self.name,
                    name=field_text(u, "fullname"),
                    email=field_text(u, "email"),
                    phone=field_text(u, "phone") or None,
                    org_id=self.cid(org_id, "org") if get_number(org_id) else None,
                )

    async def _organizations(self) -> AsyncIterator[Organization]:
        data = await self.request("/Base/UserOrganization")
        for o in items_at(data, "userorganizations.userorganization"):
            org_id = field_text(o, "id")
            yield Organization(id=self.cid(org_id, "org"), external_id=org_id, source=self.name, name=field_text(o, "name"))

    async def _articles(self) -> AsyncIterator[KBArticle]:
        data = await self.request("/Knowledgebase/Article")
        for a in items_at(data, "kbarticles.kbarticle"):
            article_id = field_text(a, "kbarticleid") or field_text(a, "id")
            category = field_text(a, "categoryid")
            yield KBArticle(
                id=self.cid(article_id, "kb"),
                external_id=article_id,
                source=self.name,
                title=field_text(a, "subject"),
                body=field_text(a, "contentstext") or field_text(a, "contents"),
                category_path=[category] if get_number(category) else [],
            )

    async def _departments(self) -> AsyncIterator[Rule]:
        data = await self.request("/Base/Department")
        for d in items_at(data, "departments.department"):
            dept_id = field_text(d, "id")
            yield Rule(
                id=self.cid(dept_id, "dept"),
                external_id=dept_id,
                source=self.name,
                type="automation",
                title=f"Department: {field_text(d, 'title')}",
                conditions={"module": field_text(d, "module"), "type": field_text(d, "type")},
                actions={},
                active=True,
            )

    # =========================================================================
    # Migration
    # =========================================================================

    async def create_ticket(self, draft: TicketDraft, context: MigrationContext) -> CreatedTicketRef:
        if not self._metadata_loaded:
            await self.load_metadata()

        body: Dict[str, str] = {
            "subject": draft.subject,
            "contents": draft.body,
            "departmentid": self.department_id,
            "fullname": draft.requester_name or draft.requester or "Migrated User",
            "autouserid": "1",
        }
        if "@" in draft.requester:
            body["email"] = draft.requester
        status_id = self.statuses.id_for(draft.status)
        if status_id:
            body["ticketstatusid"] = status_id
        priority_id = self.priorities.id_for(draft.priority)
        if priority_id:
            body["ticketpriorityid"] = priority_id

        result = await self.request("/Tickets/Ticket", method="POST", body=body)
        created = items_at(result, "tickets.ticket") or items_at(result, "ticket")
        if not created or not field_text(created[0], "id"):
            raise MalformedResponse("No ticket returned in create response", "/Tickets/Ticket")
        return CreatedTicketRef(id=field_text(created[0], "id"), display_id=field_text(created[0], "displayid") or None)

    async def reply(self, ticket_id: str, body: str, context: MigrationContext) -> None:
        await self.request(
            f"/Tickets/TicketPost/Ticket/{ticket_id}",
            method="POST",
            body={"subject": body[:60], "contents": body},
        )

    async def add_note(self, ticket_id: str, body: str, context: MigrationContext) -> None:
        # notecolor: 1=yellow 2=purple 3=blue 4=green 5=red
        await self.request(
            f"/Tickets/TicketNote/Ticket/{ticket_id}",
            method="POST",
            body={"contents": body, "notecolor": "1"},
        )
