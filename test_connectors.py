"""Per-connector normalization, verify and write-payload tests."""

import asyncio

import pytest

from conftest import FakeResponse
from connectors import ConnectorConfig, MigrationContext, TicketDraft, create_connector
from connectors.base import items_at
from connectors.errors import MalformedResponse
from connectors.groove import id_from_href
from connectors.kayako_classic import field_text


def connector(kind, credentials, session=None, sleep=None):
    kwargs = {}
    if session is not None:
        kwargs["session"] = session
    if sleep is not None:
        kwargs["sleep"] = sleep
    return create_connector(ConnectorConfig(kind, credentials), **kwargs)


def run(coro):
    return asyncio.run(coro)


FRESHDESK = {"FRESHDESK_SUBDOMAIN": "acme", "FRESHDESK_API_KEY": "k"}
GROOVE = {"GROOVE_API_TOKEN": "t"}
HELPCRUNCH = {"HELPCRUNCH_API_KEY": "k"}
KAYAKO = {
    "KAYAKO_CLASSIC_DOMAIN": "help.example.test",
    "KAYAKO_CLASSIC_API_KEY": "key",
    "KAYAKO_CLASSIC_SECRET_KEY": "secret",
}
ZENDESK = {"ZENDESK_SUBDOMAIN": "acme", "ZENDESK_EMAIL": "a@acme.test", "ZENDESK_TOKEN": "t"}


class TestItemsAt:
    def test_dotted_key(self):
        assert items_at({"tickets": {"ticket": [{"id": 1}]}}, "tickets.ticket") == [{"id": 1}]

    def test_missing_key(self):
        assert items_at({"tickets": ""}, "tickets.ticket") == []

    def test_body_is_list(self):
        assert items_at([1, 2], None) == [1, 2]
        assert items_at({}, None) == []


class TestFreshdesk:
    def test_normalize_ticket(self):
        ticket = connector("freshdesk", FRESHDESK).normalize_ticket({
            "id": 17, "subject": "Refund", "status": 4, "priority": 3, "requester_id": 5,
            "tags": ["billing", "billing"], "created_at": "2024-02-01T10:00:00Z",
        })
        assert ticket.id == "fd-17"
        assert ticket.status == "solved"
        assert ticket.priority == "high"
        assert ticket.requester == "5"
        assert ticket.tags == ["billing"]
        assert ticket.updated_at == "2024-02-01T10:00:00Z"

    def test_private_conversation_is_note(self, session, sleep):
        session.add("GET", "/api/v2/tickets/17/conversations", FakeResponse(200, [
            {"id": 1, "body_text": "hello", "private": False, "created_at": "2024-02-01T10:00:00Z"},
            {"id": 2, "body_text": "psst", "private": True, "created_at": "2024-02-01T11:00:00Z"},
        ]))
        fd = connector("freshdesk", FRESHDESK, session, sleep)

        [sub] = fd.ticket_sub_resources({"id": 17})
        messages = run(sub.fetch())

        assert [m.type for m in messages] == ["reply", "note"]
        assert messages[1].id == "fd-msg-2"

    def test_create_without_email_uses_fallback_requester(self, session, sleep):
        session.add("POST", "/api/v2/tickets", FakeResponse(201, {"id": 77}))
        fd = connector("freshdesk", FRESHDESK, session, sleep)

        ref = run(fd.create_ticket(TicketDraft(source_id="zd-1", subject="s", body="b", requester="12"), MigrationContext()))

        assert ref.id == "77"
        assert session.calls[0].json["email"] == "devops@acme.freshdesk.com"
        assert session.calls[0].json["status"] == 2
        assert session.calls[0].json["priority"] == 2

    def test_broken_kb_folder_skipped(self, session, sleep):
        session.add("GET", "/api/v2/solutions/categories", FakeResponse(200, [{"id": 1, "name": "FAQ"}]))
        session.add(
            "GET", "/api/v2/solutions/categories/1/folders",
            FakeResponse(200, [{"id": 10, "name": "Broken"}, {"id": 11, "name": "Billing"}]),
        )
        session.add("GET", "/api/v2/solutions/folders/10/articles", FakeResponse(500, "err"))
        session.add(
            "GET", "/api/v2/solutions/folders/11/articles",
            FakeResponse(200, [{"id": 3, "title": "Refunds", "description": "<p>How</p>"}]),
        )
        fd = connector("freshdesk", FRESHDESK, session, sleep)

        async def collect():
            return [a async for a in fd._articles()]

        articles = run(collect())
        assert [a.id for a in articles] == ["fd-kb-3"]
        assert articles[0].category_path == ["FAQ", "Billing"]


class TestGroove:
    def test_id_from_href(self):
        assert id_from_href("https://api.groovehq.com/v1/customers/jo@example.com") == "jo@example.com"
        assert id_from_href(None) is None

    def test_normalize_ticket(self):
        ticket = connector("groove", GROOVE).normalize_ticket({
            "number": 8, "title": "Hi", "state": "opened", "tags": ["a"],
            "created_at": "2024-03-01T00:00:00Z",
            "links": {"customer": {"href": "https://api.groovehq.com/v1/customers/jo@example.com"}},
        })
        assert ticket.id == "gv-8"
        assert ticket.status == "open"
        assert ticket.priority == "normal"
        assert ticket.requester == "jo@example.com"

    def test_rate_limit_503_default_wait(self, session, sleep):
        session.add("GET", "/v1/agents", FakeResponse(503, ""), FakeResponse(200, {"agents": []}))
        result = run(connector("groove", GROOVE, session, sleep).verify())
        assert result.success is True
        assert sleep.delays == [90.0]

    def test_create_drops_priority(self, session, sleep):
        session.add("POST", "/v1/tickets", FakeResponse(201, {"ticket": {"number": 31}}))
        gv = connector("groove", GROOVE, session, sleep)

        ref = run(gv.create_ticket(
            TicketDraft(source_id="zd-1", subject="s", body="b", requester="jo@example.com", priority="urgent"),
            MigrationContext(),
        ))

        assert ref.id == "31"
        assert "priority" not in session.calls[0].json
        assert session.calls[0].json["state"] == "opened"

    def test_organizations_from_company_names(self, session, sleep):
        session.add("GET", "/v1/customers", FakeResponse(200, {"customers": [
            {"email": "a@x.test", "company_name": "Acme"},
            {"email": "b@x.test", "company_name": "Acme"},
            {"email": "c@x.test"},
        ]}))
        gv = connector("groove", GROOVE, session, sleep)

        async def collect():
            customers = [c async for c in gv._customers()]
            orgs = [o async for o in gv._organizations()]
            return customers, orgs

        customers, orgs = run(collect())
        assert len(customers) == 3
        assert customers[0].org_id == "gv-org-Acme"
        assert [o.name for o in orgs] == ["Acme"]


class TestHelpcrunch:
    def test_normalize_chat(self):
        ticket = connector("helpcrunch", HELPCRUNCH).normalize_ticket({
            "id": 4, "status": 5, "createdAt": 1700000000, "lastMessageText": "Where is my order?",
            "customer": {"id": 99}, "department": {"id": 2, "name": "Sales"},
        })
        assert ticket.id == "hc-4"
        assert ticket.status == "closed"
        assert ticket.requester == "99"
        assert ticket.tags == ["Sales"]
        assert ticket.subject == "Where is my order?"
        assert ticket.created_at == ticket.updated_at == "2023-11-14T22:13:20.000Z"

    def test_customer_search_failure_falls_back_to_create(self, session, sleep):
        session.add("GET", "/v1/customers", FakeResponse(500, "search down"))
        session.add("POST", "/v1/customers", FakeResponse(200, {"id": 12}))
        hc = connector("helpcrunch", HELPCRUNCH, session, sleep)
        context = MigrationContext()

        first = run(hc.resolve_customer("jo@example.com", context))
        second = run(hc.resolve_customer("jo@example.com", context))

        assert first == second == "12"
        assert len(session.calls) == 2
        assert session.calls[1].json == {"email": "jo@example.com", "name": "jo"}


class TestKayakoClassic:
    def test_field_text_prefers_child_then_attribute(self):
        assert field_text({"id": "5", "@_id": "6"}, "id") == "5"
        assert field_text({"@_id": "6"}, "id") == "6"
        assert field_text("plain", "id") == ""

    def test_create_ticket_form_payload(self, session, sleep):
        session.add("GET", "/Tickets/TicketStatus", FakeResponse(500, ""))
        session.add("GET", "/Tickets/TicketPriority", FakeResponse(500, ""))
        session.add(
            "POST", "/Tickets/Ticket",
            FakeResponse(200, "<tickets><ticket id=\"88\"><displayid>XYZ-88</displayid></ticket></tickets>"),
        )
        kyc = connector("kayako-classic", dict(KAYAKO, KAYAKO_CLASSIC_DEPARTMENT_ID="3"), session, sleep)

        ref = run(kyc.create_ticket(
            TicketDraft(source_id="zd-1", subject="s", body="b", requester="jo@example.com", priority="high"),
            MigrationContext(),
        ))

        assert ref.id == "88"
        assert ref.display_id == "XYZ-88"
        form = session.calls_to("/Tickets/Ticket", "POST")[0].data
        assert form["departmentid"] == "3"
        assert form["email"] == "jo@example.com"
        assert form["ticketstatusid"] == "1"
        assert form["ticketpriorityid"] == "2"
        assert {"apikey", "salt", "signature"} <= set(form)

    def test_create_without_ticket_in_response(self, session, sleep):
        session.add("GET", "/Tickets/TicketStatus", FakeResponse(200, "<ticketstatuses/>"))
        session.add("GET", "/Tickets/TicketPriority", FakeResponse(200, "<ticketpriorities/>"))
        session.add("POST", "/Tickets/Ticket", FakeResponse(200, "<tickets></tickets>"))
        kyc = connector("kayako-classic", KAYAKO, session, sleep)

        with pytest.raises(MalformedResponse):
            run(kyc.create_ticket(TicketDraft(source_id="zd-1", subject="s", body="b"), MigrationContext()))

    def test_note_uses_note_endpoint(self, session, sleep):
        session.add("POST", "/Tickets/TicketNote/Ticket/88", FakeResponse(200, "<notes/>"))
        kyc = connector("kayako-classic", KAYAKO, session, sleep)

        run(kyc.add_note("88", "internal", MigrationContext()))

        assert session.calls[0].data["contents"] == "internal"


class TestVerify:
    def test_zendesk_success(self, session, sleep):
        session.add("GET", "/api/v2/users/me.json", FakeResponse(200, {"user": {"name": "Ann"}}))
        session.add("GET", "/api/v2/tickets/count.json", FakeResponse(200, {"count": {"value": 12}}))

        result = run(connector("zendesk", ZENDESK, session, sleep).verify())

        assert result.success is True
        assert result.detail == "Authenticated as Ann"
        assert result.ticket_count == 12

    def test_auth_failure_reported_not_raised(self, session, sleep):
        session.add("GET", "/api/v2/users/me.json", FakeResponse(401, "Couldn't authenticate you"))

        result = run(connector("zendesk", ZENDESK, session, sleep).verify())

        assert result.success is False
        assert "401" in result.error
