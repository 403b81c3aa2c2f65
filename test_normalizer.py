"""Tests for the canonical normalizer."""

import pytest

from connectors.normalizer import (
    KAYAKO_CLASSIC_PRIORITY_FALLBACK,
    KAYAKO_CLASSIC_STATUS_FALLBACK,
    PRIORITY_BUCKETS,
    SOURCE_PREFIXES,
    STATUS_BUCKETS,
    LabelLookup,
    canonical_id,
    epoch_to_iso,
    ensure_list,
    is_truthy,
    message_type,
    normalize_priority,
    normalize_status,
    parse_xml,
    split_tags,
    to_target_priority,
    to_target_status,
    validate_prefixes,
)
from core.models.canonical import MessageType, TicketPriority, TicketStatus

ODD_VALUES = [None, "", "   ", "???", 0, 99, 2.0, "CLOSED", "Awaiting Reply", [], {}]


class TestStatusMapping:
    @pytest.mark.parametrize("source", list(SOURCE_PREFIXES))
    @pytest.mark.parametrize("raw", ODD_VALUES)
    def test_status_is_total(self, source, raw):
        assert normalize_status(source, raw) in list(TicketStatus)

    @pytest.mark.parametrize("source", list(SOURCE_PREFIXES))
    @pytest.mark.parametrize("raw", ODD_VALUES)
    def test_priority_is_total(self, source, raw):
        assert normalize_priority(source, raw) in list(TicketPriority)

    @pytest.mark.parametrize("raw,expected", [
        (2, TicketStatus.OPEN),
        ("3", TicketStatus.PENDING),
        (4, TicketStatus.SOLVED),
        (5.0, TicketStatus.CLOSED),
        (42, TicketStatus.OPEN),
    ])
    def test_freshdesk_codes(self, raw, expected):
        assert normalize_status("freshdesk", raw) == expected

    def test_zendesk_hold(self):
        assert normalize_status("zendesk", "hold") == TicketStatus.ON_HOLD
        assert normalize_status("zendesk", "New") == TicketStatus.OPEN

    @pytest.mark.parametrize("label,expected", [
        ("In Progress", TicketStatus.PENDING),
        ("Waiting on customer", TicketStatus.ON_HOLD),
        ("Resolved", TicketStatus.SOLVED),
        ("Closed", TicketStatus.CLOSED),
        ("Escalated", TicketStatus.OPEN),
    ])
    def test_keyword_buckets_first_match_wins(self, label, expected):
        assert STATUS_BUCKETS.classify(label) == expected

    def test_priority_keywords(self):
        assert PRIORITY_BUCKETS.classify("Critical") == TicketPriority.URGENT
        assert PRIORITY_BUCKETS.classify("Medium") == TicketPriority.NORMAL


class TestCanonicalIds:
    def test_prefixes_unique(self):
        prefixes = list(SOURCE_PREFIXES.values())
        assert len(prefixes) == len(set(prefixes))

    def test_ids_do_not_collide_across_sources(self):
        ids = {canonical_id(source, 1) for source in SOURCE_PREFIXES}
        assert len(ids) == len(SOURCE_PREFIXES)

    def test_kind_segment(self):
        assert canonical_id("freshdesk", 42, "msg") == "fd-msg-42"
        assert canonical_id("kayako-classic", 7) == "kyc-7"

    def test_unknown_source_rejected(self):
        with pytest.raises(ValueError):
            canonical_id("nowhere", 1)

    def test_validate_prefixes_rejects_duplicates(self):
        with pytest.raises(ValueError):
            validate_prefixes({"a": "x", "b": "x"})

    def test_validate_prefixes_rejects_dashes(self):
        with pytest.raises(ValueError):
            validate_prefixes({"a": "zd", "b": "zd-x"})


class TestLabelLookup:
    def make(self):
        return LabelLookup(fallback=dict(KAYAKO_CLASSIC_STATUS_FALLBACK), buckets=STATUS_BUCKETS)

    def test_fallback_before_load(self):
        lookup = self.make()
        assert lookup.classify("3") == TicketStatus.CLOSED

    def test_empty_fetch_degrades(self):
        lookup = self.make()
        lookup.load({})
        assert lookup.degraded is True
        assert lookup.classify("2") == TicketStatus.PENDING

    def test_fetched_labels_win(self):
        lookup = self.make()
        lookup.load({"1": "Open", "9": "Resolved"})
        assert lookup.degraded is False
        assert lookup.classify("9") == TicketStatus.SOLVED
        assert lookup.classify("3") == TicketStatus.OPEN

    def test_unknown_id_defaults(self):
        assert self.make().classify("404") == TicketStatus.OPEN

    def test_reverse_lookup(self):
        lookup = LabelLookup(fallback=dict(KAYAKO_CLASSIC_PRIORITY_FALLBACK), buckets=PRIORITY_BUCKETS)
        assert lookup.id_for(TicketPriority.HIGH) == "2"
        assert lookup.id_for("low") == "4"
        assert self.make().id_for(TicketStatus.SOLVED) is None


class TestReverseVocabulary:
    def test_freshdesk_status_codes(self):
        assert to_target_status("freshdesk", TicketStatus.SOLVED) == 4
        assert to_target_priority("freshdesk", "urgent") == 4

    def test_missing_concept_dropped(self):
        assert to_target_priority("groove", TicketPriority.HIGH) is None
        assert to_target_status("helpcrunch", TicketStatus.OPEN) is None


class TestValues:
    @pytest.mark.parametrize("flag,expected", [
        (True, True), ("1", True), ("true", True), (1, True),
        (False, False), ("0", False), (None, False), ("", False),
    ])
    def test_is_truthy(self, flag, expected):
        assert is_truthy(flag) is expected

    def test_message_type_exactly_one(self):
        assert message_type("1") == MessageType.NOTE
        assert message_type(None) == MessageType.REPLY

    def test_epoch_to_iso(self):
        assert epoch_to_iso("1700000000") == "2023-11-14T22:13:20.000Z"
        assert epoch_to_iso(0) == "1970-01-01T00:00:00.000Z"

    def test_epoch_garbage_is_now(self):
        assert epoch_to_iso("soon").endswith("Z")

    def test_split_tags(self):
        assert split_tags("billing, vip,,") == ["billing", "vip"]
        assert split_tags(["a", " "]) == ["a"]
        assert split_tags(None) == []

    def test_ensure_list(self):
        assert ensure_list(None) == []
        assert ensure_list("") == []
        assert ensure_list({"id": 1}) == [{"id": 1}]


class TestParseXml:
    def test_array_tag_singleton_is_list(self):
        data = parse_xml("<users><user><id>1</id></user></users>")
        assert data == {"users": {"user": [{"id": "1"}]}}

    def test_empty_collection(self):
        assert parse_xml("<users></users>") == {"users": ""}

    def test_repeated_non_array_tag_becomes_list(self):
        data = parse_xml("<a><b>1</b><b>2</b></a>", array_tags=())
        assert data == {"a": {"b": ["1", "2"]}}

    def test_attributes_and_text(self):
        data = parse_xml('<post id="3" private="1">Hello</post>', array_tags=())
        assert data == {"post": {"@_id": "3", "@_private": "1", "#text": "Hello"}}

    def test_not_well_formed(self):
        with pytest.raises(ValueError):
            parse_xml("<users>")
