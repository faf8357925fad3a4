"""
Tests for the external list wire format.
"""

import pytest

from kizeo_sync.list_codec import ListItem, decode_item, encode_item, merge_key_from_item

pytestmark = pytest.mark.unit

SAMPLE = (
    "ACME:ACME\\CE2:CE2\\SEC03:SEC03|Porte sectionnelle:Porte sectionnelle|2015:2015|"
    "SN123:SN123|Hormann:Hormann|:|3000:3000|4000:4000|3001:3001|77:77|S40:S40"
)


class TestEncode:
    def test_layout(self):
        item = ListItem(
            company="ACME",
            visit_code="CE2",
            number="SEC03",
            label="Porte sectionnelle",
            commissioning_year="2015",
            serial_number="SN123",
            brand="Hormann",
            width="3000",
            height="4000",
            contact_id="3001",
            company_id="77",
            agency_code="S40",
        )
        assert encode_item(item) == SAMPLE

    def test_empty_values_are_bare_colons(self):
        encoded = encode_item(ListItem(visit_code="CE1", number="RID01", contact_id="1"))
        assert encoded.startswith(":\\CE1:CE1\\RID01:RID01|:|")
        assert encoded.count("|") == 10

    def test_separators_removed_from_values(self):
        item = ListItem.from_values(company="A|B\\C", number="SEC01", contact_id=5, height=None)
        assert item.company == "A/B/C"
        assert item.contact_id == "5"
        assert item.height == ""


class TestDecode:
    def test_decode_sample(self):
        item = decode_item(SAMPLE)
        assert item.company == "ACME"
        assert item.visit_code == "CE2"
        assert item.number == "SEC03"
        assert item.length == ""
        assert item.contact_id == "3001"
        assert item.agency_code == "S40"
        assert encode_item(item) == SAMPLE

    def test_short_string_decodes_missing_as_empty(self):
        item = decode_item("Manual entry")
        assert item.company == "Manual entry"
        assert item.number == ""
        assert item.agency_code == ""


class TestMergeKey:
    def test_key_from_wire(self):
        assert merge_key_from_item(SAMPLE) == "3001\\CE2\\SEC03"
        assert merge_key_from_item(SAMPLE) == decode_item(SAMPLE).merge_key

    def test_company_change_keeps_key(self):
        renamed = SAMPLE.replace("ACME:ACME", "ACME SAS:ACME SAS")
        assert merge_key_from_item(renamed) == merge_key_from_item(SAMPLE)

    @pytest.mark.parametrize(
        "raw",
        [
            "",
            "Hand-written entry",
            "ACME:ACME\\CE2:CE2|x:x",
            SAMPLE.replace("3001:3001", ":"),
            SAMPLE.replace("SEC03:SEC03", ":"),
        ],
    )
    def test_incomplete_entries_have_no_key(self, raw):
        assert merge_key_from_item(raw) is None


FULL_ITEM = dict(
    company="ACME",
    visit_code="CE2",
    number="SEC03",
    label="Porte sectionnelle",
    commissioning_year="2015",
    serial_number="SN123",
    brand="Hormann",
    length="1200",
    width="3000",
    height="4000",
    contact_id="3001",
    company_id="77",
    agency_code="S40",
)


class TestRoundTrip:
    @pytest.mark.parametrize(
        "values",
        [
            {},
            {"visit_code": "CE1", "number": "RID01", "contact_id": "1"},
            {"company": "Société Générale", "label": "Portail battant élévé", "brand": "Façade"},
            FULL_ITEM,
            {**FULL_ITEM, "serial_number": "SN:123", "label": "Porte: 3m", "brand": "A:B"},
            {**FULL_ITEM, "number": "SEC:03", "company": "ACME:"},
            {**FULL_ITEM, "company": "A|B\\C", "label": "x|y", "serial_number": ":\\:"},
            {"label": ":", "brand": "::", "serial_number": ": :"},
        ],
        ids=["empty", "key-only", "accents", "full", "colons", "colon-in-key", "separators", "bare-colons"],
    )
    def test_decode_inverts_encode(self, values):
        item = ListItem.from_values(**values)

        assert decode_item(encode_item(item)) == item

    def test_colon_in_number_keeps_merge_key(self):
        item = ListItem.from_values(**{**FULL_ITEM, "number": "SEC:03"})

        assert merge_key_from_item(encode_item(item)) == item.merge_key == "3001\\CE2\\SEC:03"

    def test_separators_in_raw_item_are_sanitized_on_encode(self):
        raw = ListItem(company="A|B", visit_code="CE1", number="N\\1", contact_id="9")

        encoded = encode_item(raw)

        assert encoded.count("|") == 10
        assert decode_item(encoded).number == "N/1"

    def test_hand_edited_segment_uses_last_value(self):
        assert decode_item("Old name:ACME\\CE1:CE1\\X:X").company == "ACME"
