"""Tests for register document normalization."""
from __future__ import annotations

import pytest

from conftest import register_xml_excerpt_layout, register_xml_root_layout
from lucidlookup.pipeline.normalize import (
    CONTAINER_PATHS,
    FIELD_ALIASES,
    MalformedDocument,
    ParseError,
    normalize,
)
from lucidlookup.pipeline.types import Record


class TestContainerLayouts:
    def test_root_list_of_producers_layout(self, sample_producers) -> None:
        records = normalize(register_xml_root_layout(sample_producers))
        assert [r.registration_number for r in records] == ["DE1234567890123", "de9876543210987"]

    def test_layout_variants_yield_identical_records(self, sample_producers) -> None:
        via_root = normalize(register_xml_root_layout(sample_producers))
        via_excerpt = normalize(register_xml_excerpt_layout(sample_producers))
        assert via_root == via_excerpt

    def test_lowercase_producers_layout(self) -> None:
        doc = b"<producers><producer><registration_number>DE1</registration_number>" \
              b"<name>Lower GmbH</name></producer></producers>"
        assert normalize(doc) == [Record(registration_number="DE1", company_name="Lower GmbH")]

    def test_bare_producers_layout(self) -> None:
        doc = b"<Producers><Producer><RegNr>DE2</RegNr><CompanyName>Bare AG</CompanyName></Producer></Producers>"
        assert normalize(doc) == [Record(registration_number="DE2", company_name="Bare AG")]

    def test_single_entry_is_still_a_list(self) -> None:
        doc = register_xml_root_layout([{"RegistrationNumber": "DE3"}])
        assert len(normalize(doc)) == 1

    def test_namespaced_document(self) -> None:
        doc = (
            b'<r:Root xmlns:r="urn:lucid"><r:ListOfProducers><r:Producer>'
            b"<r:RegistrationNumber>DE4</r:RegistrationNumber></r:Producer></r:ListOfProducers></r:Root>"
        )
        assert normalize(doc) == [Record(registration_number="DE4")]

    def test_unknown_layout_yields_no_records(self) -> None:
        doc = b"<Register><Companies><Company><RegistrationNumber>DE5</RegistrationNumber></Company></Companies></Register>"
        assert normalize(doc) == []

    def test_known_root_with_empty_container_yields_no_records(self) -> None:
        assert normalize(b"<Root><ListOfProducers/></Root>") == []

    def test_priority_order_is_stable(self) -> None:
        assert CONTAINER_PATHS[0] == ("Root", "ListOfProducers", "Producer")
        assert len(CONTAINER_PATHS) == 4


class TestFieldAliases:
    def test_first_non_empty_alias_wins(self) -> None:
        doc = register_xml_root_layout(
            [{"RegistrationNumber": "", "registrationNumber": "DE6", "ProducerName": "", "Name": "Fallback GmbH"}]
        )
        [record] = normalize(doc)
        assert record.registration_number == "DE6"
        assert record.company_name == "Fallback GmbH"

    def test_german_field_names(self) -> None:
        doc = register_xml_root_layout(
            [{"RegistrationNumber": "DE7", "UstIdNr": "DE999999999", "Steuernummer": "12/345/67890"}]
        )
        [record] = normalize(doc)
        assert record.vat_number == "DE999999999"
        assert record.tax_number == "12/345/67890"

    def test_attributes_are_considered(self) -> None:
        doc = b'<Producers><Producer RegistrationNumber="DE8" Name="Attr GmbH"/></Producers>'
        assert normalize(doc) == [Record(registration_number="DE8", company_name="Attr GmbH")]

    def test_entries_without_registration_number_are_dropped(self) -> None:
        doc = register_xml_root_layout(
            [{"Name": "No Number GmbH"}, {"RegistrationNumber": "   "}, {"RegistrationNumber": "DE9"}]
        )
        assert [r.registration_number for r in normalize(doc)] == ["DE9"]

    def test_values_stay_opaque_text(self) -> None:
        doc = register_xml_root_layout([{"RegistrationNumber": " de0001 ", "PostalCode": "01067"}])
        [record] = normalize(doc)
        # Whitespace is stripped by the parser step, case is left to the store.
        assert record.registration_number == "de0001"
        assert record.postal_code == "01067"

    def test_nested_address_is_flattened(self) -> None:
        doc = (
            b"<Root><ListOfProducers><Producer><RegistrationNumber>DE10</RegistrationNumber>"
            b"<Address><Street>Hauptstr. 1</Street><Zip>10115</Zip></Address>"
            b"</Producer></ListOfProducers></Root>"
        )
        [record] = normalize(doc)
        assert record.address == "Hauptstr. 1 10115"

    def test_every_record_field_has_aliases(self) -> None:
        assert set(FIELD_ALIASES) == set(Record.__dataclass_fields__)


def test_normalize_is_deterministic(sample_producers) -> None:
    raw = register_xml_root_layout(sample_producers)
    assert normalize(raw) == normalize(raw)


def test_accepts_text_documents(sample_producers) -> None:
    raw = register_xml_root_layout(sample_producers).decode()
    assert len(normalize(raw)) == 2


@pytest.mark.parametrize("raw", [b"<Root><ListOfProducers>", b"not xml at all", b""])
def test_malformed_documents_raise_parse_error(raw: bytes) -> None:
    with pytest.raises(MalformedDocument):
        normalize(raw)
    assert issubclass(MalformedDocument, ParseError)
