"""
Register document normalization.

Turns the upstream XML list of producers into a flat list of ``Record`` objects.
The upstream has renamed its containers and fields across versions, so both the
location of the producer entries and the name of every field are looked up in
ordered alias tables. Adding support for a new upstream variant means adding a
row to ``CONTAINER_PATHS`` or ``FIELD_ALIASES``.
"""
from __future__ import annotations

import logging
from xml.etree import ElementTree as ET

from lucidlookup.pipeline.types import Record

logger = logging.getLogger(__name__)

# The first element of each path is the document root tag.
CONTAINER_PATHS: tuple[tuple[str, ...], ...] = (
    ("Root", "ListOfProducers", "Producer"),
    ("producers", "producer"),
    ("RegisterExcerpt", "Producer"),
    ("Producers", "Producer"),
)

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "registration_number": ("RegistrationNumber", "registrationNumber", "registration_number", "RegNr"),
    "company_name": ("ProducerName", "Name", "CompanyName", "name"),
    "vat_number": ("VATNumber", "UstIdNr", "vat_number"),
    "tax_number": ("TaxNumber", "Steuernummer", "tax_number"),
    "address": ("Address", "address"),
    "city": ("City", "city"),
    "postal_code": ("PostalCode", "postal_code"),
}


class ParseError(ValueError):
    """The register document could not be parsed."""


class MalformedDocument(ParseError):
    pass


def _local_name(tag: str) -> str:
    # "{namespace}Producer" -> "Producer"
    if tag.startswith("{"):
        return tag.rsplit("}", 1)[-1]
    return tag


def _element_text(elem: ET.Element) -> str:
    if len(elem) == 0:
        return (elem.text or "").strip()
    parts = [t.strip() for t in elem.itertext() if t and t.strip()]
    return " ".join(parts)


def _children_named(elem: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in elem if _local_name(child.tag) == name]


def find_entries(root: ET.Element) -> tuple[list[ET.Element], tuple[str, ...] | None]:
    """Return producer entries from the first container path that holds any."""
    root_name = _local_name(root.tag)
    for path in CONTAINER_PATHS:
        if path[0] != root_name:
            continue
        level = [root]
        for name in path[1:]:
            level = [child for parent in level for child in _children_named(parent, name)]
            if not level:
                break
        if level:
            return level, path
    return [], None


def _entry_values(entry: ET.Element) -> dict[str, str]:
    values: dict[str, str] = {}
    for key, value in entry.attrib.items():
        values.setdefault(_local_name(key), value.strip())
    for child in entry:
        name = _local_name(child.tag)
        # Keep the first non-empty occurrence of repeated child elements.
        if not values.get(name):
            values[name] = _element_text(child)
    return values


def extract_record(entry: ET.Element) -> Record | None:
    values = _entry_values(entry)
    extracted: dict[str, str] = {}
    for field_name, aliases in FIELD_ALIASES.items():
        extracted[field_name] = next((values[a] for a in aliases if values.get(a)), "")
    if not extracted["registration_number"]:
        return None
    return Record(**extracted)


def normalize(raw_document: bytes | str) -> list[Record]:
    """Parse the register document and extract one ``Record`` per producer entry.

    Raises:
        MalformedDocument: The document is not well-formed XML.

    A document whose layout matches none of the known container paths yields an
    empty list rather than an error.
    """
    try:
        root = ET.fromstring(raw_document)
    except ET.ParseError as e:
        raise MalformedDocument(f"Register document is not well-formed XML: {e}") from e

    entries, path = find_entries(root)
    if path is None:
        logger.warning(
            "No known producer container found (root=%s, children=%s)",
            _local_name(root.tag),
            sorted({_local_name(child.tag) for child in root})[:20],
        )
        return []

    logger.info("Found %d producer entries under %s", len(entries), "/".join(path))
    records: list[Record] = []
    dropped = 0
    for entry in entries:
        record = extract_record(entry)
        if record is None:
            dropped += 1
            continue
        records.append(record)
    if dropped:
        logger.debug("Dropped %d entries without a registration number", dropped)
    return records
