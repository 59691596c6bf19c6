"""Building and parsing of minimal XMP packets."""

import re
import xml.etree.ElementTree as ET
from xml.sax.saxutils import escape

from pixname.exceptions import CorruptContainerError
from pixname.models.metadata import MetadataFields


RDF_NS = "http://www.w3.org/1999/02/22-rdf-syntax-ns#"
DC_NS = "http://purl.org/dc/elements/1.1/"
EXIF_NS = "http://ns.adobe.com/exif/1.0/"
XMP_META_NS = "adobe:ns:meta/"

XPACKET_BEGIN = '<?xpacket begin="﻿" id="W5M0MpCehiHzreSzNTczkc9d"?>'
XPACKET_END = '<?xpacket end="w"?>'

# rdf:about value shared by every description block; readers merge blocks with the same subject
ABOUT = "uuid:faf5bdd5-ba3d-11da-ad31-d33d75182f1b"

_XPACKET_PI = re.compile(r"<\?xpacket[^>]*\?>")
_INVALID_XML_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")


def _text(value: str) -> str:
    return escape(_INVALID_XML_CHARS.sub("", value), {'"': "&quot;"})


def _description(prefix: str, namespace: str, body: str) -> str:
    return f'<rdf:Description rdf:about="{ABOUT}" xmlns:{prefix}="{namespace}">{body}</rdf:Description>'


def _alt(value: str) -> str:
    return f'<rdf:Alt><rdf:li xml:lang="x-default">{_text(value)}</rdf:li></rdf:Alt>'


def build_xmp_packet(fields: MetadataFields) -> str:
    """Serialize fields into an XMP packet.

    Each namespace gets its own rdf:Description block, which Windows Explorer
    requires to pick the values up from PNG files.
    """
    blocks: list[str] = []

    if fields.comment:
        blocks.append(_description("exif", EXIF_NS, f"<exif:UserComment>{_alt(fields.comment)}</exif:UserComment>"))
        blocks.append(_description("dc", DC_NS, f"<dc:description>{_alt(fields.comment)}</dc:description>"))

    if fields.tags:
        items = "".join(f"<rdf:li>{_text(tag)}</rdf:li>" for tag in fields.tags)
        blocks.append(_description("dc", DC_NS, f"<dc:subject><rdf:Bag>{items}</rdf:Bag></dc:subject>"))

    if fields.title:
        blocks.append(_description("dc", DC_NS, f"<dc:title>{_alt(fields.title)}</dc:title>"))

    if fields.author:
        creator = f"<dc:creator><rdf:Seq><rdf:li>{_text(fields.author)}</rdf:li></rdf:Seq></dc:creator>"
        blocks.append(_description("dc", DC_NS, creator))

    if fields.copyright:
        blocks.append(_description("dc", DC_NS, f"<dc:rights>{_alt(fields.copyright)}</dc:rights>"))

    return (
        XPACKET_BEGIN
        + f'<x:xmpmeta xmlns:x="{XMP_META_NS}">'
        + f'<rdf:RDF xmlns:rdf="{RDF_NS}">'
        + "".join(blocks)
        + "</rdf:RDF></x:xmpmeta>"
        + XPACKET_END
    )


def _list_items(root: ET.Element, namespace: str, tag: str) -> list[str]:
    items: list[str] = []
    for element in root.iter(f"{{{namespace}}}{tag}"):
        for li in element.iter(f"{{{RDF_NS}}}li"):
            if li.text and li.text.strip():
                items.append(li.text.strip())
        if not items and element.text and element.text.strip():
            # Simple-valued properties written by other tools
            items.append(element.text.strip())
    return items


def _first_item(root: ET.Element, namespace: str, tag: str) -> str:
    items = _list_items(root, namespace, tag)
    return items[0] if items else ""


def parse_xmp_packet(packet: str) -> MetadataFields:
    """Read the fields this project writes back out of an XMP packet.

    Raises:
        CorruptContainerError: If the packet is not well-formed XML.
    """
    body = _XPACKET_PI.sub("", packet).strip().lstrip("﻿")
    if not body:
        return MetadataFields()

    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise CorruptContainerError(f"Malformed XMP packet: {e}") from e

    return MetadataFields(
        title=_first_item(root, DC_NS, "title"),
        comment=_first_item(root, EXIF_NS, "UserComment") or _first_item(root, DC_NS, "description"),
        tags=_list_items(root, DC_NS, "subject"),
        author=_first_item(root, DC_NS, "creator"),
        copyright=_first_item(root, DC_NS, "rights"),
    )
