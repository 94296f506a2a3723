"""ZIP/XML helpers for editing saved workbook packages as text.

Parts are rewritten with narrow regex substitutions; every part that is not
touched is copied through with its original ``ZipInfo`` and position.
"""

from __future__ import annotations

import io
import logging
import re
import zipfile
from datetime import date, datetime, time
from typing import Any, Mapping
from xml.sax.saxutils import escape

from openpyxl.cell.cell import ERROR_CODES
from openpyxl.utils.datetime import to_excel

from cert_sync.errors import ParseError

logger = logging.getLogger(__name__)

OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

WORKBOOK_PART = "xl/workbook.xml"
WORKBOOK_RELS_PART = "xl/_rels/workbook.xml.rels"

SHEET_ENTRY_RE = re.compile(r"<(?:\w+:)?sheet\b([^>]*?)/?>")
RELATIONSHIP_RE = re.compile(r"<(?:\w+:)?Relationship\b([^>]*?)/>")
ATTR_RE = re.compile(r"([\w:]+)\s*=\s*\"([^\"]*)\"")
CELL_XML_RE = re.compile(
    r"<(?P<p>(?:\w+:)?)c\b(?P<attrs>[^>]*?)(?:/>|>(?P<body>.*?)</(?P=p)c>)",
    re.DOTALL,
)
VALUE_XML_RE = re.compile(r"<(?P<p>(?:\w+:)?)v\s*/>|<(?P<q>(?:\w+:)?)v>.*?</(?P=q)v>", re.DOTALL)
TYPE_ATTR_RE = re.compile(r"\s+t=\"[^\"]*\"")
FORMULA_OPEN_RE = re.compile(r"<(?:\w+:)?f\b")


def parse_attrs(text: str) -> dict[str, str]:
    return {name: value for name, value in ATTR_RE.findall(text)}


def open_package(data: bytes) -> zipfile.ZipFile:
    if data[:8] == OLE_MAGIC:
        raise ParseError(
            "Workbook is encrypted or in legacy .xls format. Save it as an unprotected .xlsx file first."
        )
    try:
        return zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as exc:
        raise ParseError("Unable to read workbook. Please provide a valid .xlsx file.") from exc


def rewrite_package(archive: zipfile.ZipFile, replacements: Mapping[str, bytes | None]) -> bytes:
    """Copy ``archive`` into new bytes, swapping or dropping the named parts.

    A ``None`` replacement removes the part.
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zout:
        for item in archive.infolist():
            if item.filename in replacements:
                data = replacements[item.filename]
                if data is None:
                    continue
            else:
                data = archive.read(item.filename)
            zout.writestr(item, data)
    return buffer.getvalue()


def resolve_target(base_dir: str, target: str) -> str:
    if target.startswith("/"):
        return target.lstrip("/")
    parts = [part for part in base_dir.split("/") if part]
    for piece in target.split("/"):
        if piece == "..":
            if parts:
                parts.pop()
        elif piece and piece != ".":
            parts.append(piece)
    return "/".join(parts)


def sheet_part_paths(archive: zipfile.ZipFile) -> dict[str, str]:
    """Map sheet titles to their worksheet part names."""
    names = set(archive.namelist())
    if WORKBOOK_PART not in names or WORKBOOK_RELS_PART not in names:
        return {}
    workbook_xml = archive.read(WORKBOOK_PART).decode("utf-8")
    rels_xml = archive.read(WORKBOOK_RELS_PART).decode("utf-8")
    targets = {}
    for match in RELATIONSHIP_RE.finditer(rels_xml):
        attrs = parse_attrs(match.group(1))
        if "Id" in attrs and "Target" in attrs:
            targets[attrs["Id"]] = resolve_target("xl", attrs["Target"])
    paths = {}
    for match in SHEET_ENTRY_RE.finditer(workbook_xml):
        attrs = parse_attrs(match.group(1))
        rel_id = next((value for key, value in attrs.items() if key.endswith(":id")), None)
        if rel_id in targets and "name" in attrs:
            paths[unescape_attr(attrs["name"])] = targets[rel_id]
    return paths


def unescape_attr(value: str) -> str:
    return (
        value.replace("&quot;", '"')
        .replace("&apos;", "'")
        .replace("&lt;", "<")
        .replace("&gt;", ">")
        .replace("&amp;", "&")
    )


def _cached_value_xml(value: Any) -> tuple[str, str | None]:
    if isinstance(value, bool):
        return ("1" if value else "0"), "b"
    if isinstance(value, (datetime, date, time)):
        value = to_excel(value)
    if isinstance(value, (int, float)):
        return repr(value) if isinstance(value, float) else str(value), None
    if value in ERROR_CODES:
        return value, "e"
    return escape(str(value)), "str"


def _inject_into_sheet(sheet_xml: str, values: Mapping[str, Any]) -> tuple[str, int]:
    injected = 0

    def repl(match: re.Match[str]) -> str:
        nonlocal injected
        attrs = match.group("attrs")
        body = match.group("body")
        ref = parse_attrs(attrs).get("r")
        if ref not in values or body is None or not FORMULA_OPEN_RE.search(body):
            return match.group(0)
        value = values[ref]
        if value is None:
            return match.group(0)
        prefix = match.group("p")
        text, cell_type = _cached_value_xml(value)
        attrs = TYPE_ATTR_RE.sub("", attrs)
        if cell_type:
            attrs = f'{attrs} t="{cell_type}"'
        value_xml = f"<{prefix}v>{text}</{prefix}v>"
        body, count = VALUE_XML_RE.subn(value_xml, body, count=1)
        if not count:
            body += value_xml
        injected += 1
        return f"<{prefix}c{attrs}>{body}</{prefix}c>"

    return CELL_XML_RE.sub(repl, sheet_xml), injected


def inject_cached_values(data: bytes, cached: Mapping[str, Mapping[str, Any]]) -> bytes:
    """Write cached formula results into a saved workbook.

    ``cached`` maps sheet title -> cell coordinate -> displayed value. Only
    formula cells are touched; the formula text itself is left alone.
    """
    if not any(cached.values()):
        return data
    with open_package(data) as archive:
        paths = sheet_part_paths(archive)
        replacements: dict[str, bytes | None] = {}
        for title, values in cached.items():
            part = paths.get(title)
            if not values or part is None:
                if values:
                    logger.warning("No worksheet part found for sheet %r; cached values skipped", title)
                continue
            sheet_xml = archive.read(part).decode("utf-8")
            patched, injected = _inject_into_sheet(sheet_xml, values)
            logger.debug("Injected %d cached value(s) into %s", injected, part)
            replacements[part] = patched.encode("utf-8")
        if not replacements:
            return data
        return rewrite_package(archive, replacements)
