from __future__ import annotations

import logging
import re
import zipfile
from dataclasses import dataclass, field
from xml.sax.saxutils import escape, unescape

from openpyxl.formula.translate import Translator, TranslatorError

from cert_sync.ooxml import CELL_XML_RE, open_package, parse_attrs, rewrite_package

logger = logging.getLogger(__name__)

CONTENT_TYPES_PART = "[Content_Types].xml"

DRAWING_PART_RE = re.compile(r"(?:^|/)drawings/|(?:^|/)vmlDrawing[^/]*\.vml$", re.IGNORECASE)
DRAWING_ELEMENT_RE = re.compile(
    r"<(?P<p>(?:\w+:)?)(?P<tag>legacyDrawingHF|legacyDrawing|drawing)\b[^>]*?"
    r"(?:/>|>.*?</(?P=p)(?P=tag)>)",
    re.DOTALL,
)
RELATIONSHIP_XML_RE = re.compile(r"<(?:\w+:)?Relationship\b[^>]*?/>")
OVERRIDE_XML_RE = re.compile(r"<(?:\w+:)?Override\b[^>]*?/>")
FORMULA_XML_RE = re.compile(
    r"<(?P<p>(?:\w+:)?)f\b(?P<attrs>[^>]*?)(?:/>|>(?P<body>.*?)</(?P=p)f>)",
    re.DOTALL,
)
SHARED_FORMULA_HINT_RE = re.compile(r"\bt=\"shared\"")
DRAWING_REL_TYPES = ("/drawing", "/vmlDrawing")
XML_ENTITIES = {"&quot;": '"', "&apos;": "'"}
SHARED_ONLY_ATTRS = {"t", "ref", "si"}


@dataclass
class SanitizationHazard:
    part: str
    kind: str
    detail: str

    def describe(self) -> str:
        return f"{self.part}: {self.kind} ({self.detail})"


@dataclass
class SanitizeResult:
    data: bytes
    hazards: list[SanitizationHazard] = field(default_factory=list)
    drawings_removed: int = 0
    shared_formulas_expanded: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.hazards)

    def warnings(self) -> list[str]:
        return [hazard.describe() for hazard in self.hazards]


def is_worksheet_part(name: str) -> bool:
    return name.startswith("xl/worksheets/") and name.endswith(".xml") and "/_rels/" not in name


def is_sheet_part(name: str) -> bool:
    """Worksheet or chartsheet XML; both can carry drawing elements."""
    if name.startswith("xl/chartsheets/"):
        return name.endswith(".xml") and "/_rels/" not in name
    return is_worksheet_part(name)


def is_drawing_part(name: str) -> bool:
    return bool(DRAWING_PART_RE.search(name))


def _is_drawing_relationship(element: str) -> bool:
    attrs = parse_attrs(element)
    rel_type = attrs.get("Type", "")
    if rel_type.endswith(DRAWING_REL_TYPES):
        return True
    return is_drawing_part(attrs.get("Target", ""))


def strip_drawings(
    archive: zipfile.ZipFile,
    replacements: dict[str, bytes | None],
    hazards: list[SanitizationHazard],
) -> int:
    """Queue removal of drawing parts and every reference to them.

    Leaves ``replacements`` untouched when the package has no drawings.
    """
    names = archive.namelist()
    removed = [name for name in names if is_drawing_part(name)]
    if not removed:
        return 0
    removed_set = set(removed)
    for name in removed:
        replacements[name] = None
        hazards.append(SanitizationHazard(name, "drawing_removed", "embedded drawing part"))

    for name in names:
        if name in removed_set:
            continue
        if is_sheet_part(name):
            text = _current_text(archive, replacements, name)
            patched, count = DRAWING_ELEMENT_RE.subn("", text)
            if count:
                replacements[name] = patched.encode("utf-8")
                hazards.append(SanitizationHazard(name, "drawing_reference_removed", f"{count} element(s)"))
        elif name.endswith(".rels"):
            text = _current_text(archive, replacements, name)
            patched, count = RELATIONSHIP_XML_RE.subn(
                lambda match: "" if _is_drawing_relationship(match.group(0)) else match.group(0),
                text,
            )
            if patched != text:
                replacements[name] = patched.encode("utf-8")
                hazards.append(SanitizationHazard(name, "drawing_relationship_removed", "relationship entries"))
        elif name == CONTENT_TYPES_PART:
            text = _current_text(archive, replacements, name)

            def drop_override(match: re.Match[str]) -> str:
                part_name = parse_attrs(match.group(0)).get("PartName", "").lstrip("/")
                return "" if part_name in removed_set else match.group(0)

            patched = OVERRIDE_XML_RE.sub(drop_override, text)
            if patched != text:
                replacements[name] = patched.encode("utf-8")
    logger.info("Stripped %d drawing part(s)", len(removed))
    return len(removed)


def _current_text(archive: zipfile.ZipFile, replacements: dict[str, bytes | None], name: str) -> str:
    data = replacements.get(name)
    if data is None:
        data = archive.read(name)
    return data.decode("utf-8")


def _rebuild_formula(prefix: str, attrs: dict[str, str], body: str) -> str:
    kept = "".join(f' {key}="{value}"' for key, value in attrs.items() if key not in SHARED_ONLY_ATTRS)
    return f"<{prefix}f{kept}>{body}</{prefix}f>"


def _translate_shared(body: str, origin: str, dest: str) -> str:
    formula = "=" + unescape(body, XML_ENTITIES)
    translated = Translator(formula, origin=origin).translate_formula(dest)
    return escape(translated[1:])


def expand_shared_formulas(sheet_xml: str, part: str, hazards: list[SanitizationHazard]) -> tuple[str, int]:
    """Rewrite shared formulas in one worksheet as standalone formulas."""
    masters: dict[str, tuple[str, str]] = {}
    for cell in CELL_XML_RE.finditer(sheet_xml):
        body = cell.group("body")
        if not body:
            continue
        formula = FORMULA_XML_RE.search(body)
        if formula is None or not formula.group("body"):
            continue
        attrs = parse_attrs(formula.group("attrs"))
        ref = parse_attrs(cell.group("attrs")).get("r")
        if attrs.get("t") == "shared" and "si" in attrs and ref:
            masters.setdefault(attrs["si"], (ref, formula.group("body")))

    expanded = 0

    def rewrite_cell(cell: re.Match[str]) -> str:
        nonlocal expanded
        body = cell.group("body")
        if not body or not SHARED_FORMULA_HINT_RE.search(body):
            return cell.group(0)
        formula = FORMULA_XML_RE.search(body)
        if formula is None:
            return cell.group(0)
        attrs = parse_attrs(formula.group("attrs"))
        if attrs.get("t") != "shared":
            return cell.group(0)
        ref = parse_attrs(cell.group("attrs")).get("r")
        prefix = formula.group("p")
        master = masters.get(attrs.get("si", ""))
        if formula.group("body"):
            replacement = _rebuild_formula(prefix, attrs, formula.group("body"))
        elif master is None or not ref:
            # Orphaned clone: keep the cached value, drop the formula.
            hazards.append(SanitizationHazard(part, "orphan_shared_formula", ref or "cell without reference"))
            replacement = ""
        else:
            try:
                translated = _translate_shared(master[1], master[0], ref)
            except TranslatorError as exc:
                hazards.append(SanitizationHazard(part, "untranslatable_shared_formula", f"{ref}: {exc}"))
                replacement = ""
            else:
                replacement = _rebuild_formula(prefix, attrs, translated)
        expanded += 1
        new_body = body[: formula.start()] + replacement + body[formula.end() :]
        return cell.group(0).replace(body, new_body, 1)

    patched = CELL_XML_RE.sub(rewrite_cell, sheet_xml)
    return patched, expanded


def sanitize_workbook(data: bytes) -> SanitizeResult:
    """Repair drawing and shared-formula hazards in raw ``.xlsx`` bytes.

    Returns the very same ``data`` object when nothing needed repair.
    """
    hazards: list[SanitizationHazard] = []
    replacements: dict[str, bytes | None] = {}
    with open_package(data) as archive:
        drawings_removed = strip_drawings(archive, replacements, hazards)

        expanded_total = 0
        for name in archive.namelist():
            if not is_worksheet_part(name) or replacements.get(name, b"") is None:
                continue
            text = _current_text(archive, replacements, name)
            if not SHARED_FORMULA_HINT_RE.search(text):
                continue
            patched, expanded = expand_shared_formulas(text, name, hazards)
            if expanded:
                replacements[name] = patched.encode("utf-8")
                hazards.append(SanitizationHazard(name, "shared_formulas_expanded", f"{expanded} cell(s)"))
                expanded_total += expanded

        if not replacements:
            return SanitizeResult(data=data)
        for hazard in hazards:
            logger.warning("Repaired %s", hazard.describe())
        return SanitizeResult(
            data=rewrite_package(archive, replacements),
            hazards=hazards,
            drawings_removed=drawings_removed,
            shared_formulas_expanded=expanded_total,
        )
