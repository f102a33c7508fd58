"""TrueType font registration, subsetting and CID font embedding.

A registered font collects every character that injected text uses.  At
save time the program is subset with fontTools and embedded as a Type0
font with an Identity-H encoding over a compact CID space:

    CID 0          .notdef
    CID 1, 2, ...  used characters in ascending codepoint order

Each font produces five indirect objects with consecutive numbers:
FontFile2 stream, CIDToGIDMap stream, ToUnicode CMap, FontDescriptor and
the Type0 font dictionary (its CIDFontType2 descendant is written inline).
"""

from __future__ import annotations

import hashlib
import logging
import re
import struct
import zlib
from collections.abc import Iterable
from dataclasses import dataclass, field
from io import BytesIO
from typing import NamedTuple

from fontTools import subset
from fontTools.ttLib import TTFont, TTLibError

from ...constants import CID_BASE
from ...errors import FontBuildError, PdfInjectError
from ..pdf.objects import IndirectObject, build_dict_override, ref, stream_payload

_logger = logging.getLogger(__name__)

__all__ = [
    "FontHandle",
    "FontMetrics",
    "FontObjectIds",
    "GlyphSubset",
    "check_program",
    "extract_glyphs",
]

# PDF metrics are expressed in 1/1000 text space units
_PDF_UNITS = 1000

# Symbolic flag off, Nonsymbolic (bit 6) on
_DESCRIPTOR_FLAGS = 32

# Max entries per beginbfchar block (CMap limit)
_BFCHAR_BLOCK = 100

_PS_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_.\-]")


class FontObjectIds(NamedTuple):
    """Object numbers of the five objects one font contributes."""

    font_id: int  # FontFile2 stream
    cid_id: int  # CIDToGIDMap stream
    unicode_map_id: int  # ToUnicode CMap stream
    desc_id: int  # FontDescriptor
    dict_id: int  # Type0 font dictionary


@dataclass(frozen=True)
class FontMetrics:
    """Font-wide metrics in font design units."""

    units_per_em: int
    ascent: int
    descent: int
    cap_height: int
    bbox: tuple[int, int, int, int]
    italic_angle: float
    weight_class: int
    underline_position: int
    underline_thickness: int
    ps_name: str | None


@dataclass(frozen=True)
class GlyphSubset:
    """Result of subsetting a font program for a set of codepoints."""

    program: bytes  # subset TrueType program, original glyph ids retained
    glyph_ids: dict[int, int]  # codepoint -> glyph id, found characters only
    advances: dict[int, int]  # glyph id -> advance width in design units
    missing: tuple[int, ...]  # codepoints absent from the font
    metrics: FontMetrics


def _load_font(program: bytes) -> TTFont:
    try:
        return TTFont(BytesIO(program), recalcTimestamp=False)
    except (TTLibError, struct.error, ValueError, AssertionError) as exc:
        raise FontBuildError(f"Cannot parse font program: {exc}") from exc


def _read_metrics(font: TTFont) -> FontMetrics:
    head = font["head"]
    hhea = font["hhea"]
    post = font["post"]
    os2 = font["OS/2"] if "OS/2" in font else None

    cap_height = hhea.ascent
    weight = 400
    if os2 is not None:
        weight = os2.usWeightClass
        if os2.version >= 2 and os2.sCapHeight:
            cap_height = os2.sCapHeight

    ps_name = font["name"].getDebugName(6) if "name" in font else None
    return FontMetrics(
        units_per_em=head.unitsPerEm,
        ascent=hhea.ascent,
        descent=hhea.descent,
        cap_height=cap_height,
        bbox=(head.xMin, head.yMin, head.xMax, head.yMax),
        italic_angle=float(post.italicAngle),
        weight_class=weight,
        underline_position=post.underlinePosition,
        underline_thickness=post.underlineThickness,
        ps_name=ps_name,
    )


def check_program(program: bytes) -> None:
    """Fail early on programs ``extract_glyphs`` would reject.

    Raises:
        FontBuildError: If the program cannot be parsed, has no usable
            cmap, or has no glyf table.
    """
    font = _load_font(program)
    try:
        if "glyf" not in font:
            raise FontBuildError("Font has no glyf table; only TrueType outlines are supported.")
        if not font.getBestCmap():
            raise FontBuildError("Font has no usable Unicode cmap.")
    except (TTLibError, KeyError, struct.error, ValueError, AssertionError) as exc:
        raise FontBuildError(f"Cannot read font program: {exc}") from exc
    finally:
        font.close()


def extract_glyphs(program: bytes, codepoints: Iterable[int]) -> GlyphSubset:
    """Map codepoints to glyphs and subset the program.

    Glyph ids are retained by the subsetter, so the ids returned here are
    valid in the subset program as well.

    Raises:
        FontBuildError: If the program cannot be parsed, has no usable
            cmap, or is not glyf-based TrueType.
    """
    font = _load_font(program)
    try:
        if "glyf" not in font:
            raise FontBuildError("Font has no glyf table; only TrueType outlines are supported.")
        cmap = font.getBestCmap()
        if not cmap:
            raise FontBuildError("Font has no usable Unicode cmap.")

        metrics = _read_metrics(font)
        hmtx = font["hmtx"]
        glyph_order = font.getGlyphOrder()

        glyph_ids: dict[int, int] = {}
        missing: list[int] = []
        for cp in sorted(set(codepoints)):
            glyph_name = cmap.get(cp)
            if glyph_name is None:
                missing.append(cp)
                continue
            glyph_ids[cp] = font.getGlyphID(glyph_name)

        advances = {0: hmtx[glyph_order[0]][0]}
        for gid in glyph_ids.values():
            advances[gid] = hmtx[glyph_order[gid]][0]

        options = subset.Options()
        options.retain_gids = True
        options.layout_features = []
        options.notdef_outline = True
        subsetter = subset.Subsetter(options=options)
        subsetter.populate(unicodes=sorted(glyph_ids))
        subsetter.subset(font)

        out = BytesIO()
        font.save(out)
    except (TTLibError, KeyError, struct.error, ValueError, AssertionError) as exc:
        raise FontBuildError(f"Cannot subset font program: {exc}") from exc
    finally:
        font.close()

    return GlyphSubset(
        program=out.getvalue(),
        glyph_ids=glyph_ids,
        advances=advances,
        missing=tuple(missing),
        metrics=metrics,
    )


def _subset_tag(name: str, codepoints: Iterable[int]) -> str:
    """Six uppercase letters derived from the font name and character set."""
    digest = hashlib.sha256(name.encode("utf-8"))
    for cp in sorted(codepoints):
        digest.update(cp.to_bytes(4, "big"))
    return "".join(chr(ord("A") + b % 26) for b in digest.digest()[:6])


def _to_unicode_cmap(cid_to_unicode: dict[int, int]) -> bytes:
    lines = [
        "/CIDInit /ProcSet findresource begin",
        "12 dict begin",
        "begincmap",
        "/CIDSystemInfo << /Registry (Adobe) /Ordering (UCS) /Supplement 0 >> def",
        "/CMapName /Adobe-Identity-UCS def",
        "/CMapType 2 def",
        "1 begincodespacerange",
        "<0000> <FFFF>",
        "endcodespacerange",
    ]
    items = sorted(cid_to_unicode.items())
    for start in range(0, len(items), _BFCHAR_BLOCK):
        block = items[start : start + _BFCHAR_BLOCK]
        lines.append(f"{len(block)} beginbfchar")
        for cid, cp in block:
            lines.append(f"<{cid:04X}> <{chr(cp).encode('utf-16-be').hex().upper()}>")
        lines.append("endbfchar")
    lines += [
        "endcmap",
        "CMapName currentdict /CMap defineresource pop",
        "end",
        "end",
    ]
    return "\n".join(lines).encode("ascii")


@dataclass
class FontHandle:
    """A registered TrueType font and the characters drawn with it.

    ``used_characters`` only grows.  ``object_ids`` is assigned once per
    save on a copy of the handle; ``build()`` then fills the CID map and
    metrics used by ``encode()`` and ``text_width()``.
    """

    name: str
    program: bytes
    used_characters: set[int] = field(default_factory=set)
    object_ids: FontObjectIds | None = None
    _cid_map: dict[int, int] = field(default_factory=dict, init=False, repr=False)
    _widths: dict[int, int] = field(default_factory=dict, init=False, repr=False)
    _notdef_width: int = field(default=0, init=False, repr=False)
    _metrics: FontMetrics | None = field(default=None, init=False, repr=False)

    def add_characters(self, text: str) -> None:
        self.used_characters.update(ord(ch) for ch in text)

    def copy(self) -> FontHandle:
        """Unbuilt copy with its own character set."""
        return FontHandle(self.name, self.program, set(self.used_characters))

    def assign_object_ids(self, start_id: int) -> int:
        """Reserve five consecutive object numbers; return the next free one."""
        if self.object_ids is not None:
            raise PdfInjectError(f"Font {self.name!r} already has object ids assigned.")
        self.object_ids = FontObjectIds(*range(start_id, start_id + 5))
        _logger.debug("Font %r: objects %d-%d", self.name, start_id, start_id + 4)
        return start_id + 5

    # ── Build ────────────────────────────────────────────────────────

    def build(self) -> list[IndirectObject]:
        """Subset the program and emit the five font objects.

        Raises:
            PdfInjectError: If object ids were not assigned.
            FontBuildError: If the program cannot be subset.
        """
        ids = self.object_ids
        if ids is None:
            raise PdfInjectError(f"Font {self.name!r} has no object ids assigned.")

        glyphs = extract_glyphs(self.program, self.used_characters)
        if glyphs.missing:
            _logger.warning(
                "Font %r has no glyphs for %s; they will render as .notdef",
                self.name,
                ", ".join(f"U+{cp:04X}" for cp in glyphs.missing),
            )
        metrics = glyphs.metrics
        self._metrics = metrics

        def scale(value: float) -> int:
            return round(value * _PDF_UNITS / metrics.units_per_em)

        found = sorted(glyphs.glyph_ids)
        self._cid_map = {cp: CID_BASE + i for i, cp in enumerate(found)}
        self._widths = {cid: scale(glyphs.advances[glyphs.glyph_ids[cp]]) for cp, cid in self._cid_map.items()}
        self._notdef_width = scale(glyphs.advances[0])

        base_font = self._base_font(metrics, glyphs.glyph_ids)

        # 1. FontFile2
        font_file = stream_payload(
            f"/Filter /FlateDecode /Length1 {len(glyphs.program)}",
            zlib.compress(glyphs.program),
        )

        # 2. CIDToGIDMap: one big-endian GID per CID, index = CID
        gid_map = bytearray(2 * (CID_BASE + len(found)))
        for cp, cid in self._cid_map.items():
            struct.pack_into(">H", gid_map, 2 * cid, glyphs.glyph_ids[cp])
        cid_to_gid = stream_payload("/Filter /FlateDecode", zlib.compress(bytes(gid_map)))

        # 3. ToUnicode
        cmap_data = _to_unicode_cmap({cid: cp for cp, cid in self._cid_map.items()})
        to_unicode = stream_payload("/Filter /FlateDecode", zlib.compress(cmap_data))

        # 4. FontDescriptor
        x_min, y_min, x_max, y_max = metrics.bbox
        stem_v = int(10 + 220 * (metrics.weight_class - 50) / 900)
        descriptor = build_dict_override(
            [
                "/Type /FontDescriptor",
                f"/FontName /{base_font}",
                f"/Flags {_DESCRIPTOR_FLAGS}",
                f"/FontBBox [{scale(x_min)} {scale(y_min)} {scale(x_max)} {scale(y_max)}]",
                f"/ItalicAngle {metrics.italic_angle:g}",
                f"/Ascent {scale(metrics.ascent)}",
                f"/Descent {scale(metrics.descent)}",
                f"/CapHeight {scale(metrics.cap_height)}",
                f"/StemV {stem_v}",
                f"/FontFile2 {ref(ids.font_id)}",
            ]
        )

        # 5. Type0 with inline CIDFontType2 descendant
        widths = " ".join(str(self._widths[cid]) for cid in sorted(self._widths))
        w_entry = f" /W [{CID_BASE} [{widths}]]" if widths else ""
        descendant = (
            f"<< /Type /Font /Subtype /CIDFontType2 /BaseFont /{base_font}"
            " /CIDSystemInfo << /Registry (Adobe) /Ordering (Identity) /Supplement 0 >>"
            f" /FontDescriptor {ref(ids.desc_id)} /CIDToGIDMap {ref(ids.cid_id)}"
            f" /DW {self._notdef_width}{w_entry} >>"
        )
        font_dict = build_dict_override(
            [
                "/Type /Font",
                "/Subtype /Type0",
                f"/BaseFont /{base_font}",
                "/Encoding /Identity-H",
                f"/DescendantFonts [{descendant}]",
                f"/ToUnicode {ref(ids.unicode_map_id)}",
            ]
        )

        _logger.debug("Font %r built as %s with %d glyphs", self.name, base_font, len(found))
        return [
            IndirectObject(ids.font_id, font_file),
            IndirectObject(ids.cid_id, cid_to_gid),
            IndirectObject(ids.unicode_map_id, to_unicode),
            IndirectObject(ids.desc_id, descriptor),
            IndirectObject(ids.dict_id, font_dict),
        ]

    def _base_font(self, metrics: FontMetrics, glyph_ids: dict[int, int]) -> str:
        ps_name = _PS_NAME_UNSAFE.sub("", metrics.ps_name or "")
        if not ps_name:
            ps_name = _PS_NAME_UNSAFE.sub("", self.name) or "Font"
        return f"{_subset_tag(self.name, glyph_ids)}+{ps_name}"

    # ── Text measurement (after build) ───────────────────────────────

    def _require_built(self) -> FontMetrics:
        if self._metrics is None:
            raise PdfInjectError(f"Font {self.name!r} has not been built.")
        return self._metrics

    def _scaled(self, value: int) -> float:
        return value * _PDF_UNITS / self._require_built().units_per_em

    def encode(self, text: str) -> str:
        """Hex CID string for ``text``; unknown characters become CID 0."""
        self._require_built()
        return "".join(f"{self._cid_map.get(ord(ch), 0):04X}" for ch in text)

    def text_width(self, text: str, size: float) -> float:
        """Advance width of ``text`` in points at ``size``."""
        self._require_built()
        total = 0
        for ch in text:
            cid = self._cid_map.get(ord(ch))
            total += self._notdef_width if cid is None else self._widths[cid]
        return total * size / _PDF_UNITS

    @property
    def ascent(self) -> float:
        return self._scaled(self._require_built().ascent)

    @property
    def descent(self) -> float:
        return self._scaled(self._require_built().descent)

    @property
    def underline_position(self) -> float:
        return self._scaled(self._require_built().underline_position)

    @property
    def underline_thickness(self) -> float:
        return self._scaled(self._require_built().underline_thickness)
