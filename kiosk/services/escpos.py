from __future__ import annotations

from dataclasses import dataclass

# Sequências ESC/POS usadas pelas impressoras térmicas de 80mm
FONT_NORMAL = "\x1B\x21\x00"
FONT_BOLD = "\x1B\x21\x08"
FONT_LARGE = "\x1D\x21\x11"
FONT_LARGE_BOLD = "\x1B\x21\x30"
FONT_SMALL = "\x1B\x21\x01"
LINE_FEED = "\x0A"
ALIGN_LEFT = "\x1B\x61\x00"
ALIGN_CENTER = "\x1B\x61\x01"
ALIGN_RIGHT = "\x1B\x61\x02"
CUT_PAPER = "\x1D\x56\x41"

ALIGNMENTS = {"left": ALIGN_LEFT, "center": ALIGN_CENTER, "right": ALIGN_RIGHT}
FONTS = {
    "normal": FONT_NORMAL,
    "bold": FONT_BOLD,
    "large": FONT_LARGE,
    "large_bold": FONT_LARGE_BOLD,
    "small": FONT_SMALL,
}


@dataclass(frozen=True)
class Directive:
    op: str  # align / font / text / divider / feed / cut
    value: str = ""
    count: int = 1


def align(where: str) -> Directive:
    if where not in ALIGNMENTS:
        raise ValueError(f"Unknown alignment: {where}")
    return Directive("align", where)


def font(style: str) -> Directive:
    if style not in FONTS:
        raise ValueError(f"Unknown font style: {style}")
    return Directive("font", style)


def text(value: str) -> Directive:
    return Directive("text", value)


def divider(width: int, char: str = "-") -> Directive:
    return Directive("divider", char, width)


def feed(count: int = 1) -> Directive:
    return Directive("feed", count=count)


def cut() -> Directive:
    return Directive("cut")


def encode_directive(directive: Directive) -> str:
    if directive.op == "align":
        return ALIGNMENTS[directive.value]
    if directive.op == "font":
        return FONTS[directive.value]
    if directive.op == "text":
        return directive.value + LINE_FEED
    if directive.op == "divider":
        return directive.value * directive.count + LINE_FEED
    if directive.op == "feed":
        return LINE_FEED * directive.count
    if directive.op == "cut":
        return CUT_PAPER
    raise ValueError(f"Unknown directive: {directive.op}")


def encode(directives) -> str:
    return "".join(encode_directive(d) for d in directives)
