"""
Flat ``key=value`` properties format.

Parses the line-oriented properties format (``#``/``!`` comments, ``=``,
``:`` or whitespace separators, backslash line continuation and escapes)
into an ordered list of (key, value) pairs. Duplicate keys are kept in
order; the merger applies last-wins.
"""

import re

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}

# A line that unambiguously declares a property: a plain key followed by
# ``=``, or by ``:`` and whitespace. Used to sniff whether an arbitrary blob
# is a properties document. ``url: http://x`` style YAML is claimed by the
# YAML parser before this check runs.
_PROPERTY_LINE = re.compile(r"^\s*[\w.\-\[\]]+\s*(=|:(\s|$))")


def _logical_lines(text: str) -> list[str]:
    lines: list[str] = []
    pending = ""
    for physical in text.splitlines():
        line = physical.lstrip() if pending else physical
        if not pending and _is_comment_or_blank(line):
            continue
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            pending += line[:-1]
            continue
        lines.append(pending + line)
        pending = ""
    if pending:
        lines.append(pending)
    return lines


def _is_comment_or_blank(line: str) -> bool:
    stripped = line.strip()
    return not stripped or stripped[0] in "#!"


def _unescape(text: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch != "\\" or i + 1 >= len(text):
            out.append(ch)
            i += 1
            continue
        nxt = text[i + 1]
        if nxt == "u" and i + 6 <= len(text):
            try:
                out.append(chr(int(text[i + 2 : i + 6], 16)))
                i += 6
                continue
            except ValueError:
                pass
        out.append(_ESCAPES.get(nxt, nxt))
        i += 2
    return "".join(out)


def _split_line(line: str) -> tuple[str, str]:
    line = line.lstrip()
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == "\\":
            i += 2
            continue
        if ch in "=:" or ch.isspace():
            break
        i += 1
    key = line[:i]
    rest = line[i:].lstrip()
    # At most one separator character after optional whitespace
    if rest[:1] in ("=", ":"):
        rest = rest[1:].lstrip()
    return _unescape(key), _unescape(rest)


def parse_properties(text: str) -> list[tuple[str, str]]:
    """Parse a properties document into ordered (key, value) pairs."""
    return [_split_line(line) for line in _logical_lines(text)]


def looks_like_properties(text: str) -> bool:
    """Whether every logical line of ``text`` is a ``key=value`` declaration."""
    lines = _logical_lines(text)
    return bool(lines) and all(_PROPERTY_LINE.match(line) for line in lines)


__all__ = ["parse_properties", "looks_like_properties"]
