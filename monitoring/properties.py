"""
Properties File Parsing

Reads the ``key=value`` text format used by the reporter configuration
file. Supports ``#``/``!`` comments, ``=``, ``:`` or whitespace separators,
backslash line continuation and the usual escape sequences. Later
duplicates of a key win.
"""
from pathlib import Path
from typing import Dict, Iterator, List

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_SEPARATORS = "=:"
_WHITESPACE = " \t\f"


def _logical_lines(text: str) -> Iterator[str]:
    """Join continuation lines and drop comments/blank lines"""
    pending: List[str] = []

    for raw_line in text.splitlines():
        line = raw_line.lstrip(_WHITESPACE)

        if not pending and (not line or line[0] in "#!"):
            continue

        # Odd number of trailing backslashes continues the line
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            pending.append(line[:-1])
            continue

        pending.append(line)
        yield "".join(pending)
        pending = []

    if pending:
        yield "".join(pending)


def _unescape(value: str) -> str:
    """Resolve backslash escapes"""
    if "\\" not in value:
        return value

    chars: List[str] = []
    i = 0
    while i < len(value):
        char = value[i]
        if char != "\\" or i + 1 >= len(value):
            chars.append(char)
            i += 1
            continue

        nxt = value[i + 1]
        if nxt == "u" and i + 6 <= len(value):
            try:
                chars.append(chr(int(value[i + 2:i + 6], 16)))
                i += 6
                continue
            except ValueError:
                pass
        chars.append(_ESCAPES.get(nxt, nxt))
        i += 2

    return "".join(chars)


def _split_entry(line: str) -> tuple:
    """Split a logical line into raw key and raw value"""
    i = 0
    while i < len(line):
        char = line[i]
        if char == "\\":
            i += 2
            continue
        if char in _SEPARATORS or char in _WHITESPACE:
            break
        i += 1

    key = line[:i]
    rest = line[i:].lstrip(_WHITESPACE)
    if rest and rest[0] in _SEPARATORS:
        rest = rest[1:].lstrip(_WHITESPACE)

    return key, rest


def parse_properties(text: str) -> Dict[str, str]:
    """
    Parse properties text into an ordered dict

    Args:
        text: Full file content

    Returns:
        Mapping of key to value, in file order
    """
    properties: Dict[str, str] = {}

    for line in _logical_lines(text):
        raw_key, raw_value = _split_entry(line)
        key = _unescape(raw_key)
        if not key:
            continue
        properties[key] = _unescape(raw_value)

    return properties


def read_properties(path: Path, encoding: str = "utf-8") -> Dict[str, str]:
    """Read and parse a properties file (raises OSError/UnicodeDecodeError)"""
    with open(path, "r", encoding=encoding) as f:
        return parse_properties(f.read())
