from __future__ import annotations

import re
from typing import Dict, List, Union

from timetable_studio.common.errors import ParseError

CsvRecord = Dict[str, str]

_LINE_BREAK = re.compile(r"\r?\n")


def decode_text(content: Union[str, bytes]) -> str:
    if isinstance(content, str):
        return content.lstrip("\ufeff")
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseError(f"content is not valid UTF-8: {exc}") from exc


def split_csv_line(line: str) -> List[str]:
    # single-line quoting only; a quoted field cannot span lines
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == '"':
            if in_quotes and i + 1 < len(line) and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif ch == "," and not in_quotes:
            fields.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    fields.append("".join(current))
    return fields


def parse_csv(content: Union[str, bytes]) -> List[CsvRecord]:
    """Parse GTFS delimited text into header-keyed records, in file order.

    Short rows are padded with empty strings and surplus fields are dropped.
    Malformed quoting never raises; ParseError is raised only for bytes that
    are not UTF-8.
    """
    text = decode_text(content)
    lines = _LINE_BREAK.split(text)
    while lines and not lines[-1].strip():
        lines.pop()
    if not lines:
        return []

    header = split_csv_line(lines[0])
    records: List[CsvRecord] = []
    for line in lines[1:]:
        if not line.strip():
            continue
        cols = split_csv_line(line)
        records.append({h: (cols[i] if i < len(cols) else "") for i, h in enumerate(header)})
    return records
