# dnd/core/record.py
"""
Spool record model and its line codec.

File format (one field per line):

    created  = 1370000000
    src_host = node-a
    dst_host = node-b          # repeatable, priority order
    cmd      = /bin/true       # repeatable, executed in order
    any line without a separator is a comment

Lines are split on the first ``=``; a line with an empty key or value is kept
as a comment.  ``dst_host`` and ``cmd`` accumulate, every other key is last
write wins.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from dnd.core.errors import MalformedRecord

KEY_CREATED = "created"
KEY_SRC_HOST = "src_host"
KEY_DST_HOST = "dst_host"
KEY_CMD = "cmd"
KEY_COMMENTS = "comments"

LOCALHOST_ALIASES = ("localhost", "127.0.0.1")

_FIELD_RE = re.compile(r"^\s*(.*?)\s*=\s*(.*)$")


class SpoolState(str, Enum):
    """Directory an entry lives in. Only QUEUE is non-terminal."""
    QUEUE = "queue"
    SENT = "sent"
    FAILED = "failed"
    DISPATCHED = "dispatched"


@dataclass
class MessageRecord:
    """One unit of work, as read from (or written to) a spool file."""
    created_at: Optional[str] = None
    source_host: Optional[str] = None
    destination_hosts: list[str] = field(default_factory=list)
    commands: list[str] = field(default_factory=list)
    comments: list[str] = field(default_factory=list)
    # Unknown keys, passed through verbatim (dict keeps first-seen order)
    other_fields: dict[str, str] = field(default_factory=dict)

    @property
    def routable(self) -> bool:
        return bool(self.destination_hosts)


def resolve_host(host: str, local_hostname: str) -> str:
    if host.lower() in LOCALHOST_ALIASES:
        return local_hostname
    return host


def parse_lines(lines, local_hostname: str) -> MessageRecord:
    """Build a record from already-read lines (terminators are ignored)."""
    record = MessageRecord()

    for raw in lines:
        line = raw.rstrip("\r\n")
        m = _FIELD_RE.match(line)
        key, value = (m.group(1), m.group(2).rstrip()) if m else ("", "")

        if not key or not value:
            record.comments.append(line)
            continue

        if key == KEY_DST_HOST:
            record.destination_hosts.append(resolve_host(value, local_hostname))
        elif key == KEY_CMD:
            record.commands.append(value)
        elif key == KEY_COMMENTS:
            record.comments.append(value)
        elif key == KEY_CREATED:
            record.created_at = value
        elif key == KEY_SRC_HOST:
            record.source_host = value
        else:
            record.other_fields[key] = value

    return record


def parse_record(path: Path, local_hostname: str) -> MessageRecord:
    """
    Read and parse a spool file.

    Raises:
        MalformedRecord: the file cannot be opened, read or decoded
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            lines = fh.readlines()
    except (OSError, UnicodeDecodeError) as exc:
        raise MalformedRecord(path, str(exc)) from exc

    return parse_lines(lines, local_hostname)


def _line(key: str, value: str) -> str:
    return f"{key} = {value}"


def serialize_record(record: MessageRecord) -> list[str]:
    """Record -> list of lines without terminators."""
    lines: list[str] = []

    if record.created_at:
        lines.append(_line(KEY_CREATED, record.created_at))
    if record.source_host:
        lines.append(_line(KEY_SRC_HOST, record.source_host))

    lines.extend(_line(KEY_DST_HOST, h) for h in record.destination_hosts)
    lines.extend(_line(KEY_CMD, c) for c in record.commands)

    for key, value in record.other_fields.items():
        lines.append(_line(key, value))

    # '=' would turn a comment into a field on re-parse
    lines.extend(c.replace("=", "") for c in record.comments)

    return lines


def render_record(record: MessageRecord) -> str:
    """Record -> file content."""
    return "".join(f"{line}\n" for line in serialize_record(record))
