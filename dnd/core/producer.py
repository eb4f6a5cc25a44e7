# dnd/core/producer.py
"""
Producer side: write a well-formed entry into the spool queue.

Nothing is sent from here; a running daemon picks the file up once it is
closed.
"""
from __future__ import annotations

import time
from pathlib import Path
from typing import Iterable, Mapping

from dnd.config import settings
from dnd.core.record import KEY_CREATED, KEY_SRC_HOST, MessageRecord, render_record
from dnd.infra.logging_config import get_logger
from dnd.infra.spool_store import SpoolStore

logger = get_logger(__name__)


def _single_line(value: str, what: str) -> str:
    if "\n" in value or "\r" in value:
        raise ValueError(f"{what} must not contain line breaks: {value!r}")
    return value


def build_record(
    fields: Mapping[str, str] | None = None,
    commands: Iterable[str] = (),
    destinations: Iterable[str] = (),
    comments: str | None = None,
    *,
    local_hostname: str | None = None,
) -> MessageRecord:
    """
    Assemble a record, defaulting ``created`` to now and ``src_host`` to this host.

    Multi-line ``comments`` become one comment line each.

    Raises:
        ValueError: a field, command or destination contains a line break
    """
    extra = {
        _single_line(str(k), "field name"): _single_line(str(v), f"field {k!r}")
        for k, v in (fields or {}).items()
    }
    created = extra.pop(KEY_CREATED, None) or str(int(time.time()))
    source = extra.pop(KEY_SRC_HOST, None) or local_hostname or settings.local_hostname

    return MessageRecord(
        created_at=str(created),
        source_host=source,
        destination_hosts=[
            _single_line(h.strip(), "dst_host") for h in destinations if h and h.strip()
        ],
        commands=[_single_line(c, "cmd") for c in commands if c],
        comments=[line for line in (comments or "").splitlines() if line.strip()],
        other_fields=extra,
    )


def submit(
    fields: Mapping[str, str] | None = None,
    commands: Iterable[str] = (),
    destinations: Iterable[str] = (),
    comments: str | None = None,
    target_dir: str | Path | None = None,
    store: SpoolStore | None = None,
) -> Path:
    """
    Write one entry to the queue (or ``target_dir``) and return its path.

    Raises:
        ValueError: a field, command or destination contains a line break
        StorageUnavailable: the file cannot be created or written
    """
    if store is None:
        store = SpoolStore(settings.spool_dir, hostname=settings.local_hostname)

    record = build_record(
        fields, commands, destinations, comments, local_hostname=store.hostname,
    )
    if not record.routable:
        logger.warning("Submitting entry without dst_host; it will be moved to failed")

    return store.create_queued(render_record(record), target_dir=target_dir)
