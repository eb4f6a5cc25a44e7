# tests/test_record.py
"""Tests for the spool record codec"""
import pytest

from dnd.core.errors import MalformedRecord
from dnd.core.producer import build_record
from dnd.core.record import (
    MessageRecord,
    parse_lines,
    parse_record,
    render_record,
    resolve_host,
    serialize_record,
)


class TestParseLines:
    def test_basic_fields(self):
        record = parse_lines(
            [
                "created  = 1370000000\n",
                "src_host = node-x\n",
                "dst_host = node-b\n",
                "cmd      = /bin/true\n",
            ],
            "node-a",
        )
        assert record.created_at == "1370000000"
        assert record.source_host == "node-x"
        assert record.destination_hosts == ["node-b"]
        assert record.commands == ["/bin/true"]
        assert record.comments == []

    def test_repeated_destinations_and_commands_keep_order(self):
        record = parse_lines(
            ["dst_host = b", "dst_host = c", "cmd = one", "cmd = two"], "node-a"
        )
        assert record.destination_hosts == ["b", "c"]
        assert record.commands == ["one", "two"]

    def test_localhost_aliases_resolve_to_local_hostname(self):
        record = parse_lines(
            ["dst_host = LocalHost", "dst_host = 127.0.0.1", "dst_host = node-c"], "node-a"
        )
        assert record.destination_hosts == ["node-a", "node-a", "node-c"]

    def test_lines_without_separator_are_comments(self):
        record = parse_lines(["just some text\n", "dst_host = b\n"], "node-a")
        assert record.comments == ["just some text"]

    def test_empty_key_or_value_is_comment(self):
        record = parse_lines(["= orphan value", "dangling =  "], "node-a")
        assert record.comments == ["= orphan value", "dangling =  "]
        assert record.other_fields == {}

    def test_split_on_first_separator(self):
        record = parse_lines(["cmd = echo a=b"], "node-a")
        assert record.commands == ["echo a=b"]

    def test_trailing_whitespace_trimmed_from_value(self):
        record = parse_lines(["dst_host =   node-b   \t"], "node-a")
        assert record.destination_hosts == ["node-b"]

    def test_other_keys_last_write_wins(self):
        record = parse_lines(["priority = low", "ticket = 7", "priority = high"], "node-a")
        assert record.other_fields == {"priority": "high", "ticket": "7"}
        assert list(record.other_fields) == ["priority", "ticket"]

    def test_comments_key_appends_comment(self):
        record = parse_lines(["comments = disk full on /var"], "node-a")
        assert record.comments == ["disk full on /var"]

    def test_empty_input_is_valid(self):
        record = parse_lines([], "node-a")
        assert record == MessageRecord()
        assert record.routable is False


class TestResolveHost:
    def test_non_alias_unchanged(self):
        assert resolve_host("node-b", "node-a") == "node-b"

    def test_alias_case_insensitive(self):
        assert resolve_host("LOCALHOST", "node-a") == "node-a"


class TestSerialize:
    def test_field_order(self):
        record = MessageRecord(
            created_at="1",
            source_host="node-a",
            destination_hosts=["b", "c"],
            commands=["x", "y"],
            comments=["note"],
            other_fields={"k": "v"},
        )
        assert serialize_record(record) == [
            "created = 1",
            "src_host = node-a",
            "dst_host = b",
            "dst_host = c",
            "cmd = x",
            "cmd = y",
            "k = v",
            "note",
        ]

    def test_separator_stripped_from_comments(self):
        record = MessageRecord(comments=["a = b"])
        assert serialize_record(record) == ["a  b"]

    def test_render_ends_with_newline(self):
        record = MessageRecord(destination_hosts=["b"])
        assert render_record(record) == "dst_host = b\n"

    def test_round_trip(self):
        record = MessageRecord(
            created_at="1370000000",
            source_host="node-x",
            destination_hosts=["node-b", "node-a"],
            commands=['/usr/bin/sendsms 4712345678 "disk full"', "/bin/true"],
            comments=["free text line"],
            other_fields={"ticket": "42"},
        )
        lines = serialize_record(record)
        assert parse_lines(lines, "node-a") == record

    def test_round_trip_resolves_localhost(self):
        record = MessageRecord(destination_hosts=["localhost"])
        parsed = parse_lines(serialize_record(record), "node-a")
        assert parsed.destination_hosts == ["node-a"]

    def test_multi_line_comment_round_trips_as_comments(self):
        record = build_record(
            {"created": "1370000000"},
            commands=["/bin/true"],
            destinations=["node-b"],
            comments="first line\ncmd = rm -rf /tmp/x\r\n\nlast",
            local_hostname="node-a",
        )
        parsed = parse_lines(serialize_record(record), "node-a")
        assert parsed.commands == ["/bin/true"]
        assert parsed.comments == ["first line", "cmd  rm -rf /tmp/x", "last"]


class TestBuildRecordLineBreaks:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"commands": ["echo a\nrm -rf /tmp/x"]},
            {"commands": ["echo a\rcmd = rm -rf /tmp/x"]},
            {"destinations": ["node-b\ndst_host = node-z"]},
            {"fields": {"ticket": "1\ncmd = rm -rf /tmp/x"}},
            {"fields": {"a\nb": "1"}},
            {"fields": {"src_host": "node-x\ncmd = id"}},
        ],
    )
    def test_line_break_rejected(self, kwargs):
        with pytest.raises(ValueError, match="line breaks"):
            build_record(local_hostname="node-a", **kwargs)


class TestParseRecord:
    def test_reads_file(self, tmp_path):
        path = tmp_path / "entry"
        path.write_text("dst_host = b\ncmd = /bin/true\n", encoding="utf-8")
        record = parse_record(path, "node-a")
        assert record.destination_hosts == ["b"]
        assert record.commands == ["/bin/true"]

    def test_missing_file_is_malformed(self, tmp_path):
        with pytest.raises(MalformedRecord):
            parse_record(tmp_path / "nope", "node-a")

    def test_undecodable_file_is_malformed(self, tmp_path):
        path = tmp_path / "binary"
        path.write_bytes(b"dst_host = \xff\xfe\n")
        with pytest.raises(MalformedRecord) as exc_info:
            parse_record(path, "node-a")
        assert exc_info.value.path == path
