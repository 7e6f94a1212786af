# tests/test_logging.py
"""
Test the JSON log formatter and bound logger context.
"""

import json
import logging
import sys

from partforge.logging import StructuredLogFormatter, StructuredLogger
from partforge.parts.errors import DuplicateNameError


def _record(level=logging.INFO, fields=None, exc_info=None):
    record = logging.LogRecord(
        name="partforge.test",
        level=level,
        pathname=__file__,
        lineno=10,
        msg="part_created",
        args=(),
        exc_info=exc_info,
    )
    if fields is not None:
        record.fields = fields
    return record


class TestFormatter:

    def test_fields_and_service(self):
        line = StructuredLogFormatter().format(_record(fields={"part_id": "p-1"}))
        entry = json.loads(line)
        assert entry["event"] == "part_created"
        assert entry["service"] == "partforge"
        assert entry["part_id"] == "p-1"
        assert "source" not in entry

    def test_part_error_code_attached(self):
        try:
            raise DuplicateNameError("Global part number already exists", entity_id="GPN-1")
        except DuplicateNameError:
            record = _record(level=logging.ERROR, exc_info=sys.exc_info())

        entry = json.loads(StructuredLogFormatter().format(record))
        assert entry["error_code"] == "DUPLICATE_NAME"
        assert "DuplicateNameError" in entry["exception"]
        assert "source" in entry


class TestBind:

    def test_bound_context_merges(self, caplog):
        logger = StructuredLogger("partforge.test.bind").bind(part_id="p-1")
        scoped = logger.bind(part_version_id="v-1")

        with caplog.at_level(logging.INFO, logger="partforge.test.bind"):
            scoped.info("relationship_insert_failed", kind="tag")

        fields = caplog.records[-1].fields
        assert fields == {"part_id": "p-1", "part_version_id": "v-1", "kind": "tag"}

    def test_parent_unchanged(self, caplog):
        logger = StructuredLogger("partforge.test.parent")
        logger.bind(part_id="p-1")

        with caplog.at_level(logging.INFO, logger="partforge.test.parent"):
            logger.info("part_deleted")

        assert caplog.records[-1].fields == {}
