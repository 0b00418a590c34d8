"""
Attachment Resolver Tests
=========================

Filename derivation, sanitisation and storage outcomes.
"""

import os
import re

import pytest

from contracts import MimePart, MimeType, StorageOutcome
from src.mailbox_mcp.attachments import AttachmentResolver, sanitize_filename, storage_name
from tests.fakes import FakeFilesystem

PDF = MimePart(MimeType.APPLICATION, "pdf")


class TestSanitization:

    def test_spaces_and_punctuation(self):
        assert sanitize_filename("my report (final).pdf") == "my_report_final.pdf"

    def test_underscore_runs_and_edges(self):
        assert sanitize_filename("  __x__ ") == "x"

    @pytest.mark.parametrize(
        "filename",
        [
            "../../etc/passwd",
            "C:\\Windows\\system32.dll",
            "résumé 2026.pdf",
            "a\tb\nc.txt",
            "___",
            "<script>.html",
        ],
    )
    def test_result_is_safe(self, filename):
        safe = sanitize_filename(filename)
        assert re.fullmatch(r"[\w.]*", safe)
        assert "__" not in safe
        assert not safe.startswith("_") and not safe.endswith("_")
        assert "/" not in safe and "\\" not in safe

    def test_storage_name_layout(self):
        assert storage_name(12, "part1", "a.pdf") == "12_part1_a.pdf"

    def test_storage_name_without_usable_filename(self):
        assert storage_name(12, "part1", "///") == "12_part1_attachment"

    def test_storage_name_strips_separators_from_identity(self):
        assert storage_name(5, "a/b", "x.txt") == "5_ab_x.txt"


class TestFilenames:

    def test_filename_preferred_over_name(self):
        resolver = AttachmentResolver()
        assert resolver.filename_for(PDF, "part1", {"filename": "a.pdf", "name": "b.pdf"}) == "a.pdf"

    def test_name_used_without_filename(self):
        resolver = AttachmentResolver()
        assert resolver.filename_for(PDF, "part1", {"name": "b.pdf"}) == "b.pdf"

    def test_synthesized_from_identity_and_subtype(self):
        resolver = AttachmentResolver()
        assert resolver.filename_for(PDF, "logo@example", {}) == "logo@example.pdf"

    def test_encoded_word_filename(self):
        resolver = AttachmentResolver()
        params = {"filename": "=?utf-8?q?r=C3=A9sum=C3=A9.pdf?="}
        assert resolver.filename_for(PDF, "part1", params) == "résumé.pdf"

    def test_rfc2231_filename(self):
        resolver = AttachmentResolver()
        params = {"filename": "utf-8''%C3%A9t%C3%A9.txt"}
        assert resolver.filename_for(PDF, "part1", params) == "été.txt"


class TestStorage:

    def test_stored_on_disk(self, tmp_path):
        resolver = AttachmentResolver(str(tmp_path))

        attachment = resolver.resolve(7, PDF, "part1", {"filename": "a.pdf"}, b"%PDF-1.4")

        assert attachment.outcome is StorageOutcome.STORED
        assert attachment.file_path == os.path.join(str(tmp_path), "7_part1_a.pdf")
        assert (tmp_path / "7_part1_a.pdf").read_bytes() == b"%PDF-1.4"
        assert attachment.mime_type == "application/pdf"
        assert attachment.data is None

    def test_data_kept_when_requested(self, tmp_path):
        resolver = AttachmentResolver(str(tmp_path), keep_data=True)
        attachment = resolver.resolve(7, PDF, "part1", {"filename": "a.pdf"}, b"bytes")
        assert attachment.data == b"bytes"

    def test_not_stored_without_directory(self):
        resolver = AttachmentResolver(None, keep_data=True)

        attachment = resolver.resolve(7, PDF, "part1", {"filename": "a.pdf"}, b"bytes")

        assert attachment.outcome is StorageOutcome.NOT_STORED
        assert attachment.file_path is None
        assert attachment.data == b"bytes"

    def test_missing_directory_not_stored(self):
        filesystem = FakeFilesystem(directories=())
        resolver = AttachmentResolver("/gone", filesystem=filesystem)

        attachment = resolver.resolve(7, PDF, "part1", {"filename": "a.pdf"}, b"bytes")

        assert attachment.outcome is StorageOutcome.NOT_STORED
        assert filesystem.files == {}

    def test_write_failure_reported(self, caplog):
        filesystem = FakeFilesystem(fail_with=PermissionError(13, "Permission denied"))
        resolver = AttachmentResolver("/store", filesystem=filesystem)

        with caplog.at_level("WARNING"):
            attachment = resolver.resolve(7, PDF, "part1", {"filename": "a.pdf"}, b"secret bytes")

        assert attachment.outcome is StorageOutcome.FAILED
        assert "Permission denied" in attachment.error
        assert attachment.file_path is None
        assert "secret bytes" not in caplog.text

    def test_path_inside_storage_directory(self):
        filesystem = FakeFilesystem()
        resolver = AttachmentResolver("/store", filesystem=filesystem)

        attachment = resolver.resolve(3, PDF, "part1", {"filename": "../../evil.pdf"}, b"x")

        assert os.path.dirname(attachment.file_path) == "/store"
        assert list(filesystem.files) == [attachment.file_path]
