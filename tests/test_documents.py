# tests/test_documents.py
"""Source directory scanning and document loading."""

import os

import pytest

from broker_import.core.documents import (
    classify,
    iter_documents,
    iter_source_files,
    load_document,
    scan_summary,
)
from broker_import.core.errors import SourceUnavailable


class TestClassify:

    @pytest.mark.parametrize(
        "name,category",
        [("a.html", "markup"), ("a.HTM", "markup"), ("app.js", "script"), ("notes.txt", "other"), ("README", "other")],
    )
    def test_classify(self, name, category):
        assert classify(name) == category


class TestIterSourceFiles:

    def test_sorted_and_classified(self, make_corpus):
        root = make_corpus({"b.html": "<p>b</p>", "a.html": "<p>a</p>", "c.js": "var c;", "d.txt": "d"})
        files = list(iter_source_files(root))
        assert [os.path.basename(f.path) for f in files] == ["a.html", "b.html", "c.js", "d.txt"]
        assert [f.category for f in files] == ["markup", "markup", "script", "other"]
        assert files[0].size == len("<p>a</p>")
        assert files[0].discovered_at

    def test_subdirectories_skipped_unless_recursive(self, make_corpus):
        root = make_corpus({"a.html": "a", "sub/b.html": "b"})
        assert [os.path.basename(f.path) for f in iter_source_files(root)] == ["a.html"]
        deep = [os.path.basename(f.path) for f in iter_source_files(root, recursive=True)]
        assert deep == ["a.html", "b.html"]

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unsupported")
    def test_symlinks_skipped(self, make_corpus, tmp_path):
        outside = tmp_path / "outside.html"
        outside.write_text("x")
        root = make_corpus({"a.html": "a"})
        os.symlink(outside, root / "link.html")
        assert [os.path.basename(f.path) for f in iter_source_files(root)] == ["a.html"]

    def test_each_call_rereads(self, make_corpus):
        root = make_corpus({"a.html": "a"})
        assert len(list(iter_source_files(root))) == 1
        (root / "b.html").write_text("b")
        assert len(list(iter_source_files(root))) == 2

    def test_missing_root_raises_before_iteration(self, tmp_path):
        with pytest.raises(SourceUnavailable) as exc:
            iter_source_files(tmp_path / "nope")
        assert "does not exist" in str(exc.value)

    def test_file_as_root(self, tmp_path):
        f = tmp_path / "x.html"
        f.write_text("x")
        with pytest.raises(SourceUnavailable):
            iter_source_files(f)


class TestLoading:

    def test_invalid_utf8_replaced(self, make_corpus):
        root = make_corpus({"a.html": b"<p>caf\xe9</p>"})
        doc = load_document(next(iter_source_files(root)))
        assert doc.text == "<p>caf\ufffd</p>"
        assert doc.size == 11
        assert doc.name == "a.html"

    def test_iter_documents_markup_only(self, make_corpus):
        root = make_corpus({"a.html": "<p>a</p>", "b.js": "b", "c.htm": "<p>c</p>"})
        assert [d.name for d in iter_documents(root)] == ["a.html", "c.htm"]

    def test_scan_summary(self, make_corpus):
        root = make_corpus({"a.html": "12345", "b.js": "123", "c.txt": "1"})
        summary = scan_summary(root)
        assert summary["counts"] == {"markup": 1, "script": 1, "other": 1}
        assert summary["total_files"] == 3
        assert summary["total_bytes"] == 9
        assert summary["sample_markup"] == [{"name": "a.html", "size": 5}]
