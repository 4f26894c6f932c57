# tests/test_keys.py
"""Slug derivation and in-run duplicate detection."""

import threading

import pytest

from broker_import.core.errors import DuplicateKey, ValidationRejected
from broker_import.core.keys import KeyRegistry, resolve_slug, slug_from_filename, slugify


class TestSlugify:

    @pytest.mark.parametrize(
        "text,slug",
        [
            ("FP Markets", "fp-markets"),
            ("  --Hello,, World!! ", "hello-world"),
            ("BDSwiss", "bdswiss"),
            ("Plus500 (UK)", "plus500-uk"),
            ("", ""),
            (None, ""),
            ("!!!", ""),
        ],
    )
    def test_slugify(self, text, slug):
        assert slugify(text) == slug


class TestSlugFromFilename:

    def test_review_suffix_stripped(self):
        assert slug_from_filename("/data/pages/bdswiss-review.html") == "bdswiss"

    def test_plain_name(self):
        assert slug_from_filename("bdswiss.html") == "bdswiss"

    def test_suffix_only_gives_empty(self):
        assert slug_from_filename("-review.html") == ""

    def test_longest_suffix_wins(self):
        assert slug_from_filename("xm-broker-review.htm", ("-review", "-broker-review")) == "xm"

    def test_case_insensitive(self):
        assert slug_from_filename("IC_Markets-REVIEW.HTML") == "ic-markets"


class TestResolveSlug:

    def test_filename_slug_preferred(self):
        assert resolve_slug("bdswiss", "BD Swiss Ltd", "p.html") == "bdswiss"

    def test_name_fallback(self):
        assert resolve_slug("", "FP Markets", "p.html") == "fp-markets"

    def test_neither(self):
        with pytest.raises(ValidationRejected):
            resolve_slug("", None, "p.html")


class TestKeyRegistry:

    def test_first_claim_wins(self):
        reg = KeyRegistry()
        reg.register("bdswiss", "a/bdswiss-review.html")
        with pytest.raises(DuplicateKey) as exc:
            reg.register("bdswiss", "a/bdswiss.html")
        assert exc.value.first_path == "a/bdswiss-review.html"
        assert exc.value.second_path == "a/bdswiss.html"
        assert reg.owner("bdswiss") == "a/bdswiss-review.html"
        assert "bdswiss" in reg
        assert len(reg) == 1

    def test_concurrent_registration_single_winner(self):
        reg = KeyRegistry()
        winners, losers = [], []
        barrier = threading.Barrier(8)

        def claim(i):
            barrier.wait()
            try:
                reg.register("same", f"p{i}.html")
                winners.append(i)
            except DuplicateKey:
                losers.append(i)

        threads = [threading.Thread(target=claim, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(winners) == 1
        assert len(losers) == 7
