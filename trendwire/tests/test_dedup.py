"""
Tests for fingerprints and duplicate checks
"""

import hashlib

from trendwire.dedup import Deduplicator, fingerprint


class TestFingerprint:

    def test_deterministic(self):
        assert fingerprint("same text") == fingerprint("same text")

    def test_sha256_of_utf8(self):
        text = "断熱性能 HEAT20 G2"
        assert fingerprint(text) == hashlib.sha256(text.encode("utf-8")).hexdigest()
        assert len(fingerprint(text)) == 64

    def test_whitespace_matters(self):
        assert fingerprint("a b") != fingerprint("a  b")


class TestDeduplicator:

    def test_preload_sees_stored_rows(self, sqlite_store, make_raw):
        raw = make_raw("https://a.example/1", "first article")
        sqlite_store.insert_raw(raw)

        dedup = Deduplicator(sqlite_store).preload()
        assert not dedup.is_new_url("https://a.example/1")
        assert not dedup.is_new_content(raw.content_hash)
        assert dedup.is_new_url("https://a.example/2")
        assert dedup.is_new_content(fingerprint("other"))

    def test_lazy_load_on_first_check(self, sqlite_store, make_raw):
        sqlite_store.insert_raw(make_raw("https://a.example/1", "first article"))
        dedup = Deduplicator(sqlite_store)
        assert not dedup.is_new_url("https://a.example/1")

    def test_remember_within_run(self, sqlite_store):
        dedup = Deduplicator(sqlite_store).preload()
        digest = fingerprint("new body")
        dedup.remember("https://a.example/new", digest)
        assert not dedup.is_new_url("https://a.example/new")
        assert not dedup.is_new_content(digest)

    def test_url_set_scoped_to_source_type(self, sqlite_store, make_raw):
        """Hashes span every source; urls only the requested one"""
        raw = make_raw("https://a.example/1", "social post", source_type="social")
        sqlite_store.insert_raw(raw)

        dedup = Deduplicator(sqlite_store, source_type="media").preload()
        assert dedup.is_new_url("https://a.example/1")
        assert not dedup.is_new_content(raw.content_hash)
