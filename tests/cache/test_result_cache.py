from reelchain.cache.result_cache import ResultCache
from reelchain.core.models import ContinuityAnchor, GenerationRequest


def test_put_is_write_once():
    cache = ResultCache.open()
    assert cache.put("fp1", "asset-a") is True
    assert cache.put("fp1", "asset-b") is False
    assert cache.get("fp1") == "asset-a"


def test_miss_and_stats():
    cache = ResultCache.open()
    assert cache.get("unknown") is None
    cache.put("fp", "ref")
    cache.get("fp")
    assert cache.stats() == {"entries": 1, "hits": 1, "misses": 1}


def test_checksum_mismatch_is_a_miss():
    cache = ResultCache.open()
    cache.put("fp", "ref-1")
    cache.conn.execute("UPDATE results SET asset_ref='tampered' WHERE fingerprint='fp'")
    assert cache.get("fp") is None


def test_missing_asset_is_a_miss():
    present = {"ref-ok"}
    cache = ResultCache.open(asset_exists=lambda ref: ref in present)
    cache.put("a", "ref-ok")
    cache.put("b", "ref-gone")
    assert cache.get("a") == "ref-ok"
    assert cache.get("b") is None


def test_database_error_is_a_miss():
    cache = ResultCache.open()
    cache.conn.execute("DROP TABLE results")
    assert cache.get("fp") is None


def test_purge_allows_rewrite(tmp_path):
    cache = ResultCache.open(tmp_path / "cache.db")
    cache.put("fp", "old")
    assert cache.purge("fp") is True
    assert cache.purge("fp") is False
    cache.put("fp", "new")
    cache.close()

    reopened = ResultCache.open(tmp_path / "cache.db")
    assert reopened.get("fp") == "new"
    reopened.close()


def test_fingerprint_covers_prompt_provider_params_and_seed():
    base = GenerationRequest.build("A  quiet\nstreet", "wavespeed:m1", {"duration": 5})
    same = GenerationRequest.build("A quiet street", "wavespeed:m1", {"duration": 5})
    assert base.fingerprint == same.fingerprint

    anchor = ContinuityAnchor("t0", "img", "hash-1")
    variants = [
        GenerationRequest.build("A quiet road", "wavespeed:m1", {"duration": 5}),
        GenerationRequest.build("A quiet street", "wavespeed:m2", {"duration": 5}),
        GenerationRequest.build("A quiet street", "wavespeed:m1", {"duration": 8}),
        GenerationRequest.build("A quiet street", "wavespeed:m1", {"duration": 5}, anchor),
    ]
    assert len({base.fingerprint, *(v.fingerprint for v in variants)}) == 5
    assert variants[-1].seed_anchor_ref == "img"


def test_corrupt_row_is_evicted_so_a_fresh_result_can_be_stored():
    cache = ResultCache.open()
    cache.put("fp", "ref-1")
    cache.conn.execute("UPDATE results SET checksum='bad' WHERE fingerprint='fp'")

    assert cache.get("fp") is None
    assert cache.stats()["entries"] == 0
    assert cache.put("fp", "ref-2") is True
    assert cache.get("fp") == "ref-2"
