import os
import threading

import pytest

from perfdive import cache_manager
from perfdive import cache_store
from perfdive.errors import CacheKeyError


PR_IDENTITY = {"owner": "k8s", "repo": "k8s", "number": "100"}


#============================================
def make_github_cache(tmp_path, clock, ttls=None, log_fn=None):
	return cache_manager.CacheManager(
		str(tmp_path),
		cache_manager.github_cache_kinds(ttls),
		clock=clock,
		log_fn=log_fn,
	)


#============================================
def make_jira_cache(tmp_path, clock):
	return cache_manager.CacheManager(
		cache_manager.jira_cache_root(str(tmp_path)),
		cache_manager.jira_cache_kinds(),
		clock=clock,
	)


#============================================
def blob_files(root) -> list[str]:
	found = []
	for dirpath, _dirnames, filenames in os.walk(str(root)):
		for name in filenames:
			if name.endswith(".json") and name != "metadata.json":
				found.append(os.path.join(dirpath, name))
	return found


#============================================
def test_set_then_get_pull_request(tmp_path, clock) -> None:
	"""
	A stored PR payload comes back immediately.
	"""
	cache = make_github_cache(tmp_path, clock)
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {"title": "fix bug"})
	payload, found = cache.get(cache_manager.PR_KIND, PR_IDENTITY)
	assert found
	assert payload["title"] == "fix bug"
	assert (tmp_path / "prs" / "k8s_k8s_100.json").is_file()


#============================================
def test_round_trip_preserves_nested_payload(tmp_path, clock) -> None:
	cache = make_github_cache(tmp_path, clock)
	payload = {
		"title": "Add metrics",
		"labels": ["perf", "backend"],
		"files_changed": [{"filename": "a.py", "additions": 3, "deletions": 1}],
		"merged": True,
		"merged_at": None,
	}
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, payload)
	assert cache.get(cache_manager.PR_KIND, PR_IDENTITY) == (payload, True)


#============================================
def test_numeric_identity_matches_string_identity(tmp_path, clock) -> None:
	"""
	Identity values are normalized to strings before keying.
	"""
	cache = make_github_cache(tmp_path, clock)
	cache.set(cache_manager.ISSUE_KIND, {"owner": "k8s", "repo": "k8s", "number": 7}, {"title": "x"})
	payload, found = cache.get(cache_manager.ISSUE_KIND, {"owner": "k8s", "repo": "k8s", "number": "7"})
	assert found
	assert payload == {"title": "x"}


#============================================
def test_overwrite_replaces_payload(tmp_path, clock) -> None:
	"""
	A second set for the same identity leaves no trace of the first payload.
	"""
	cache = make_github_cache(tmp_path, clock)
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {"title": "first", "body": "old"})
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {"title": "second"})
	payload, found = cache.get(cache_manager.PR_KIND, PR_IDENTITY)
	assert found
	assert payload == {"title": "second"}
	assert cache.stats()["total"] == 1


#============================================
def test_entry_expires_after_ttl(tmp_path, clock) -> None:
	"""
	An entry read one second past its TTL is a miss and its blob is removed.
	"""
	cache = make_github_cache(tmp_path, clock, ttls={cache_manager.PR_KIND: 60})
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {"title": "fix bug"})

	clock.advance(seconds=30)
	assert cache.get(cache_manager.PR_KIND, PR_IDENTITY)[1]

	clock.advance(seconds=31)
	payload, found = cache.get(cache_manager.PR_KIND, PR_IDENTITY)
	assert payload is None
	assert not found
	assert not (tmp_path / "prs" / "k8s_k8s_100.json").exists()


#============================================
def test_expired_read_purges_metadata(tmp_path, clock) -> None:
	"""
	After an expired get, stats no longer count the entry.
	"""
	cache = make_github_cache(tmp_path, clock)
	cache.set(cache_manager.ACTIVITY_KIND, {"username": "alice", "start_date": "2025-01-01", "end_date": "2025-01-07"}, {"events": []})
	assert cache.stats()["activity"] == 1
	clock.advance(hours=2)
	assert not cache.get(cache_manager.ACTIVITY_KIND, {"username": "alice", "start_date": "2025-01-01", "end_date": "2025-01-07"})[1]
	assert cache.stats()["activity"] == 0
	assert cache.stats()["total"] == 0


#============================================
def test_expired_read_keeps_a_write_that_lands_before_the_purge(tmp_path, clock, monkeypatch) -> None:
	"""
	A set() between the expiry check and the purge survives the purge.
	"""
	cache = make_github_cache(tmp_path, clock)
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {"title": "old"})
	clock.advance(hours=25)

	check_expired = cache.index.is_expired
	rewrites = []

	def expired_then_rewritten(path):
		result = check_expired(path)
		if not rewrites:
			rewrites.append(path)
			cache.set(cache_manager.PR_KIND, PR_IDENTITY, {"title": "new"})
		return result

	monkeypatch.setattr(cache.index, "is_expired", expired_then_rewritten)
	assert cache.get(cache_manager.PR_KIND, PR_IDENTITY) == (None, False)
	assert rewrites == ["prs/k8s_k8s_100.json"]
	assert cache.get(cache_manager.PR_KIND, PR_IDENTITY) == ({"title": "new"}, True)
	assert cache.stats()["prs"] == 1
	assert (tmp_path / "prs" / "k8s_k8s_100.json").exists()


#============================================
def test_activity_dates_with_slashes_are_cached(tmp_path, clock) -> None:
	"""
	Activity filenames are hashed, so slashes in the dates are harmless.
	"""
	cache = make_github_cache(tmp_path, clock)
	identity = {"username": "alice", "start_date": "01/01/2025", "end_date": "01/07/2025"}
	relative_path = cache.set(cache_manager.ACTIVITY_KIND, identity, {"events": []})
	assert relative_path.count("/") == 1
	assert cache.get(cache_manager.ACTIVITY_KIND, identity) == ({"events": []}, True)


#============================================
def test_jira_index_accepts_legacy_issue_type(tmp_path, clock) -> None:
	"""
	Entries typed "issue" in an existing Jira metadata document count as Jira issues.
	"""
	jira_root = tmp_path / "jira"
	jira_root.mkdir()
	(jira_root / "metadata.json").write_text(
		'{"entries": {"PERF-1.json": {'
		'"created": "2025-01-15T10:00:00.123456789Z", '
		'"expires": "2025-01-16T10:00:00.123456789Z", '
		'"type": "issue", "key": "PERF-1"}}}',
		encoding="utf-8",
	)
	cache = make_jira_cache(tmp_path, clock)
	assert cache.stats() == {"issues": 1, "total": 1}
	assert cache.detailed_stats()["expired"] == 0
	assert cache.clear(cache_manager.JIRA_ISSUE_KIND) == 0
	assert cache.stats()["total"] == 0


#============================================
def test_activity_entries_do_not_collide(tmp_path, clock) -> None:
	"""
	Two date ranges for one user are two separate activity entries.
	"""
	cache = make_github_cache(tmp_path, clock)
	first = {"username": "alice", "start_date": "2025-01-01", "end_date": "2025-01-07"}
	second = {"username": "alice", "start_date": "2025-01-08", "end_date": "2025-01-14"}
	cache.set(cache_manager.ACTIVITY_KIND, first, {"week": 1})
	cache.set(cache_manager.ACTIVITY_KIND, second, {"week": 2})
	assert cache.stats()["activity"] == 2
	assert cache.get(cache_manager.ACTIVITY_KIND, first) == ({"week": 1}, True)
	assert cache.get(cache_manager.ACTIVITY_KIND, second) == ({"week": 2}, True)
	assert len(os.listdir(str(tmp_path / "activity"))) == 2


#============================================
def test_identity_isolation_within_kind(tmp_path, clock) -> None:
	cache = make_github_cache(tmp_path, clock)
	other = {"owner": "k8s", "repo": "k8s", "number": "101"}
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {"title": "a"})
	assert cache.get(cache_manager.PR_KIND, other) == (None, False)
	cache.set(cache_manager.PR_KIND, other, {"title": "b"})
	assert cache.get(cache_manager.PR_KIND, PR_IDENTITY) == ({"title": "a"}, True)


#============================================
def test_pull_request_and_issue_with_same_number_are_separate(tmp_path, clock) -> None:
	cache = make_github_cache(tmp_path, clock)
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {"kind": "pr"})
	cache.set(cache_manager.ISSUE_KIND, PR_IDENTITY, {"kind": "issue"})
	assert cache.get(cache_manager.PR_KIND, PR_IDENTITY)[0] == {"kind": "pr"}
	assert cache.get(cache_manager.ISSUE_KIND, PR_IDENTITY)[0] == {"kind": "issue"}


#============================================
def test_truncated_blob_is_a_miss_and_removed(tmp_path, clock) -> None:
	"""
	A corrupted blob reads as not-found and its entry is dropped.
	"""
	cache = make_github_cache(tmp_path, clock)
	identity = {"owner": "k8s", "repo": "k8s", "number": "5"}
	cache.set(cache_manager.ISSUE_KIND, identity, {"title": "flaky test"})
	blob_path = tmp_path / "issues" / "k8s_k8s_5.json"
	text = blob_path.read_text(encoding="utf-8")
	blob_path.write_text(text[: len(text) // 2], encoding="utf-8")

	assert cache.get(cache_manager.ISSUE_KIND, identity) == (None, False)
	assert cache.stats()["issues"] == 0
	assert not blob_path.exists()


#============================================
def test_garbage_blob_is_a_miss(tmp_path, clock) -> None:
	cache = make_github_cache(tmp_path, clock)
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {"title": "x"})
	(tmp_path / "prs" / "k8s_k8s_100.json").write_bytes(b"\x00\xff\xfe garbage")
	assert cache.get(cache_manager.PR_KIND, PR_IDENTITY) == (None, False)


#============================================
def test_blob_without_metadata_is_a_miss(tmp_path, clock) -> None:
	"""
	The index decides freshness; an orphan blob is never served.
	"""
	cache = make_github_cache(tmp_path, clock)
	store = cache.stores[cache_manager.PR_KIND]
	store.write(PR_IDENTITY, {"title": "orphan"})
	assert cache.get(cache_manager.PR_KIND, PR_IDENTITY) == (None, False)


#============================================
def test_identity_mismatch_is_a_miss(tmp_path, clock) -> None:
	"""
	A blob whose stored identity differs from the request is not served.
	"""
	messages = []
	cache = make_github_cache(tmp_path, clock, log_fn=messages.append)
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {"title": "x"})
	blob_path = tmp_path / "prs" / "k8s_k8s_100.json"
	text = blob_path.read_text(encoding="utf-8").replace('"owner": "k8s"', '"owner": "other"')
	blob_path.write_text(text, encoding="utf-8")
	assert cache.get(cache_manager.PR_KIND, PR_IDENTITY) == (None, False)
	assert any("identity mismatch" in message for message in messages)


#============================================
def test_unknown_kind_and_bad_identity_never_raise_on_get(tmp_path, clock) -> None:
	cache = make_github_cache(tmp_path, clock)
	assert cache.get("wiki", PR_IDENTITY) == (None, False)
	assert cache.get(cache_manager.PR_KIND, {"owner": "k8s"}) == (None, False)
	assert cache.get(cache_manager.PR_KIND, {"owner": "..", "repo": "x", "number": "1"}) == (None, False)


#============================================
def test_set_rejects_unsafe_identity(tmp_path, clock) -> None:
	cache = make_github_cache(tmp_path, clock)
	with pytest.raises(CacheKeyError):
		cache.set(cache_manager.PR_KIND, {"owner": "a/b", "repo": "x", "number": "1"}, {})
	with pytest.raises(CacheKeyError):
		cache.set("wiki", PR_IDENTITY, {})


#============================================
def test_clear_removes_every_entry_and_blob(tmp_path, clock) -> None:
	"""
	Clearing ten entries across all kinds leaves empty directories.
	"""
	cache = make_github_cache(tmp_path, clock)
	for number in range(4):
		cache.set(cache_manager.PR_KIND, {"owner": "o", "repo": "r", "number": number}, {"n": number})
	for number in range(4):
		cache.set(cache_manager.ISSUE_KIND, {"owner": "o", "repo": "r", "number": number}, {"n": number})
	for week in range(2):
		cache.set(
			cache_manager.ACTIVITY_KIND,
			{"username": "alice", "start_date": f"2025-01-0{week + 1}", "end_date": "2025-01-09"},
			{"week": week},
		)
	assert cache.stats()["total"] == 10

	assert cache.clear() == 10
	assert cache.stats()["total"] == 0
	for subdir in ("activity", "prs", "issues"):
		assert os.listdir(str(tmp_path / subdir)) == []


#============================================
def test_clear_one_kind_keeps_the_others(tmp_path, clock) -> None:
	cache = make_github_cache(tmp_path, clock)
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {"title": "pr"})
	cache.set(cache_manager.ISSUE_KIND, PR_IDENTITY, {"title": "issue"})
	assert cache.clear(cache_manager.PR_KIND) == 1
	stats = cache.stats()
	assert stats["prs"] == 0
	assert stats["issues"] == 1
	assert cache.get(cache_manager.ISSUE_KIND, PR_IDENTITY)[1]


#============================================
def test_clean_expired_counts_and_is_idempotent(tmp_path, clock) -> None:
	"""
	Five entries, two of them expired: the sweep removes exactly two.
	"""
	cache = make_github_cache(tmp_path, clock)
	cache.set(cache_manager.ACTIVITY_KIND, {"username": "a", "start_date": "2025-01-01", "end_date": "2025-01-02"}, {})
	cache.set(cache_manager.ACTIVITY_KIND, {"username": "b", "start_date": "2025-01-01", "end_date": "2025-01-02"}, {})
	for number in range(3):
		cache.set(cache_manager.PR_KIND, {"owner": "o", "repo": "r", "number": number}, {"n": number})
	clock.advance(hours=2)

	assert cache.clean_expired() == 2
	assert cache.stats()["total"] == 3
	assert cache.clean_expired() == 0
	assert os.listdir(str(tmp_path / "activity")) == []


#============================================
def test_detailed_stats_reports_age_and_expired(tmp_path, clock) -> None:
	cache = make_github_cache(tmp_path, clock)
	first_time = clock.now
	cache.set(cache_manager.ACTIVITY_KIND, {"username": "a", "start_date": "2025-01-01", "end_date": "2025-01-02"}, {})
	clock.advance(minutes=90)
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {})
	details = cache.detailed_stats()
	assert details["oldest"] == first_time
	assert details["newest"] == clock.now
	assert details["expired"] == 1


#============================================
def test_index_survives_reopen(tmp_path, clock) -> None:
	"""
	A new manager over the same root serves entries written by an earlier one.
	"""
	cache = make_github_cache(tmp_path, clock)
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {"title": "persisted"})
	reopened = make_github_cache(tmp_path, clock)
	assert reopened.get(cache_manager.PR_KIND, PR_IDENTITY) == ({"title": "persisted"}, True)


#============================================
def test_corrupt_metadata_resets_to_empty(tmp_path, clock) -> None:
	cache = make_github_cache(tmp_path, clock)
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {"title": "x"})
	(tmp_path / "metadata.json").write_text("{\"entries\": ", encoding="utf-8")
	reopened = make_github_cache(tmp_path, clock)
	assert reopened.stats()["total"] == 0
	assert reopened.get(cache_manager.PR_KIND, PR_IDENTITY) == (None, False)


#============================================
def test_jira_cache_uses_flat_layout(tmp_path, clock) -> None:
	cache = make_jira_cache(tmp_path, clock)
	cache.set(cache_manager.JIRA_ISSUE_KIND, {"issue_key": "PERF-12"}, {"comments": []})
	assert (tmp_path / "jira" / "PERF-12.json").is_file()
	assert (tmp_path / "jira" / "metadata.json").is_file()
	assert cache.get(cache_manager.JIRA_ISSUE_KIND, {"issue_key": "PERF-12"}) == ({"comments": []}, True)
	assert cache.stats() == {"issues": 1, "total": 1}


#============================================
def test_github_and_jira_indexes_are_separate(tmp_path, clock) -> None:
	github_cache = make_github_cache(tmp_path, clock)
	jira_cache = make_jira_cache(tmp_path, clock)
	github_cache.set(cache_manager.PR_KIND, PR_IDENTITY, {})
	jira_cache.set(cache_manager.JIRA_ISSUE_KIND, {"issue_key": "PERF-1"}, {})
	assert github_cache.clear() == 1
	assert jira_cache.stats()["total"] == 1


#============================================
def test_get_many_and_set_many(tmp_path, clock) -> None:
	cache = make_github_cache(tmp_path, clock)
	identities = [{"owner": "o", "repo": "r", "number": str(number)} for number in range(3)]
	stored = cache.set_many(cache_manager.PR_KIND, [(identities[0], {"n": 0}), (identities[1], {"n": 1})])
	assert stored == 2
	found, missing = cache.get_many(cache_manager.PR_KIND, identities)
	assert found == {"o/r#0": {"n": 0}, "o/r#1": {"n": 1}}
	assert missing == [identities[2]]


#============================================
def test_set_many_skips_bad_identities(tmp_path, clock) -> None:
	messages = []
	cache = make_github_cache(tmp_path, clock, log_fn=messages.append)
	stored = cache.set_many(
		cache_manager.PR_KIND,
		[({"owner": "o"}, {"n": 0}), (PR_IDENTITY, {"n": 1})],
	)
	assert stored == 1
	assert any(message.startswith("Warning:") for message in messages)


#============================================
def test_delete_removes_blob_and_metadata(tmp_path, clock) -> None:
	cache = make_github_cache(tmp_path, clock)
	cache.set(cache_manager.PR_KIND, PR_IDENTITY, {})
	assert cache.delete(cache_manager.PR_KIND, PR_IDENTITY)
	assert not cache.delete(cache_manager.PR_KIND, PR_IDENTITY)
	assert blob_files(tmp_path) == []


#============================================
def test_ttl_overrides_apply_per_kind(tmp_path, clock) -> None:
	cache = make_github_cache(tmp_path, clock, ttls={cache_manager.ACTIVITY_KIND: 30})
	table = cache.ttl_table()
	assert table[cache_manager.ACTIVITY_KIND] == 30
	assert table[cache_manager.PR_KIND] == 24 * 60 * 60


#============================================
def test_open_github_cache_returns_none_when_root_is_a_file(tmp_path) -> None:
	"""
	An unusable cache root disables caching instead of failing the run.
	"""
	blocker = tmp_path / "not-a-dir"
	blocker.write_text("x", encoding="utf-8")
	messages = []
	assert cache_manager.open_github_cache(str(blocker), log_fn=messages.append) is None
	assert messages and "disabled" in messages[0]


#============================================
def test_open_jira_cache_nests_under_root(tmp_path) -> None:
	cache = cache_manager.open_jira_cache(str(tmp_path))
	assert cache is not None
	assert cache.root_dir == os.path.abspath(str(tmp_path / "jira"))


#============================================
def test_concurrent_gets_return_their_own_payloads(tmp_path, clock) -> None:
	"""
	Many threads reading distinct identities each see only their own payload.
	"""
	cache = make_github_cache(tmp_path, clock)
	identities = [{"owner": "o", "repo": "r", "number": str(number)} for number in range(32)]
	for identity in identities:
		cache.set(cache_manager.PR_KIND, identity, {"number": identity["number"]})

	errors = []

	def reader(identity):
		for _ in range(20):
			payload, found = cache.get(cache_manager.PR_KIND, identity)
			if (not found) or payload["number"] != identity["number"]:
				errors.append((identity["number"], payload, found))

	threads = [threading.Thread(target=reader, args=(identity,)) for identity in identities]
	for thread in threads:
		thread.start()
	for thread in threads:
		thread.join()
	assert errors == []


#============================================
def test_concurrent_writes_to_distinct_entries(tmp_path, clock) -> None:
	cache = make_github_cache(tmp_path, clock)
	errors = []

	def writer(number):
		identity = {"owner": "o", "repo": "r", "number": str(number)}
		try:
			cache.set(cache_manager.ISSUE_KIND, identity, {"n": number})
		except Exception as error:
			errors.append(error)

	threads = [threading.Thread(target=writer, args=(number,)) for number in range(16)]
	for thread in threads:
		thread.start()
	for thread in threads:
		thread.join()
	assert errors == []
	assert cache.stats()["issues"] == 16
	reopened = make_github_cache(tmp_path, clock)
	assert reopened.stats()["issues"] == 16


#============================================
def test_store_list_files_ignores_temp_and_metadata(tmp_path, clock) -> None:
	cache = make_jira_cache(tmp_path, clock)
	cache.set(cache_manager.JIRA_ISSUE_KIND, {"issue_key": "A-1"}, {})
	(tmp_path / "jira" / ".tmp-stray.json").write_text("{}", encoding="utf-8")
	store = cache.stores[cache_manager.JIRA_ISSUE_KIND]
	assert store.list_files() == ["A-1.json"]
	assert isinstance(store.kind, cache_store.CacheKind)
