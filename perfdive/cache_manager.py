"""
Filesystem-backed response cache for Jira and GitHub payloads.

One CacheManager owns one directory tree and one metadata index. perfdive
builds two of them: a GitHub manager (activity snapshots, PRs, issues in
subdirectories) and a Jira manager (flat issue blobs). Reads never raise;
any failure is reported as a miss so callers fall back to the upstream API.
"""

import os

import filelock

from perfdive import cache_index
from perfdive import cache_store
from perfdive.errors import CacheError
from perfdive.errors import CacheKeyError
from perfdive.errors import CacheUnavailableError
from perfdive.errors import CacheWriteError


ACTIVITY_KIND = "activity"
PR_KIND = "pr"
ISSUE_KIND = "issue"
JIRA_ISSUE_KIND = "jira-issue"

DEFAULT_TTLS = {
	ACTIVITY_KIND: 60 * 60,
	PR_KIND: 24 * 60 * 60,
	ISSUE_KIND: 24 * 60 * 60,
	JIRA_ISSUE_KIND: 24 * 60 * 60,
}


#============================================
def resolve_ttl(ttls: dict | None, kind_name: str) -> float:
	"""
	Look up a TTL override in seconds, falling back to the default table.
	"""
	if ttls and ttls.get(kind_name) is not None:
		return float(ttls[kind_name])
	return float(DEFAULT_TTLS[kind_name])


#============================================
def github_cache_kinds(ttls: dict | None = None) -> list[cache_store.CacheKind]:
	"""
	Kinds stored by the GitHub cache manager.
	"""
	return [
		cache_store.CacheKind(
			name=ACTIVITY_KIND,
			subdir="activity",
			ttl_seconds=resolve_ttl(ttls, ACTIVITY_KIND),
			identity_fields=("username", "start_date", "end_date"),
			filename_fn=cache_store.activity_filename,
			label_fn=cache_store.activity_label,
			stats_label="activity",
			hashed_filename=True,
		),
		cache_store.CacheKind(
			name=PR_KIND,
			subdir="prs",
			ttl_seconds=resolve_ttl(ttls, PR_KIND),
			identity_fields=("owner", "repo", "number"),
			filename_fn=cache_store.repo_item_filename,
			label_fn=cache_store.repo_item_label,
			stats_label="prs",
		),
		cache_store.CacheKind(
			name=ISSUE_KIND,
			subdir="issues",
			ttl_seconds=resolve_ttl(ttls, ISSUE_KIND),
			identity_fields=("owner", "repo", "number"),
			filename_fn=cache_store.repo_item_filename,
			label_fn=cache_store.repo_item_label,
			stats_label="issues",
		),
	]


#============================================
def jira_cache_kinds(ttls: dict | None = None) -> list[cache_store.CacheKind]:
	"""
	Kinds stored by the Jira cache manager.
	"""
	return [
		cache_store.CacheKind(
			name=JIRA_ISSUE_KIND,
			subdir="",
			ttl_seconds=resolve_ttl(ttls, JIRA_ISSUE_KIND),
			identity_fields=("issue_key",),
			filename_fn=cache_store.jira_issue_filename,
			label_fn=cache_store.jira_issue_label,
			stats_label="issues",
			type_aliases=("issue",),
		),
	]


#============================================
def default_cache_root() -> str:
	"""
	Return ~/.perfdive/cache; raises RuntimeError when home is unknown.
	"""
	home = os.path.expanduser("~")
	if (not home) or (home == "~"):
		raise RuntimeError("could not determine home directory")
	return os.path.join(home, ".perfdive", "cache")


#============================================
def jira_cache_root(github_root: str) -> str:
	return os.path.join(github_root, "jira")


#============================================
class CacheManager:
	"""
	Get/set/clear/sweep/stats over one directory tree and its metadata index.
	"""

	def __init__(self, root_dir: str, kinds: list, clock=None, log_fn=None):
		if not kinds:
			raise ValueError("CacheManager needs at least one kind")
		self.root_dir = os.path.abspath(root_dir)
		self.clock = clock or cache_index.utc_now
		self.log_fn = log_fn
		self.kinds = {kind.name: kind for kind in kinds}
		self.stores = {
			kind.name: cache_store.EntryStore(self.root_dir, kind, clock=self.clock, log_fn=log_fn)
			for kind in kinds
		}
		try:
			os.makedirs(self.root_dir, exist_ok=True)
			for store in self.stores.values():
				store.ensure_directory()
		except OSError as error:
			raise CacheUnavailableError(f"cannot create cache directory {self.root_dir}: {error}") from error
		self.metadata_path = os.path.join(self.root_dir, cache_store.METADATA_FILENAME)
		type_aliases = {alias: kind.name for kind in kinds for alias in kind.type_aliases}
		self.index = cache_index.MetadataIndex(self.metadata_path, clock=self.clock, type_aliases=type_aliases)
		self.index.load()

	#============================================
	def log(self, message: str) -> None:
		if self.log_fn is not None:
			self.log_fn(message)

	#============================================
	def kind(self, kind_name: str) -> cache_store.CacheKind:
		if kind_name not in self.kinds:
			raise KeyError(f"unknown cache kind: {kind_name}")
		return self.kinds[kind_name]

	#============================================
	def _store_for_path(self, relative_path: str) -> cache_store.EntryStore | None:
		subdir = relative_path.split("/", 1)[0] if "/" in relative_path else ""
		for store in self.stores.values():
			if store.kind.subdir == subdir:
				return store
		return None

	#============================================
	def _delete_blob(self, relative_path: str) -> bool:
		store = self._store_for_path(relative_path)
		if store is not None:
			return store.delete(relative_path)
		try:
			os.remove(os.path.join(self.root_dir, *relative_path.split("/")))
		except OSError:
			return False
		return True

	#============================================
	def _save_quietly(self) -> None:
		try:
			self.index.save()
		except (OSError, filelock.Timeout) as error:
			self.log(f"Cache metadata save failed: {error}")

	#============================================
	def _purge_expired(self, store: cache_store.EntryStore, relative_path: str) -> None:
		# a set() that lands between the expiry check and here keeps its entry
		if self.index.remove_if_expired(relative_path):
			store.delete(relative_path)
			self._save_quietly()

	#============================================
	def _purge_unreadable(self, store: cache_store.EntryStore, relative_path: str, observed: dict | None) -> None:
		if self.index.remove_if_unchanged(relative_path, observed):
			store.delete(relative_path)
			self._save_quietly()

	#============================================
	def get(self, kind_name: str, identity: dict):
		"""
		Return (payload, True) for a fresh matching entry, else (None, False).
		"""
		try:
			store = self.stores[kind_name]
			normalized = cache_store.normalize_identity(store.kind, identity)
			relative_path = store.relative_path(normalized)
		except (KeyError, CacheKeyError) as error:
			self.log(f"Cache miss [{kind_name}]: {error}")
			return None, False

		if self.index.is_expired(relative_path):
			self._purge_expired(store, relative_path)
			self.log(f"Cache miss [{kind_name}] {store.kind.label_fn(normalized)}")
			return None, False

		observed = self.index.get(relative_path)
		entry = store.read(relative_path)
		if entry is None:
			self._purge_unreadable(store, relative_path, observed)
			self.log(f"Cache miss [{kind_name}] {store.kind.label_fn(normalized)} (stale or unreadable)")
			return None, False

		if entry.identity != normalized:
			self.log(
				f"Cache identity mismatch [{kind_name}] at {relative_path}: "
				+ f"expected {normalized}, found {entry.identity}"
			)
			return None, False

		self.log(f"Cache hit [{kind_name}] {store.kind.label_fn(normalized)}")
		return entry.payload, True

	#============================================
	def set(self, kind_name: str, identity: dict, payload) -> str:
		"""
		Store payload for identity, replacing any previous entry.

		Raises CacheKeyError for an unusable identity and CacheWriteError when
		the blob or the index cannot be written.
		"""
		store = self.stores.get(kind_name)
		if store is None:
			raise CacheKeyError(f"unknown cache kind: {kind_name}")
		normalized = cache_store.normalize_identity(store.kind, identity)
		try:
			relative_path = store.write(normalized, payload)
		except (OSError, TypeError, ValueError) as error:
			raise CacheWriteError(f"failed to cache {kind_name} {store.kind.label_fn(normalized)}: {error}") from error
		self.index.put(relative_path, kind_name, store.kind.label_fn(normalized), store.kind.ttl_seconds)
		try:
			self.index.save()
		except (OSError, filelock.Timeout) as error:
			raise CacheWriteError(f"failed to save cache metadata: {error}") from error
		return relative_path

	#============================================
	def delete(self, kind_name: str, identity: dict) -> bool:
		"""
		Remove one entry's blob and metadata.
		"""
		store = self.stores[kind_name]
		relative_path = store.relative_path(identity)
		removed_blob = store.delete(relative_path)
		removed_meta = self.index.remove(relative_path)
		if removed_meta:
			self._save_quietly()
		return removed_blob or removed_meta

	#============================================
	def get_many(self, kind_name: str, identities: list[dict]):
		"""
		Split identities into cached payloads (by label) and misses.
		"""
		found = {}
		missing = []
		store = self.stores.get(kind_name)
		if store is None:
			return found, list(identities)
		for identity in identities:
			payload, hit = self.get(kind_name, identity)
			if hit:
				found[store.kind.label_fn(cache_store.normalize_identity(store.kind, identity))] = payload
			else:
				missing.append(identity)
		return found, missing

	#============================================
	def set_many(self, kind_name: str, items: list) -> int:
		"""
		Store (identity, payload) pairs; failures are logged and skipped.
		"""
		stored = 0
		for identity, payload in items:
			try:
				self.set(kind_name, identity, payload)
			except CacheError as error:
				self.log(f"Warning: {error}")
				continue
			stored += 1
		return stored

	#============================================
	def clear(self, kind_name: str | None = None) -> int:
		"""
		Delete every blob of one kind (or all kinds) and its metadata.

		Returns the number of blobs removed. Raises CacheError when a
		directory cannot be listed or the index cannot be saved.
		"""
		if kind_name is None:
			stores = list(self.stores.values())
		else:
			stores = [self.stores[kind_name]]
		removed = 0
		failures = []
		for store in stores:
			try:
				paths = store.list_files()
			except OSError as error:
				failures.append(f"{store.directory}: {error}")
				continue
			for relative_path in paths:
				if store.delete(relative_path):
					removed += 1
		if kind_name is None:
			self.index.reset()
		else:
			self.index.remove_kind(kind_name)
		try:
			self.index.save()
		except (OSError, filelock.Timeout) as error:
			failures.append(f"{self.metadata_path}: {error}")
		if failures:
			raise CacheError("cache clear incomplete: " + "; ".join(failures))
		return removed

	#============================================
	def clean_expired(self) -> int:
		"""
		Sweep expired metadata, delete the matching blobs, return the count.
		"""
		expired_paths = self.index.sweep()
		for relative_path in expired_paths:
			self._delete_blob(relative_path)
		if expired_paths:
			try:
				self.index.save()
			except (OSError, filelock.Timeout) as error:
				raise CacheError(f"failed to save cache metadata: {error}") from error
		return len(expired_paths)

	#============================================
	def stats(self) -> dict[str, int]:
		"""
		Entry counts per kind plus total, from the in-memory index.
		"""
		labels_by_kind = {kind.name: kind.stats_label or kind.name for kind in self.kinds.values()}
		counts = {label: 0 for label in labels_by_kind.values()}
		entries = self.index.entries_snapshot()
		for entry in entries.values():
			label = labels_by_kind.get(entry.get("type"))
			if label is not None:
				counts[label] += 1
		counts["total"] = len(entries)
		return counts

	#============================================
	def detailed_stats(self) -> dict:
		"""
		Oldest and newest creation time plus the expired-but-not-swept count.
		"""
		now = self.clock()
		oldest = None
		newest = None
		expired = 0
		for entry in self.index.entries_snapshot().values():
			try:
				created = cache_index.parse_iso(entry.get("created", ""))
				expires = cache_index.parse_iso(entry.get("expires", ""))
			except (TypeError, ValueError):
				expired += 1
				continue
			if (oldest is None) or (created < oldest):
				oldest = created
			if (newest is None) or (created > newest):
				newest = created
			if now > expires:
				expired += 1
		return {"oldest": oldest, "newest": newest, "expired": expired}

	#============================================
	def ttl_table(self) -> dict[str, float]:
		return {name: kind.ttl_seconds for name, kind in self.kinds.items()}


#============================================
def open_github_cache(root_dir: str | None = None, ttls: dict | None = None, clock=None, log_fn=None):
	"""
	Build the GitHub cache manager, or return None so callers run uncached.
	"""
	try:
		root = root_dir or default_cache_root()
		return CacheManager(root, github_cache_kinds(ttls), clock=clock, log_fn=log_fn)
	except (CacheError, OSError, RuntimeError) as error:
		if log_fn is not None:
			log_fn(f"Warning: GitHub cache disabled: {error}")
		return None


#============================================
def open_jira_cache(root_dir: str | None = None, ttls: dict | None = None, clock=None, log_fn=None):
	"""
	Build the Jira cache manager, or return None so callers run uncached.

	root_dir is the shared cache root; Jira blobs live in its jira/ subdirectory.
	"""
	try:
		root = jira_cache_root(root_dir or default_cache_root())
		return CacheManager(root, jira_cache_kinds(ttls), clock=clock, log_fn=log_fn)
	except (CacheError, OSError, RuntimeError) as error:
		if log_fn is not None:
			log_fn(f"Warning: Jira cache disabled: {error}")
		return None
