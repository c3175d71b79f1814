"""
In-memory metadata index mirrored to one JSON document per cache manager.

The index maps a blob's relative storage path to its creation and
expiration times. It is the single source of truth for expiration; blob
timestamps are only re-checked defensively on read.
"""

import json
import os
import re
import tempfile
import threading
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import filelock

from perfdive import rwlock


LOCK_TIMEOUT_SECONDS = 10

# fromisoformat before 3.11 only takes 3 or 6 fractional digits
FRACTION_PATTERN = re.compile(r"\.(\d+)")


#============================================
def utc_now() -> datetime:
	"""
	Return UTC now as a timezone-aware datetime.
	"""
	return datetime.now(timezone.utc)


#============================================
def _microsecond_fraction(match: re.Match) -> str:
	return "." + match.group(1)[:6].ljust(6, "0")


#============================================
def parse_iso(ts: str) -> datetime:
	"""
	Parse an RFC3339 timestamp string into a timezone-aware datetime.

	Fractions of any precision are accepted; nanosecond stamps are cut
	to microseconds.
	"""
	text = str(ts).strip().replace("Z", "+00:00")
	text = FRACTION_PATTERN.sub(_microsecond_fraction, text, count=1)
	parsed = datetime.fromisoformat(text)
	if parsed.tzinfo is None:
		parsed = parsed.replace(tzinfo=timezone.utc)
	return parsed


#============================================
def format_iso(value: datetime) -> str:
	"""
	Render a datetime as an RFC3339 UTC string.
	"""
	if value.tzinfo is None:
		value = value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc).isoformat()


#============================================
def write_json_atomic(path: str, payload, indent: int | None = None) -> None:
	"""
	Write JSON to a temp file beside path, then rename it into place.
	"""
	directory = os.path.dirname(path) or "."
	handle = tempfile.NamedTemporaryFile(
		mode="w",
		encoding="utf-8",
		dir=directory,
		prefix=".tmp-",
		suffix=".json",
		delete=False,
	)
	try:
		with handle:
			json.dump(payload, handle, ensure_ascii=True, sort_keys=True, indent=indent)
			handle.write("\n")
		os.replace(handle.name, path)
	except BaseException:
		try:
			os.remove(handle.name)
		except OSError:
			pass
		raise


#============================================
class MetadataIndex:
	"""
	Expiration bookkeeping for every blob under one cache root.
	"""

	def __init__(self, metadata_path: str, clock=None, type_aliases: dict | None = None):
		self.metadata_path = os.path.abspath(metadata_path)
		self.clock = clock or utc_now
		# older documents may name a kind differently; mapped on load
		self.type_aliases = dict(type_aliases or {})
		self._entries: dict[str, dict] = {}
		self._lock = rwlock.ReadWriteLock()
		self._save_lock = threading.Lock()
		self._file_lock = filelock.FileLock(
			self.metadata_path + ".lock",
			timeout=LOCK_TIMEOUT_SECONDS,
		)

	#============================================
	def load(self) -> int:
		"""
		Replace the in-memory index with the on-disk document.

		A missing, unreadable, or malformed document is the normal first-run
		state and resets the index to empty. Returns the loaded entry count.
		"""
		entries = {}
		try:
			with open(self.metadata_path, "r", encoding="utf-8") as handle:
				payload = json.load(handle)
		except (OSError, ValueError):
			payload = None
		if isinstance(payload, dict) and isinstance(payload.get("entries"), dict):
			for path, entry in payload["entries"].items():
				if not isinstance(entry, dict):
					continue
				entry = dict(entry)
				if entry.get("type") in self.type_aliases:
					entry["type"] = self.type_aliases[entry["type"]]
				entries[str(path)] = entry
		with self._lock.write_locked():
			self._entries = entries
		return len(entries)

	#============================================
	def save(self) -> None:
		"""
		Publish the full index to disk with an atomic rename.

		Raises OSError or filelock.Timeout when the document cannot be written.
		"""
		with self._save_lock:
			# snapshot under the save lock so the last writer publishes the newest state
			with self._lock.read_locked():
				payload = {"entries": {path: dict(entry) for path, entry in self._entries.items()}}
			with self._file_lock:
				write_json_atomic(self.metadata_path, payload, indent=2)

	#============================================
	def put(self, path: str, kind: str, key: str, ttl_seconds: float) -> dict:
		"""
		Insert or overwrite the entry for path, expiring ttl_seconds from now.
		"""
		now = self.clock()
		entry = {
			"created": format_iso(now),
			"expires": format_iso(now + timedelta(seconds=ttl_seconds)),
			"type": kind,
			"key": key,
		}
		with self._lock.write_locked():
			self._entries[path] = entry
		return dict(entry)

	#============================================
	def get(self, path: str) -> dict | None:
		with self._lock.read_locked():
			entry = self._entries.get(path)
			return dict(entry) if entry is not None else None

	#============================================
	def _entry_expired(self, entry: dict, now: datetime) -> bool:
		try:
			expires = parse_iso(entry.get("expires", ""))
		except (TypeError, ValueError):
			return True
		return now > expires

	#============================================
	def is_expired(self, path: str) -> bool:
		"""
		Unknown paths count as expired so callers always refetch.
		"""
		now = self.clock()
		with self._lock.read_locked():
			entry = self._entries.get(path)
			if entry is None:
				return True
			return self._entry_expired(entry, now)

	#============================================
	def remove(self, path: str) -> bool:
		with self._lock.write_locked():
			return self._entries.pop(path, None) is not None

	#============================================
	def remove_if_expired(self, path: str) -> bool:
		"""
		Drop path only if it is still expired under the write lock.

		Returns False for a fresh entry (a put landed after the caller's
		check) and for an unknown path.
		"""
		now = self.clock()
		with self._lock.write_locked():
			entry = self._entries.get(path)
			if (entry is None) or (not self._entry_expired(entry, now)):
				return False
			del self._entries[path]
			return True

	#============================================
	def remove_if_unchanged(self, path: str, expected: dict | None) -> bool:
		"""
		Drop path only if its entry still equals expected.
		"""
		with self._lock.write_locked():
			if (expected is None) or (self._entries.get(path) != expected):
				return False
			del self._entries[path]
			return True

	#============================================
	def sweep(self) -> list[str]:
		"""
		Remove every expired entry and return the removed paths.
		"""
		now = self.clock()
		with self._lock.write_locked():
			expired = [
				path for path, entry in self._entries.items()
				if self._entry_expired(entry, now)
			]
			for path in expired:
				del self._entries[path]
		return sorted(expired)

	#============================================
	def remove_kind(self, kind: str) -> list[str]:
		with self._lock.write_locked():
			paths = [path for path, entry in self._entries.items() if entry.get("type") == kind]
			for path in paths:
				del self._entries[path]
		return sorted(paths)

	#============================================
	def reset(self) -> None:
		with self._lock.write_locked():
			self._entries = {}

	#============================================
	def entries_snapshot(self) -> dict[str, dict]:
		with self._lock.read_locked():
			return {path: dict(entry) for path, entry in self._entries.items()}

	#============================================
	def __len__(self) -> int:
		with self._lock.read_locked():
			return len(self._entries)
