"""
Per-kind blob storage: identity -> filename, JSON blob read/write/delete.
"""

import hashlib
import json
import os
from dataclasses import dataclass
from dataclasses import field
from dataclasses import replace
from datetime import datetime
from typing import Any
from typing import Callable

from perfdive import cache_index
from perfdive.errors import CacheKeyError


METADATA_FILENAME = "metadata.json"
BLOB_SUFFIX = ".json"


#============================================
@dataclass(frozen=True)
class CacheKind:
	"""
	One category of cached item with its own TTL and key derivation.
	"""

	name: str
	subdir: str
	ttl_seconds: float
	identity_fields: tuple[str, ...]
	filename_fn: Callable[[dict], str] = field(compare=False)
	label_fn: Callable[[dict], str] = field(compare=False)
	stats_label: str = ""
	# filename is a digest, so field values never reach the filesystem
	hashed_filename: bool = False
	# metadata "type" values written under an older kind name
	type_aliases: tuple[str, ...] = ()

	#============================================
	def with_ttl(self, ttl_seconds: float) -> "CacheKind":
		return replace(self, ttl_seconds=float(ttl_seconds))


#============================================
@dataclass
class StoredEntry:
	"""
	One decoded blob.
	"""

	payload: Any
	identity: dict
	created_at: datetime


#============================================
def normalize_identity(kind: CacheKind, identity: dict) -> dict:
	"""
	Reduce an identity to the kind's string fields, rejecting unsafe values.

	Path separators and dot names are only refused when the raw values
	become part of the filename.
	"""
	if not isinstance(identity, dict):
		raise CacheKeyError(f"{kind.name} identity must be a mapping")
	normalized = {}
	for name in kind.identity_fields:
		value = identity.get(name)
		if value is None:
			raise CacheKeyError(f"{kind.name} identity is missing '{name}'")
		text = str(value).strip()
		if not text:
			raise CacheKeyError(f"{kind.name} identity field '{name}' is empty")
		if kind.hashed_filename:
			normalized[name] = text
			continue
		if ("/" in text) or ("\\" in text) or (text in {".", ".."}) or ("\x00" in text):
			raise CacheKeyError(f"{kind.name} identity field '{name}' is not filesystem-safe: {text!r}")
		normalized[name] = text
	return normalized


#============================================
def activity_filename(identity: dict) -> str:
	"""
	Hash username + date range; first 8 digest bytes as hex.
	"""
	key_text = f"{identity['username']}_{identity['start_date']}_{identity['end_date']}"
	digest = hashlib.sha256(key_text.encode("utf-8")).digest()
	return digest[:8].hex() + BLOB_SUFFIX


#============================================
def activity_label(identity: dict) -> str:
	return f"{identity['username']}_{identity['start_date']}_{identity['end_date']}"


#============================================
def repo_item_filename(identity: dict) -> str:
	return f"{identity['owner']}_{identity['repo']}_{identity['number']}{BLOB_SUFFIX}"


#============================================
def repo_item_label(identity: dict) -> str:
	return f"{identity['owner']}/{identity['repo']}#{identity['number']}"


#============================================
def jira_issue_filename(identity: dict) -> str:
	return f"{identity['issue_key']}{BLOB_SUFFIX}"


#============================================
def jira_issue_label(identity: dict) -> str:
	return identity["issue_key"]


#============================================
class EntryStore:
	"""
	Read, write, and delete the JSON blobs of one cache kind.
	"""

	def __init__(self, root_dir: str, kind: CacheKind, clock=None, log_fn=None):
		self.root_dir = os.path.abspath(root_dir)
		self.kind = kind
		self.clock = clock or cache_index.utc_now
		self.log_fn = log_fn
		self.directory = os.path.join(self.root_dir, kind.subdir) if kind.subdir else self.root_dir

	#============================================
	def log(self, message: str) -> None:
		if self.log_fn is not None:
			self.log_fn(message)

	#============================================
	def ensure_directory(self) -> None:
		os.makedirs(self.directory, exist_ok=True)

	#============================================
	def relative_path(self, identity: dict) -> str:
		"""
		Index key for an identity, always with forward slashes.
		"""
		normalized = normalize_identity(self.kind, identity)
		filename = self.kind.filename_fn(normalized)
		if self.kind.subdir:
			return f"{self.kind.subdir}/{filename}"
		return filename

	#============================================
	def absolute_path(self, relative_path: str) -> str:
		return os.path.join(self.root_dir, *relative_path.split("/"))

	#============================================
	def write(self, identity: dict, payload) -> str:
		"""
		Serialize payload with its identity and creation time; return the relative path.
		"""
		normalized = normalize_identity(self.kind, identity)
		relative_path = self.relative_path(normalized)
		document = {
			"data": payload,
			"timestamp": cache_index.format_iso(self.clock()),
		}
		document.update(normalized)
		self.ensure_directory()
		cache_index.write_json_atomic(self.absolute_path(relative_path), document)
		return relative_path

	#============================================
	def read(self, relative_path: str) -> StoredEntry | None:
		"""
		Decode one blob, or None when it is absent, corrupt, or older than the TTL.
		"""
		path = self.absolute_path(relative_path)
		try:
			with open(path, "r", encoding="utf-8") as handle:
				document = json.load(handle)
		except FileNotFoundError:
			return None
		except (OSError, ValueError) as error:
			self.log(f"Cache blob unreadable [{relative_path}]: {error}")
			return None
		if not isinstance(document, dict) or ("data" not in document):
			self.log(f"Cache blob has unexpected shape [{relative_path}]")
			return None
		try:
			created_at = cache_index.parse_iso(document.get("timestamp", ""))
		except (TypeError, ValueError):
			self.log(f"Cache blob timestamp invalid [{relative_path}]")
			return None
		age_seconds = (self.clock() - created_at).total_seconds()
		if age_seconds > self.kind.ttl_seconds:
			return None
		identity = {
			name: str(document.get(name, ""))
			for name in self.kind.identity_fields
		}
		return StoredEntry(payload=document["data"], identity=identity, created_at=created_at)

	#============================================
	def delete(self, relative_path: str) -> bool:
		"""
		Best-effort removal; returns True when a file was deleted.
		"""
		try:
			os.remove(self.absolute_path(relative_path))
		except FileNotFoundError:
			return False
		except OSError as error:
			self.log(f"Cache blob delete failed [{relative_path}]: {error}")
			return False
		return True

	#============================================
	def list_files(self) -> list[str]:
		"""
		Relative paths of the blob files in this kind's directory.

		Raises OSError when the directory exists but cannot be listed.
		"""
		if not os.path.isdir(self.directory):
			return []
		names = []
		with os.scandir(self.directory) as scanner:
			for item in scanner:
				if not item.is_file():
					continue
				if item.name == METADATA_FILENAME or item.name.startswith("."):
					continue
				if not item.name.endswith(BLOB_SUFFIX):
					continue
				names.append(item.name)
		if self.kind.subdir:
			return sorted(f"{self.kind.subdir}/{name}" for name in names)
		return sorted(names)
