"""
`perfdive cache stats|clear|clean`: maintenance over the GitHub and Jira caches.

Each cache domain is opened and processed independently; a failure in one
is reported on its own line and the other still runs.
"""

import os
from datetime import datetime

from perfdive import cache_index
from perfdive import cache_manager
from perfdive import console
from perfdive.errors import CacheError


STATS_LABELS = {
	cache_manager.ACTIVITY_KIND: "Activity entries:",
	cache_manager.PR_KIND: "PR entries:",
	cache_manager.ISSUE_KIND: "Issue entries:",
}


#============================================
def cache_domains(root_dir: str) -> list[tuple]:
	"""
	(label, directory, kinds factory) per cache domain.
	"""
	return [
		("GitHub", root_dir, cache_manager.github_cache_kinds),
		("Jira", cache_manager.jira_cache_root(root_dir), cache_manager.jira_cache_kinds),
	]


#============================================
def open_domain(domain_root: str, kinds_fn, ttls: dict | None, clock=None):
	"""
	Open one cache manager; raises CacheError on failure.
	"""
	try:
		return cache_manager.CacheManager(domain_root, kinds_fn(ttls), clock=clock)
	except OSError as error:
		raise CacheError(f"cannot open cache at {domain_root}: {error}") from error


#============================================
def format_time_ago(value: datetime | None, now: datetime | None = None) -> str:
	"""
	Coarse relative age: just now, N minutes/hours/days ago, or N/A.
	"""
	if value is None:
		return "N/A"
	now = now or cache_index.utc_now()
	seconds = (now - value).total_seconds()
	if seconds < 60:
		return "just now"
	if seconds < 3600:
		minutes = int(seconds // 60)
		return "1 minute ago" if minutes == 1 else f"{minutes} minutes ago"
	if seconds < 86400:
		hours = int(seconds // 3600)
		return "1 hour ago" if hours == 1 else f"{hours} hours ago"
	days = int(seconds // 86400)
	return "1 day ago" if days == 1 else f"{days} days ago"


#============================================
def format_bytes(size: int) -> str:
	"""
	1023 -> "1023 B", 1536 -> "1.5 KB".
	"""
	unit = 1024
	if size < unit:
		return f"{size} B"
	divisor = unit
	exponent = 0
	value = size // unit
	while value >= unit:
		divisor *= unit
		exponent += 1
		value //= unit
	return f"{size / divisor:.1f} {'KMGTPE'[exponent]}B"


#============================================
def format_ttl(seconds: float) -> str:
	seconds = int(seconds)
	if seconds % 3600 == 0 and seconds >= 3600:
		hours = seconds // 3600
		return "1 hour" if hours == 1 else f"{hours} hours"
	if seconds % 60 == 0 and seconds >= 60:
		minutes = seconds // 60
		return "1 minute" if minutes == 1 else f"{minutes} minutes"
	return f"{seconds} seconds"


#============================================
def directory_stats(path: str) -> tuple[int, int]:
	"""
	(total bytes, file count) under path; raises OSError when unreadable.
	"""
	total_size = 0
	count = 0

	def raise_error(error):
		raise error

	for dirpath, _dirnames, filenames in os.walk(path, onerror=raise_error):
		for name in filenames:
			total_size += os.path.getsize(os.path.join(dirpath, name))
			count += 1
	return total_size, count


#============================================
def stats_lines(root_dir: str, ttls: dict | None = None, clock=None) -> list[str]:
	"""
	The full `cache stats` report as printable lines.
	"""
	now = (clock or cache_index.utc_now)()
	lines = ["Cache Statistics", "================", ""]
	for label, domain_root, kinds_fn in cache_domains(root_dir):
		lines.append(f"{label} Cache:")
		lines.append("-" * (len(label) + 7))
		try:
			manager = open_domain(domain_root, kinds_fn, ttls, clock=clock)
		except CacheError as error:
			lines.append(f"  Error loading {label} cache: {error}")
			lines.append("")
			continue
		counts = manager.stats()
		lines.append(f"  {'Total entries:':<19}{counts['total']}")
		for kind_name, kind in manager.kinds.items():
			kind_label = STATS_LABELS.get(kind_name, "TTL:")
			if kind_name in STATS_LABELS:
				lines.append(
					f"  {kind_label:<19}{counts.get(kind.stats_label, 0)} (TTL: {format_ttl(kind.ttl_seconds)})"
				)
			else:
				lines.append(f"  {kind_label:<19}{format_ttl(kind.ttl_seconds)}")
		details = manager.detailed_stats()
		lines.append(f"  {'Oldest entry:':<19}{format_time_ago(details['oldest'], now)}")
		lines.append(f"  {'Newest entry:':<19}{format_time_ago(details['newest'], now)}")
		lines.append(f"  {'Expired entries:':<19}{details['expired']}")
		lines.append("")
	try:
		size, count = directory_stats(root_dir)
	except OSError as error:
		lines.append(f"Cache directory: {root_dir} (error reading: {error})")
	else:
		lines.append(f"Cache Directory: {root_dir}")
		lines.append(f"  {'Total files:':<19}{count}")
		lines.append(f"  {'Total size:':<19}{format_bytes(size)}")
	return lines


#============================================
def clear_all(root_dir: str, ttls: dict | None = None, clock=None) -> tuple[list[str], int]:
	"""
	Clear every domain; returns (report lines, files removed).
	"""
	lines = ["Clearing all cache...", ""]
	total = 0
	failures = 0
	for label, domain_root, kinds_fn in cache_domains(root_dir):
		try:
			manager = open_domain(domain_root, kinds_fn, ttls, clock=clock)
			removed = manager.clear()
		except CacheError as error:
			lines.append(f"Clearing {label} cache... failed: {error}")
			failures += 1
			continue
		total += removed
		lines.append(f"Clearing {label} cache... done")
	lines.append("")
	if failures:
		lines.append(f"Cache cleared with {failures} failure(s).")
	else:
		lines.append("Cache cleared successfully.")
	return lines, total


#============================================
def clean_all(root_dir: str, ttls: dict | None = None, clock=None) -> tuple[list[str], int]:
	"""
	Sweep expired entries in every domain; returns (report lines, entries removed).
	"""
	lines = ["Cleaning expired cache entries...", ""]
	total = 0
	for label, domain_root, kinds_fn in cache_domains(root_dir):
		try:
			manager = open_domain(domain_root, kinds_fn, ttls, clock=clock)
			removed = manager.clean_expired()
		except CacheError as error:
			lines.append(f"Cleaning {label} cache... failed: {error}")
			continue
		total += removed
		lines.append(f"Cleaning {label} cache... removed {removed} expired entries")
	lines.append("")
	lines.append(f"Cleaned {total} expired entries total.")
	return lines, total


#============================================
def run_cache_command(action: str, root_dir: str, ttls: dict | None = None) -> int:
	"""
	Print one maintenance report; always exits 0.
	"""
	if action == "stats":
		lines = stats_lines(root_dir, ttls)
	elif action == "clear":
		lines, _ = clear_all(root_dir, ttls)
	elif action == "clean":
		lines, _ = clean_all(root_dir, ttls)
	else:
		raise ValueError(f"unknown cache action: {action}")
	for line in lines:
		if "failed" in line or "Error loading" in line:
			console.echo(line, style="bold red")
		else:
			console.echo(line)
	return 0
