import random
import re
import time
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import requests
from github import Github
from github.GithubException import GithubException

from perfdive import cache_manager
from perfdive.errors import CacheError
from perfdive.errors import RateLimitError


GITHUB_API_URL = "https://api.github.com"
GITHUB_REFERENCE_RE = re.compile(r"https://github\.com/([^/\s]+)/([^/\s]+)/(pull|issues)/(\d+)")
MAX_REVIEW_COMMENTS = 20
MAX_ISSUE_COMMENTS = 10
MAX_PATCH_CHARS = 2000
MAX_DIFF_CHARS = 5000
# search API stops at 1000 results
MAX_SEARCH_RESULTS = 1000
REQUEST_TIMEOUT_SECONDS = 30

FILE_TYPES = {
	"source_code": {"go", "java", "py", "js", "ts", "cpp", "c", "h", "rs", "rb", "php"},
	"documentation": {"md", "txt", "rst", "adoc"},
	"configuration": {"json", "yaml", "yml", "xml", "toml"},
	"database": {"sql"},
	"build": {"dockerfile", "makefile"},
}


#============================================
def extract_github_references(text: str) -> list[dict]:
	"""
	Find pull request and issue URLs in free text, deduplicated by URL.
	"""
	references = []
	seen = set()
	for match in GITHUB_REFERENCE_RE.finditer(text or ""):
		url = match.group(0)
		if url in seen:
			continue
		seen.add(url)
		references.append({
			"owner": match.group(1),
			"repo": match.group(2),
			"type": match.group(3),
			"number": match.group(4),
			"url": url,
		})
	return references


#============================================
def categorize_file_type(filename: str) -> str:
	name = (filename or "").lower()
	extension = name.rsplit(".", 1)[-1] if "." in name else name.rsplit("/", 1)[-1]
	for file_type, extensions in FILE_TYPES.items():
		if extension in extensions:
			return file_type
	return "other"


#============================================
def is_test_file(filename: str) -> bool:
	name = (filename or "").lower()
	return ("test" in name) or ("spec" in name)


#============================================
def is_documentation_file(filename: str) -> bool:
	name = (filename or "").lower()
	if name.endswith((".md", ".txt", ".rst")):
		return True
	return ("readme" in name) or ("doc" in name) or ("changelog" in name)


#============================================
def filter_by_created_date(items: list[dict], start_date: str, end_date: str) -> list[dict]:
	"""
	Keep items whose created_at falls inside the inclusive YYYY-MM-DD range.

	An unparseable range returns every item; unparseable items are dropped.
	"""
	try:
		start = datetime.strptime(start_date, "%Y-%m-%d").replace(tzinfo=timezone.utc)
		end = datetime.strptime(end_date, "%Y-%m-%d").replace(tzinfo=timezone.utc) + timedelta(days=1)
	except (TypeError, ValueError):
		return list(items)
	filtered = []
	for item in items:
		created_text = str(item.get("created_at") or "")
		try:
			created = datetime.fromisoformat(created_text.replace("Z", "+00:00"))
		except ValueError:
			continue
		if created.tzinfo is None:
			created = created.replace(tzinfo=timezone.utc)
		if start <= created < end:
			filtered.append(item)
	return filtered


#============================================
class GitHubClient:
	"""
	PyGithub wrapper that serves activity, PRs, and issues through the response cache.
	"""

	def __init__(self, token: str, cache=None, log_fn=None, github=None, session=None):
		self.token = token or ""
		self.cache = cache
		self.log_fn = log_fn
		self.session = session or requests.Session()
		self.request_jitter_seconds = 1.0
		self._rate_check_count = 0
		self._low_remaining_threshold = 5
		self._max_proactive_sleep_seconds = 10
		self._api_call_count = 0
		self._api_calls_by_context: dict[str, int] = {}
		self._cache_hit_count = 0
		self._cache_miss_count = 0
		self.client = github if github is not None else self._build_github_client(self.token)

	#============================================
	def _build_github_client(self, token: str):
		"""
		Create Github client with retry disabled when supported.
		"""
		if token:
			try:
				return Github(token, retry=None)
			except TypeError:
				return Github(token)
		try:
			return Github(retry=None)
		except TypeError:
			return Github()

	#============================================
	def log(self, message: str) -> None:
		"""
		Emit one log line when logger is configured.
		"""
		if self.log_fn is not None:
			self.log_fn(message)

	#============================================
	def record_api_call(self, context: str) -> None:
		self._api_call_count += 1
		self._api_calls_by_context[context] = self._api_calls_by_context.get(context, 0) + 1

	#============================================
	def api_usage_snapshot(self) -> dict:
		"""
		Return API/caching counters for reporting.
		"""
		return {
			"api_call_count": self._api_call_count,
			"api_calls_by_context": dict(self._api_calls_by_context),
			"cache_hit_count": self._cache_hit_count,
			"cache_miss_count": self._cache_miss_count,
		}

	#============================================
	def parse_rate_limit_reset(self, reset_value) -> datetime:
		"""
		Normalize PyGithub reset values to timezone-aware UTC datetime.
		"""
		if isinstance(reset_value, datetime):
			if reset_value.tzinfo is None:
				return reset_value.replace(tzinfo=timezone.utc)
			return reset_value.astimezone(timezone.utc)
		if isinstance(reset_value, (int, float)):
			return datetime.fromtimestamp(float(reset_value), tz=timezone.utc)
		if isinstance(reset_value, str):
			return datetime.fromisoformat(reset_value.replace("Z", "+00:00"))
		raise RuntimeError(f"Unsupported rate-limit reset value: {reset_value!r}")

	#============================================
	def _rate_limit_resource(self, overview, name: str):
		rate_limit = getattr(overview, name, None)
		if rate_limit is None:
			resources = getattr(overview, "resources", None)
			if isinstance(resources, dict):
				rate_limit = resources.get(name)
			elif resources is not None:
				rate_limit = getattr(resources, name, None)
		return rate_limit

	#============================================
	def get_core_rate_limit_snapshot(self) -> tuple[int, datetime]:
		"""
		Read core rate-limit remaining/reset across PyGithub versions.
		"""
		self.record_api_call("GET /rate_limit")
		overview = self.client.get_rate_limit()
		rate_limit = self._rate_limit_resource(overview, "core")
		if rate_limit is None:
			raise RuntimeError("Rate limit data does not expose core resource fields.")
		remaining = int(getattr(rate_limit, "remaining"))
		reset_time = self.parse_rate_limit_reset(getattr(rate_limit, "reset"))
		return remaining, reset_time

	#============================================
	def test_connection(self) -> dict:
		"""
		Check connectivity and return core/search remaining counts.

		Raises RateLimitError or GithubException when GitHub cannot be reached.
		"""
		self.record_api_call("GET /rate_limit")
		try:
			overview = self.client.get_rate_limit()
		except GithubException as error:
			self.raise_from_github_error(error, "testing the GitHub connection")
		status = {"authenticated": bool(self.token)}
		for name in ("core", "search"):
			resource = self._rate_limit_resource(overview, name)
			if resource is None:
				continue
			status[name] = {
				"remaining": int(getattr(resource, "remaining", 0)),
				"limit": int(getattr(resource, "limit", 0)),
				"reset": self.parse_rate_limit_reset(getattr(resource, "reset")).isoformat(),
			}
		core_remaining = status.get("core", {}).get("remaining")
		if core_remaining is not None and core_remaining < 10:
			self.log(f"Warning: core API rate limit is low ({core_remaining} remaining)")
		search_remaining = status.get("search", {}).get("remaining")
		if search_remaining is not None and search_remaining < 5:
			self.log(f"Warning: search API rate limit is low ({search_remaining} remaining)")
		return status

	#============================================
	def maybe_wait_for_rate_limit(self, context: str, force: bool = False) -> None:
		"""
		Sleep until reset when rate limit is very low.
		"""
		self._rate_check_count += 1
		if (not force) and (self._rate_check_count % 15 != 0):
			return
		try:
			remaining, reset_time = self.get_core_rate_limit_snapshot()
		except (GithubException, RuntimeError, AttributeError, TypeError, ValueError) as error:
			self.log(f"Rate limit check ({context}) unavailable: {error}")
			return
		self.log(
			f"Rate limit check ({context}): remaining={remaining}, "
			+ f"reset_at={reset_time.isoformat()}"
		)
		if remaining > self._low_remaining_threshold:
			return
		sleep_seconds = int((reset_time - datetime.now(timezone.utc)).total_seconds()) + 1
		if sleep_seconds <= 0:
			return
		if sleep_seconds > self._max_proactive_sleep_seconds:
			self.log(
				"Rate limit is low, but proactive wait exceeds cap "
				+ f"({sleep_seconds}s > {self._max_proactive_sleep_seconds}s); "
				+ "skipping proactive sleep and continuing."
			)
			return
		self.log(f"Rate limit is low ({remaining}); sleeping {sleep_seconds}s until reset.")
		time.sleep(sleep_seconds)

	#============================================
	def sleep_request_jitter(self, context: str) -> None:
		if self.request_jitter_seconds <= 0:
			return
		time.sleep(random.random() * self.request_jitter_seconds)

	#============================================
	def call_with_retry(self, context: str, call_fn):
		"""
		Run one API call with jitter.
		"""
		self.sleep_request_jitter(context)
		try:
			self.record_api_call(context)
			return call_fn()
		except GithubException as error:
			self.raise_from_github_error(error, context)

	#============================================
	def raise_from_github_error(self, error: Exception, context: str) -> None:
		"""
		Raise a human-readable rate-limit error or re-raise original.
		"""
		status = getattr(error, "status", None)
		if status not in (403, 429):
			raise error
		message = str(getattr(error, "data", None) or error).lower()
		if "secondary rate limit" in message or "abuse" in message:
			raise RateLimitError(
				f"GitHub API secondary rate limit triggered while {context}; "
				+ "wait a minute before retrying."
			) from error
		reset_text = "unknown"
		remaining_text = "unknown"
		try:
			remaining, reset_time = self.get_core_rate_limit_snapshot()
			reset_text = reset_time.isoformat()
			remaining_text = str(remaining)
		except (GithubException, RuntimeError, AttributeError, TypeError, ValueError):
			pass
		raise RateLimitError(
			"GitHub API rate limit exceeded while "
			+ f"{context}; remaining={remaining_text}; reset_at={reset_text}. "
			+ "Provide a GitHub token (--github-token or github.token) for higher limits."
		) from error

	#============================================
	def cached_fetch(self, kind_name: str, identity: dict, context: str, fetch_fn):
		"""
		Serve identity from the response cache, else fetch and store it.

		A cache hit performs no upstream calls. A failed store is logged
		and the fresh payload is still returned.
		"""
		if self.cache is not None:
			payload, hit = self.cache.get(kind_name, identity)
			if hit:
				self._cache_hit_count += 1
				self.log(f"GitHub cache hit [{kind_name}] {context}")
				return payload
			self._cache_miss_count += 1
			self.log(f"GitHub cache miss [{kind_name}] {context}")
		payload = fetch_fn()
		if self.cache is not None:
			try:
				self.cache.set(kind_name, identity, payload)
			except CacheError as error:
				self.log(f"Warning: could not cache {kind_name} {context}: {error}")
		return payload

	#============================================
	def search_user_by_email(self, email: str) -> str:
		"""
		Return the login of the first user whose public email matches.
		"""
		self.maybe_wait_for_rate_limit("search_user_by_email", force=True)
		users = self.call_with_retry(
			"GET /search/users",
			lambda: self._first_items(self.client.search_users(f"{email} in:email"), 1),
		)
		if not users:
			raise RuntimeError(f"no GitHub user found for email: {email}")
		return users[0]

	#============================================
	def _first_items(self, paginated, limit: int) -> list:
		items = []
		for item in paginated:
			if len(items) >= limit:
				break
			login = getattr(item, "login", None)
			items.append(login if login is not None else getattr(item, "raw_data", {}) or {})
		return items

	#============================================
	def fetch_user_events(self, username: str) -> list[dict]:
		"""
		Recent public events for a user (GitHub keeps about 90 days).
		"""
		self.maybe_wait_for_rate_limit(f"fetch_user_events {username}")
		return self.call_with_retry(
			f"GET /users/{username}/events",
			lambda: [
				getattr(event, "raw_data", {}) or {}
				for event in self.client.get_user(username).get_events()
			],
		)

	#============================================
	def _search_issues(self, query: str, context: str) -> list[dict]:
		self.maybe_wait_for_rate_limit(context)
		results = []

		def collect():
			for item in self.client.search_issues(query, sort="created", order="desc"):
				if len(results) >= MAX_SEARCH_RESULTS:
					break
				results.append(getattr(item, "raw_data", {}) or {})
			return results

		return self.call_with_retry(context, collect)

	#============================================
	def fetch_user_pull_requests(self, username: str, start_date: str, end_date: str) -> list[dict]:
		"""
		Pull requests authored by username and created inside the date range.
		"""
		query = f"type:pr author:{username} created:{start_date}..{end_date}"
		items = self._search_issues(query, "GET /search/issues (pr)")
		return filter_by_created_date(items, start_date, end_date)

	#============================================
	def fetch_user_issues(self, username: str, start_date: str, end_date: str) -> list[dict]:
		"""
		Issues authored by username and created inside the date range.
		"""
		query = f"type:issue author:{username} created:{start_date}..{end_date}"
		items = self._search_issues(query, "GET /search/issues (issue)")
		return filter_by_created_date(items, start_date, end_date)

	#============================================
	def fetch_comprehensive_activity(self, username: str, start_date: str, end_date: str) -> dict:
		"""
		Events, authored PRs, and authored issues for one user and range.

		Each source fails independently with a warning; the combined
		snapshot is cached for the activity TTL.
		"""
		identity = {"username": username, "start_date": start_date, "end_date": end_date}
		return self.cached_fetch(
			cache_manager.ACTIVITY_KIND,
			identity,
			f"{username} {start_date}..{end_date}",
			lambda: self._fetch_comprehensive_activity_live(username, start_date, end_date),
		)

	#============================================
	def _fetch_comprehensive_activity_live(self, username: str, start_date: str, end_date: str) -> dict:
		activity = {"username": username, "events": [], "pull_requests": [], "issues": []}
		sources = (
			("events", "user events", lambda: filter_by_created_date(
				self.fetch_user_events(username), start_date, end_date)),
			("pull_requests", "user pull requests", lambda: self.fetch_user_pull_requests(
				username, start_date, end_date)),
			("issues", "user issues", lambda: self.fetch_user_issues(username, start_date, end_date)),
		)
		for field_name, label, fetch_fn in sources:
			try:
				activity[field_name] = fetch_fn()
			except (GithubException, RateLimitError, requests.RequestException) as error:
				self.log(f"Warning: failed to fetch {label}: {error}")
		return activity

	#============================================
	def get_repo(self, owner: str, repo: str):
		full_name = f"{owner}/{repo}"
		self.maybe_wait_for_rate_limit(f"get_repo {full_name}")
		return self.call_with_retry(
			f"GET /repos/{full_name}",
			lambda: self.client.get_repo(full_name),
		)

	#============================================
	def fetch_pull_request(self, owner: str, repo: str, number) -> dict:
		"""
		One PR with review comments, changed files, and a truncated diff.
		"""
		identity = {"owner": owner, "repo": repo, "number": str(number)}
		return self.cached_fetch(
			cache_manager.PR_KIND,
			identity,
			f"{owner}/{repo}#{number}",
			lambda: self._fetch_pull_request_live(owner, repo, int(number)),
		)

	#============================================
	def _fetch_pull_request_live(self, owner: str, repo: str, number: int) -> dict:
		repo_obj = self.get_repo(owner, repo)
		context = f"GET /repos/{owner}/{repo}/pulls/{number}"
		pull = self.call_with_retry(context, lambda: repo_obj.get_pull(number))
		payload = dict(getattr(pull, "raw_data", {}) or {})

		try:
			comments = self.call_with_retry(
				context + "/comments",
				lambda: self._collect_raw(pull.get_review_comments(), MAX_REVIEW_COMMENTS),
			)
		except GithubException as error:
			self.log(f"Warning: failed to fetch review comments for {owner}/{repo}#{number}: {error}")
			comments = []
		payload["review_comment_details"] = [
			{
				"id": comment.get("id"),
				"user": {"login": (comment.get("user") or {}).get("login", "")},
				"body": comment.get("body", ""),
				"path": comment.get("path", ""),
				"line": comment.get("line"),
				"created_at": comment.get("created_at", ""),
			}
			for comment in comments
		]

		try:
			files = self.call_with_retry(
				context + "/files",
				lambda: [self._file_change(file_obj) for file_obj in pull.get_files()],
			)
		except GithubException as error:
			self.log(f"Warning: failed to fetch changed files for {owner}/{repo}#{number}: {error}")
			files = []
		payload["files_changed"] = files

		try:
			payload["code_diff"] = self.fetch_pull_request_diff(owner, repo, number)
		except requests.RequestException as error:
			self.log(f"Warning: failed to fetch diff for {owner}/{repo}#{number}: {error}")
			payload["code_diff"] = ""
		return payload

	#============================================
	def _collect_raw(self, paginated, limit: int) -> list[dict]:
		items = []
		for item in paginated:
			if len(items) >= limit:
				break
			items.append(getattr(item, "raw_data", {}) or {})
		return items

	#============================================
	def _file_change(self, file_obj) -> dict:
		filename = getattr(file_obj, "filename", "") or ""
		patch = getattr(file_obj, "patch", "") or ""
		if len(patch) > MAX_PATCH_CHARS:
			patch = patch[:MAX_PATCH_CHARS] + "\n... (truncated)"
		return {
			"filename": filename,
			"status": getattr(file_obj, "status", ""),
			"additions": getattr(file_obj, "additions", 0),
			"deletions": getattr(file_obj, "deletions", 0),
			"changes": getattr(file_obj, "changes", 0),
			"patch": patch,
			"file_type": categorize_file_type(filename),
			"is_test_file": is_test_file(filename),
			"is_doc_file": is_documentation_file(filename),
		}

	#============================================
	def fetch_pull_request_diff(self, owner: str, repo: str, number: int) -> str:
		"""
		First MAX_DIFF_CHARS characters of the unified diff.
		"""
		url = f"{GITHUB_API_URL}/repos/{owner}/{repo}/pulls/{number}"
		headers = {"Accept": "application/vnd.github.v3.diff"}
		if self.token:
			headers["Authorization"] = f"token {self.token}"
		self.record_api_call(f"GET /repos/{owner}/{repo}/pulls/{number} (diff)")
		response = self.session.get(url, headers=headers, timeout=REQUEST_TIMEOUT_SECONDS)
		response.raise_for_status()
		return response.text[:MAX_DIFF_CHARS]

	#============================================
	def fetch_issue(self, owner: str, repo: str, number) -> dict:
		"""
		One issue with its most recent comments.
		"""
		identity = {"owner": owner, "repo": repo, "number": str(number)}
		return self.cached_fetch(
			cache_manager.ISSUE_KIND,
			identity,
			f"{owner}/{repo}#{number}",
			lambda: self._fetch_issue_live(owner, repo, int(number)),
		)

	#============================================
	def _fetch_issue_live(self, owner: str, repo: str, number: int) -> dict:
		repo_obj = self.get_repo(owner, repo)
		context = f"GET /repos/{owner}/{repo}/issues/{number}"
		issue = self.call_with_retry(context, lambda: repo_obj.get_issue(number))
		payload = dict(getattr(issue, "raw_data", {}) or {})
		try:
			comments = self.call_with_retry(
				context + "/comments",
				lambda: self._collect_raw(issue.get_comments(), MAX_ISSUE_COMMENTS),
			)
		except GithubException as error:
			self.log(f"Warning: failed to fetch comments for {owner}/{repo}#{number}: {error}")
			comments = []
		payload["comment_details"] = [
			{
				"id": comment.get("id"),
				"user": {"login": (comment.get("user") or {}).get("login", "")},
				"body": comment.get("body", ""),
				"created_at": comment.get("created_at", ""),
			}
			for comment in comments
		]
		return payload

	#============================================
	def fetch_context_from_jira_issues(self, jira_issues: list[dict]) -> dict:
		"""
		Resolve every GitHub URL mentioned in Jira summaries and descriptions.

		jira_issues items need "summary" and "description" keys. Failed
		references are logged and skipped.
		"""
		references = []
		seen = set()
		for issue in jira_issues:
			text = f"{issue.get('summary', '')} {issue.get('description', '')}"
			for reference in extract_github_references(text):
				if reference["url"] in seen:
					continue
				seen.add(reference["url"])
				references.append(reference)

		context = {"references": references, "pull_requests": [], "issues": []}
		for reference in references:
			try:
				if reference["type"] == "pull":
					context["pull_requests"].append(
						self.fetch_pull_request(reference["owner"], reference["repo"], reference["number"])
					)
				else:
					context["issues"].append(
						self.fetch_issue(reference["owner"], reference["repo"], reference["number"])
					)
			except (GithubException, RateLimitError, requests.RequestException) as error:
				self.log(f"Warning: failed to fetch {reference['url']}: {error}")
		return context
