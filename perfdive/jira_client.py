import time
from datetime import datetime
from datetime import timedelta

import requests

from perfdive import cache_manager
from perfdive.errors import CacheError
from perfdive.errors import JiraError


SEARCH_PAGE_SIZE = 50
REQUEST_TIMEOUT_SECONDS = 30
# pause between uncached enhanced-context requests
RATE_LIMIT_DELAY_SECONDS = 0.5
SEARCH_FIELDS = "summary,description,status,issuetype,assignee,created,updated"
CONTEXT_FIELDS = "comment,labels,components,priority,issuetype,timetracking"


#============================================
def _display_name(person) -> str:
	if not isinstance(person, dict):
		return ""
	return str(person.get("displayName") or person.get("name") or "")


#============================================
def _named(value) -> str:
	if not isinstance(value, dict):
		return ""
	return str(value.get("name") or "")


#============================================
def convert_issue(raw: dict) -> dict:
	"""
	Flatten one REST search hit into the fields perfdive reports on.
	"""
	fields = raw.get("fields") or {}
	return {
		"key": raw.get("key", ""),
		"summary": fields.get("summary") or "",
		"description": fields.get("description") or "",
		"status": _named(fields.get("status")),
		"issue_type": _named(fields.get("issuetype")),
		"assignee": _display_name(fields.get("assignee")),
		"created": fields.get("created") or "",
		"updated": fields.get("updated") or "",
	}


#============================================
def convert_context(raw: dict) -> dict:
	"""
	Extract comments, changelog, labels, components, priority, and time tracking.
	"""
	fields = raw.get("fields") or {}
	comment_block = fields.get("comment") or {}
	comments = [
		{
			"id": str(comment.get("id", "")),
			"author": _display_name(comment.get("author")),
			"body": comment.get("body") or "",
			"created": comment.get("created") or "",
			"updated": comment.get("updated") or "",
		}
		for comment in comment_block.get("comments") or []
	]
	history = []
	for entry in (raw.get("changelog") or {}).get("histories") or []:
		history.append({
			"id": str(entry.get("id", "")),
			"author": _display_name(entry.get("author")),
			"created": entry.get("created") or "",
			"items": [
				{
					"field": item.get("field") or "",
					"field_type": item.get("fieldtype") or "",
					"from_string": item.get("fromString") or "",
					"to_string": item.get("toString") or "",
				}
				for item in entry.get("items") or []
			],
		})
	tracking = fields.get("timetracking") or {}
	time_tracking = None
	if tracking:
		time_tracking = {
			"original_estimate": tracking.get("originalEstimate") or "",
			"remaining_estimate": tracking.get("remainingEstimate") or "",
			"time_spent": tracking.get("timeSpent") or "",
		}
	return {
		"comments": comments,
		"history": history,
		"labels": list(fields.get("labels") or []),
		"components": [_named(component) for component in fields.get("components") or []],
		"priority": _named(fields.get("priority")),
		"issue_type": _named(fields.get("issuetype")),
		"time_tracking": time_tracking,
	}


#============================================
def build_jql(email: str, start_date: str, end_date: str) -> str:
	"""
	Issues assigned to email and updated inside the inclusive YYYY-MM-DD range.
	"""
	end_exclusive = datetime.strptime(end_date, "%Y-%m-%d") + timedelta(days=1)
	return (
		f'assignee = "{email}" AND updated >= "{start_date}" '
		+ f'AND updated < "{end_exclusive.strftime("%Y-%m-%d")}" ORDER BY updated DESC'
	)


#============================================
class JiraClient:
	"""
	Jira REST v2 client with per-issue context served through the response cache.
	"""

	def __init__(self, url: str, username: str, token: str, cache=None, session=None, log_fn=None):
		if not (url and username and token):
			raise JiraError("Jira URL, username, and token are required")
		self.base_url = url.rstrip("/")
		self.username = username
		self.cache = cache
		self.log_fn = log_fn
		self.session = session or requests.Session()
		self.session.auth = (username, token)
		self.session.headers.update({"Accept": "application/json"})
		self.request_delay_seconds = RATE_LIMIT_DELAY_SECONDS
		self._cache_hit_count = 0
		self._cache_miss_count = 0

	#============================================
	def log(self, message: str) -> None:
		if self.log_fn is not None:
			self.log_fn(message)

	#============================================
	def _get_json(self, path: str, params: dict | None = None) -> dict:
		"""
		GET one REST path; raise JiraError on transport or HTTP failure.
		"""
		url = f"{self.base_url}{path}"
		try:
			response = self.session.get(url, params=params, timeout=REQUEST_TIMEOUT_SECONDS)
		except requests.RequestException as error:
			raise JiraError(f"Jira request failed for {url}: {error}") from error
		if response.status_code in (401, 403):
			raise JiraError(
				f"Jira authentication failed (status {response.status_code}) for {url} "
				+ f"(user: {self.username}): {response.text[:200]}"
			)
		if response.status_code != 200:
			raise JiraError(f"Jira API returned status {response.status_code} for {url}: {response.text[:200]}")
		try:
			return response.json()
		except ValueError as error:
			raise JiraError(f"Jira returned invalid JSON for {url}: {error}") from error

	#============================================
	def verify_authentication(self) -> dict:
		payload = self._get_json("/rest/api/2/myself")
		return {
			"username": payload.get("name", ""),
			"display_name": payload.get("displayName", ""),
			"email": payload.get("emailAddress", ""),
			"active": bool(payload.get("active", False)),
		}

	#============================================
	def test_connection(self) -> dict:
		"""
		Verify credentials against /myself; raises JiraError on failure.
		"""
		user_info = self.verify_authentication()
		self.log(f"Authenticated as: {user_info['display_name']} ({user_info['email']})")
		return user_info

	#============================================
	def search_user_issues(self, email: str, start_date: str, end_date: str, enhanced: bool = False) -> list[dict]:
		"""
		Every issue assigned to email and updated in range, following pagination.

		With enhanced=True each issue is merged with fetch_issue_context();
		a failed enhancement keeps the basic issue.
		"""
		try:
			jql = build_jql(email, start_date, end_date)
		except ValueError as error:
			raise JiraError(f"invalid date range {start_date}..{end_date}: {error}") from error
		issues = []
		start_at = 0
		while True:
			payload = self._get_json(
				"/rest/api/2/search",
				params={
					"jql": jql,
					"startAt": start_at,
					"maxResults": SEARCH_PAGE_SIZE,
					"fields": SEARCH_FIELDS,
				},
			)
			page = payload.get("issues") or []
			issues.extend(convert_issue(raw) for raw in page)
			start_at += len(page)
			total = int(payload.get("total", start_at))
			if (not page) or (start_at >= total):
				break
		self.log(f"Found {len(issues)} Jira issues for {email}")
		if not enhanced:
			return issues

		enhanced_issues = []
		for issue in issues:
			try:
				context = self.fetch_issue_context(issue["key"])
			except JiraError as error:
				self.log(f"Warning: failed to enhance issue {issue['key']}: {error}")
				enhanced_issues.append(issue)
				continue
			merged = dict(issue)
			for name, value in context.items():
				if value:
					merged[name] = value
			enhanced_issues.append(merged)
		return enhanced_issues

	#============================================
	def fetch_issue_context(self, issue_key: str) -> dict:
		"""
		Comments, history, and extra fields for one issue, cached per key.
		"""
		identity = {"issue_key": issue_key}
		if self.cache is not None:
			payload, hit = self.cache.get(cache_manager.JIRA_ISSUE_KIND, identity)
			if hit:
				self._cache_hit_count += 1
				self.log(f"Jira cache hit [{issue_key}]")
				return payload
			self._cache_miss_count += 1
			self.log(f"Jira cache miss [{issue_key}]")
		if self.request_delay_seconds > 0:
			time.sleep(self.request_delay_seconds)
		raw = self._get_json(
			f"/rest/api/2/issue/{issue_key}",
			params={"fields": CONTEXT_FIELDS, "expand": "changelog"},
		)
		context = convert_context(raw)
		if self.cache is not None:
			try:
				self.cache.set(cache_manager.JIRA_ISSUE_KIND, identity, context)
			except CacheError as error:
				self.log(f"Warning: could not cache Jira issue {issue_key}: {error}")
		return context

	#============================================
	def cache_counters(self) -> dict:
		return {"cache_hit_count": self._cache_hit_count, "cache_miss_count": self._cache_miss_count}
