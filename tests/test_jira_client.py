import pytest
import requests

from perfdive import cache_manager
from perfdive import jira_client
from perfdive.errors import JiraError


#============================================
class FakeResponse:
	def __init__(self, status_code: int, payload=None, text: str = ""):
		self.status_code = status_code
		self._payload = payload
		self.text = text

	def json(self):
		if self._payload is None:
			raise ValueError("no JSON body")
		return self._payload


#============================================
class FakeSession:
	"""
	requests.Session stand-in keyed by REST path.
	"""

	def __init__(self, routes: dict):
		self.routes = routes
		self.auth = None
		self.headers = {}
		self.calls = []

	def get(self, url, params=None, timeout=None):
		path = url.split("example.com", 1)[1]
		self.calls.append((path, dict(params or {})))
		route = self.routes[path]
		if isinstance(route, Exception):
			raise route
		if callable(route):
			return route(params or {})
		return route


#============================================
def raw_issue(key: str, assignee: str = "Alice Smith") -> dict:
	return {
		"key": key,
		"fields": {
			"summary": f"Summary {key}",
			"description": "See https://github.com/k8s/k8s/pull/100",
			"status": {"name": "In Progress"},
			"issuetype": {"name": "Story"},
			"assignee": {"displayName": assignee},
			"created": "2025-01-10T09:00:00.000+0000",
			"updated": "2025-01-12T09:00:00.000+0000",
		},
	}


#============================================
def raw_context() -> dict:
	return {
		"fields": {
			"comment": {"comments": [{"id": 10, "author": {"displayName": "Bob"}, "body": "LGTM"}]},
			"labels": ["perf"],
			"components": [{"name": "cache"}],
			"priority": {"name": "Major"},
			"issuetype": {"name": "Story"},
			"timetracking": {"timeSpent": "3h"},
		},
		"changelog": {
			"histories": [
				{
					"id": 5,
					"author": {"displayName": "Alice Smith"},
					"created": "2025-01-11T09:00:00.000+0000",
					"items": [{"field": "status", "fromString": "To Do", "toString": "In Progress"}],
				}
			]
		},
	}


#============================================
def make_client(routes: dict, cache=None) -> tuple:
	session = FakeSession(routes)
	client = jira_client.JiraClient(
		"https://jira.example.com/",
		"alice@example.com",
		"token",
		cache=cache,
		session=session,
	)
	client.request_delay_seconds = 0
	return client, session


#============================================
def test_missing_credentials_raise() -> None:
	with pytest.raises(JiraError):
		jira_client.JiraClient("https://jira.example.com", "", "token")


#============================================
def test_session_uses_basic_auth() -> None:
	_, session = make_client({})
	assert session.auth == ("alice@example.com", "token")
	assert session.headers["Accept"] == "application/json"


#============================================
def test_build_jql_uses_exclusive_end() -> None:
	jql = jira_client.build_jql("alice@example.com", "2025-01-01", "2025-01-31")
	assert jql == (
		'assignee = "alice@example.com" AND updated >= "2025-01-01" '
		'AND updated < "2025-02-01" ORDER BY updated DESC'
	)


#============================================
def test_convert_issue_flattens_fields() -> None:
	issue = jira_client.convert_issue(raw_issue("PERF-1"))
	assert issue == {
		"key": "PERF-1",
		"summary": "Summary PERF-1",
		"description": "See https://github.com/k8s/k8s/pull/100",
		"status": "In Progress",
		"issue_type": "Story",
		"assignee": "Alice Smith",
		"created": "2025-01-10T09:00:00.000+0000",
		"updated": "2025-01-12T09:00:00.000+0000",
	}


#============================================
def test_convert_context_extracts_history() -> None:
	context = jira_client.convert_context(raw_context())
	assert context["comments"][0]["author"] == "Bob"
	assert context["history"][0]["items"][0]["to_string"] == "In Progress"
	assert context["components"] == ["cache"]
	assert context["priority"] == "Major"
	assert context["time_tracking"]["time_spent"] == "3h"


#============================================
def test_search_follows_pagination() -> None:
	"""
	Pages are requested until startAt reaches the reported total.
	"""

	def search(params):
		start_at = params["startAt"]
		keys = [f"PERF-{number}" for number in range(start_at, min(start_at + 50, 60))]
		return FakeResponse(200, {"total": 60, "issues": [raw_issue(key) for key in keys]})

	client, session = make_client({"/rest/api/2/search": search})
	issues = client.search_user_issues("alice@example.com", "2025-01-01", "2025-01-31")
	assert len(issues) == 60
	assert [params["startAt"] for _, params in session.calls] == [0, 50]


#============================================
def test_search_rejects_bad_dates() -> None:
	client, _ = make_client({})
	with pytest.raises(JiraError, match="invalid date range"):
		client.search_user_issues("alice@example.com", "2025-01-01", "01-31-2025")


#============================================
def test_authentication_failure_is_reported() -> None:
	client, _ = make_client({"/rest/api/2/myself": FakeResponse(401, text="Unauthorized")})
	with pytest.raises(JiraError, match="authentication failed"):
		client.test_connection()


#============================================
def test_transport_failure_becomes_jira_error() -> None:
	client, _ = make_client({"/rest/api/2/myself": requests.ConnectionError("refused")})
	with pytest.raises(JiraError, match="request failed"):
		client.verify_authentication()


#============================================
def test_invalid_json_becomes_jira_error() -> None:
	client, _ = make_client({"/rest/api/2/myself": FakeResponse(200, None, text="<html>")})
	with pytest.raises(JiraError, match="invalid JSON"):
		client.verify_authentication()


#============================================
def test_verify_authentication_maps_fields() -> None:
	client, _ = make_client({
		"/rest/api/2/myself": FakeResponse(200, {
			"name": "asmith",
			"displayName": "Alice Smith",
			"emailAddress": "alice@example.com",
			"active": True,
		}),
	})
	assert client.test_connection() == {
		"username": "asmith",
		"display_name": "Alice Smith",
		"email": "alice@example.com",
		"active": True,
	}


#============================================
def test_enhanced_search_uses_cache(tmp_path, clock) -> None:
	"""
	Issue context is fetched once, then served from the Jira cache.
	"""
	cache = cache_manager.CacheManager(
		cache_manager.jira_cache_root(str(tmp_path)),
		cache_manager.jira_cache_kinds(),
		clock=clock,
	)
	client, session = make_client(
		{
			"/rest/api/2/search": FakeResponse(200, {"total": 1, "issues": [raw_issue("PERF-1")]}),
			"/rest/api/2/issue/PERF-1": FakeResponse(200, raw_context()),
		},
		cache=cache,
	)
	first = client.search_user_issues("alice@example.com", "2025-01-01", "2025-01-31", enhanced=True)
	second = client.search_user_issues("alice@example.com", "2025-01-01", "2025-01-31", enhanced=True)
	assert first == second
	assert first[0]["labels"] == ["perf"]
	assert first[0]["summary"] == "Summary PERF-1"
	issue_calls = [path for path, _ in session.calls if path.startswith("/rest/api/2/issue/")]
	assert issue_calls == ["/rest/api/2/issue/PERF-1"]
	assert client.cache_counters() == {"cache_hit_count": 1, "cache_miss_count": 1}


#============================================
def test_failed_enhancement_keeps_basic_issue() -> None:
	client, _ = make_client({
		"/rest/api/2/search": FakeResponse(200, {"total": 1, "issues": [raw_issue("PERF-2")]}),
		"/rest/api/2/issue/PERF-2": FakeResponse(500, text="oops"),
	})
	issues = client.search_user_issues("alice@example.com", "2025-01-01", "2025-01-31", enhanced=True)
	assert issues == [jira_client.convert_issue(raw_issue("PERF-2"))]
