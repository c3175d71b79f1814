"""
Quick highlight of recent work: PR and Jira counts plus an LLM-picked
biggest accomplishment (or top N list).
"""

import concurrent.futures
from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone

import requests
from github.GithubException import GithubException

from perfdive import console
from perfdive import dateparse
from perfdive import prompts
from perfdive import report
from perfdive.errors import CacheError
from perfdive.errors import JiraError
from perfdive.errors import PerfdiveError
from perfdive.errors import RateLimitError


JIRA_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%f%z"


#============================================
def parse_jira_time(text: str) -> datetime | None:
	value = str(text or "").strip()
	if not value:
		return None
	try:
		return datetime.strptime(value, JIRA_TIME_FORMAT)
	except ValueError:
		pass
	try:
		parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
	except ValueError:
		return None
	if parsed.tzinfo is None:
		parsed = parsed.replace(tzinfo=timezone.utc)
	return parsed


#============================================
def pull_request_stats(activity: dict) -> tuple[int, int, int]:
	"""
	(created, merged, open); closed search hits count as merged.
	"""
	pull_requests = activity.get("pull_requests") or []
	merged = sum(1 for pull in pull_requests if pull.get("state") == "closed")
	open_count = sum(1 for pull in pull_requests if pull.get("state") == "open")
	return len(pull_requests), merged, open_count


#============================================
def jira_stats(issues: list[dict], start_date: date) -> tuple[int, int]:
	"""
	(created, updated): issues created after the window start vs. older ones touched in it.
	"""
	start = datetime(start_date.year, start_date.month, start_date.day, tzinfo=timezone.utc)
	created = 0
	updated = 0
	for issue in issues:
		created_at = parse_jira_time(issue.get("created", ""))
		if created_at is not None and created_at > start:
			created += 1
		else:
			updated += 1
	return created, updated


#============================================
def fetch_github_side(github_client, config, email: str, start_iso: str, end_iso: str):
	"""
	Return (username, activity); raises when no token is configured.
	"""
	if not config.github_token:
		raise RuntimeError("no GitHub token provided")
	username = config.github_username or github_client.search_user_by_email(email)
	activity = github_client.fetch_comprehensive_activity(username, start_iso, end_iso)
	return username, activity


#============================================
def fetch_both(jira_client, github_client, config, email: str, start_iso: str, end_iso: str):
	"""
	Fetch Jira issues and GitHub activity on two worker threads and join.

	Returns (issues, jira_error, username, activity, github_error).
	"""
	with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
		jira_future = executor.submit(jira_client.search_user_issues, email, start_iso, end_iso)
		github_future = executor.submit(
			fetch_github_side, github_client, config, email, start_iso, end_iso
		)
		issues = []
		jira_error = None
		try:
			issues = jira_future.result()
		except JiraError as error:
			jira_error = error
		username = ""
		activity = None
		github_error = None
		try:
			username, activity = github_future.result()
		except (GithubException, RateLimitError, RuntimeError, requests.RequestException) as error:
			github_error = error
	return issues, jira_error, username, activity, github_error


#============================================
def add_accomplishments(data: report.HighlightData, ollama_client, issues: list[dict], activity, list_count: int, log_fn=None) -> None:
	"""
	Fill the accomplishment fields; LLM failures become an inline message.
	"""
	if list_count > 0:
		try:
			response = ollama_client.generate(prompts.build_accomplishment_list_prompt(issues, activity, list_count))
		except PerfdiveError as error:
			data.biggest_accomplishment = f"(Unable to generate: {error})"
			return
		data.accomplishments = prompts.parse_accomplishment_list(response, list_count)
		return
	try:
		response = ollama_client.generate(prompts.build_accomplishment_prompt(issues, activity))
	except PerfdiveError as error:
		data.biggest_accomplishment = f"(Unable to generate: {error})"
		return
	data.biggest_accomplishment, data.why = prompts.parse_accomplishment(response)
	if data.why and log_fn is not None:
		log_fn(f"Why this is the biggest accomplishment: {data.why}")


#============================================
def run_highlight(
	config,
	email: str,
	days: int,
	jira_client,
	github_client,
	ollama_client,
	github_cache=None,
	list_count: int = 0,
	clear_cache: bool = False,
	today: date | None = None,
	log_fn=None,
) -> report.HighlightData:
	"""
	Build, print, and return the highlight for the last `days` days.

	Raises JiraError when Jira cannot be read; GitHub and LLM problems
	only degrade the output.
	"""
	if days < 1:
		raise PerfdiveError("--days must be at least 1")
	if clear_cache and github_cache is not None:
		try:
			removed = github_cache.clear()
		except CacheError as error:
			console.warn(f"failed to clear cache: {error}")
		else:
			if log_fn is not None:
				log_fn(f"Cache cleared ({removed} files)")

	end_date = today or date.today()
	start_date = end_date - timedelta(days=days)
	start_iso = dateparse.format_iso(start_date)
	end_iso = dateparse.format_iso(end_date)
	if log_fn is not None:
		log_fn(f"Generating highlight for {email} ({start_iso} to {end_iso}), {days} days")

	issues, jira_error, username, activity, github_error = fetch_both(
		jira_client, github_client, config, email, start_iso, end_iso
	)
	if log_fn is not None:
		if jira_error is None:
			log_fn(f"Found {len(issues)} Jira issues")
		if github_error is None and activity is not None:
			log_fn(
				f"Found GitHub user '{username}' with {len(activity.get('pull_requests') or [])} PRs, "
				+ f"{len(activity.get('issues') or [])} issues"
			)
		elif github_error is not None:
			log_fn(f"GitHub activity not available, skipping: {github_error}")
	if jira_error is not None:
		raise JiraError(f"failed to fetch Jira data: {jira_error}") from jira_error

	data = report.HighlightData(
		email=email,
		start_date=start_date,
		end_date=end_date,
		days=days,
		display_name=next((issue["assignee"] for issue in issues if issue.get("assignee")), ""),
		github_available=activity is not None,
	)
	if activity is not None:
		data.prs_created, data.prs_merged, data.prs_open = pull_request_stats(activity)
	data.jira_created, data.jira_updated = jira_stats(issues, start_date)

	if config.ollama_url:
		if log_fn is not None:
			log_fn(f"Generating AI summary using Ollama model {ollama_client.model}")
		add_accomplishments(data, ollama_client, issues, activity, list_count, log_fn=log_fn)

	console.echo(report.format_highlight(data, config.output_format))
	return data
