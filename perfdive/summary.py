"""
Full performance summary: Jira issues, referenced GitHub work, optional
GitHub activity, and two LLM-written narratives plus metrics.
"""

import json

import requests
from github.GithubException import GithubException

from perfdive import console
from perfdive import dateparse
from perfdive import prompts
from perfdive.errors import RateLimitError


RULE = "=" * 60


#============================================
def first_assignee(issues: list[dict]) -> str:
	for issue in issues:
		if issue.get("assignee"):
			return issue["assignee"]
	return ""


#============================================
def resolve_github_activity(github_client, email: str, github_username: str, start_iso: str, end_iso: str):
	"""
	Return (username, activity) or ("", None) when GitHub is unavailable.
	"""
	username = github_username
	try:
		if not username:
			console.echo(f"Searching for GitHub user with email {email}...")
			username = github_client.search_user_by_email(email)
		console.echo(f"Fetching comprehensive GitHub activity for username: {username}...")
		activity = github_client.fetch_comprehensive_activity(username, start_iso, end_iso)
	except (GithubException, RateLimitError, RuntimeError, requests.RequestException) as error:
		console.warn(f"Could not fetch GitHub activity: {error}")
		return "", None
	total = len(activity.get("events") or []) + len(activity.get("pull_requests") or []) + len(activity.get("issues") or [])
	console.echo(f"Found GitHub user '{username}' with {total} total activities in date range", style="green")
	console.echo(
		f"  - Events: {len(activity.get('events') or [])}, "
		+ f"Pull Requests: {len(activity.get('pull_requests') or [])}, "
		+ f"Issues: {len(activity.get('issues') or [])}"
	)
	return username, activity


#============================================
def generate_summary_text(
	ollama_client,
	issues: list[dict],
	activity: dict | None,
	github_context: dict | None,
	email: str,
	start_text: str,
	end_text: str,
	display_name: str = "",
) -> str:
	"""
	Jira narrative, GitHub narrative, and the metrics block as one document.
	"""
	jira_summary = ollama_client.generate(
		prompts.build_jira_prompt(issues, email, start_text, end_text, name=display_name)
	)
	if prompts.has_meaningful_github_activity(activity) or (github_context or {}).get("pull_requests"):
		github_summary = ollama_client.generate(
			prompts.build_github_prompt(
				activity, email, start_text, end_text, context=github_context, name=display_name
			)
		)
	else:
		github_summary = prompts.no_github_activity_text(email, start_text, end_text, name=display_name)
	sections = [
		"**JIRA PROJECT WORK SUMMARY**",
		"",
		jira_summary,
		"",
		"**GITHUB DEVELOPMENT SUMMARY**",
		"",
		github_summary,
		"",
		"**PERFORMANCE METRICS**",
		"",
		prompts.build_quantitative_summary(issues, activity),
	]
	return "\n".join(sections)


#============================================
def reference_lines(jira_url: str, issues: list[dict], github_context: dict | None) -> list[str]:
	lines = ["", RULE, "REFERENCE URLS", RULE]
	if issues:
		lines.append("")
		lines.append("Jira Issues:")
		for issue in issues:
			lines.append(f"- {issue['key']}: {jira_url.rstrip('/')}/browse/{issue['key']}")
	references = (github_context or {}).get("references") or []
	if references:
		lines.append("")
		lines.append("GitHub References from Jira:")
		for reference in references:
			lines.append(f"- {reference['owner']}/{reference['repo']} #{reference['number']}: {reference['url']}")
	if not issues and not references:
		lines.append("")
		lines.append("No Jira issues or GitHub references found for this period.")
	return lines


#============================================
def run_summary(
	config,
	email: str,
	start_date,
	end_date,
	jira_client,
	github_client,
	ollama_client,
	fetch_activity: bool = False,
) -> str:
	"""
	Run the whole summary flow, print it, and return the summary text.

	start_date and end_date are datetime.date values.
	"""
	dateparse.validate_date_range(start_date, end_date)
	start_text = dateparse.format_for_api(start_date)
	end_text = dateparse.format_for_api(end_date)
	start_iso = dateparse.format_iso(start_date)
	end_iso = dateparse.format_iso(end_date)
	console.echo(
		f"Processing Jira issues for {email} from {start_text} to {end_text} using model {ollama_client.model}"
	)

	console.echo("Testing Jira connection...")
	jira_client.test_connection()
	console.echo("Jira connection successful", style="green")

	console.echo(f"Testing Ollama connection with model {ollama_client.model}...")
	ollama_client.test_connection()
	console.echo("Ollama connection successful", style="green")

	console.echo(f"Fetching Jira issues for {email} from {start_text} to {end_text}...")
	issues = jira_client.search_user_issues(email, start_iso, end_iso, enhanced=True)
	console.echo(f"Found {len(issues)} issues")

	console.echo("Analyzing GitHub references in Jira issues...")
	github_context = github_client.fetch_context_from_jira_issues(issues)
	references = github_context.get("references") or []
	if references:
		console.echo(f"Found {len(references)} GitHub references in Jira issues")
		if not config.github_token:
			console.echo("Use --github-token to fetch detailed GitHub context")
	else:
		console.echo("No GitHub references found in Jira issues")

	activity = None
	if fetch_activity or config.github_username:
		if not config.github_token:
			console.warn("GitHub activity requires --github-token for user search")
		else:
			username, activity = resolve_github_activity(
				github_client, email, config.github_username, start_iso, end_iso
			)
			github_context["github_username"] = username

	display_name = first_assignee(issues)
	console.echo(f"Generating summary using {ollama_client.model}...")
	summary_text = generate_summary_text(
		ollama_client, issues, activity, github_context, email, start_text, end_text, display_name
	)

	if config.output_format == "json":
		console.echo(json.dumps({
			"email": email,
			"displayName": display_name,
			"startDate": start_iso,
			"endDate": end_iso,
			"model": ollama_client.model,
			"summary": summary_text,
			"jiraIssues": [issue["key"] for issue in issues],
			"githubReferences": [reference["url"] for reference in references],
		}, indent=2))
		return summary_text

	header_name = f"{display_name} ({email})" if display_name else email
	console.echo("")
	console.echo(RULE)
	console.echo(f"SUMMARY FOR {header_name} ({start_text} to {end_text})")
	console.echo(RULE)
	console.echo(summary_text)
	for line in reference_lines(config.jira_url, issues, github_context):
		console.echo(line)
	return summary_text
