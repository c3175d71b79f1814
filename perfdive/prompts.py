import os
import re


_PROMPT_CACHE = {}
PROMPT_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "prompt_templates")
DESCRIPTION_PREVIEW_CHARS = 150
NUMBERED_LINE_RE = re.compile(r"^\d+\s*(?:[.)]|\s-)\s*(.+)$")


#============================================
def load_prompt(prompt_name: str) -> str:
	"""
	Load a prompt template from perfdive/prompt_templates/.
	"""
	if not prompt_name:
		raise ValueError("prompt_name is required")
	path = os.path.join(PROMPT_DIR, prompt_name)
	if path in _PROMPT_CACHE:
		return _PROMPT_CACHE[path]
	if not os.path.exists(path):
		raise FileNotFoundError(f"Prompt file not found: {path}")
	with open(path, "r", encoding="utf-8") as handle:
		text = handle.read()
	_PROMPT_CACHE[path] = text
	return text


#============================================
def render_prompt(template: str, values: dict[str, str]) -> str:
	"""
	Replace {{token}} placeholders with supplied values.
	"""
	if not template:
		return ""
	rendered = template
	for key, value in values.items():
		token = "{{" + key + "}}"
		replacement = value if value is not None else ""
		rendered = rendered.replace(token, replacement)
	return rendered


#============================================
def project_from_key(issue_key: str) -> str:
	"""
	PROJ-123 -> PROJ; keys without a dash are their own project.
	"""
	return (issue_key or "").split("-", 1)[0] or "UNKNOWN"


#============================================
def repo_name_from_item(item: dict) -> str:
	"""
	owner/repo from a search hit's repository_url.
	"""
	parts = str(item.get("repository_url") or "").rstrip("/").split("/")
	if len(parts) >= 2 and parts[-1] and parts[-2]:
		return f"{parts[-2]}/{parts[-1]}"
	return "unknown/repo"


#============================================
def group_by_project(issues: list[dict]) -> dict[str, list[dict]]:
	groups = {}
	for issue in issues:
		groups.setdefault(project_from_key(issue.get("key", "")), []).append(issue)
	return groups


#============================================
def build_jira_data(issues: list[dict]) -> str:
	lines = ["JIRA ISSUES DATA:"]
	if not issues:
		lines.append("No Jira issues found for this period.")
		return "\n".join(lines) + "\n"
	for project, project_issues in group_by_project(issues).items():
		lines.append("")
		lines.append(f"{project} PROJECT ({len(project_issues)} issues):")
		for issue in project_issues:
			issue_type = f" ({issue['issue_type']})" if issue.get("issue_type") else ""
			lines.append(f"- {issue.get('key', '')}{issue_type}: {issue.get('summary', '')} [{issue.get('status', '')}]")
			description = str(issue.get("description") or "")
			if description:
				if len(description) > DESCRIPTION_PREVIEW_CHARS:
					description = description[:DESCRIPTION_PREVIEW_CHARS] + "..."
				lines.append(f"  Context: {description}")
			comments = issue.get("comments") or []
			if comments:
				lines.append(f"  Comments: {len(comments)}")
	return "\n".join(lines) + "\n"


#============================================
def build_github_data(activity: dict | None, context: dict | None = None) -> str:
	lines = ["GITHUB ACTIVITY DATA:"]
	if not activity and not (context and (context.get("pull_requests") or context.get("issues"))):
		lines.append("No GitHub activity data available.")
		return "\n".join(lines) + "\n"

	pull_requests = (activity or {}).get("pull_requests") or []
	if pull_requests:
		lines.append("")
		lines.append(f"Pull Requests ({len(pull_requests)} total):")
		groups = {}
		for pull in pull_requests:
			groups.setdefault(repo_name_from_item(pull), []).append(pull)
		for repo_name, pulls in groups.items():
			open_count = sum(1 for pull in pulls if pull.get("state") == "open")
			lines.append(
				f"- {repo_name}: {len(pulls)} PRs ({open_count} open, {len(pulls) - open_count} closed/merged)"
			)

	issues = (activity or {}).get("issues") or []
	if issues:
		lines.append("")
		lines.append(f"Issues Reported ({len(issues)} total):")
		for issue in issues:
			lines.append(f"- {issue.get('html_url', '')}: {issue.get('title', '')} [{issue.get('state', '')}]")

	referenced = (context or {}).get("pull_requests") or []
	if referenced:
		lines.append("")
		lines.append(f"Pull Requests Referenced From Jira ({len(referenced)}):")
		for pull in referenced:
			files = pull.get("files_changed") or []
			test_files = sum(1 for item in files if item.get("is_test_file"))
			lines.append(
				f"- #{pull.get('number', '')} {pull.get('title', '')} [{pull.get('state', '')}] "
				+ f"+{pull.get('additions', 0)}/-{pull.get('deletions', 0)}, "
				+ f"{len(files)} files ({test_files} tests), "
				+ f"{len(pull.get('review_comment_details') or [])} review comments"
			)
	return "\n".join(lines) + "\n"


#============================================
def display_name(email: str, name: str = "") -> str:
	return name or email


#============================================
def build_jira_prompt(issues: list[dict], email: str, start_date: str, end_date: str, name: str = "") -> str:
	return render_prompt(
		load_prompt("jira_summary.txt"),
		{
			"user_name": display_name(email, name),
			"start_date": start_date,
			"end_date": end_date,
			"jira_data": build_jira_data(issues),
		},
	)


#============================================
def build_github_prompt(
	activity: dict | None,
	email: str,
	start_date: str,
	end_date: str,
	context: dict | None = None,
	name: str = "",
) -> str:
	return render_prompt(
		load_prompt("github_summary.txt"),
		{
			"user_name": display_name(email, name),
			"start_date": start_date,
			"end_date": end_date,
			"github_data": build_github_data(activity, context),
		},
	)


#============================================
def has_meaningful_github_activity(activity: dict | None) -> bool:
	"""
	Events alone do not count; at least one PR or issue is required.
	"""
	if not activity:
		return False
	return bool(activity.get("pull_requests")) or bool(activity.get("issues"))


#============================================
def no_github_activity_text(email: str, start_date: str, end_date: str, name: str = "") -> str:
	return (
		f"No meaningful GitHub development activity found for {display_name(email, name)} "
		+ f"during the specified period ({start_date} to {end_date})."
	)


#============================================
def build_quantitative_summary(issues: list[dict], activity: dict | None) -> str:
	lines = [f"**Jira Issues:** {len(issues)} total"]
	for project, project_issues in group_by_project(issues).items():
		lines.append(f"- {project}: {len(project_issues)} issues")
	if activity:
		pull_requests = activity.get("pull_requests") or []
		github_issues = activity.get("issues") or []
		events = activity.get("events") or []
		lines.append("")
		lines.append(f"**GitHub Contributions:** {len(pull_requests) + len(github_issues) + len(events)} total")
		lines.append(f"- Pull Requests: {len(pull_requests)}")
		lines.append(f"- Issues: {len(github_issues)}")
		lines.append(f"- Other Activities: {len(events)}")
	return "\n".join(lines) + "\n"


#============================================
def build_work_section(issues: list[dict], activity: dict | None, limit: int) -> str:
	"""
	First `limit` Jira issues and PRs as a compact bullet list.
	"""
	lines = []
	if issues:
		lines.append("JIRA WORK:")
		for issue in issues[:limit]:
			lines.append(f"- {issue.get('key', '')}: {issue.get('summary', '')} [{issue.get('status', '')}]")
		lines.append("")
	pull_requests = (activity or {}).get("pull_requests") or []
	if pull_requests:
		lines.append("GITHUB WORK:")
		for pull in pull_requests[:limit]:
			lines.append(f"- PR: {pull.get('title', '')} [{pull.get('state', '')}]")
		lines.append("")
	return "\n".join(lines)


#============================================
def build_accomplishment_prompt(issues: list[dict], activity: dict | None) -> str:
	return render_prompt(
		load_prompt("accomplishment.txt"),
		{"work": build_work_section(issues, activity, 5)},
	)


#============================================
def build_accomplishment_list_prompt(issues: list[dict], activity: dict | None, count: int) -> str:
	return render_prompt(
		load_prompt("accomplishment_list.txt"),
		{"count": str(count), "work": build_work_section(issues, activity, 10)},
	)


#============================================
def parse_accomplishment(response: str) -> tuple[str, str]:
	"""
	Split an ACCOMPLISHMENT:/WHY: reply; WHY absorbs every later non-blank line.

	Falls back to the whole reply as the accomplishment.
	"""
	accomplishment = ""
	why = ""
	lines = (response or "").splitlines()
	for index, raw_line in enumerate(lines):
		line = raw_line.strip()
		if line.startswith("ACCOMPLISHMENT:"):
			accomplishment = line[len("ACCOMPLISHMENT:"):].strip()
		if line.startswith("WHY:"):
			why_lines = [line[len("WHY:"):].strip()]
			why_lines.extend(item.strip() for item in lines[index + 1:] if item.strip())
			why = " ".join(why_lines)
			break
	if not accomplishment:
		accomplishment = (response or "").strip()
	return accomplishment, why


#============================================
def parse_accomplishment_list(response: str, expected_count: int) -> list[str]:
	"""
	Numbered items ("1.", "1)", "1 -") from a reply, capped at expected_count.

	When fewer numbered items than expected are found, every non-preamble
	line is used instead.
	"""
	lines = [line.strip() for line in (response or "").splitlines() if line.strip()]
	items = []
	for line in lines:
		match = NUMBERED_LINE_RE.match(line)
		if match and match.group(1).strip():
			items.append(match.group(1).strip())
	if len(items) < expected_count:
		items = [
			line for line in lines
			if not line.lower().startswith(("here are", "the top"))
		]
	return items[:expected_count]
