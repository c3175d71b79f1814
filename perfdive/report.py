"""
Render highlight results as text, json, markdown, html, or csv.
"""

import csv
import html
import io
import json
from dataclasses import dataclass
from dataclasses import field
from datetime import date

from perfdive import dateparse


FORMAT_ALIASES = {
	"": "text",
	"text": "text",
	"json": "json",
	"markdown": "markdown",
	"md": "markdown",
	"html": "html",
	"csv": "csv",
}
HTML_STYLE = """    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 800px; margin: 40px auto; padding: 20px; }
    h1 { color: #333; border-bottom: 2px solid #e74c3c; padding-bottom: 10px; }
    h2 { color: #555; }
    table { border-collapse: collapse; width: 100%; margin: 20px 0; }
    th, td { border: 1px solid #ddd; padding: 12px; text-align: left; }
    th { background-color: #f4f4f4; font-weight: bold; }
    .accomplishment { background-color: #e8f5e9; padding: 15px; border-radius: 5px; margin: 10px 0; }
    .why { color: #666; font-style: italic; }
"""


#============================================
@dataclass
class HighlightData:
	email: str
	start_date: date
	end_date: date
	days: int
	display_name: str = ""
	prs_created: int = 0
	prs_merged: int = 0
	prs_open: int = 0
	jira_created: int = 0
	jira_updated: int = 0
	accomplishments: list[str] = field(default_factory=list)
	biggest_accomplishment: str = ""
	why: str = ""
	# False when GitHub activity could not be fetched
	github_available: bool = True

	#============================================
	def name(self) -> str:
		return self.display_name or self.email

	#============================================
	def stat_rows(self) -> list[tuple[str, int]]:
		return [
			("Pull Requests Created", self.prs_created),
			("PRs Merged", self.prs_merged),
			("PRs Open", self.prs_open),
			("Jira Issues Created", self.jira_created),
			("Jira Issues Updated", self.jira_updated),
		]


#============================================
def parse_format(text: str) -> str:
	"""
	Normalize an output format name; raises ValueError for unknown names.
	"""
	key = (text or "").strip().lower()
	if key not in FORMAT_ALIASES:
		raise ValueError(f"unknown format '{text}': supported formats are text, json, markdown, html, csv")
	return FORMAT_ALIASES[key]


#============================================
def format_text(data: HighlightData) -> str:
	lines = [""]
	if data.github_available:
		lines.append(
			f"- Created {data.prs_created} PRs in the last {data.days} days "
			+ f"({data.prs_merged} merged, {data.prs_open} open)"
		)
	lines.append(f"- Created {data.jira_created} Jira stories and updated Jira {data.jira_updated} times")
	if data.accomplishments:
		lines.append(f"- Top {len(data.accomplishments)} accomplishments:")
		for index, item in enumerate(data.accomplishments, start=1):
			lines.append(f"  {index}. {item}")
	elif data.biggest_accomplishment:
		lines.append(f"- Biggest accomplishment: {data.biggest_accomplishment}")
	lines.append("")
	return "\n".join(lines) + "\n"


#============================================
def format_json(data: HighlightData) -> str:
	payload = {
		"email": data.email,
		"displayName": data.display_name,
		"startDate": dateparse.format_iso(data.start_date),
		"endDate": dateparse.format_iso(data.end_date),
		"days": data.days,
		"stats": {
			"prsCreated": data.prs_created,
			"prsMerged": data.prs_merged,
			"prsOpen": data.prs_open,
			"jiraCreated": data.jira_created,
			"jiraUpdated": data.jira_updated,
		},
		"accomplishments": list(data.accomplishments),
		"biggestAccomplishment": data.biggest_accomplishment,
		"why": data.why,
	}
	return json.dumps(payload, indent=2)


#============================================
def format_markdown(data: HighlightData) -> str:
	lines = [
		f"# Activity Summary: {data.name()}",
		"",
		f"**Period:** {dateparse.format_for_display(data.start_date)} to "
		+ f"{dateparse.format_for_display(data.end_date)} ({data.days} days)",
		"",
		"## Statistics",
		"",
		"| Metric | Count |",
		"|--------|-------|",
	]
	for label, count in data.stat_rows():
		lines.append(f"| {label} | {count} |")
	lines.append("")
	if data.accomplishments:
		lines.append("## Top Accomplishments")
		lines.append("")
		for index, item in enumerate(data.accomplishments, start=1):
			lines.append(f"{index}. {item}")
		lines.append("")
	elif data.biggest_accomplishment:
		lines.append("## Biggest Accomplishment")
		lines.append("")
		lines.append(f"**{data.biggest_accomplishment}**")
		lines.append("")
		if data.why:
			lines.append(f"*{data.why}*")
			lines.append("")
	return "\n".join(lines) + "\n"


#============================================
def format_html(data: HighlightData) -> str:
	name = html.escape(data.name())
	lines = [
		"<!DOCTYPE html>",
		"<html>",
		"<head>",
		'  <meta charset="UTF-8">',
		f"  <title>Activity Summary - {name}</title>",
		"  <style>",
		HTML_STYLE.rstrip("\n"),
		"  </style>",
		"</head>",
		"<body>",
		f"  <h1>Activity Summary: {name}</h1>",
		f"  <p><strong>Period:</strong> {dateparse.format_for_display(data.start_date)} to "
		+ f"{dateparse.format_for_display(data.end_date)} ({data.days} days)</p>",
		"  <h2>Statistics</h2>",
		"  <table>",
		"    <tr><th>Metric</th><th>Count</th></tr>",
	]
	for label, count in data.stat_rows():
		lines.append(f"    <tr><td>{label}</td><td>{count}</td></tr>")
	lines.append("  </table>")
	if data.accomplishments:
		lines.append("  <h2>Top Accomplishments</h2>")
		lines.append("  <ol>")
		for item in data.accomplishments:
			lines.append(f"    <li>{html.escape(item)}</li>")
		lines.append("  </ol>")
	elif data.biggest_accomplishment:
		lines.append("  <h2>Biggest Accomplishment</h2>")
		lines.append('  <div class="accomplishment">')
		lines.append(f"    <strong>{html.escape(data.biggest_accomplishment)}</strong>")
		if data.why:
			lines.append(f'    <p class="why">{html.escape(data.why)}</p>')
		lines.append("  </div>")
	lines.append("</body>")
	lines.append("</html>")
	return "\n".join(lines) + "\n"


#============================================
def format_csv(data: HighlightData) -> str:
	buffer = io.StringIO()
	writer = csv.writer(buffer, lineterminator="\n")
	writer.writerow([
		"Email", "Name", "Start Date", "End Date", "Days",
		"PRs Created", "PRs Merged", "PRs Open", "Jira Created", "Jira Updated",
		"Biggest Accomplishment",
	])
	writer.writerow([
		data.email,
		data.display_name,
		dateparse.format_iso(data.start_date),
		dateparse.format_iso(data.end_date),
		data.days,
		data.prs_created,
		data.prs_merged,
		data.prs_open,
		data.jira_created,
		data.jira_updated,
		data.biggest_accomplishment,
	])
	return buffer.getvalue()


FORMATTERS = {
	"text": format_text,
	"json": format_json,
	"markdown": format_markdown,
	"html": format_html,
	"csv": format_csv,
}


#============================================
def format_highlight(data: HighlightData, output_format: str) -> str:
	return FORMATTERS[parse_format(output_format)](data)
