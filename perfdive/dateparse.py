"""
Date and named-period parsing for CLI date arguments.
"""

import re
from datetime import date
from datetime import datetime
from datetime import timedelta

from perfdive.errors import DateParseError


# MM-DD-YYYY first; it is the CLI's documented format
DATE_FORMATS = [
	"%m-%d-%Y",
	"%Y-%m-%d",
	"%m/%d/%Y",
	"%Y/%m/%d",
	"%b %d, %Y",
	"%B %d, %Y",
	"%d %b %Y",
	"%d %B %Y",
]
AGO_RE = re.compile(r"^(\d+)\s+(day|days|week|weeks|month|months)\s+ago$")
LAST_WEEKDAY_RE = re.compile(r"^last\s+(\w+)$")
WEEKDAYS = {
	"monday": 0,
	"tuesday": 1,
	"wednesday": 2,
	"thursday": 3,
	"friday": 4,
	"saturday": 5,
	"sunday": 6,
}


#============================================
def parse_date(text: str) -> date:
	"""
	Parse an absolute date in any supported format.
	"""
	value = (text or "").strip()
	for date_format in DATE_FORMATS:
		try:
			return datetime.strptime(value, date_format).date()
		except ValueError:
			continue
	raise DateParseError(
		f"unable to parse date '{value}': supported formats are MM-DD-YYYY, YYYY-MM-DD, "
		+ "or natural language like 'last monday'"
	)


#============================================
def add_months(value: date, months: int) -> date:
	"""
	Shift by whole months, clamping the day to the target month's length.
	"""
	month_index = value.month - 1 + months
	year = value.year + month_index // 12
	month = month_index % 12 + 1
	day = min(value.day, month_length(year, month))
	return date(year, month, day)


#============================================
def month_length(year: int, month: int) -> int:
	if month == 12:
		return 31
	return (date(year, month + 1, 1) - timedelta(days=1)).day


#============================================
def parse_relative_date(text: str, today: date | None = None) -> date:
	"""
	Parse today, yesterday, 'N days/weeks/months ago', or 'last <weekday>'.
	"""
	value = (text or "").strip().lower()
	today = today or date.today()
	if value == "today":
		return today
	if value == "yesterday":
		return today - timedelta(days=1)

	match = AGO_RE.match(value)
	if match:
		count = int(match.group(1))
		unit = match.group(2)
		if unit.startswith("day"):
			return today - timedelta(days=count)
		if unit.startswith("week"):
			return today - timedelta(days=7 * count)
		return add_months(today, -count)

	match = LAST_WEEKDAY_RE.match(value)
	if match and match.group(1) in WEEKDAYS:
		days_back = today.weekday() - WEEKDAYS[match.group(1)]
		if days_back <= 0:
			days_back += 7
		return today - timedelta(days=days_back)

	raise DateParseError(f"unable to parse relative date '{value}'")


#============================================
def parse_date_or_relative(text: str, today: date | None = None) -> date:
	"""
	Try an absolute date first, then a relative expression.
	"""
	try:
		return parse_date(text)
	except DateParseError:
		pass
	try:
		return parse_relative_date(text, today=today)
	except DateParseError:
		pass
	raise DateParseError(
		f"unable to parse date '{(text or '').strip()}': try formats like '01-15-2025', "
		+ "'2025-01-15', 'last monday', or '2 weeks ago'"
	)


#============================================
def quarter_bounds(year: int, quarter: int) -> tuple[date, date]:
	start = date(year, (quarter - 1) * 3 + 1, 1)
	end = add_months(start, 3) - timedelta(days=1)
	return start, end


#============================================
def named_periods(today: date | None = None) -> dict[str, tuple[str, date, date]]:
	"""
	Map period keys (this-week, last-month, q2-2025, ...) to (label, start, end).

	Weeks run Monday through Sunday.
	"""
	today = today or date.today()
	periods = {}

	week_start = today - timedelta(days=today.weekday())
	periods["this-week"] = ("This Week", week_start, week_start + timedelta(days=6))
	periods["last-week"] = ("Last Week", week_start - timedelta(days=7), week_start - timedelta(days=1))

	month_start = today.replace(day=1)
	periods["this-month"] = ("This Month", month_start, add_months(month_start, 1) - timedelta(days=1))
	last_month_end = month_start - timedelta(days=1)
	periods["last-month"] = ("Last Month", last_month_end.replace(day=1), last_month_end)

	quarter = (today.month - 1) // 3 + 1
	periods["this-quarter"] = ("This Quarter",) + quarter_bounds(today.year, quarter)
	if quarter == 1:
		periods["last-quarter"] = ("Last Quarter",) + quarter_bounds(today.year - 1, 4)
	else:
		periods["last-quarter"] = ("Last Quarter",) + quarter_bounds(today.year, quarter - 1)

	periods["this-year"] = ("This Year", date(today.year, 1, 1), date(today.year, 12, 31))
	periods["last-year"] = ("Last Year", date(today.year - 1, 1, 1), date(today.year - 1, 12, 31))

	for year in (today.year, today.year - 1):
		for number in range(1, 5):
			periods[f"q{number}-{year}"] = (f"Q{number} {year}",) + quarter_bounds(year, number)
	return periods


#============================================
def parse_named_period(name: str, today: date | None = None) -> tuple[date, date]:
	"""
	Resolve a named period to (start, end) dates.
	"""
	key = (name or "").strip().lower()
	periods = named_periods(today)
	if key in periods:
		_, start, end = periods[key]
		return start, end
	available = ", ".join(list(periods)[:8])
	raise DateParseError(f"unknown period '{key}': available periods are {available}")


#============================================
def format_for_display(value: date) -> str:
	return f"{value.strftime('%B')} {value.day}, {value.year}"


#============================================
def format_for_api(value: date) -> str:
	return value.strftime("%m-%d-%Y")


#============================================
def format_iso(value: date) -> str:
	return value.strftime("%Y-%m-%d")


#============================================
def validate_date_range(start: date, end: date) -> None:
	if start > end:
		raise DateParseError(
			f"start date ({format_for_display(start)}) must be before end date ({format_for_display(end)})"
		)
