import argparse
import sys

from perfdive import __version__
from perfdive import cache_commands
from perfdive import cache_manager
from perfdive import console
from perfdive import dateparse
from perfdive import highlight
from perfdive import report
from perfdive import settings as settings_module
from perfdive import summary
from perfdive.errors import ConfigError
from perfdive.errors import PerfdiveError
from perfdive.github_client import GitHubClient
from perfdive.jira_client import JiraClient
from perfdive.ollama_client import OllamaClient


#============================================
def add_common_arguments(parser: argparse.ArgumentParser) -> None:
	"""
	Connection and output flags shared by summary and highlight.
	"""
	parser.add_argument("-j", "--jira-url", dest="jira_url", default="", help="Jira base URL.")
	parser.add_argument("-u", "--jira-username", dest="jira_username", default="", help="Jira username.")
	parser.add_argument("-t", "--jira-token", dest="jira_token", default="", help="Jira API token.")
	parser.add_argument("-o", "--ollama-url", dest="ollama_url", default="", help="Ollama API URL.")
	parser.add_argument("-m", "--model", dest="ollama_model", default="", help="Ollama model name.")
	parser.add_argument(
		"-f", "--output",
		dest="output_format",
		default="",
		help="Output format: text, json, markdown, html, or csv.",
	)
	parser.add_argument(
		"-g", "--github-token",
		dest="github_token",
		default="",
		help="GitHub API token (needed for activity search and private repos).",
	)
	parser.add_argument(
		"--github-username",
		dest="github_username",
		default="",
		help="Explicit GitHub username (skips the email-based user search).",
	)
	parser.add_argument(
		"-v", "--verbose",
		dest="verbose",
		action="store_true",
		help="Show detailed progress, cache hits, and warnings.",
	)


#============================================
def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		prog="perfdive",
		description="Summarize Jira and GitHub activity with a local Ollama model.",
	)
	parser.add_argument("--version", action="version", version=f"perfdive {__version__}")
	parser.add_argument(
		"--config",
		default="",
		help=f"YAML settings path (default {settings_module.DEFAULT_SETTINGS_PATH}).",
	)
	parser.add_argument(
		"--cache-dir",
		dest="cache_dir",
		default="",
		help="Cache root directory (default ~/.perfdive/cache).",
	)
	subparsers = parser.add_subparsers(dest="command", required=True)

	summary_parser = subparsers.add_parser("summary", help="Full performance summary for a date range.")
	summary_parser.add_argument("email", help="Jira assignee email.")
	summary_parser.add_argument(
		"start_date",
		nargs="?",
		default="",
		help="Start date (MM-DD-YYYY, YYYY-MM-DD, or e.g. '2 weeks ago').",
	)
	summary_parser.add_argument("end_date", nargs="?", default="", help="End date.")
	summary_parser.add_argument(
		"--period",
		default="",
		help="Named period instead of dates (this-week, last-month, q1-2025, ...).",
	)
	summary_parser.add_argument(
		"-a", "--github-activity",
		dest="github_activity",
		action="store_true",
		help="Fetch the user's GitHub activity (implied by --github-username).",
	)
	add_common_arguments(summary_parser)

	highlight_parser = subparsers.add_parser("highlight", help="Quick highlight of recent work.")
	highlight_parser.add_argument("email", help="Jira assignee email.")
	highlight_parser.add_argument("-d", "--days", type=int, default=7, help="Days to look back.")
	highlight_parser.add_argument(
		"-l", "--list",
		dest="list_count",
		type=int,
		default=0,
		help="List the top N accomplishments instead of the single biggest.",
	)
	highlight_parser.add_argument(
		"--clear-cache",
		dest="clear_cache",
		action="store_true",
		help="Clear the GitHub cache before running.",
	)
	add_common_arguments(highlight_parser)

	cache_parser = subparsers.add_parser("cache", help="Inspect or maintain the response cache.")
	cache_parser.add_argument("action", choices=["stats", "clear", "clean"], help="Maintenance action.")
	return parser


#============================================
def resolve_config(args: argparse.Namespace) -> settings_module.RuntimeConfig:
	"""
	Defaults, then YAML file, then PERFDIVE_* env, then flags.
	"""
	raw_settings, _ = settings_module.load_settings(args.config)
	merged = settings_module.apply_env_overrides(raw_settings)
	overrides = {"cache_dir": args.cache_dir}
	for name in (
		"jira_url", "jira_username", "jira_token", "ollama_url", "ollama_model",
		"output_format", "github_token", "github_username", "verbose",
	):
		if hasattr(args, name):
			overrides[name] = getattr(args, name)
	config = settings_module.resolve_runtime_config(merged, overrides)
	try:
		config.output_format = report.parse_format(config.output_format)
	except ValueError as error:
		raise ConfigError(str(error)) from error
	return config


#============================================
def cache_root(config: settings_module.RuntimeConfig) -> str:
	if config.cache_dir:
		return config.cache_dir
	try:
		return cache_manager.default_cache_root()
	except RuntimeError as error:
		raise ConfigError(f"cannot locate cache directory: {error}") from error


#============================================
def build_clients(config: settings_module.RuntimeConfig):
	"""
	Return (github_cache, jira_client, github_client, ollama_client).

	A cache that cannot be opened is replaced by None and the run continues uncached.
	"""
	config.require_jira()
	root = config.cache_dir or None
	github_log = console.make_logger("github", config.verbose)
	jira_log = console.make_logger("jira", config.verbose)
	cache_log = console.make_logger("cache", config.verbose)
	github_cache = cache_manager.open_github_cache(root, ttls=config.cache_ttls, log_fn=cache_log)
	jira_cache = cache_manager.open_jira_cache(root, ttls=config.cache_ttls, log_fn=cache_log)
	if github_cache is None or jira_cache is None:
		console.warn("response cache unavailable; continuing without it")
	jira_client = JiraClient(
		config.jira_url,
		config.jira_username,
		config.jira_token,
		cache=jira_cache,
		log_fn=jira_log,
	)
	github_client = GitHubClient(config.github_token, cache=github_cache, log_fn=github_log)
	ollama_client = OllamaClient(config.ollama_model, base_url=config.ollama_url)
	return github_cache, jira_client, github_client, ollama_client


#============================================
def resolve_summary_dates(args: argparse.Namespace):
	if args.period:
		return dateparse.parse_named_period(args.period)
	if not (args.start_date and args.end_date):
		raise ConfigError("summary needs start and end dates or --period")
	start = dateparse.parse_date_or_relative(args.start_date)
	end = dateparse.parse_date_or_relative(args.end_date)
	dateparse.validate_date_range(start, end)
	return start, end


#============================================
def run(args: argparse.Namespace) -> int:
	config = resolve_config(args)
	if args.command == "cache":
		return cache_commands.run_cache_command(args.action, cache_root(config), ttls=config.cache_ttls)

	if args.command == "summary":
		start, end = resolve_summary_dates(args)
		_, jira_client, github_client, ollama_client = build_clients(config)
		summary.run_summary(
			config,
			args.email,
			start,
			end,
			jira_client,
			github_client,
			ollama_client,
			fetch_activity=args.github_activity,
		)
		return 0

	github_cache, jira_client, github_client, ollama_client = build_clients(config)
	highlight.run_highlight(
		config,
		args.email,
		args.days,
		jira_client,
		github_client,
		ollama_client,
		github_cache=github_cache,
		list_count=args.list_count,
		clear_cache=args.clear_cache,
		log_fn=console.make_logger("highlight", config.verbose),
	)
	return 0


#============================================
def main(argv=None) -> int:
	"""
	CLI entry point; returns the process exit code.
	"""
	parser = build_parser()
	args = parser.parse_args(argv)
	try:
		return run(args)
	except PerfdiveError as error:
		console.print_error(str(error))
		return 1
	except KeyboardInterrupt:
		console.print_error("interrupted")
		return 130


if __name__ == "__main__":
	sys.exit(main())
