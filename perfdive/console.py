"""
Timestamped, color-coded progress output on a rich console.
"""

import sys
from datetime import datetime

try:
	import rich.console
except ModuleNotFoundError:
	rich = None


RICH_CONSOLE = rich.console.Console() if rich is not None else None
RICH_ERROR_CONSOLE = rich.console.Console(stderr=True) if rich is not None else None


#============================================
def pick_style(message: str) -> str:
	"""
	Choose a rich style from keywords in one progress message.
	"""
	lower = message.lower()
	if ("failed" in lower) or ("error" in lower):
		return "bold red"
	if ("warning" in lower) or ("rate limit" in lower) or ("skipping" in lower) or ("cache miss" in lower):
		return "yellow"
	if ("cache hit" in lower) or ("wrote " in lower) or ("found " in lower) or ("done" in lower):
		return "green"
	return "cyan"


#============================================
def log_step(source: str, message: str) -> None:
	"""
	Print one timestamped progress line.
	"""
	now_text = datetime.now().strftime("%H:%M:%S")
	line = f"[{source} {now_text}] {message}"
	if RICH_CONSOLE is None:
		print(line, flush=True)
		return
	RICH_CONSOLE.print(line, style=pick_style(message), markup=False, highlight=False, soft_wrap=True)


#============================================
def make_logger(source: str, verbose: bool):
	"""
	Build a log_fn callable that only prints in verbose mode.
	"""
	def log_fn(message: str) -> None:
		if verbose:
			log_step(source, message)
	return log_fn


#============================================
def echo(message: str = "", style: str | None = None) -> None:
	"""
	Print plain user-facing output.
	"""
	if RICH_CONSOLE is None:
		print(message, flush=True)
		return
	RICH_CONSOLE.print(message, style=style, markup=False, highlight=False, emoji=False, soft_wrap=True)


#============================================
def warn(message: str) -> None:
	"""
	Print one warning line regardless of verbosity.
	"""
	echo(f"Warning: {message}", style="yellow")


#============================================
def print_error(message: str) -> None:
	"""
	Print one error line to stderr.
	"""
	if RICH_ERROR_CONSOLE is None:
		print(f"Error: {message}", file=sys.stderr, flush=True)
		return
	RICH_ERROR_CONSOLE.print(f"Error: {message}", style="bold red", markup=False, highlight=False, soft_wrap=True)
