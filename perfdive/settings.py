import os
from dataclasses import dataclass
from dataclasses import field

import yaml

from perfdive.cache_manager import DEFAULT_TTLS
from perfdive.errors import ConfigError


DEFAULT_SETTINGS_PATH = "~/.perfdive.yaml"
DEFAULT_JIRA_URL = "https://issues.redhat.com"
DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_OLLAMA_MODEL = "llama3.2:latest"
DEFAULT_OUTPUT_FORMAT = "text"

# env var -> nested settings path
ENV_OVERRIDES = {
	"PERFDIVE_JIRA_URL": ["jira", "url"],
	"PERFDIVE_JIRA_USERNAME": ["jira", "username"],
	"PERFDIVE_JIRA_TOKEN": ["jira", "token"],
	"PERFDIVE_GITHUB_TOKEN": ["github", "token"],
	"PERFDIVE_GITHUB_USERNAME": ["github", "username"],
	"PERFDIVE_OLLAMA_URL": ["ollama", "url"],
	"PERFDIVE_OLLAMA_MODEL": ["ollama", "model"],
	"PERFDIVE_CACHE_DIR": ["cache", "dir"],
}


#============================================
@dataclass
class RuntimeConfig:
	"""
	Resolved settings for one CLI invocation.
	"""

	jira_url: str = DEFAULT_JIRA_URL
	jira_username: str = ""
	jira_token: str = ""
	github_token: str = ""
	github_username: str = ""
	ollama_url: str = DEFAULT_OLLAMA_URL
	ollama_model: str = DEFAULT_OLLAMA_MODEL
	cache_dir: str = ""
	cache_ttls: dict = field(default_factory=lambda: dict(DEFAULT_TTLS))
	output_format: str = DEFAULT_OUTPUT_FORMAT
	verbose: bool = False

	#============================================
	def require_jira(self) -> None:
		"""
		Raise ConfigError naming the first missing Jira credential.
		"""
		for name, value in (
			("URL", self.jira_url),
			("username", self.jira_username),
			("token", self.jira_token),
		):
			if not value:
				flag = "--jira-url" if name == "URL" else f"--jira-{name}"
				raise ConfigError(f"Jira {name} is required. Set via {flag} flag or config file")


#============================================
def resolve_settings_path(path_text: str | None) -> str:
	"""
	Expand ~ and make the settings path absolute.
	"""
	value = (path_text or "").strip() or DEFAULT_SETTINGS_PATH
	return os.path.abspath(os.path.expanduser(value))


#============================================
def load_settings(path_text: str | None) -> tuple[dict, str]:
	"""
	Load YAML settings dict and return it with resolved path.
	"""
	resolved_path = resolve_settings_path(path_text)
	if not os.path.isfile(resolved_path):
		return {}, resolved_path
	try:
		with open(resolved_path, "r", encoding="utf-8") as handle:
			data = yaml.safe_load(handle.read())
	except yaml.YAMLError as error:
		raise ConfigError(f"Settings file is not valid YAML: {resolved_path}: {error}") from error
	if data is None:
		return {}, resolved_path
	if not isinstance(data, dict):
		raise ConfigError(f"Settings file must contain a mapping: {resolved_path}")
	return data, resolved_path


#============================================
def get_nested_value(settings: dict, keys: list[str], default_value):
	"""
	Read nested mapping value by key path.
	"""
	current = settings
	for key in keys:
		if not isinstance(current, dict):
			return default_value
		if key not in current:
			return default_value
		current = current[key]
	return current


#============================================
def set_nested_value(settings: dict, keys: list[str], value) -> None:
	"""
	Write a nested mapping value, creating intermediate mappings.
	"""
	current = settings
	for key in keys[:-1]:
		child = current.get(key)
		if not isinstance(child, dict):
			child = {}
			current[key] = child
		current = child
	current[keys[-1]] = value


#============================================
def get_setting_str(settings: dict, keys: list[str], default_value: str) -> str:
	"""
	Read a string setting from nested path with fallback.
	"""
	value = get_nested_value(settings, keys, default_value)
	if value is None:
		return default_value
	return str(value).strip()


#============================================
def get_setting_int(settings: dict, keys: list[str], default_value: int) -> int:
	"""
	Read an integer setting from nested path with fallback.
	"""
	value = get_nested_value(settings, keys, default_value)
	if value is None:
		return default_value
	try:
		return int(value)
	except (TypeError, ValueError) as error:
		raise ConfigError(f"Invalid integer for setting path {'.'.join(keys)}: {value}") from error


#============================================
def get_setting_bool(settings: dict, keys: list[str], default_value: bool) -> bool:
	"""
	Read a boolean setting from nested path with fallback.
	"""
	value = get_nested_value(settings, keys, default_value)
	if isinstance(value, bool):
		return value
	if isinstance(value, str):
		text = value.strip().lower()
		if text in {"1", "true", "yes", "on"}:
			return True
		if text in {"0", "false", "no", "off"}:
			return False
		raise ConfigError(f"Invalid boolean for setting path {'.'.join(keys)}: {value}")
	if isinstance(value, int):
		return value != 0
	if value is None:
		return default_value
	raise ConfigError(f"Invalid boolean for setting path {'.'.join(keys)}: {value}")


#============================================
def apply_env_overrides(settings: dict, environ=None) -> dict:
	"""
	Return a copy of settings with PERFDIVE_* environment values applied.
	"""
	env = os.environ if environ is None else environ
	merged = _deep_copy(settings)
	for env_name, keys in ENV_OVERRIDES.items():
		value = (env.get(env_name) or "").strip()
		if value:
			set_nested_value(merged, keys, value)
	return merged


#============================================
def _deep_copy(value):
	if isinstance(value, dict):
		return {key: _deep_copy(item) for key, item in value.items()}
	if isinstance(value, list):
		return [_deep_copy(item) for item in value]
	return value


#============================================
def get_cache_ttls(settings: dict) -> dict[str, int]:
	"""
	Read cache.ttl.<kind> overrides in seconds on top of the defaults.
	"""
	ttls = dict(DEFAULT_TTLS)
	for kind_name, default_value in DEFAULT_TTLS.items():
		ttl = get_setting_int(settings, ["cache", "ttl", kind_name], default_value)
		if ttl < 0:
			raise ConfigError(f"Invalid TTL for setting path cache.ttl.{kind_name}: {ttl}")
		ttls[kind_name] = ttl
	return ttls


#============================================
def resolve_runtime_config(settings: dict, overrides: dict | None = None) -> RuntimeConfig:
	"""
	Merge file/env settings with CLI overrides; non-empty overrides win.
	"""
	flags = {key: value for key, value in (overrides or {}).items() if value not in (None, "")}
	config = RuntimeConfig(
		jira_url=get_setting_str(settings, ["jira", "url"], DEFAULT_JIRA_URL),
		jira_username=get_setting_str(settings, ["jira", "username"], ""),
		jira_token=get_setting_str(settings, ["jira", "token"], ""),
		github_token=get_setting_str(settings, ["github", "token"], ""),
		github_username=get_setting_str(settings, ["github", "username"], ""),
		ollama_url=get_setting_str(settings, ["ollama", "url"], DEFAULT_OLLAMA_URL),
		ollama_model=get_setting_str(settings, ["ollama", "model"], DEFAULT_OLLAMA_MODEL),
		cache_dir=get_setting_str(settings, ["cache", "dir"], ""),
		cache_ttls=get_cache_ttls(settings),
		output_format=get_setting_str(settings, ["output", "format"], DEFAULT_OUTPUT_FORMAT),
		verbose=get_setting_bool(settings, ["verbose"], False),
	)
	for key, value in flags.items():
		if not hasattr(config, key):
			raise ConfigError(f"Unknown setting override: {key}")
		if key == "verbose" and value is False:
			continue
		setattr(config, key, value)
	if config.cache_dir:
		config.cache_dir = os.path.abspath(os.path.expanduser(config.cache_dir))
	return config
