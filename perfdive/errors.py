"""
Exception types shared across perfdive modules.
"""


#============================================
class PerfdiveError(RuntimeError):
	"""
	Base class for errors the CLI reports without a traceback.
	"""


#============================================
class ConfigError(PerfdiveError):
	"""
	Raised when settings are missing or invalid.
	"""


#============================================
class DateParseError(PerfdiveError):
	"""
	Raised when a date or named period cannot be parsed.
	"""


#============================================
class CacheError(PerfdiveError):
	"""
	Raised by cache maintenance operations that cannot complete.
	"""


#============================================
class CacheUnavailableError(CacheError):
	"""
	Raised when a cache directory cannot be created or opened.
	"""


#============================================
class CacheWriteError(CacheError):
	"""
	Raised when one cache entry cannot be persisted.
	"""


#============================================
class CacheKeyError(CacheError):
	"""
	Raised when an identity cannot be turned into a safe cache filename.
	"""


#============================================
class RateLimitError(PerfdiveError):
	"""
	Raised when GitHub API rate limits block further requests.
	"""


#============================================
class JiraError(PerfdiveError):
	"""
	Raised when the Jira REST API rejects or fails a request.
	"""


#============================================
class TransportUnavailableError(PerfdiveError):
	"""
	Raised when the Ollama server cannot be reached.
	"""


#============================================
class LLMError(PerfdiveError):
	"""
	Raised when the Ollama server answers with an error or empty content.
	"""
