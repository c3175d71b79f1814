"""
Ollama generate transport.
"""

import urllib.parse

import requests

from perfdive.errors import LLMError
from perfdive.errors import TransportUnavailableError


GENERATE_TIMEOUT_SECONDS = 300
CONNECTION_TEST_TIMEOUT_SECONDS = 30


class OllamaClient:
	name = "Ollama"

	def __init__(
		self,
		model: str,
		base_url: str = "http://localhost:11434",
		timeout: float = GENERATE_TIMEOUT_SECONDS,
		session=None,
	) -> None:
		self.model = model
		self.base_url = base_url.rstrip("/")
		self.timeout = timeout
		self.session = session or requests.Session()

	def _validated_generate_endpoint(self) -> str:
		"""
		Build and validate the Ollama generate endpoint URL.
		"""
		parsed = urllib.parse.urlparse(self.base_url)
		if parsed.scheme not in {"http", "https"}:
			raise TransportUnavailableError("Ollama base_url must use http or https.")
		if not parsed.netloc:
			raise TransportUnavailableError("Ollama base_url must include a host.")
		return self.base_url + "/api/generate"

	def _post_generate(self, prompt: str, timeout: float) -> str:
		payload = {
			"model": self.model,
			"prompt": prompt,
			"stream": False,
		}
		try:
			response = self.session.post(
				self._validated_generate_endpoint(),
				json=payload,
				timeout=timeout,
			)
		except requests.RequestException as exc:
			raise TransportUnavailableError(f"Ollama is unreachable at {self.base_url}.") from exc
		if response.status_code == 404:
			raise LLMError(f"Ollama model '{self.model}' not found; run: ollama pull {self.model}")
		if response.status_code >= 400:
			raise LLMError(f"Ollama generate error: status {response.status_code}: {response.text[:200]}")
		try:
			parsed = response.json()
		except ValueError as exc:
			raise LLMError("Ollama returned invalid JSON") from exc
		if parsed.get("error"):
			raise LLMError(f"Ollama error: {parsed['error']}")
		return str(parsed.get("response", ""))

	def generate(self, prompt: str) -> str:
		text = self._post_generate(prompt, self.timeout)
		if not text.strip():
			raise LLMError("Ollama generate returned empty content")
		return text.strip()

	def test_connection(self) -> None:
		"""
		Send a tiny prompt to confirm the server is up and the model exists.
		"""
		self._post_generate("test", CONNECTION_TEST_TIMEOUT_SECONDS)
