"""
Generation Provider Client
==========================
Client for an Ollama-compatible text generation API.
"""
import json
import requests
from requests.adapters import HTTPAdapter
from typing import Optional, List, Dict, Any
from dataclasses import dataclass
from poem_translator.config import config, get_model_capabilities
from poem_translator.config.constants import ErrorCode
from poem_translator.utils.logging import get_logger
from poem_translator.models.schemas import ModelInfo


@dataclass
class GenerationResponse:
    """Response from the generation provider."""
    success: bool
    text: Optional[str] = None
    error: Optional[str] = None
    model: Optional[str] = None
    status_code: Optional[int] = None
    error_code: Optional[ErrorCode] = None
    eval_count: Optional[int] = None

    @property
    def model_unavailable(self) -> bool:
        """The provider rejected the model itself rather than the request."""
        return self.error_code == ErrorCode.MODEL_NOT_FOUND


def classify_http_error(status_code: int, body: str) -> ErrorCode:
    """Map a provider HTTP error to an error code."""
    lowered = (body or '').lower()
    if status_code == 404 or 'model_not_found' in lowered:
        return ErrorCode.MODEL_NOT_FOUND
    if status_code == 400 and 'model' in lowered:
        return ErrorCode.MODEL_NOT_FOUND
    if status_code == 429:
        return ErrorCode.RATE_LIMIT
    if status_code in (401, 403):
        return ErrorCode.AUTH_ERROR
    if status_code >= 500:
        return ErrorCode.SERVER_ERROR
    return ErrorCode.UNKNOWN


class GenerationClient:
    """Client for provider interactions."""

    def __init__(self, base_url: str = None, model: str = None, api_key: str = None):
        self.base_url = base_url or config.provider.base_url
        self.model = model or config.provider.default_model
        self.api_key = api_key if api_key is not None else config.provider.api_key
        self.logger = get_logger().translation_logger

        # Retries are owned by the scheduler's backoff, not the transport
        self.session = requests.Session()
        adapter = HTTPAdapter(max_retries=0, pool_connections=10, pool_maxsize=10)
        self.session.mount('http://', adapter)
        self.session.mount('https://', adapter)
        if self.api_key:
            self.session.headers['Authorization'] = f"Bearer {self.api_key}"

    @property
    def api_url(self) -> str:
        return f"{self.base_url}/api/generate"

    @property
    def models_url(self) -> str:
        return f"{self.base_url}/api/tags"

    def is_healthy(self) -> bool:
        """Check if the provider is reachable."""
        try:
            response = self.session.get(
                self.models_url,
                timeout=config.provider.health_check_timeout
            )
            return response.status_code == 200
        except requests.RequestException as e:
            self.logger.warning(f"Provider health check failed: {e}")
            return False

    def list_models(self) -> List[ModelInfo]:
        """List models the provider advertises."""
        try:
            response = self.session.get(
                self.models_url,
                timeout=config.provider.connect_timeout
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            self.logger.error(f"Failed to list models: {e}")
            return []

        return [
            ModelInfo(
                name=m.get('name', ''),
                size=m.get('size'),
                modified_at=m.get('modified_at'),
                digest=m.get('digest')
            )
            for m in data.get('models', [])
        ]

    def build_payload(self, prompt: str, model: str, json_mode: bool) -> Dict[str, Any]:
        """Request body with only the options the model supports."""
        capabilities = get_model_capabilities(model)
        options: Dict[str, Any] = {'top_p': config.provider.top_p}
        if capabilities.supports_temperature:
            options['temperature'] = config.provider.temperature

        payload = {
            'model': model,
            'prompt': prompt,
            'stream': False,
            'options': options
        }
        if json_mode and capabilities.supports_json_format:
            payload['format'] = 'json'
        return payload

    def generate(self, prompt: str, model: str = None, json_mode: bool = True) -> GenerationResponse:
        """
        Generate text for a prompt.

        Args:
            prompt: The prompt to send
            model: Model to use (defaults to configured model)
            json_mode: Ask for a JSON response when the model supports it

        Returns:
            GenerationResponse; transport and HTTP errors are classified, not raised
        """
        model = model or self.model
        payload = self.build_payload(prompt, model, json_mode)

        try:
            response = self.session.post(
                self.api_url,
                json=payload,
                timeout=(config.provider.connect_timeout, config.provider.request_timeout)
            )
        except requests.Timeout:
            return GenerationResponse(success=False, error="Request timed out",
                                      model=model, error_code=ErrorCode.TIMEOUT)
        except requests.RequestException as e:
            return GenerationResponse(success=False, error=str(e),
                                      model=model, error_code=ErrorCode.SERVER_ERROR)

        if response.status_code >= 400:
            body = response.text[:500]
            return GenerationResponse(
                success=False,
                error=f"HTTP {response.status_code}: {body}",
                model=model,
                status_code=response.status_code,
                error_code=classify_http_error(response.status_code, body)
            )

        try:
            result = response.json()
        except json.JSONDecodeError as e:
            return GenerationResponse(success=False, error=f"Invalid JSON response: {e}",
                                      model=model, status_code=response.status_code,
                                      error_code=ErrorCode.SERVER_ERROR)

        return GenerationResponse(
            success=True,
            text=result.get('response', ''),
            model=model,
            status_code=response.status_code,
            eval_count=result.get('eval_count')
        )

    def close(self):
        self.session.close()


_client_instance: Optional[GenerationClient] = None


def get_generation_client() -> GenerationClient:
    """Get or create the global client instance."""
    global _client_instance
    if _client_instance is None:
        _client_instance = GenerationClient()
    return _client_instance
