"""
Guarded OpenAI-compatible client.

Records token usage against the serving provider and triggers fallback
when the provider answers with a rate-limit error.
"""

import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI, RateLimitError

from ..core.fallback import FallbackResult
from ..core.hooks import on_rate_limit
from ..core.runtime import FallbackRuntime

logger = logging.getLogger(__name__)


class GuardedOpenAI:
    """OpenAI client wrapper bound to one provider.

    Credentials are validated (and refreshed if needed) before the client is
    built. Usage is recorded after every successful call.
    """

    def __init__(self, provider_id: str, model: str, runtime: FallbackRuntime):
        """Initialize guarded client.

        Args:
            provider_id: Provider serving the requests (required)
            model: Canonical model name (required)
            runtime: Wired provider fallback components

        Raises:
            ValueError: If provider_id or model is missing/empty
            AuthError: If the provider has no usable credential
        """
        if not provider_id or not provider_id.strip():
            raise ValueError("provider_id is required and cannot be empty")
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.provider_id = provider_id
        self.model = model
        self.runtime = runtime
        self.provider = runtime.catalog.get_provider(provider_id)
        self.last_fallback: Optional[FallbackResult] = None

        credential = runtime.manager.ensure_valid(provider_id)
        self.client = OpenAI(api_key=credential.secret, base_url=self.provider.base_url)

    @property
    def provider_model(self) -> str:
        return self.runtime.catalog.provider_model_id(self.model, self.provider_id)

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create chat completion with usage recording.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional completion parameters

        Returns:
            The provider's chat completion response, unchanged

        Raises:
            ValueError: If messages is empty or usage is missing
            RateLimitError: Re-raised after fallback has been handled
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        try:
            response = self.client.chat.completions.create(
                model=self.provider_model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs
            )
        except RateLimitError:
            logger.warning("Rate limit from %s for %s", self.provider_id, self.model)
            self.last_fallback = on_rate_limit(self.runtime, self.provider_id, self.model)
            raise

        usage = response.usage
        if not usage:
            raise ValueError("Response missing usage information")

        self.runtime.ledger.record(self.provider_id, usage.total_tokens)
        return response
