"""
Mistral chat-completions client.

Mistral exposes an OpenAI-compatible API, so the openai SDK is pointed at
MISTRAL_API_URL. One attempt per generation, no retries.
"""

import logging

import openai
from openai import OpenAI

from .errors import ConfigurationError, UpstreamError
from .settings import MISTRAL_API_URL, MISTRAL_MODEL, get_mistral_api_key, load_settings

logger = logging.getLogger("mapgen")


class MistralClient:
    """Thin wrapper returning the raw message text of a chat completion."""

    def __init__(self, api_key: str = None, base_url: str = None, client=None):
        self.base_url = base_url or MISTRAL_API_URL
        if client is not None:
            self.client = client
        else:
            api_key = api_key or get_mistral_api_key()
            if not api_key:
                raise ConfigurationError("Mistral API key not configured")
            # max_retries=0: a failed call is reported, never replayed
            self.client = OpenAI(api_key=api_key, base_url=self.base_url, max_retries=0)

    def complete(self, system_prompt: str, user_prompt: str, model: str = None,
                 temperature: float = None, max_tokens: int = None) -> str:
        """
        Send one chat completion request.

        Raises:
            UpstreamError: network failure or non-2xx response
        """
        settings = load_settings()
        model = model or MISTRAL_MODEL
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        try:
            response = self.client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=settings["llm_temperature"] if temperature is None else temperature,
                max_tokens=max_tokens or settings["llm_max_tokens"],
            )
        except openai.APIStatusError as e:
            logger.error(f"Mistral API error {e.status_code}: {e.message}")
            raise UpstreamError(f"Mistral API error: {e.status_code}",
                                service="mistral", status_code=e.status_code) from e
        except openai.OpenAIError as e:
            logger.error(f"Mistral API unreachable: {e}")
            raise UpstreamError(f"Mistral API unreachable: {e}", service="mistral") from e

        if not response.choices:
            raise UpstreamError("Mistral returned no choices", service="mistral")

        content = response.choices[0].message.content or ""
        logger.info(f"Mistral response received ({len(content)} chars, model {model})")
        return content


def get_llm_client(api_key_name: str = None) -> MistralClient:
    """Client for the API key named by the active AI config."""
    return MistralClient(api_key=get_mistral_api_key(api_key_name))
