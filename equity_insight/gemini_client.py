"""Gemini access through the google-genai SDK."""

import logging
from typing import Optional, Protocol

from google import genai
from google.genai import types


logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"


class ModelClient(Protocol):
    """The "generate content" boundary the research service depends on."""

    async def generate_content(
        self,
        prompt: str,
        *,
        use_search: bool,
        temperature: float,
        response_schema: Optional[dict] = None,
    ) -> str:
        ...


def build_config(
    use_search: bool,
    temperature: float,
    response_schema: Optional[dict] = None,
) -> types.GenerateContentConfig:
    """
    Build the request config for one call.

    Search grounding and constrained JSON output cannot be combined, so the
    schema hint is only forwarded when search is off; with search on the
    schema travels inside the prompt instead.
    """
    if use_search:
        return types.GenerateContentConfig(
            temperature=temperature,
            tools=[types.Tool(google_search=types.GoogleSearch())],
        )
    if response_schema is not None:
        return types.GenerateContentConfig(
            temperature=temperature,
            response_mime_type="application/json",
            response_schema=response_schema,
        )
    return types.GenerateContentConfig(temperature=temperature)


class GeminiClient:
    """
    Async Gemini client.

    The SDK client is created on first use so that an application without
    credentials can still start; the research service rejects such calls
    before they get here.
    """

    def __init__(self, api_key: Optional[str], model_name: str = DEFAULT_MODEL) -> None:
        self._api_key = api_key
        self._model_name = model_name
        self._client: Optional[genai.Client] = None

    @property
    def model_name(self) -> str:
        return self._model_name

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def generate_content(
        self,
        prompt: str,
        *,
        use_search: bool,
        temperature: float,
        response_schema: Optional[dict] = None,
    ) -> str:
        """
        Send one prompt and return the response text.

        Returns:
            Response text; empty string if the model produced none
            (e.g. blocked by safety filters)

        Raises:
            google.genai.errors.APIError: On HTTP errors from the API
            httpx.TransportError: On connection problems
        """
        logger.debug(
            "Calling %s (search=%s, temperature=%.1f, %d chars)",
            self._model_name, use_search, temperature, len(prompt),
        )
        response = await self._get_client().aio.models.generate_content(
            model=self._model_name,
            contents=prompt,
            config=build_config(use_search, temperature, response_schema),
        )
        return response.text or ""
