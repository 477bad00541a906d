"""Replicate API client for prediction jobs and face restoration, with error classification."""

from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import replicate
from replicate.exceptions import ReplicateError as ReplicateAPIError

from photoforge.services.exceptions import ProviderUnavailable


@dataclass(frozen=True)
class ProviderPrediction:
    """Prediction state as reported by Replicate."""

    id: str
    status: str
    output_urls: list[str] = field(default_factory=list)


def classify_error(exception: Exception) -> ProviderUnavailable:
    """Classify exception into a ProviderUnavailable with a retry hint.

    Args:
        exception: Original exception from Replicate SDK or network layer

    Returns:
        ProviderUnavailable carrying ``category`` and ``retryable``

    Classification rules:
        - Timeout errors → timeout (retryable)
        - 429 (rate limit) → rate_limited (retryable)
        - 500/502/503 → service_unavailable (retryable)
        - 401/403 (authentication) → authentication
        - Content policy violations → content_policy
        - Connection errors → connection (retryable)
        - Anything else → provider_error
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()

    if isinstance(exception, (httpx.TimeoutException, TimeoutError)) or (
        "timeout" in error_message_lower
    ):
        return ProviderUnavailable(
            f"Network timeout: {error_message}", cause=exception, retryable=True, category="timeout"
        )

    if "429" in error_message or "rate limit" in error_message_lower:
        return ProviderUnavailable(
            f"Rate limit exceeded: {error_message}",
            cause=exception,
            retryable=True,
            category="rate_limited",
        )

    if (
        "500" in error_message
        or "502" in error_message
        or "503" in error_message
        or "service unavailable" in error_message_lower
    ):
        return ProviderUnavailable(
            f"Service unavailable: {error_message}",
            cause=exception,
            retryable=True,
            category="service_unavailable",
        )

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return ProviderUnavailable(
            f"Authentication failed: {error_message}", cause=exception, category="authentication"
        )

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
    ):
        return ProviderUnavailable(
            f"Content policy violation: {error_message}",
            cause=exception,
            category="content_policy",
        )

    if isinstance(exception, (ConnectionError, OSError, httpx.TransportError)):
        return ProviderUnavailable(
            f"Connection error: {error_message}",
            cause=exception,
            retryable=True,
            category="connection",
        )

    return ProviderUnavailable(
        f"Provider error: {error_message}", cause=exception, category="provider_error"
    )


def extract_output_urls(output: Any) -> list[str]:
    """Normalize Replicate output into a list of URLs.

    Output shape varies by model and SDK version: None, a single URL string,
    a list of URLs, or FileOutput objects exposing ``.url``.
    """
    if output is None:
        return []
    if isinstance(output, (list, tuple)):
        urls: list[str] = []
        for item in output:
            urls.extend(extract_output_urls(item))
        return urls
    if isinstance(output, str):
        return [output] if output else []
    url = getattr(output, "url", None)
    if url:
        return [str(url)]
    return []


class ReplicateClient:
    """Async wrapper around the Replicate SDK.

    One instance is created at application startup and injected into the
    launcher and the reconciler.
    """

    def __init__(
        self,
        api_token: str,
        enhancement_model: str,
        timeout_seconds: float = 30.0,
        client: Optional[replicate.Client] = None,
    ):
        """Initialize Replicate client.

        Args:
            api_token: Replicate API token (from REPLICATE_API_TOKEN env var)
            enhancement_model: Face restoration model reference (owner/name:version)
            timeout_seconds: HTTP timeout for every SDK request
            client: Pre-built SDK client (tests)
        """
        self.enhancement_model = enhancement_model
        self._client = client or replicate.Client(
            api_token=api_token, timeout=httpx.Timeout(timeout_seconds)
        )

    async def start_prediction(
        self,
        model_version_id: str,
        prompt: str,
        negative_prompt: str,
        seed: Optional[int] = None,
    ) -> ProviderPrediction:
        """Create one prediction on the user's fine-tuned model version.

        Returns as soon as Replicate accepted the job; does not wait for output.

        Raises:
            ProviderUnavailable: Classified transport or provider failure
        """
        model_input: dict[str, Any] = {"prompt": prompt, "negative_prompt": negative_prompt}
        if seed is not None:
            model_input["seed"] = seed

        prediction = await self._call(
            self._client.predictions.async_create(version=model_version_id, input=model_input)
        )
        return ProviderPrediction(
            id=prediction.id,
            status=prediction.status,
            output_urls=extract_output_urls(prediction.output),
        )

    async def get_prediction(self, prediction_id: str) -> ProviderPrediction:
        """Fetch current prediction status and output.

        Raises:
            ProviderUnavailable: Classified transport or provider failure
        """
        prediction = await self._call(self._client.predictions.async_get(prediction_id))
        return ProviderPrediction(
            id=prediction.id,
            status=prediction.status,
            output_urls=extract_output_urls(prediction.output),
        )

    async def enhance(self, image_url: str) -> str:
        """Run face restoration on an image and return the restored image URL.

        Raises:
            ProviderUnavailable: Classified failure, or no URL in the model output
        """
        output = await self._call(
            self._client.async_run(self.enhancement_model, input={"img": image_url})
        )
        urls = extract_output_urls(output)
        if not urls:
            raise ProviderUnavailable(
                f"Unexpected output format from Replicate: {type(output).__name__}",
                category="provider_error",
            )
        return urls[0]

    @staticmethod
    async def _call(awaitable):
        try:
            return await awaitable
        except (ReplicateAPIError, httpx.HTTPError, ConnectionError, OSError, TimeoutError) as e:
            raise classify_error(e) from e
        except Exception as e:
            # Unknown SDK failure: surface as non-retryable
            raise ProviderUnavailable(
                f"Unexpected error: {e}", cause=e, category="provider_error"
            ) from e
