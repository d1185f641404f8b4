"""Image generation client (Replicate predictions API, FLUX.1 dev).

One call renders one combined comic page. HTTP 429 is retried here with
the server's ``retry-after`` hint plus a buffer; every other failure is an
``ImageGenerationError`` and ends the job.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from ..config import ImageProviderConfig, settings
from ..errors import ImageGenerationError, RateLimitedError
from ..logging import logger

_TERMINAL_STATUSES = {"succeeded", "failed", "canceled"}

STYLE_SUFFIX = (
    "black and white, pen and ink drawing, line art, comic book illustration, "
    "monochrome, no colors, grayscale, detailed linework, hatching and crosshatching, "
    "dramatic shadows, high contrast, motion lines, professional comic book art, "
    "NO speech bubbles or text in images"
)


@dataclass(frozen=True)
class ImageResult:
    url: str
    seed: int
    processing_ms: int


class ImageClient:
    def __init__(
        self,
        config: ImageProviderConfig | None = None,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or settings.image_config
        if not self.config.api_token:
            logger.warning("image_api_token_missing", message="IMAGE_API_TOKEN not configured")
        self.client = client or httpx.Client(
            base_url=self.config.base_url,
            headers={
                "Authorization": f"Bearer {self.config.api_token or ''}",
                "Content-Type": "application/json",
                "User-Agent": "saga-worker/1.0",
            },
            timeout=self.config.request_timeout_seconds,
        )
        self._sleep = sleep
        self._clock = clock

    def close(self) -> None:
        self.client.close()

    def _truncate_body(self, body: str | None, limit: int = 500) -> str | None:
        if not body:
            return None
        if len(body) <= limit:
            return body
        return f"{body[:limit]}..."

    # -------------------------------------------------------------------------
    # Rate limiting
    # -------------------------------------------------------------------------
    def _retry_after(self, response: httpx.Response) -> float:
        header = response.headers.get("retry-after")
        if header:
            try:
                return float(header)
            except ValueError:
                pass
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("retry_after") is not None:
            try:
                return float(body["retry_after"])
            except (TypeError, ValueError):
                pass
        return self.config.default_retry_after_seconds

    def _rate_limit_wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        retry_after = getattr(exc, "retry_after", self.config.default_retry_after_seconds)
        return max(
            retry_after + self.config.rate_limit_buffer_seconds,
            self.config.rate_limit_min_wait_seconds,
        )

    def _log_rate_limited(self, retry_state: RetryCallState) -> None:
        logger.warning(
            "image_rate_limited",
            attempt=retry_state.attempt_number,
            max_tries=self.config.rate_limit_max_tries,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        )

    # -------------------------------------------------------------------------
    # API calls
    # -------------------------------------------------------------------------
    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise ImageGenerationError(f"image provider timed out: {exc}", stage="illustrate") from exc
        except httpx.HTTPError as exc:
            raise ImageGenerationError(f"image provider unreachable: {exc}", stage="illustrate") from exc

        if response.status_code == 429:
            retry_after = self._retry_after(response)
            raise RateLimitedError(
                f"Rate limit exceeded. Retry after {retry_after} seconds.",
                retry_after=retry_after,
                stage="illustrate",
            )
        if response.status_code >= 400:
            raise ImageGenerationError(
                f"image provider returned {response.status_code}: "
                f"{self._truncate_body(response.text)}",
                stage="illustrate",
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ImageGenerationError("image provider returned invalid JSON", stage="illustrate") from exc

    def _create_prediction(self, prompt: str, seed: int) -> dict[str, Any]:
        cfg = self.config
        payload = {
            "input": {
                "prompt": f"{prompt}, {STYLE_SUFFIX}",
                "width": cfg.width,
                "height": cfg.height,
                "num_outputs": 1,
                "guidance_scale": cfg.guidance_scale,
                "num_inference_steps": cfg.num_inference_steps,
                "seed": seed,
                "output_format": cfg.output_format,
                "output_quality": cfg.output_quality,
            }
        }
        retrying = Retrying(
            stop=stop_after_attempt(cfg.rate_limit_max_tries),
            wait=self._rate_limit_wait,
            retry=retry_if_exception_type(RateLimitedError),
            sleep=self._sleep,
            before_sleep=self._log_rate_limited,
            reraise=True,
        )
        try:
            return retrying(
                self._request,
                "POST",
                f"/models/{cfg.model}/predictions",
                json=payload,
                headers={"Prefer": "wait=60"},
            )
        except RateLimitedError as exc:
            raise ImageGenerationError(
                f"image provider still rate limiting after {cfg.rate_limit_max_tries} tries: {exc}",
                stage="illustrate",
            ) from exc

    def _await_prediction(self, prediction: dict[str, Any]) -> dict[str, Any]:
        deadline = self._clock() + self.config.poll_deadline_seconds
        while prediction.get("status") not in _TERMINAL_STATUSES:
            if self._clock() >= deadline:
                raise ImageGenerationError(
                    f"prediction {prediction.get('id')} still {prediction.get('status')} at deadline",
                    stage="illustrate",
                )
            poll_url = (prediction.get("urls") or {}).get("get")
            if not poll_url:
                raise ImageGenerationError("prediction has no poll URL", stage="illustrate")
            self._sleep(self.config.poll_interval_seconds)
            prediction = self._request("GET", poll_url)
        return prediction

    def generate(self, prompt: str, seed: int) -> ImageResult:
        """Render one image for *prompt* with a fixed *seed*."""
        started = self._clock()
        prediction = self._await_prediction(self._create_prediction(prompt, seed))
        if prediction.get("status") != "succeeded":
            raise ImageGenerationError(
                f"prediction {prediction.get('status')}: {prediction.get('error')}",
                stage="illustrate",
            )
        output = prediction.get("output")
        url = output[0] if isinstance(output, list) and output else output
        if not url or not isinstance(url, str):
            raise ImageGenerationError("Invalid image URL returned from provider", stage="illustrate")
        return ImageResult(url=url, seed=seed, processing_ms=int((self._clock() - started) * 1000))
