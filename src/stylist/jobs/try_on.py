"""Virtual try-on generation against the FASHN prediction API."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import httpx

from ..config import Settings, TryOnMode
from ..services.uploads import UploadStorage

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.fashn.ai/v1"
PENDING_STATUSES = frozenset({"starting", "in_queue", "processing"})


class TryOnError(RuntimeError):
    """Raised for any failure while producing a try-on image."""


class TryOnPredictionFailed(TryOnError):
    """The prediction API reported a terminal failure."""


class TryOnTimeout(TryOnError):
    """The prediction did not reach a terminal state before the deadline."""


class TryOnJobRunner:
    """Render a garment onto a model photo and store the result locally.

    `generate` is best-effort: any failure is logged and the garment's own
    image reference is returned instead, so callers never need to handle an
    exception. Polling runs at a fixed interval up to a deadline.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        storage: UploadStorage,
        base_url: str = DEFAULT_BASE_URL,
        default_mode: TryOnMode = "performance",
        poll_interval: float = 3.0,
        poll_timeout: float = 300.0,
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api_key = api_key
        self._storage = storage
        self._base_url = base_url.rstrip("/")
        self._default_mode = default_mode
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout
        self._timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None
        self._client_lock = asyncio.Lock()
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, storage: UploadStorage) -> "TryOnJobRunner":
        api_key = settings.fashn_api_key
        return cls(
            api_key=api_key.get_secret_value() if api_key is not None else None,
            storage=storage,
            base_url=str(settings.fashn_base_url),
            default_mode=settings.try_on_default_mode,
            poll_interval=settings.try_on_poll_interval_seconds,
            poll_timeout=settings.try_on_poll_timeout_seconds,
        )

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client

        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self._timeout, connect=10.0),
                    limits=httpx.Limits(
                        max_connections=50,
                        max_keepalive_connections=20,
                    ),
                    http2=True,
                    follow_redirects=True,
                )
        return self._client

    @property
    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    async def generate(
        self,
        model_image_ref: str,
        garment_image_ref: str,
        mode: Optional[TryOnMode] = None,
    ) -> str:
        """Return a local reference to the composite, or ``garment_image_ref`` on failure."""

        selected_mode = mode or self._default_mode
        logger.info(
            "Starting try-on for model %s and garment %s (%s)",
            model_image_ref[:80],
            garment_image_ref,
            selected_mode,
        )
        try:
            return await self._generate(model_image_ref, garment_image_ref, selected_mode)
        except Exception:
            logger.exception(
                "Try-on generation failed; falling back to garment image %s",
                garment_image_ref,
            )
            return garment_image_ref

    async def _generate(
        self, model_image_ref: str, garment_image_ref: str, mode: TryOnMode
    ) -> str:
        if not self._api_key:
            raise TryOnError("FASHN API key is not configured")

        if self._storage.is_local_reference(model_image_ref):
            model_image = await self._storage.read_data_url(model_image_ref)
        else:
            model_image = model_image_ref

        prediction_id = await self.submit(model_image, garment_image_ref, mode)
        output_url = await self.wait_for_output(prediction_id)
        return await self.download(output_url)

    async def submit(self, model_image: str, garment_image: str, mode: TryOnMode) -> str:
        """Start a prediction and return its identifier."""

        client = await self._get_http_client()
        response = await client.post(
            f"{self._base_url}/run",
            headers=self._headers,
            json={
                "model_image": model_image,
                "garment_image": garment_image,
                "category": "auto",
                "mode": mode,
                "return_base64": False,
            },
        )
        if response.status_code >= 400:
            raise TryOnError(f"FASHN /run failed ({response.status_code}): {response.text}")

        prediction_id = response.json().get("id")
        if not prediction_id:
            raise TryOnError("FASHN /run response did not include a prediction id")
        logger.info("Try-on prediction started: %s", prediction_id)
        return str(prediction_id)

    async def wait_for_output(self, prediction_id: str) -> str:
        """Poll the prediction until it completes and return its first output URL."""

        client = await self._get_http_client()
        deadline = self._clock() + self._poll_timeout
        while True:
            response = await client.get(
                f"{self._base_url}/status/{prediction_id}", headers=self._headers
            )
            if response.status_code >= 400:
                raise TryOnError(
                    f"FASHN /status failed ({response.status_code}): {response.text}"
                )
            data = response.json()
            status = data.get("status")

            if status == "completed":
                output = data.get("output")
                if not isinstance(output, list) or not output:
                    raise TryOnPredictionFailed(
                        f"Prediction {prediction_id} completed without output"
                    )
                logger.info("Try-on prediction %s completed", prediction_id)
                return str(output[0])

            if status not in PENDING_STATUSES:
                error = data.get("error") or "Prediction failed with an unknown error."
                raise TryOnPredictionFailed(f"Prediction {prediction_id} failed: {error}")

            if self._clock() + self._poll_interval > deadline:
                raise TryOnTimeout(
                    f"Prediction {prediction_id} still {status} after {self._poll_timeout:.0f}s"
                )
            logger.debug(
                "Prediction %s status: %s; polling again in %.1fs",
                prediction_id,
                status,
                self._poll_interval,
            )
            await self._sleep(self._poll_interval)

    async def download(self, url: str) -> str:
        """Fetch the generated image and store it as a new local upload."""

        client = await self._get_http_client()
        response = await client.get(url)
        if response.status_code >= 400:
            raise TryOnError(f"Downloading {url} failed ({response.status_code})")
        if not response.content:
            raise TryOnError(f"Downloaded try-on image {url} is empty")
        reference = await self._storage.save_bytes(
            response.content, prefix="try-on", suffix=".png"
        )
        logger.info("Try-on image saved locally to %s", reference)
        return reference

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


__all__ = [
    "PENDING_STATUSES",
    "TryOnError",
    "TryOnJobRunner",
    "TryOnPredictionFailed",
    "TryOnTimeout",
]
