"""Image generation with an ordered provider fallback chain.

Order: Hugging Face (free, token) -> Pollinations (free, no key) ->
OpenAI DALL-E (paid, token) -> placeholder image. Each provider gets one
attempt; the first success wins. Exhausting the chain still reports
success with a placeholder URL, flagged via ``placeholder=True``.
"""

import base64
import logging
import random
from typing import Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel

from canvaschat.config import settings
from canvaschat.services.sanitize import MAX_MESSAGE_LENGTH, sanitize_user_input

logger = logging.getLogger(__name__)

HUGGINGFACE_URL = (
    "https://api-inference.huggingface.co/models/stabilityai/stable-diffusion-xl-base-1.0"
)
HUGGINGFACE_PARAMETERS = {
    "negative_prompt": "blurry, bad quality, distorted",
    "num_inference_steps": 20,
    "guidance_scale": 7.5,
}
POLLINATIONS_BASE_URL = "https://image.pollinations.ai/prompt"
POLLINATIONS_PARAMS = "width=512&height=512&seed={seed}&model=flux&nologo=true"
OPENAI_IMAGES_URL = "https://api.openai.com/v1/images/generations"
OPENAI_COST_WARNING = (
    "Note: This used OpenAI DALL-E (paid). Cost: ~$0.04. "
    "Add HUGGINGFACE_API_KEY for free images."
)
PLACEHOLDER_BASE_URL = "https://via.placeholder.com/1024x1024/3498db/ffffff"
PLACEHOLDER_TEXT = "Image generation temporarily unavailable. Trying multiple free services..."
PLACEHOLDER_WARNING = (
    "Image generation services temporarily unavailable. "
    "We tried Hugging Face and Pollinations.ai free services."
)

# encodeURIComponent-compatible safe set
_URI_COMPONENT_SAFE = "!~*'()"


class ImageAttempt(BaseModel):
    ok: bool
    provider: str
    image_url: str = ""
    error: Optional[str] = None
    warning: Optional[str] = None


class ImageResult(BaseModel):
    image_url: str
    success: bool
    provider: Optional[str] = None
    placeholder: bool = False
    error: Optional[str] = None
    warning: Optional[str] = None
    attempts: list[str] = []


def placeholder_url(text: str = PLACEHOLDER_TEXT) -> str:
    return f"{PLACEHOLDER_BASE_URL}?text={quote(text, safe=_URI_COMPONENT_SAFE)}"


class ImageProvider:
    name = "provider"

    @property
    def configured(self) -> bool:
        return True

    async def attempt(self, prompt: str) -> ImageAttempt:
        raise NotImplementedError

    def _ok(self, image_url: str, warning: str | None = None) -> ImageAttempt:
        return ImageAttempt(ok=True, provider=self.name, image_url=image_url, warning=warning)

    def _failed(self, error: str) -> ImageAttempt:
        return ImageAttempt(ok=False, provider=self.name, error=error)


class HuggingFaceProvider(ImageProvider):
    name = "huggingface"

    def __init__(self, api_key: str = "", url: str = HUGGINGFACE_URL):
        self.api_key = api_key
        self.url = url

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def attempt(self, prompt: str) -> ImageAttempt:
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    self.url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={"inputs": prompt, "parameters": HUGGINGFACE_PARAMETERS},
                    timeout=120.0,
                )
        except httpx.HTTPError as e:
            return self._failed(f"request failed: {e}")

        if not resp.is_success:
            text = resp.text
            if "insufficient permissions" in text or "authentication" in text:
                logger.info("Hugging Face token needs Inference permissions")
            return self._failed(f"{resp.status_code} - {text[:200]}")

        media_type = resp.headers.get("content-type", "")
        if not media_type.startswith("image/"):
            media_type = "image/png"
        encoded = base64.b64encode(resp.content).decode("ascii")
        return self._ok(f"data:{media_type};base64,{encoded}")


class PollinationsProvider(ImageProvider):
    name = "pollinations"

    def __init__(self, base_url: str = POLLINATIONS_BASE_URL, rng: random.Random | None = None):
        self.base_url = base_url
        self.rng = rng or random.Random()

    def build_url(self, prompt: str, seed: int | None = None) -> str:
        if seed is None:
            seed = self.rng.randint(0, 999_999)
        encoded = quote(prompt, safe=_URI_COMPONENT_SAFE)
        return f"{self.base_url}/{encoded}?{POLLINATIONS_PARAMS.format(seed=seed)}"

    async def attempt(self, prompt: str) -> ImageAttempt:
        url = self.build_url(prompt)
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.head(url, timeout=60.0, follow_redirects=True)
        except httpx.HTTPError as e:
            return self._failed(f"probe failed: {e}")

        content_type = resp.headers.get("content-type", "")
        if resp.is_success and content_type.startswith("image/"):
            return self._ok(url)
        return self._failed(f"probe returned {resp.status_code} ({content_type or 'no content-type'})")


class OpenAIImageProvider(ImageProvider):
    name = "openai"

    def __init__(self, api_key: str = "", url: str = OPENAI_IMAGES_URL, model: str = "dall-e-3"):
        self.api_key = api_key
        self.url = url
        self.model = model

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def attempt(self, prompt: str) -> ImageAttempt:
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(
                    self.url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": self.model,
                        "prompt": prompt,
                        "n": 1,
                        "size": "1024x1024",
                        "quality": "standard",
                    },
                    timeout=120.0,
                )
        except httpx.HTTPError as e:
            return self._failed(f"request failed: {e}")

        if not resp.is_success:
            return self._failed(f"{resp.status_code} - {resp.text[:200]}")

        data = resp.json().get("data") or []
        if not data or not data[0].get("url"):
            return self._failed("response contained no image url")
        logger.info("Paid image generated with OpenAI DALL-E")
        return self._ok(data[0]["url"], warning=OPENAI_COST_WARNING)


def build_default_providers(s=settings) -> list[ImageProvider]:
    return [
        HuggingFaceProvider(api_key=s.huggingface_api_key),
        PollinationsProvider(),
        OpenAIImageProvider(api_key=s.openai_api_key),
    ]


class ImageGenerator:
    def __init__(self, providers: list[ImageProvider]):
        self.providers = providers

    @classmethod
    def from_settings(cls, s=settings) -> "ImageGenerator":
        return cls(build_default_providers(s))

    async def generate(self, prompt: str) -> ImageResult:
        if len(prompt.strip()) > MAX_MESSAGE_LENGTH:
            return ImageResult(
                image_url="",
                success=False,
                error=f"Prompt is too long (max {MAX_MESSAGE_LENGTH} characters)",
            )
        sanitized = sanitize_user_input(prompt)
        if not sanitized:
            return ImageResult(image_url="", success=False, error="Prompt cannot be empty")

        attempts: list[str] = []
        for provider in self.providers:
            if not provider.configured:
                attempts.append(f"{provider.name}: not configured")
                continue

            try:
                attempt = await provider.attempt(sanitized)
            except Exception as e:
                logger.exception("Image provider %s raised", provider.name)
                attempt = ImageAttempt(ok=False, provider=provider.name, error=str(e))

            if attempt.ok:
                logger.info("Image generated with %s", provider.name)
                return ImageResult(
                    image_url=attempt.image_url,
                    success=True,
                    provider=provider.name,
                    warning=attempt.warning,
                    attempts=attempts,
                )
            logger.info("Image provider %s failed: %s", provider.name, attempt.error)
            attempts.append(f"{provider.name}: {attempt.error}")

        logger.warning("All image providers failed, using placeholder")
        return ImageResult(
            image_url=placeholder_url(),
            success=True,
            provider="placeholder",
            placeholder=True,
            warning=PLACEHOLDER_WARNING,
            attempts=attempts,
        )
