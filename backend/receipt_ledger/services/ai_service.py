import asyncio
import io
import logging
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from PIL import Image, ImageOps

from receipt_ledger.core.config import settings
from receipt_ledger.core.exceptions import AIProviderError
from receipt_ledger.services.prompts import (
    CATEGORIZE_SYSTEM_PROMPT,
    RECEIPT_SYSTEM_PROMPT,
    RECEIPT_USER_PROMPT,
)

# --- Vertex AI (Gemini) adapter ---
# Recognition: image bytes -> raw text. Classification: prompt text -> raw text.
# Parsing of the returned text lives in extraction.py / categorization.py.

logger = logging.getLogger(__name__)

MODEL_UNAVAILABLE_MARKERS = (
    "not found",
    "does not exist",
    "invalid argument",
    "unsupported",
    "publisher model",
    "permission denied",
    "forbidden",
)


def _unique_non_empty(values: list[str]) -> list[str]:
    unique_values: list[str] = []
    for value in values:
        normalized = str(value or "").strip()
        if normalized and normalized not in unique_values:
            unique_values.append(normalized)
    return unique_values


def _should_try_next_model(exc: Exception) -> bool:
    if isinstance(exc, genai_errors.ClientError) and exc.code in {400, 403, 404}:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in MODEL_UNAVAILABLE_MARKERS)


def detect_mime_type(image_bytes: bytes) -> str:
    if image_bytes[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    return "image/png"


def preprocess_vision_image(
    image_bytes: bytes,
    mime_type: str,
    max_edge: int = settings.VISION_MAX_IMAGE_EDGE,
    jpeg_quality: int = settings.VISION_JPEG_QUALITY,
) -> tuple[bytes, str, dict]:
    """
    Normalize orientation/size before sending the photo to the model.
    Falls back to the original bytes on any preprocessing failure.
    """
    normalized_mime = (mime_type or "").lower().strip()
    if not normalized_mime.startswith("image/"):
        return image_bytes, normalized_mime, {"preprocessed": False}

    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            image = ImageOps.exif_transpose(image)
            image = image.convert("RGB")

            longest = max(image.size)
            if longest > max_edge:
                ratio = max_edge / float(longest)
                new_size = (
                    max(1, int(image.width * ratio)),
                    max(1, int(image.height * ratio)),
                )
                image = image.resize(new_size, resample=Image.Resampling.LANCZOS)

            image = ImageOps.autocontrast(image)

            output = io.BytesIO()
            quality = min(95, max(50, int(jpeg_quality)))
            image.save(output, format="JPEG", quality=quality, optimize=True)

            return output.getvalue(), "image/jpeg", {
                "preprocessed": True,
                "width": image.width,
                "height": image.height,
                "quality": quality,
            }
    except Exception as exc:
        logger.warning("Vision image preprocessing failed: %s", str(exc))
        return image_bytes, normalized_mime, {"preprocessed": False, "error": str(exc)}


class GeminiClient:
    """
    Recognition and classification capability backed by Gemini on Vertex AI.

    Every call is bounded by ``timeout_ms``; timeouts and provider failures
    surface as AIProviderError. No retries are attempted here.
    """

    def __init__(
        self,
        client: Any = None,
        receipt_models: list[str] | None = None,
        categorize_model: str | None = None,
        receipt_instruction: str = RECEIPT_SYSTEM_PROMPT,
        receipt_user_prompt: str = RECEIPT_USER_PROMPT,
        categorize_instruction: str = CATEGORIZE_SYSTEM_PROMPT,
        timeout_ms: int = settings.AI_TIMEOUT_MS,
        max_output_tokens: int = settings.AI_MAX_OUTPUT_TOKENS,
        preprocess_images: bool = settings.VISION_PREPROCESS_ENABLED,
    ):
        self._client = client
        self.receipt_models = _unique_non_empty(
            receipt_models
            or [
                settings.VERTEX_AI_RECEIPT_MODEL,
                settings.VERTEX_AI_MODEL,
                "gemini-2.5-flash",
            ]
        )
        self.categorize_model = categorize_model or settings.VERTEX_AI_MODEL
        self.receipt_instruction = receipt_instruction
        self.receipt_user_prompt = receipt_user_prompt
        self.categorize_instruction = categorize_instruction
        self.timeout_ms = timeout_ms
        self.max_output_tokens = max_output_tokens
        self.preprocess_images = preprocess_images

    @property
    def client(self):
        if self._client is None:
            self._client = genai.Client(
                vertexai=True,
                project=settings.GCP_PROJECT_ID,
                location=settings.VERTEX_AI_LOCATION,
            )
        return self._client

    async def _generate(self, model_name: str, contents: list, instruction: str) -> str:
        timeout_seconds = max(1.0, float(self.timeout_ms) / 1000.0)
        config = types.GenerateContentConfig(
            system_instruction=instruction,
            temperature=0.0,
            max_output_tokens=self.max_output_tokens,
        )
        response = await asyncio.wait_for(
            self.client.aio.models.generate_content(
                model=model_name,
                contents=contents,
                config=config,
            ),
            timeout=timeout_seconds,
        )
        text = (response.text or "").strip()
        if not text:
            raise AIProviderError(f"Model '{model_name}' returned an empty response.")
        return text

    async def recognize_receipt(self, image_bytes: bytes, mime_type: str | None = None) -> str:
        """Transcribe a receipt photo into the model's raw (JSON-ish) text."""
        prepared_bytes = image_bytes
        prepared_mime = mime_type or detect_mime_type(image_bytes)
        if self.preprocess_images:
            prepared_bytes, prepared_mime, preprocess_meta = preprocess_vision_image(
                image_bytes=image_bytes,
                mime_type=prepared_mime,
            )
            logger.debug("vision_preprocess meta=%s", preprocess_meta)

        contents = [
            types.Part.from_bytes(data=prepared_bytes, mime_type=prepared_mime),
            self.receipt_user_prompt,
        ]

        last_error: Exception | None = None
        for model_name in self.receipt_models:
            try:
                text = await self._generate(model_name, contents, self.receipt_instruction)
                logger.info(
                    "receipt_recognized model=%s chars=%d", model_name, len(text)
                )
                return text
            except asyncio.TimeoutError as exc:
                raise AIProviderError(
                    f"Receipt recognition timed out after {self.timeout_ms} ms."
                ) from exc
            except AIProviderError:
                raise
            except Exception as exc:
                last_error = exc
                if _should_try_next_model(exc):
                    logger.warning(
                        "Receipt model '%s' unavailable, trying next model: %s",
                        model_name,
                        str(exc),
                    )
                    continue
                raise AIProviderError(f"Receipt recognition failed: {exc}") from exc

        raise AIProviderError(f"No receipt model available: {last_error}")

    async def categorize(self, prompt_text: str) -> str:
        """Ask the model for categories; returns its raw text answer."""
        try:
            return await self._generate(
                self.categorize_model, [prompt_text], self.categorize_instruction
            )
        except asyncio.TimeoutError as exc:
            raise AIProviderError(
                f"Categorization timed out after {self.timeout_ms} ms."
            ) from exc
        except AIProviderError:
            raise
        except Exception as exc:
            raise AIProviderError(f"Categorization failed: {exc}") from exc
