"""
Copy Generator: ask a vision-language model for listing copy.

One request per photo: a fixed curator persona, an instruction describing the
expected JSON object, the EXIF attributes as context and the photo itself as an
in-memory JPEG. The raw text answer is de-fenced, parsed and validated into a
ListingCopy. Nothing is retried and nothing is made up when the answer is bad.
"""

import json
import re
import time
import urllib.parse
from http import HTTPStatus
from io import BytesIO
from pathlib import Path
from typing import TYPE_CHECKING, Literal

import httpx
from loguru import logger
from PIL import Image, ImageOps
from pydantic import ValidationError
from pydantic_ai import Agent, AgentRunResult, BinaryContent, ModelSettings
from pydantic_ai.exceptions import AgentRunError
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.ollama import OllamaProvider
from pydantic_ai.providers.openai import OpenAIProvider

from photo_publisher.errors import MetadataGenerationError
from photo_publisher.exif import extract_exif_from_path
from photo_publisher.models import ExifAttributes, ListingCopy


if TYPE_CHECKING:
    from loguru import Logger


ProviderName = Literal["openai", "ollama", "lmstudio"]

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
DEFAULT_JPEG_QUALITY = 85
DEFAULT_DIMENSIONS = 2048
PROVIDER_URLS: dict[str, str | None] = {
    "openai": None,
    "ollama": "http://localhost:11434/v1",
    "lmstudio": "http://localhost:1234/v1",
}

SYSTEM_PROMPT = (
    "You are a professional art curator and photographer marketer. "
    "Analyze the image and its EXIF metadata to create engaging, SEO-friendly metadata "
    "for a print-on-demand marketplace listing. "
    "Always respond in valid JSON format without any markdown or code block formatting."
)

USER_PROMPT = (
    "Generate metadata for this photograph. "
    "Consider the technical details from the EXIF data to enrich the tags but not the description.\n"
    "\n"
    "The metadata should follow this JSON format:\n"
    "{\n"
    '  "title": "string (engaging, descriptive title)",\n'
    '  "description": "string (around 100 words, do not mention technical details from the '
    "image EXIF such as camera type, but if you have location information you may use it)\",\n"
    '  "tags": ["tag1", "tag2", ...] (15-20 relevant tags, including both subject matter and '
    "relevant photography technique tags)\n"
    "}"
)

_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)


def validate_lmstudio_model(api_base_url: str, model_name: str, api_key: str | None) -> None:
    """Fail fast when LM Studio cannot resolve the requested model name."""
    url = urllib.parse.urljoin(api_base_url.rstrip("/") + "/", "models")
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        logger.error("lmstudio_model_listing_invalid_url", url=url)
        raise SystemExit(1)
    headers = {"Accept": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    try:
        response = httpx.get(url, headers=headers, timeout=5.0)
    except httpx.HTTPError as exc:
        logger.error("lmstudio_model_listing_error", error=str(exc), url=url)
        raise SystemExit(1) from exc

    if response.status_code != HTTPStatus.OK:
        logger.error(
            "lmstudio_model_listing_failed",
            status=response.status_code,
            url=url,
            body=response.text,
        )
        raise SystemExit(1)

    try:
        listing = response.json()
    except ValueError as exc:
        logger.error("lmstudio_model_listing_invalid_json", error=str(exc), url=url)
        raise SystemExit(1) from exc

    models = [
        str(entry["id"])
        for entry in listing.get("data", [])
        if isinstance(entry, dict) and "id" in entry
    ]
    if model_name not in models:
        logger.error("lmstudio_model_not_available", requested=model_name, available=models)
        raise SystemExit(1)

    logger.debug("lmstudio_model_validated", model=model_name)


def create_agent(
    provider_name: ProviderName,
    model_name: str,
    *,
    api_base_url: str | None = None,
    api_key: str | None = None,
) -> Agent:
    """
    Build the text-output agent used for every photo in a batch.

    The hosted OpenAI provider needs a credential; local OpenAI-compatible
    servers (Ollama, LM Studio) accept any key or none.
    """
    resolved_url = api_base_url or PROVIDER_URLS.get(provider_name)
    logger.info(
        "provider_config_resolved",
        provider=provider_name,
        url=resolved_url,
        model=model_name,
        api_key_present=bool(api_key),
    )

    if provider_name == "openai":
        if not api_key:
            logger.error("openai_api_key_missing", hint="Set OPENAI_API_KEY or pass --api-key")
            raise SystemExit(1)
        provider = OpenAIProvider(base_url=resolved_url, api_key=api_key)
    elif provider_name == "ollama":
        provider = OllamaProvider(base_url=resolved_url, api_key=api_key)
    else:
        assert resolved_url is not None  # noqa: S101
        validate_lmstudio_model(resolved_url, model_name, api_key)
        provider = OpenAIProvider(base_url=resolved_url, api_key=api_key)

    chat_model = OpenAIChatModel(model_name=model_name, provider=provider)
    return Agent(chat_model, output_type=str, system_prompt=SYSTEM_PROMPT)


def prepare_image_for_agent(
    image_path: Path,
    jpg_quality: int = DEFAULT_JPEG_QUALITY,
    max_size: int = DEFAULT_DIMENSIONS,
) -> BinaryContent:
    """
    Re-encode a JPEG or PNG photo as a self-contained JPEG payload.

    EXIF orientation is applied, transparency is composited onto white and the
    image is downscaled (never upscaled) to fit max_size. Everything happens in
    memory.

    Args:
        image_path: Path to the photo
        jpg_quality: JPEG compression quality (1-100)
        max_size: Maximum dimension in pixels

    Returns:
        BinaryContent the agent inlines as a base64 image part

    """
    try:
        with Image.open(image_path) as opened:
            img = ImageOps.exif_transpose(opened)

            if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                logger.debug("compositing_alpha_to_white")
                alpha = img.convert("RGBA")
                bg = Image.new("RGBA", alpha.size, (255, 255, 255, 255))
                img = Image.alpha_composite(bg, alpha).convert("RGB")
            else:
                img = img.convert("RGB")

            img.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)

            buf = BytesIO()
            img.save(buf, format="JPEG", quality=jpg_quality)
            jpeg_bytes = buf.getvalue()
    except Exception as e:
        logger.exception("image_preparation_failed", error=str(e))
        raise
    else:
        logger.debug(
            "image_prepared_for_agent",
            width=img.width,
            height=img.height,
            size_kb=len(jpeg_bytes) // 1024,
        )
        return BinaryContent(data=jpeg_bytes, media_type="image/jpeg")


def build_copy_prompt(exif: ExifAttributes, base_prompt: str = USER_PROMPT) -> str:
    """
    Append the EXIF attributes to the instruction as JSON context.

    Examples:
        >>> print(build_copy_prompt(ExifAttributes(iso=200), "Describe."))
        Describe.
        <BLANKLINE>
        EXIF Data for context: {
          "iso": 200
        }

    """
    sections = [base_prompt.strip()]
    if not exif.is_empty():
        context = json.dumps(exif.model_dump(mode="json", exclude_none=True), indent=2)
        sections.append(f"EXIF Data for context: {context}")
    return "\n\n".join(sections)


def strip_code_fences(text: str) -> str:
    """
    Remove markdown code-fence markers around a model answer.

    Examples:
        >>> strip_code_fences('```json\\n{"a": 1}\\n```')
        '{"a": 1}'

    """
    return _FENCE_PATTERN.sub("", text).strip()


def parse_listing_copy(raw_response: str) -> ListingCopy:
    """
    Parse the raw model answer into a ListingCopy.

    Raises:
        MetadataGenerationError: The answer is not a JSON object once de-fenced, or
            one of title / description / tags is missing or empty.

    """
    cleaned = strip_code_fences(raw_response)
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.error("copy_response_not_json", error=str(exc), raw_response=raw_response)
        msg = "Failed to parse model response as JSON"
        raise MetadataGenerationError(msg, raw_response=raw_response) from exc

    if not isinstance(payload, dict):
        logger.error("copy_response_not_object", raw_response=raw_response)
        msg = "Model response is not a JSON object"
        raise MetadataGenerationError(msg, raw_response=raw_response)

    try:
        return ListingCopy.model_validate(payload)
    except ValidationError as exc:
        logger.error(
            "copy_response_missing_fields",
            errors=[".".join(str(loc) for loc in err["loc"]) for err in exc.errors()],
            raw_response=raw_response,
        )
        msg = "Model response is missing required fields (title, description, tags)"
        raise MetadataGenerationError(msg, raw_response=raw_response) from exc


class CopyGenerator:
    """Produces one ListingCopy per photo from a shared agent."""

    def __init__(
        self,
        agent: Agent,
        *,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        jpeg_quality: int = DEFAULT_JPEG_QUALITY,
        max_size: int = DEFAULT_DIMENSIONS,
        log: "Logger | None" = None,
    ) -> None:
        self._agent = agent
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._jpeg_quality = jpeg_quality
        self._max_size = max_size
        self._log = log or logger

    def generate(self, image_path: Path) -> ListingCopy:
        """Extract EXIF, prepare the payload and ask the model for copy."""
        self._log.info("generating_listing_copy", file=image_path.name)
        exif = extract_exif_from_path(image_path)
        payload = prepare_image_for_agent(
            image_path,
            jpg_quality=self._jpeg_quality,
            max_size=self._max_size,
        )
        return self.generate_from_payload(payload, exif)

    def generate_from_payload(self, image: BinaryContent, exif: ExifAttributes) -> ListingCopy:
        """
        Call the vision model once and validate its answer.

        Args:
            image: JPEG payload attached to the user message
            exif: Camera attributes included as prompt context

        Returns:
            Validated ListingCopy

        Raises:
            MetadataGenerationError: The call failed or the answer was unusable.

        """
        prompt = build_copy_prompt(exif)
        _t0 = time.perf_counter()
        try:
            result: AgentRunResult[str] = self._agent.run_sync(
                [prompt, image],
                model_settings=ModelSettings(
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                ),
            )
        except AgentRunError as exc:
            self._log.error("copy_request_failed", error=str(exc))
            msg = f"Vision model request failed: {exc}"
            raise MetadataGenerationError(msg) from exc

        raw_response = str(result.output)
        self._log.info(
            "ai_inference_completed",
            seconds=round(time.perf_counter() - _t0, 3),
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        self._log.debug("raw_copy_response", raw_response=raw_response)

        copy = parse_listing_copy(raw_response)
        self._log.info("listing_copy_generated", title=copy.title, tag_count=len(copy.tags))
        return copy
