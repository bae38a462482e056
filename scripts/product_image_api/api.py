"""Public API for Product Image Forge."""

from __future__ import annotations

import logging
import random
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, Optional, Sequence, Tuple

from product_image_api.core.assembler import PartAssembler
from product_image_api.core.cancellation import CancelToken
from product_image_api.core.config import ServiceConfig, load_config
from product_image_api.core.contracts import (
    TECH_PACK_IMAGE_TYPES,
    Assembly,
    GeneratedImage,
    GenerationMetadata,
    GenerationOptions,
    GenerationRequest,
    TechPackSource,
    TextPart,
)
from product_image_api.core.errors import (
    FatalError,
    GenerationCancelled,
    InputError,
    NoImageReturned,
)
from product_image_api.core.extractor import extract_image
from product_image_api.core.normalizer import ImageNormalizer
from product_image_api.core.prompts import (
    build_prompt_from_template,
    enhance_prompt,
    fallback_prompt,
    generic_fallback_prompt,
)
from product_image_api.core.retry import RetryOrchestrator, RetryPolicy, TransportResult
from product_image_api.core.telemetry import OperationLog, TelemetrySink
from product_image_api.core.utils import split_data_uri, truncate
from product_image_api.providers import get_transport
from product_image_api.providers.base import GenerationConfig, GenerationTransport

logger = logging.getLogger(__name__)

HEALTH_CHECK_PROMPT = "Generate a simple test image of a circle."
DETAIL_FOCUS = "construction details and hardware"


def _tech_pack_style(image_type: str) -> str:
    if image_type == "vector":
        return "vector"
    if image_type == "detail":
        return "detail"
    return "technical"


class ProductImageService:
    """Single entry point for product image generation.

    Owned by its caller; share one instance per transport/config pair.
    """

    def __init__(
        self,
        transport: GenerationTransport,
        config: Optional[ServiceConfig] = None,
        normalizer: Optional[ImageNormalizer] = None,
        telemetry_sink: Optional[TelemetrySink] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.transport = transport
        self.config = config or ServiceConfig()
        self.normalizer = normalizer or ImageNormalizer(timeout=self.config.fetch_timeout)
        self.assembler = PartAssembler(self.normalizer)
        self.telemetry_sink = telemetry_sink
        self.orchestrator = RetryOrchestrator(
            transport,
            RetryPolicy(
                base_delay=self.config.base_delay,
                max_jitter=self.config.max_jitter,
                fallback_model=self.config.fallback_model,
            ),
            rng=rng,
        )

    @classmethod
    def from_env(
        cls,
        provider: str = "gemini",
        telemetry_sink: Optional[TelemetrySink] = None,
    ) -> "ProductImageService":
        config = load_config()
        return cls(get_transport(provider, api_key=config.api_key), config, telemetry_sink=telemetry_sink)

    def resolve_prompt(self, request: GenerationRequest) -> str:
        prompt = request.prompt or ""
        if not prompt.strip():
            if not (request.product_type and request.view):
                raise InputError("A prompt, or product_type and view for a template, is required")
            prompt = build_prompt_from_template(
                request.product_type,
                request.view,
                request.style or "photorealistic",
            )
        if request.options.enhance_prompt:
            prompt = enhance_prompt(prompt, request.style)
        return prompt

    def _attempt(
        self,
        assembly: Assembly,
        model: str,
        request: GenerationRequest,
        cancel: Optional[CancelToken],
    ) -> Tuple[str, TransportResult]:
        config = GenerationConfig(
            temperature=self.config.temperature,
            aspect_ratio=request.aspect_ratio,
        )
        result = self.orchestrator.call(
            assembly.parts,
            model,
            config,
            cancel=cancel,
            max_retries=request.options.retry_count,
        )
        return extract_image(result.response), result

    def generate_image(
        self,
        request: GenerationRequest,
        cancel: Optional[CancelToken] = None,
        label: Optional[str] = None,
    ) -> GeneratedImage:
        """Generate one image.

        ``label`` tags the telemetry record (batch helpers pass the view or
        tech pack type); it defaults to the request's view.
        """
        started = time.monotonic()
        model = request.options.model or self.config.model
        op = OperationLog("generate_image", model, self.transport.name, sink=self.telemetry_sink)
        op.set_context(feature="product_image_generation", label=label or request.view)
        try:
            request.validate()
            prompt = self.resolve_prompt(request)
            op.set_input(
                prompt=truncate(prompt, 200),
                style=request.style,
                product_type=request.product_type,
                view=request.view,
                mode=request.mode.value if request.mode else None,
                retry=request.options.retry_count,
                enhance_prompt=request.options.enhance_prompt,
                **{f"has_{name}": present for name, present in request.present_images().items()},
            )
            assembly = self.assembler.assemble(request, prompt, cancel)
            logger.info("Attempting generation with prompt: %s", truncate(assembly.prompt))
            fallback_used = False
            try:
                url, result = self._attempt(assembly, model, request, cancel)
            except NoImageReturned as refusal:
                if not request.options.fallback_enabled:
                    raise FatalError("Model returned text instead of an image", causes=(refusal,)) from refusal
                logger.warning("Original prompt was blocked. Trying fallback prompt.")
                assembly = self.assembler.assemble_fallback(assembly, self._fallback_prompt(request))
                try:
                    url, result = self._attempt(assembly, model, request, cancel)
                except GenerationCancelled:
                    raise
                except Exception as exc:
                    raise FatalError(
                        "Failed to generate image with both original and fallback prompts",
                        causes=(refusal, exc),
                    ) from exc
                fallback_used = True
        except (InputError, GenerationCancelled, FatalError) as exc:
            op.set_error(exc)
            op.complete()
            raise
        except Exception as exc:
            op.set_error(exc)
            op.complete()
            raise FatalError(f"Failed to generate image: {exc}", causes=(exc,)) from exc

        parsed = split_data_uri(url)
        mime_type = parsed[0] if parsed else "image/png"
        image = GeneratedImage(
            url=url,
            mime_type=mime_type,
            prompt=assembly.prompt,
            fallback_used=fallback_used,
            metadata=GenerationMetadata(
                view=request.view,
                style=request.style,
                generation_time_ms=int((time.monotonic() - started) * 1000),
                model=result.model,
                attempts=result.attempts,
            ),
        )
        op.set_output(
            images=[truncate(url)],
            estimated_cost=self.config.estimated_cost,
            fallback_used=fallback_used,
            model=result.model,
            attempts=result.attempts,
        )
        op.complete()
        return image

    def _fallback_prompt(self, request: GenerationRequest) -> str:
        if request.product_type:
            return fallback_prompt(request.product_type, request.view, request.style)
        return generic_fallback_prompt()

    def _fan_out(
        self,
        jobs: Sequence[Tuple[str, GenerationRequest]],
        cancel: Optional[CancelToken],
        kind: str,
    ) -> Dict[str, GeneratedImage]:
        if not jobs:
            return {}
        workers = max(1, min(self.config.max_workers, len(jobs)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"{kind}-batch") as pool:
            futures = [(key, pool.submit(self.generate_image, request, cancel, key)) for key, request in jobs]
            results: Dict[str, GeneratedImage] = {}
            for key, future in futures:
                try:
                    results[key] = future.result()
                except Exception:
                    logger.exception("Failed to generate %s image %r", kind, key)
        return results

    def generate_product_views(
        self,
        product_description: str,
        views: Iterable[str] = ("front", "back"),
        style: str = "photorealistic",
        cancel: Optional[CancelToken] = None,
    ) -> Dict[str, GeneratedImage]:
        jobs = [
            (
                view,
                GenerationRequest(
                    prompt="",
                    product_type=product_description,
                    view=view,
                    style=style,
                    options=GenerationOptions(enhance_prompt=True, fallback_enabled=True),
                ),
            )
            for view in dict.fromkeys(views)
        ]
        return self._fan_out(jobs, cancel, "view")

    def tech_pack_request(self, source: TechPackSource, image_type: str) -> GenerationRequest:
        if image_type not in TECH_PACK_IMAGE_TYPES:
            raise InputError(f"Unknown tech pack image type: {image_type}")
        product = source.product_name or "garment"
        extra = {"DETAIL": DETAIL_FOCUS} if image_type == "detail" else None
        return GenerationRequest(
            prompt=build_prompt_from_template(product, image_type, "technical", extra),
            reference_image=source.reference_image,
            product_type=product,
            style=_tech_pack_style(image_type),
            options=GenerationOptions(retry_count=3, enhance_prompt=True, fallback_enabled=True),
        )

    def generate_tech_pack_image(
        self,
        source: TechPackSource,
        image_type: str,
        cancel: Optional[CancelToken] = None,
    ) -> GeneratedImage:
        return self.generate_image(self.tech_pack_request(source, image_type), cancel)

    def generate_all_tech_pack_images(
        self,
        source: TechPackSource,
        image_types: Iterable[str] = TECH_PACK_IMAGE_TYPES,
        cancel: Optional[CancelToken] = None,
    ) -> Dict[str, GeneratedImage]:
        jobs = []
        for image_type in dict.fromkeys(image_types):
            try:
                jobs.append((image_type, self.tech_pack_request(source, image_type)))
            except InputError:
                logger.exception("Skipping tech pack image %r", image_type)
        return self._fan_out(jobs, cancel, "tech-pack")

    def health_check(self) -> bool:
        try:
            result = self.orchestrator.call(
                [TextPart(HEALTH_CHECK_PROMPT)],
                self.config.model,
                GenerationConfig(temperature=self.config.temperature),
                max_retries=1,
            )
        except Exception:
            logger.exception("Generation service health check failed")
            return False
        candidates = list(result.response.candidates or ())
        return bool(candidates and candidates[0].parts)
