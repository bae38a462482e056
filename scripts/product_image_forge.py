#!/usr/bin/env python3
"""Generate product design images from the command line (Product Image Forge).

Usage:
  python scripts/product_image_forge.py --prompt "Make the jacket red" \
    --reference https://example.com/front.png --out outputs/product_image_forge
  python scripts/product_image_forge.py --product "denim jacket" --views front,back,side
  python scripts/product_image_forge.py --product "denim jacket" --tech-pack
  python scripts/product_image_forge.py --health

Notes:
- Loads .env from the nearest parent directory of this script.
- Writes one image and one JSON receipt per result.
"""

from __future__ import annotations

import argparse
import logging
import sys
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from product_image_api import (
    CancelToken,
    GeneratedImage,
    GenerationOptions,
    GenerationRequest,
    ProductImageService,
    PromptMode,
    TechPackSource,
)
from product_image_api.core.errors import GenerationError
from product_image_api.core.receipts import build_receipt, save_generated_image, write_receipt
from product_image_api.core.utils import ensure_out_dir, utc_timestamp

logger = logging.getLogger("product_image_forge")


def _find_repo_dotenv() -> Path | None:
    current = Path(__file__).resolve()
    for parent in (current.parent, *current.parents):
        dotenv_path = parent / ".env"
        if dotenv_path.exists():
            return dotenv_path
    return None


def _load_repo_dotenv() -> Path | None:
    dotenv_path = _find_repo_dotenv()
    if dotenv_path is not None:
        load_dotenv(dotenv_path=dotenv_path, override=False)
        return dotenv_path
    load_dotenv(override=False)
    return None


class TelemetryCollector:
    """Telemetry sink that keeps the latest record per label.

    Batch helpers call it from worker threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.records: Dict[str, Mapping[str, Any]] = {}

    def __call__(self, record: Mapping[str, Any]) -> None:
        label = record.get("context", {}).get("label") or "image"
        with self._lock:
            self.records[label] = record

    def get(self, label: str) -> Optional[Mapping[str, Any]]:
        with self._lock:
            return self.records.get(label)


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Product Image Forge: generate product design images.")
    parser.add_argument("--prompt", default="", help="Instruction text")
    parser.add_argument("--product", default=None, help="Product type/description for templates")
    parser.add_argument("--view", default=None, help="View for template prompts (front, back, side, ...)")
    parser.add_argument("--style", default=None, help="photorealistic, technical, vector or detail")
    parser.add_argument("--reference", default=None, help="Primary reference image (URL, data URI or base64)")
    parser.add_argument("--secondary", default=None, help="Secondary reference image (back view)")
    parser.add_argument("--previous", default=None, help="Previous revision image of this view")
    parser.add_argument("--logo", default=None, help="Brand logo image")
    parser.add_argument("--character", default=None, help="Character/model image")
    parser.add_argument(
        "--mode",
        default=None,
        choices=[mode.value for mode in PromptMode],
        help="Part composition policy (detected from the prompt when omitted)",
    )
    parser.add_argument("--aspect-ratio", default="1:1", help="Output aspect ratio (default: 1:1)")
    parser.add_argument("--model", default=None, help="Optional model override")
    parser.add_argument("--retries", type=int, default=3, help="Transport attempts per call (default: 3)")
    parser.add_argument("--no-fallback", action="store_true", help="Disable the safe-prompt fallback")
    parser.add_argument("--no-enhance", action="store_true", help="Send the prompt without boilerplate")
    parser.add_argument("--views", default=None, help="Comma separated views to generate as a batch")
    parser.add_argument("--tech-pack", action="store_true", help="Generate the full tech pack image set")
    parser.add_argument("--health", action="store_true", help="Run a health check and exit")
    parser.add_argument("--timeout", type=float, default=None, help="Abort after this many seconds")
    parser.add_argument(
        "--out",
        default="outputs/product_image_forge",
        help="Output directory (default: outputs/product_image_forge)",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def request_from_args(args: argparse.Namespace) -> GenerationRequest:
    return GenerationRequest(
        prompt=args.prompt or "",
        reference_image=args.reference,
        additional_reference_image=args.secondary,
        previous_revision_image=args.previous,
        logo_image=args.logo,
        character_image=args.character,
        product_type=args.product,
        view=args.view,
        style=args.style,
        aspect_ratio=args.aspect_ratio,
        mode=PromptMode(args.mode) if args.mode else None,
        options=GenerationOptions(
            retry_count=args.retries,
            fallback_enabled=not args.no_fallback,
            enhance_prompt=not args.no_enhance,
            model=args.model,
        ),
    )


def _save_results(
    out_dir: Path,
    results: Dict[str, GeneratedImage],
    requests_by_label: Dict[str, GenerationRequest],
    telemetry: TelemetryCollector,
) -> None:
    stamp = utc_timestamp()
    for label, image in results.items():
        image_path = save_generated_image(out_dir, label, image, stamp)
        receipt_path = out_dir / f"receipt-{label}-{stamp}.json"
        write_receipt(
            receipt_path,
            build_receipt(
                request=requests_by_label[label],
                image=image,
                image_path=image_path,
                receipt_path=receipt_path,
                telemetry=telemetry.get(label),
            ),
        )
        print(image_path)
        print(receipt_path)


def _run(args: argparse.Namespace) -> int:
    telemetry = TelemetryCollector()
    service = ProductImageService.from_env(telemetry_sink=telemetry)
    if args.health:
        healthy = service.health_check()
        print("healthy" if healthy else "unhealthy")
        return 0 if healthy else 1

    cancel = CancelToken(timeout=args.timeout) if args.timeout else None
    out_dir = ensure_out_dir(Path(args.out))

    if args.tech_pack:
        source = TechPackSource(product_name=args.product or "garment", reference_image=args.reference)
        results = service.generate_all_tech_pack_images(source, cancel=cancel)
        requests_by_label = {key: service.tech_pack_request(source, key) for key in results}
    elif args.views:
        if not args.product:
            raise SystemExit("--views requires --product")
        views = _split_list(args.views)
        results = service.generate_product_views(args.product, views, args.style or "photorealistic", cancel)
        requests_by_label = {
            view: GenerationRequest(product_type=args.product, view=view, style=args.style)
            for view in results
        }
    else:
        request = request_from_args(args)
        label = args.view or "image"
        results = {label: service.generate_image(request, cancel, label)}
        requests_by_label = {label: request}

    if not results:
        print("No images were generated.")
        return 1
    _save_results(out_dir, results, requests_by_label, telemetry)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    _load_repo_dotenv()
    try:
        return _run(args)
    except (GenerationError, RuntimeError) as exc:
        print(f"Generation failed: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nCancelled.")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
