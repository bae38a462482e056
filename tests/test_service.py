import base64
import random
import unittest
from unittest import mock

from fakes import (
    REFERENCE_URI,
    SECONDARY_URI,
    ScriptedTransport,
    image_response,
    noise_png,
    part_kinds,
    prompt_dependent,
    text_response,
)

from product_image_api import GenerationOptions, GenerationRequest, ProductImageService, TechPackSource
from product_image_api.core.config import ServiceConfig, load_config
from product_image_api.core.contracts import TECH_PACK_IMAGE_TYPES
from product_image_api.core.errors import (
    FatalError,
    GenerationCancelled,
    InputError,
    NoImageReturned,
    RetriesExhausted,
    TransientTransportError,
)
from product_image_api.core.normalizer import ImageNormalizer
from product_image_api.core.prompts import fallback_prompt

FAST = ServiceConfig(model="main-model", fallback_model="backup-model", base_delay=0.0, max_jitter=0.0)


def _service(transport, **kwargs):
    return ProductImageService(transport, FAST, rng=random.Random(0), **kwargs)


class TestGenerateImage(unittest.TestCase):
    def test_success_populates_metadata(self) -> None:
        transport = ScriptedTransport(image_response(b"jpeg-bytes", "image/jpeg"))
        request = GenerationRequest(prompt="A red jacket", view="front", style="photorealistic")
        image = _service(transport).generate_image(request)
        self.assertEqual(image.url, "data:image/jpeg;base64," + base64.b64encode(b"jpeg-bytes").decode("ascii"))
        self.assertEqual(image.mime_type, "image/jpeg")
        self.assertFalse(image.fallback_used)
        self.assertEqual(image.metadata.view, "front")
        self.assertEqual(image.metadata.style, "photorealistic")
        self.assertEqual(image.metadata.model, "main-model")
        self.assertEqual(image.metadata.attempts, 1)
        self.assertGreaterEqual(image.metadata.generation_time_ms, 0)
        self.assertTrue(image.prompt.startswith("[Product Design Image Generation]"))

    def test_refusal_then_fallback_success(self) -> None:
        transport = ScriptedTransport(text_response("I can't draw that."), image_response())
        request = GenerationRequest(
            prompt="CRITICAL REVISION INSTRUCTION: add the logo",
            reference_image=REFERENCE_URI,
            product_type="jacket",
            view="back",
            style="photorealistic",
        )
        image = _service(transport).generate_image(request)
        self.assertEqual(len(transport.calls), 2)
        self.assertTrue(image.fallback_used)
        self.assertEqual(image.prompt, fallback_prompt("jacket", "back", "photorealistic"))
        fallback_parts = transport.calls[1].parts
        self.assertEqual(part_kinds(fallback_parts), ["image", "text"])
        self.assertEqual(fallback_parts[1].text, image.prompt)

    def test_refusal_without_fallback(self) -> None:
        transport = ScriptedTransport(text_response("no"))
        request = GenerationRequest(prompt="A jacket", options={"fallback_enabled": False})
        with self.assertRaises(FatalError) as ctx:
            _service(transport).generate_image(request)
        self.assertEqual(len(transport.calls), 1)
        self.assertIsInstance(ctx.exception.causes[0], NoImageReturned)
        self.assertIn("no", ctx.exception.causes[0].text)

    def test_refusal_on_both_prompts_keeps_both_causes(self) -> None:
        transport = ScriptedTransport(text_response("first refusal"), text_response("second refusal"))
        with self.assertRaises(FatalError) as ctx:
            _service(transport).generate_image(GenerationRequest(prompt="A jacket"))
        self.assertEqual(len(transport.calls), 2)
        self.assertEqual(len(ctx.exception.causes), 2)
        self.assertIn("first refusal", str(ctx.exception))
        self.assertIn("second refusal", str(ctx.exception))

    def test_generic_fallback_without_product_type(self) -> None:
        transport = ScriptedTransport(text_response("no"), image_response())
        image = _service(transport).generate_image(GenerationRequest(prompt="A jacket"))
        self.assertTrue(image.fallback_used)
        self.assertIn("Generate a simple product image.", image.prompt)

    def test_transient_failures_exhaust_retries(self) -> None:
        transport = ScriptedTransport(TransientTransportError("busy", code=503))
        with self.assertRaises(FatalError) as ctx:
            _service(transport).generate_image(GenerationRequest(prompt="A jacket"))
        self.assertIsInstance(ctx.exception, RetriesExhausted)
        self.assertEqual(len(transport.calls), 3)

    def test_transient_then_success_uses_fallback_model(self) -> None:
        transport = ScriptedTransport(
            TransientTransportError("busy", code=503),
            TransientTransportError("busy", code=503),
            image_response(),
        )
        image = _service(transport).generate_image(GenerationRequest(prompt="A jacket"))
        self.assertEqual(image.metadata.model, "backup-model")
        self.assertEqual(image.metadata.attempts, 3)
        self.assertFalse(image.fallback_used)

    def test_retry_option_limits_attempts(self) -> None:
        transport = ScriptedTransport(TransientTransportError("busy", code=429))
        with self.assertRaises(FatalError):
            _service(transport).generate_image(GenerationRequest(prompt="A jacket", options={"retry": 1}))
        self.assertEqual(len(transport.calls), 1)

    def test_model_option(self) -> None:
        transport = ScriptedTransport(image_response())
        request = GenerationRequest(prompt="A jacket", options=GenerationOptions(model="custom-model"))
        image = _service(transport).generate_image(request)
        self.assertEqual(transport.calls[0].model, "custom-model")
        self.assertEqual(image.metadata.model, "custom-model")

    def test_dangling_secondary_is_rejected_before_any_call(self) -> None:
        transport = ScriptedTransport(image_response())
        request = GenerationRequest(prompt="A jacket", additional_reference_image=SECONDARY_URI)
        with self.assertRaises(InputError):
            _service(transport).generate_image(request)
        self.assertEqual(transport.calls, [])

    def test_empty_prompt_requires_template_fields(self) -> None:
        transport = ScriptedTransport(image_response())
        with self.assertRaises(InputError):
            _service(transport).generate_image(GenerationRequest(prompt=""))
        self.assertEqual(transport.calls, [])

    def test_bad_aspect_ratio(self) -> None:
        with self.assertRaises(InputError):
            _service(ScriptedTransport(image_response())).generate_image(
                GenerationRequest(prompt="A jacket", aspect_ratio="5:7")
            )

    def test_unknown_option_key(self) -> None:
        with self.assertRaises(InputError):
            GenerationRequest(prompt="A jacket", options={"retries": 2})

    def test_template_prompt_without_enhance(self) -> None:
        transport = ScriptedTransport(image_response())
        request = GenerationRequest(
            product_type="canvas tote", view="side", options={"enhance_prompt": False}
        )
        image = _service(transport).generate_image(request)
        self.assertTrue(image.prompt.startswith("Commercial product photography of canvas tote, side profile view."))
        self.assertNotIn("Technical Requirements", image.prompt)

    def test_aspect_ratio_reaches_transport(self) -> None:
        transport = ScriptedTransport(image_response())
        _service(transport).generate_image(GenerationRequest(prompt="A jacket", aspect_ratio="16:9"))
        self.assertEqual(transport.calls[0].config.aspect_ratio, "16:9")
        self.assertEqual(transport.calls[0].config.temperature, 0.1)


def _http_response(content: bytes, content_type: str):
    response = mock.Mock()
    response.status_code = 200
    response.reason = "OK"
    response.content = content
    response.headers = {"content-type": content_type}
    return response


class TestFallbackReusesImages(unittest.TestCase):
    LOGO_PNG = noise_png(1024, 512)

    def _service_with_session(self, transport):
        session = mock.Mock()

        def _get(url, timeout):
            if url.endswith("logo.png"):
                return _http_response(self.LOGO_PNG, "image/png")
            if url.endswith(".jpg"):
                return _http_response(b"jpeg-bytes", "image/jpeg")
            return _http_response(b"png-bytes", "image/png")

        session.get.side_effect = _get
        normalizer = ImageNormalizer(session=session)
        return _service(transport, normalizer=normalizer), session

    def test_url_reference_is_fetched_once(self) -> None:
        transport = ScriptedTransport(text_response("no"), image_response())
        service, session = self._service_with_session(transport)
        image = service.generate_image(
            GenerationRequest(prompt="Make it red", reference_image="https://cdn.example.com/front.png")
        )
        self.assertTrue(image.fallback_used)
        self.assertEqual(session.get.call_count, 1)
        self.assertIs(transport.calls[1].parts[0].image, transport.calls[0].parts[0].image)

    def test_fallback_with_every_image_sends_primary_and_logo_only(self) -> None:
        transport = ScriptedTransport(text_response("no"), image_response())
        service, session = self._service_with_session(transport)
        request = GenerationRequest(
            prompt="Make the jacket red",
            reference_image="https://cdn.example.com/front.png",
            additional_reference_image="https://cdn.example.com/back.jpg",
            previous_revision_image="https://cdn.example.com/previous.png",
            logo_image="https://cdn.example.com/logo.png",
            character_image="https://cdn.example.com/model.jpg",
            product_type="jacket",
            view="front",
        )
        image = service.generate_image(request)

        self.assertEqual(session.get.call_count, 5)
        first_parts = transport.calls[0].parts
        self.assertEqual(len(first_parts), 10)
        logo_part = first_parts[6]
        self.assertEqual(logo_part.image.mime_type, "image/jpeg")

        fallback_parts = transport.calls[1].parts
        self.assertEqual(part_kinds(fallback_parts), ["image", "image", "text"])
        self.assertIs(fallback_parts[0].image, first_parts[0].image)
        self.assertIs(fallback_parts[1].image, logo_part.image)
        self.assertEqual(fallback_parts[2].text, fallback_prompt("jacket", "front", None))
        self.assertEqual(image.prompt, fallback_parts[2].text)

    def test_fallback_failure_is_fatal_with_both_causes(self) -> None:
        transport = ScriptedTransport(text_response("no"), InputError("payload rejected"))
        service, _ = self._service_with_session(transport)
        with self.assertRaises(FatalError) as ctx:
            service.generate_image(
                GenerationRequest(prompt="Make it red", reference_image="https://cdn.example.com/front.png")
            )
        refusal, second = ctx.exception.causes
        self.assertIsInstance(refusal, NoImageReturned)
        self.assertIsInstance(second, InputError)

    def test_cancel_during_fallback_is_not_wrapped(self) -> None:
        transport = ScriptedTransport(text_response("no"), GenerationCancelled("stop"))
        with self.assertRaises(GenerationCancelled):
            _service(transport).generate_image(GenerationRequest(prompt="A jacket"))


class TestTelemetry(unittest.TestCase):
    def test_sink_receives_sanitized_record(self) -> None:
        records = []
        transport = ScriptedTransport(image_response(b"x" * 500))
        request = GenerationRequest(prompt="Make it red", reference_image=REFERENCE_URI, view="front")
        _service(transport, telemetry_sink=records.append).generate_image(request)
        self.assertEqual(len(records), 1)
        record = records[0]
        self.assertEqual(record["function_name"], "generate_image")
        self.assertEqual(record["performance"]["status"], "success")
        self.assertTrue(record["input"]["has_reference_image"])
        self.assertFalse(record["input"]["has_logo_image"])
        self.assertEqual(record["output"]["estimated_cost"], 0.002)
        self.assertLessEqual(len(record["output"]["images"][0]), 103)
        self.assertEqual(record["context"]["label"], "front")

    def test_batch_records_are_labelled_by_key(self) -> None:
        records = []
        transport = ScriptedTransport(image_response())
        service = _service(transport, telemetry_sink=records.append)
        service.generate_all_tech_pack_images(TechPackSource(product_name="parka"), ["callout", "scale"])
        self.assertEqual(sorted(record["context"]["label"] for record in records), ["callout", "scale"])

    def test_failure_is_recorded(self) -> None:
        records = []
        transport = ScriptedTransport(text_response("no"))
        request = GenerationRequest(prompt="A jacket", options={"fallback_enabled": False})
        with self.assertRaises(FatalError):
            _service(transport, telemetry_sink=records.append).generate_image(request)
        self.assertEqual(records[0]["performance"]["status"], "error")
        self.assertIn("error", records[0]["output"])

    def test_failing_sink_does_not_break_generation(self) -> None:
        def _sink(record):
            raise RuntimeError("sink down")

        transport = ScriptedTransport(image_response())
        with self.assertLogs("product_image_api.core.telemetry", level="ERROR"):
            image = _service(transport, telemetry_sink=_sink).generate_image(GenerationRequest(prompt="A jacket"))
        self.assertTrue(image.url.startswith("data:image/png;base64,"))


class TestBatchHelpers(unittest.TestCase):
    def test_views_omit_failures(self) -> None:
        def _rule(text):
            if "back view" in text:
                return TransientTransportError("busy", code=503)
            return image_response()

        transport = ScriptedTransport(prompt_dependent(_rule))
        results = _service(transport).generate_product_views("leather boot", ["front", "back", "side"])
        self.assertEqual(set(results), {"front", "side"})
        self.assertEqual(results["side"].metadata.view, "side")

    def test_views_default_to_front_and_back(self) -> None:
        transport = ScriptedTransport(image_response())
        results = _service(transport).generate_product_views("leather boot")
        self.assertEqual(set(results), {"front", "back"})
        self.assertEqual(len(transport.calls), 2)

    def test_tech_pack_set(self) -> None:
        transport = ScriptedTransport(image_response())
        source = TechPackSource(product_name="denim jacket", reference_image=REFERENCE_URI)
        results = _service(transport).generate_all_tech_pack_images(source)
        self.assertEqual(set(results), set(TECH_PACK_IMAGE_TYPES))
        self.assertEqual(len(transport.calls), len(TECH_PACK_IMAGE_TYPES))
        self.assertEqual(results["vector"].metadata.style, "vector")
        self.assertEqual(results["detail"].metadata.style, "detail")
        self.assertEqual(results["scale"].metadata.style, "technical")

    def test_tech_pack_detail_prompt(self) -> None:
        service = _service(ScriptedTransport(image_response()))
        request = service.tech_pack_request(TechPackSource(product_name="denim jacket"), "detail")
        self.assertIn("construction details and hardware on denim jacket", request.prompt)

    def test_unknown_tech_pack_type(self) -> None:
        service = _service(ScriptedTransport(image_response()))
        with self.assertRaises(InputError):
            service.generate_tech_pack_image(TechPackSource(), "hologram")

    def test_unknown_types_are_skipped_in_batch(self) -> None:
        transport = ScriptedTransport(image_response())
        results = _service(transport).generate_all_tech_pack_images(TechPackSource(), ["front", "hologram"])
        self.assertEqual(set(results), {"front"})


class TestHealthAndConfig(unittest.TestCase):
    def test_health_check(self) -> None:
        self.assertTrue(_service(ScriptedTransport(image_response())).health_check())
        self.assertTrue(_service(ScriptedTransport(text_response("circle"))).health_check())

    def test_health_check_failure(self) -> None:
        transport = ScriptedTransport(TransientTransportError("busy", code=503))
        self.assertFalse(_service(transport).health_check())
        self.assertEqual(len(transport.calls), 1)

    def test_load_config_from_mapping(self) -> None:
        config = load_config(
            {
                "GOOGLE_API_KEY": "key",
                "PRODUCT_IMAGE_MODEL": "m1",
                "PRODUCT_IMAGE_TEMPERATURE": "0.4",
                "PRODUCT_IMAGE_MAX_WORKERS": "2",
            }
        )
        self.assertEqual(config.api_key, "key")
        self.assertEqual(config.model, "m1")
        self.assertEqual(config.temperature, 0.4)
        self.assertEqual(config.max_workers, 2)
        self.assertEqual(config.fetch_timeout, 30.0)

    def test_load_config_rejects_bad_numbers(self) -> None:
        with self.assertRaises(ValueError):
            load_config({"PRODUCT_IMAGE_MAX_WORKERS": "zero"})


if __name__ == "__main__":
    unittest.main()
