import unittest
from unittest import mock

from fakes import (
    CHARACTER_URI,
    LOGO_URI,
    PREVIOUS_URI,
    REFERENCE_URI,
    SECONDARY_URI,
    part_kinds,
    texts,
)

from product_image_api.core import assembler
from product_image_api.core.assembler import PartAssembler, assemble_parts, classify_prompt, resolve_prompt_mode
from product_image_api.core.contracts import GenerationRequest, ImagePart, PromptMode, TextPart
from product_image_api.core.normalizer import ImageNormalizer

TRANSFORM_PROMPT = "IMAGE TRANSFORMATION TASK: show the back view of this jacket."
REVISION_PROMPT = "CRITICAL REVISION INSTRUCTION: make the zipper silver."


class TestPromptMode(unittest.TestCase):
    def test_classify_markers(self) -> None:
        self.assertIs(classify_prompt(TRANSFORM_PROMPT), PromptMode.TRANSFORMATION)
        self.assertIs(classify_prompt(REVISION_PROMPT), PromptMode.REVISION)
        self.assertIs(
            classify_prompt("MANDATORY PRESERVATION RULES: keep the collar"), PromptMode.REVISION
        )
        self.assertIs(classify_prompt("A red jacket"), PromptMode.PLAIN)

    def test_transformation_wins_over_revision_markers(self) -> None:
        prompt = f"{TRANSFORM_PROMPT}\nCRITICAL REVISION INSTRUCTION: none"
        self.assertIs(classify_prompt(prompt), PromptMode.TRANSFORMATION)

    def test_no_reference_is_always_plain(self) -> None:
        self.assertIs(resolve_prompt_mode(TRANSFORM_PROMPT, False), PromptMode.PLAIN)
        self.assertIs(
            resolve_prompt_mode("anything", False, PromptMode.REVISION), PromptMode.PLAIN
        )

    def test_explicit_mode_overrides_markers(self) -> None:
        self.assertIs(
            resolve_prompt_mode(TRANSFORM_PROMPT, True, PromptMode.PLAIN), PromptMode.PLAIN
        )
        self.assertIs(
            resolve_prompt_mode("make it blue", True, PromptMode.REVISION), PromptMode.REVISION
        )


class TestPartAssembler(unittest.TestCase):
    def setUp(self) -> None:
        self.assembler = PartAssembler(ImageNormalizer())

    def test_transformation_order_with_secondary(self) -> None:
        request = GenerationRequest(
            prompt=TRANSFORM_PROMPT,
            reference_image=REFERENCE_URI,
            additional_reference_image=SECONDARY_URI,
        )
        assembly = self.assembler.assemble(request, TRANSFORM_PROMPT)
        parts = assembly.parts
        self.assertIs(assembly.mode, PromptMode.TRANSFORMATION)
        self.assertEqual(part_kinds(parts), ["text", "image", "text", "image", "text", "text", "text"])
        self.assertEqual(parts[0].text, assembler.PRIMARY_HEADER)
        self.assertEqual(parts[1].image.mime_type, "image/png")
        self.assertEqual(parts[2].text, assembler.PRIMARY_LABEL)
        self.assertEqual(parts[3].image.mime_type, "image/jpeg")
        self.assertEqual(parts[4].text, assembler.SECONDARY_LABEL)
        self.assertEqual(parts[5].text, TRANSFORM_PROMPT)
        self.assertEqual(parts[6].text, assembler.TRANSFORMATION_REMINDER)

    def test_transformation_without_secondary(self) -> None:
        request = GenerationRequest(prompt=TRANSFORM_PROMPT, reference_image=REFERENCE_URI)
        parts = assemble_parts(request, TRANSFORM_PROMPT)
        self.assertEqual(part_kinds(parts), ["text", "image", "text", "text", "text"])
        self.assertEqual(texts(parts)[-2:], [TRANSFORM_PROMPT, assembler.TRANSFORMATION_REMINDER])

    def test_revision_leads_with_instruction(self) -> None:
        request = GenerationRequest(
            prompt=REVISION_PROMPT,
            reference_image=REFERENCE_URI,
            additional_reference_image=SECONDARY_URI,
        )
        assembly = self.assembler.assemble(request, REVISION_PROMPT)
        parts = assembly.parts
        self.assertIs(assembly.mode, PromptMode.REVISION)
        self.assertEqual(part_kinds(parts), ["text", "image", "text", "image", "text"])
        self.assertEqual(parts[0].text, REVISION_PROMPT)
        self.assertEqual(parts[2].text, assembler.REVISION_REMINDER)
        self.assertEqual(parts[4].text, assembler.SECONDARY_CONSISTENCY)

    def test_plain_with_reference_adds_clause(self) -> None:
        request = GenerationRequest(prompt="Make the jacket red", reference_image=REFERENCE_URI)
        assembly = self.assembler.assemble(request, "Make the jacket red")
        self.assertEqual(part_kinds(assembly.parts), ["image", "text"])
        text = assembly.parts[1].text
        self.assertTrue(text.startswith("REFERENCE IMAGE PROVIDED"))
        self.assertIn("Make the jacket red", text)
        self.assertEqual(assembly.prompt, text)

    def test_plain_prompt_mentioning_reference_is_unchanged(self) -> None:
        prompt = "Use the Reference to recolor the jacket"
        request = GenerationRequest(prompt=prompt, reference_image=REFERENCE_URI)
        parts = self.assembler.assemble(request, prompt).parts
        self.assertEqual(parts[1].text, prompt)

    def test_no_reference_is_single_text(self) -> None:
        request = GenerationRequest(prompt=TRANSFORM_PROMPT)
        assembly = self.assembler.assemble(request, TRANSFORM_PROMPT)
        self.assertIs(assembly.mode, PromptMode.PLAIN)
        self.assertEqual(assembly.parts, [TextPart(TRANSFORM_PROMPT)])

    def test_optional_images_each_get_one_note(self) -> None:
        request = GenerationRequest(
            prompt="Make it blue",
            reference_image=REFERENCE_URI,
            previous_revision_image=PREVIOUS_URI,
            logo_image=LOGO_URI,
            character_image=CHARACTER_URI,
        )
        parts = self.assembler.assemble(request, "Make it blue").parts
        self.assertEqual(part_kinds(parts), ["image", "text", "image", "text", "image", "text", "image", "text"])
        self.assertEqual(parts[2].image.mime_type, "image/webp")
        self.assertEqual(parts[3].text, assembler.PREVIOUS_REVISION_NOTE)
        self.assertEqual(parts[5].text, assembler.LOGO_NOTE)
        self.assertEqual(parts[6].image.mime_type, "image/jpeg")
        self.assertEqual(parts[7].text, assembler.CHARACTER_NOTE)

    def test_logo_without_reference(self) -> None:
        request = GenerationRequest(prompt="A tote bag", logo_image=LOGO_URI)
        parts = self.assembler.assemble(request, "A tote bag").parts
        self.assertEqual(part_kinds(parts), ["text", "image", "text"])
        self.assertEqual(parts[0].text, "A tote bag")
        self.assertEqual(parts[2].text, assembler.LOGO_NOTE)

    def test_absent_images_add_no_notes(self) -> None:
        request = GenerationRequest(prompt=REVISION_PROMPT, reference_image=REFERENCE_URI, logo_image="")
        joined = "\n".join(texts(self.assembler.assemble(request, REVISION_PROMPT).parts))
        for note in (assembler.LOGO_NOTE, assembler.CHARACTER_NOTE, assembler.PREVIOUS_REVISION_NOTE):
            self.assertNotIn(note, joined)

    def test_explicit_mode_on_request(self) -> None:
        request = GenerationRequest(
            prompt="show the side", reference_image=REFERENCE_URI, mode="transformation"
        )
        assembly = self.assembler.assemble(request, "show the side")
        self.assertIs(assembly.mode, PromptMode.TRANSFORMATION)
        self.assertEqual(assembly.parts[0].text, assembler.PRIMARY_HEADER)

    def test_fallback_parts(self) -> None:
        request = GenerationRequest(
            prompt=REVISION_PROMPT,
            reference_image=REFERENCE_URI,
            additional_reference_image=SECONDARY_URI,
            logo_image=LOGO_URI,
            character_image=CHARACTER_URI,
        )
        first = self.assembler.assemble(request, REVISION_PROMPT)
        with mock.patch.object(self.assembler.normalizer, "normalize") as normalize, mock.patch.object(
            self.assembler.normalizer, "optimize_logo"
        ) as optimize_logo:
            assembly = self.assembler.assemble_fallback(first, "safe prompt")
        normalize.assert_not_called()
        optimize_logo.assert_not_called()
        self.assertIs(assembly.mode, PromptMode.PLAIN)
        self.assertEqual(part_kinds(assembly.parts), ["image", "image", "text"])
        self.assertIsInstance(assembly.parts[0], ImagePart)
        self.assertIs(assembly.parts[0].image, first.primary)
        self.assertIs(assembly.parts[1].image, first.logo)
        self.assertEqual(assembly.parts[0].image.mime_type, "image/png")
        self.assertEqual(assembly.parts[-1].text, "safe prompt")

    def test_fallback_without_images_is_prompt_only(self) -> None:
        first = self.assembler.assemble(GenerationRequest(prompt="A hat"), "A hat")
        self.assertIsNone(first.primary)
        self.assertIsNone(first.logo)
        self.assertEqual(self.assembler.assemble_fallback(first, "safe").parts, [TextPart("safe")])


if __name__ == "__main__":
    unittest.main()
