"""Tests for the enhancement prompt builder."""

from scanreport.llm.prompts import build_enhancement_prompt, is_structured_language

_RAW = "Mr Dupont arrived late.\n\nDrove  well; no  faults"


class TestIsStructuredLanguage:
    def test_matches_case_insensitively(self) -> None:
        assert is_structured_language("french")
        assert is_structured_language("French (Canada)")
        assert is_structured_language("Français")
        assert not is_structured_language("english")

    def test_custom_locales(self) -> None:
        assert is_structured_language("english", ["english"])
        assert not is_structured_language("french", ["english"])


class TestBuildEnhancementPrompt:
    """Tests for build_enhancement_prompt."""

    def test_raw_text_embedded_verbatim(self) -> None:
        prompt = build_enhancement_prompt(_RAW, "english", "general")
        assert f"Here's the raw text:\n---\n{_RAW}\n---" in prompt

    def test_header_fields(self) -> None:
        prompt = build_enhancement_prompt(_RAW, "english", "evaluation")
        assert "Language: english\n" in prompt
        assert "Report Type: evaluation\n" in prompt

    def test_generic_mode_for_other_languages(self) -> None:
        prompt = build_enhancement_prompt(_RAW, "english", "general")
        assert "1. Correct any spelling or grammar errors" in prompt
        assert "6. Use professional language suitable for a formal report" in prompt
        assert "Rapport d'Évaluation" not in prompt
        assert "Salmouni" not in prompt

    def test_structured_mode_for_french(self) -> None:
        prompt = build_enhancement_prompt(_RAW, "french", "evaluation")
        assert "Contexte de l'Évaluation" in prompt
        assert "8. Evaluator name at the end" in prompt
        assert "Évaluateur : Richard Ouimet" in prompt
        assert "never copy" in prompt
        assert "1. Correct any spelling or grammar errors" not in prompt

    def test_example_follows_raw_text(self) -> None:
        prompt = build_enhancement_prompt(_RAW, "français", "evaluation")
        assert prompt.index(_RAW) < prompt.index("Salmouni")

    def test_empty_language_defaults_to_french(self) -> None:
        prompt = build_enhancement_prompt(_RAW, "", "general")
        assert "Language: french\n" in prompt
        assert "Rapport d'Évaluation" in prompt

    def test_additional_instructions_included_verbatim(self) -> None:
        prompt = build_enhancement_prompt(_RAW, "english", "general", "Keep it under 200 words")
        assert "Additional Instructions: Keep it under 200 words" in prompt

    def test_no_additional_instructions_line_when_empty(self) -> None:
        prompt = build_enhancement_prompt(_RAW, "english", "general")
        assert "Additional Instructions" not in prompt

    def test_closing_instruction(self) -> None:
        prompt = build_enhancement_prompt(_RAW, "english", "general")
        assert prompt.rstrip().endswith(
            "Return the enhanced text in a clean, well-structured format "
            "with clear section headings."
        )

    def test_deterministic(self) -> None:
        first = build_enhancement_prompt(_RAW, "french", "general", "x")
        assert first == build_enhancement_prompt(_RAW, "french", "general", "x")

    def test_custom_structured_locales(self) -> None:
        prompt = build_enhancement_prompt(_RAW, "english", "general", structured_locales=["english"])
        assert "Rapport d'Évaluation" in prompt
