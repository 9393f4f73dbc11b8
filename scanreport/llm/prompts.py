"""Prompt construction for the report-restructuring model.

French reports follow a fixed evaluation template and come with a
worked example of its shape. Every other language gets generic
formatting instructions.
"""

from collections.abc import Sequence

DEFAULT_LANGUAGE = "french"
DEFAULT_STRUCTURED_LOCALES = ("french", "français")

_STRUCTURED_INSTRUCTIONS = """
Please format the report following this French report structure:

1. "Rapport d'Évaluation" as the main title
2. Basic information at the top (name, date, etc.)
3. "Contexte de l'Évaluation" section explaining the purpose of the evaluation
4. "Observations Initiales" section with initial observations
5. "Observations en Conduite" section with detailed observations, which may include subsections like "Maîtrise Technique"
6. "Conclusion et Recommandations" section summarizing findings
7. "Points à souligner" section with key highlights
8. Evaluator name at the end

Here is an example of the structure to follow. It only illustrates the layout: never copy its names, dates or observations into the report, use exclusively the facts from the raw text above.

<example>
Rapport d'Évaluation

Nom du chauffeur : Mme Salmouni Ouafae
Date : 10 avril 2025

Madame est arrivée à l'heure et vêtue d'une façon appropriée dès le départ.
Madame est très à l'aise au volant, professionnelle.
Bonne attitude. Peu de fautes de conduite.
Excellente. Rien à dire de négatif.

Contexte de l'Évaluation

Une évaluation des compétences de conduite a été réalisée pour Mme Salmouni Ouafae
afin de vérifier ses aptitudes générales, sa maîtrise du véhicule et sa conformité aux
exigences opérationnelles.

Observations Initiales

Mme Salmouni s'est présentée à l'heure prévue et était vêtue de manière appropriée. Elle a
démontré dès le départ une attitude professionnelle et une grande aisance dans son rôle.

Observations en Conduite

Maîtrise Technique

Mme Salmouni a parfaitement manœuvré le véhicule avec assurance.
Elle a effectué toutes les sorties et entrées de cour de manière fluide et sécuritaire.
Les virages, les arrêts et les reprises ont été réalisés avec précision.
Les manœuvres de recul ont été bien maîtrisées, sans difficulté apparente.

Conclusion et Recommandations

Mme Salmouni démontre toutes les compétences nécessaires pour assurer ce travail de
manière sécuritaire et efficace. Son professionnalisme, sa maîtrise technique et son
comportement en conduite sont exemplaires.

Points à souligner

Aucune recommandation particulière, le niveau de compétence est excellent.
Peut être recommandée sans réserve pour le poste.

Évaluateur : Richard Ouimet
</example>

Do not reproduce the example content. Ensure the report is written in formal, professional French with proper grammar and vocabulary. Adapt the structure to fit the content of the raw text while maintaining this format.
"""

_GENERIC_INSTRUCTIONS = """
Please:
1. Correct any spelling or grammar errors
2. Organize the content into logical sections with headings
3. Format the text professionally
4. Maintain all factual information from the original text
5. Add appropriate transitions between sections
6. Use professional language suitable for a formal report
"""

_CLOSING = "\nReturn the enhanced text in a clean, well-structured format with clear section headings.\n"


def is_structured_language(
    language: str, structured_locales: Sequence[str] = DEFAULT_STRUCTURED_LOCALES
) -> bool:
    """Whether ``language`` selects the fixed French evaluation template."""
    lowered = language.lower()
    return any(locale.lower() in lowered for locale in structured_locales)


def build_enhancement_prompt(
    text: str,
    language: str,
    report_type: str,
    additional_instructions: str = "",
    structured_locales: Sequence[str] = DEFAULT_STRUCTURED_LOCALES,
) -> str:
    """Build the user prompt for restructuring OCR text into a report.

    The raw text is embedded verbatim between ``---`` delimiters. The
    function is pure: identical arguments give an identical prompt.

    Args:
        text: Raw OCR text.
        language: Target language name; empty means French.
        report_type: Free-form report type label.
        additional_instructions: Extra user instructions, included verbatim.
        structured_locales: Language substrings that select the template mode.

    Returns:
        The complete prompt string.
    """
    language = language or DEFAULT_LANGUAGE
    extra = f"Additional Instructions: {additional_instructions}" if additional_instructions else ""

    prompt = (
        "\nI need you to transform the following raw text (extracted from OCR) "
        "into a well-structured, professional report.\n\n"
        f"Language: {language}\n"
        f"Report Type: {report_type}\n"
        f"{extra}\n\n"
        "Here's the raw text:\n"
        "---\n"
        f"{text}\n"
        "---\n\n"
    )

    if is_structured_language(language, structured_locales):
        prompt += _STRUCTURED_INSTRUCTIONS
    else:
        prompt += _GENERIC_INSTRUCTIONS

    return prompt + _CLOSING
