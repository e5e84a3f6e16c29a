"""
Prompt builders for translation, review, scoring and image regeneration.

Every builder returns plain strings; the dispatcher, quality gate and image
pipeline decide how they are sent.
"""
import json
from typing import Dict, List, NamedTuple, Optional

from adlingo.config import DO_NOT_TRANSLATE, SOURCE_LANGUAGE
from adlingo.languages import get_language, localization_note
from adlingo.models import CorrectionInput, PreviousReview


class PromptPair(NamedTuple):
    """A pair of system and user prompts for one model request."""
    system: str
    user: str


# ============================================================================
# SHARED PROMPT SECTIONS
# ============================================================================

TRANSLATION_RULES = [
    "Use sentence case only, never title case. Only the first word and proper nouns are "
    "capitalised in headings, buttons and titles.",
    "Keep paragraphs and sentences short. Aim for max 2-3 sentences per paragraph.",
    "Never invent testimonials, statistics or medical claims that are not in the original.",
]


def format_rules() -> str:
    """Translation rules as a numbered list."""
    return "\n".join(f"{i + 1}. {rule}" for i, rule in enumerate(TRANSLATION_RULES))


def _protected_names(do_not_translate: Optional[List[str]] = None) -> str:
    names = do_not_translate if do_not_translate is not None else DO_NOT_TRANSLATE
    return ", ".join(names) if names else "(none)"


# ============================================================================
# BATCH TRANSLATION
# ============================================================================

def build_translation_prompt(
    unit_map: Dict[str, str],
    language_code: str,
    context: str = "",
    feedback: str = "",
    do_not_translate: Optional[List[str]] = None,
) -> PromptPair:
    """
    Build the prompt for one dispatch chunk.

    Args:
        unit_map: unit id -> source value for this chunk
        language_code: Target language code (sv, da, no, de...)
        context: Readable text of the whole page, for disambiguation only
        feedback: Issues reported by the previous review round
        do_not_translate: Protected brand names (config default when None)

    Returns:
        PromptPair with the system instructions and the JSON payload
    """
    language = get_language(language_code)
    localization = localization_note(language_code)
    localization_section = f"\n{localization}" if localization else ""

    system = f"""You are a senior native {language.label} copywriter and translator with a deep understanding of how people in the target market think, talk and buy (target audience ~35-65). Write simply, clearly and naturally. Always prioritise CLARITY.

TASK:
You receive a JSON object whose values are {SOURCE_LANGUAGE} texts from one marketing page. Translate and localise each value into {language.label} ({language.native_name}).
Return EXACTLY the same JSON structure with the same keys, only the values replaced by their translations.
The text must read as if it was originally written by a native speaker, not like a translation.

KEY PRINCIPLES:
1) Preserve meaning and intent 1:1, but rewrite where needed to sound natural.
2) Short sentences, simple words, clear rhythm. No unnecessary fancy words.
3) Avoid literal translations. Choose common, everyday words people actually use.
4) Keep the original tone (premium/warm/factual/reassuring/sales-focused).
5) Do not add new claims or facts. Do not remove important conditions. Do not change numbers, doses or prices, only format them locally.

FORMAT & TECHNIQUE (MUST BE FOLLOWED):
- Some values contain inline HTML (<strong>, <em>, <a href="...">, <br>...). Keep every tag, in the same order, with its attributes unchanged. Translate only the text between tags.
- Tokens like {{{{a12}}}} inside a value are placeholders: copy them unchanged.
- HTML comments (<!-- ... -->) must be copied unchanged.
- Do not touch variables ({{{{name}}}}, {{price}}, %), URLs, UTM parameters or product SKUs.
- Keep brand and product names unchanged: {_protected_names(do_not_translate)}

LOCALISATION:
- Currency, dates, measurements and decimals: use the {language.locale} standard.
- Address the reader informally with a warm, reassuring tone.{localization_section}

ADDITIONAL RULES:
{format_rules()}

OUTPUT:
Return ONLY valid JSON with exactly the same keys as the input and translated values.
No explanations, no comments, no extra keys."""

    if context:
        system += f"""

PAGE CONTEXT (reference only, do NOT translate or return this):
{context}"""

    if feedback:
        system += f"""

REVIEW FEEDBACK FROM THE PREVIOUS TRANSLATION (fix these problems this time):
{feedback}"""

    user = json.dumps(unit_map, ensure_ascii=False)
    return PromptPair(system=system, user=user)


def build_metadata_prompt(
    metadata: Dict[str, str],
    language_code: str,
    do_not_translate: Optional[List[str]] = None,
) -> PromptPair:
    """Prompt for translating title, description and social preview fields."""
    language = get_language(language_code)
    system = f"""Translate these SEO meta values from {SOURCE_LANGUAGE} to {language.label} ({language.native_name}).
Write naturally for a native {language.label} speaker. Keep brand names unchanged: {_protected_names(do_not_translate)}.

ADDITIONAL RULES:
{format_rules()}

Return ONLY valid JSON with the same keys and translated values."""
    return PromptPair(system=system, user=json.dumps(metadata, ensure_ascii=False))


# ============================================================================
# QUALITY SCORING
# ============================================================================

def build_image_quality_prompt(language_code: str) -> PromptPair:
    """Vision scoring prompt. The two image URLs are attached by the caller."""
    label = get_language(language_code).label
    system = f"""Compare an {SOURCE_LANGUAGE} ad image with its {label} translation. Return JSON:
{{"quality_score":<0-100>,"spelling_errors":[],"grammar_issues":[],"missing_text":[],"overall_assessment":"<1-2 sentences>","extracted_text":"<all visible text in translated image>"}}

Scoring: 90-100 perfect, 70-89 minor issues, 50-69 noticeable problems, 0-49 major errors. Be strict: one misspelled word reduces the score."""
    user = f"Image 1: {SOURCE_LANGUAGE} original. Image 2: {label} translation. Evaluate quality."
    return PromptPair(system=system, user=user)


def build_page_review_prompt(
    original_text: str,
    translated_text: str,
    language_code: str,
    previous: Optional[PreviousReview] = None,
    do_not_translate: Optional[List[str]] = None,
) -> PromptPair:
    """
    Review prompt for a fully assembled page.

    The model scores the page and returns suggested find/replace corrections
    over visible text. When ``previous`` is given, the corrections already
    applied are listed so they are not reported again.
    """
    label = get_language(language_code).label
    localized_names = bool(localization_note(language_code))
    if localized_names:
        names_rule = (
            f"PERSON NAMES: character names are localized to {label} equivalents on purpose. "
            "Do NOT flag localized names. Flag a name only when the same person is called "
            "differently in different places of the page."
        )
    else:
        names_rule = (
            "PERSON NAMES: character names must be KEPT EXACTLY as in the original. If a name "
            "was CHANGED, flag it as a context error and correct it back."
        )

    system = f"""You are a senior quality analyst for translated web pages. You evaluate {label} translations of {SOURCE_LANGUAGE} landing pages.

Evaluate how natural and fluent the FULL translated page reads as a whole: it should read as if ORIGINALLY WRITTEN in {label}.

PROTECTED BRAND NAMES (never translated, never flagged): {_protected_names(do_not_translate)}

{names_rule}

Respond with JSON:
{{
  "quality_score": <0-100>,
  "fluency_issues": ["<short description of issue>", ...],
  "grammar_issues": ["<short description of issue>", ...],
  "context_errors": ["<short description of issue>", ...],
  "name_localization": ["<person name that was handled wrongly>", ...],
  "overall_assessment": "<2-3 sentence summary>",
  "suggested_corrections": [
    {{"find": "exact visible text to fix", "replace": "corrected {label} text"}}
  ]
}}

"suggested_corrections" is the most important field:
- Include a correction for EVERY issue you identify.
- "find" is the VISIBLE TEXT exactly as a reader sees it (no HTML tags, no markup).
- "replace" is the corrected {label} text.
- For unnatural phrases or literal calques, provide a natural {label} alternative.
- Each correction applies to ALL occurrences on the page.

Scoring guide:
- 90-100: Reads naturally as native {label} content. No grammar errors.
- 75-89: Good quality with minor issues.
- 50-74: Noticeable problems, multiple unnatural phrases or grammar errors.
- 0-49: Poor quality, reads like a machine translation.

Write ALL issue descriptions and overall_assessment in English. "find"/"replace" values are in {label} as they appear on the page."""

    if previous is not None and previous.applied_corrections:
        applied = "\n".join(f'- "{c.find}" -> "{c.replace}"' for c in previous.applied_corrections)
        issues = "\n".join(f"- {issue}" for issue in previous.previous_issues) or "none"
        system += f"""

CORRECTIONS ALREADY APPLIED (DO NOT RE-REPORT):
Do NOT report these issues again or variations of them. Only report genuinely NEW issues.

Applied corrections:
{applied}

Previously identified issues (now resolved):
{issues}

SCORING: The previous score was {previous.previous_score}. Corrections were applied to improve quality, so your score MUST be equal to or higher than {previous.previous_score} unless you find a genuinely new critical issue."""

    user = f"Original ({SOURCE_LANGUAGE}):\n{original_text}\n\n---\n\nTranslation ({label}):\n{translated_text}"
    return PromptPair(system=system, user=user)


# ============================================================================
# IMAGE REGENERATION
# ============================================================================

def build_image_generation_prompt(language_code: str,
                                  correction: Optional[CorrectionInput] = None) -> str:
    """
    Prompt for the image generation service.

    First attempts carry the localization note; later attempts carry the
    corrected text and visual instructions from the quality gate instead.
    """
    label = get_language(language_code).label
    prompt = (
        f"Recreate this exact image but translate all text from {SOURCE_LANGUAGE} to {label}. "
        "Keep the same visual style, layout, colors, and design. Only translate the text."
    )

    if correction is None or correction.is_empty():
        note = localization_note(language_code, short=True)
        if note:
            prompt += f"\n\n{note}"
        return prompt

    if correction.corrected_text:
        prompt += f"\n\nIMPORTANT - Use these exact corrected translations:\n{correction.corrected_text}"
    if correction.visual_instructions:
        prompt += f"\n\nADDITIONAL VISUAL INSTRUCTIONS:\n{correction.visual_instructions}"
    return prompt
