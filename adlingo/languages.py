"""
Supported target languages and cultural localization hints.
"""
from typing import Dict, List, NamedTuple, Tuple


class Language(NamedTuple):
    code: str
    label: str
    native_name: str
    locale: str
    date_hint: str
    ui_hint: str


LANGUAGES: Dict[str, Language] = {
    'sv': Language(
        'sv', 'Swedish', 'svenska', 'sv-SE',
        '"X days ago" -> "X dagar sedan". Dates: YYYY-MM-DD.',
        '"Reply" -> "Svar", "Comment" -> "Kommentar".',
    ),
    'da': Language(
        'da', 'Danish', 'dansk', 'da-DK',
        '"X days ago" -> "X dage siden". Dates: DD.MM.YYYY.',
        '"Reply" -> "Svar", "Comment" -> "Kommentar".',
    ),
    'no': Language(
        'no', 'Norwegian', 'norsk (bokmål)', 'nb-NO',
        '"X days ago" -> "X dager siden". Dates: DD.MM.YYYY.',
        '"Reply" -> "Svar", "Comment" -> "Kommentar".',
    ),
    'de': Language(
        'de', 'German', 'Deutsch', 'de-DE',
        '"X days ago" -> "vor X Tagen". Dates: DD.MM.YYYY.',
        '"Reply" -> "Antworten", "Comment" -> "Kommentar".',
    ),
}

# Source names are Swedish; each target culture gets natural equivalents.
# These are examples for the model, not an exhaustive mapping.
NAME_EXAMPLES: Dict[str, List[Tuple[str, str]]] = {
    'sv': [],
    'no': [
        ("Anna Lindberg", "Anne Haugen"),
        ("Peter Svensson", "Petter Johansen"),
        ("Erik Johansson", "Erik Hansen"),
        ("Maria Karlsson", "Maria Olsen"),
    ],
    'da': [
        ("Anna Lindberg", "Anne Vestergaard"),
        ("Peter Svensson", "Peter Nielsen"),
        ("Erik Johansson", "Erik Jensen"),
        ("Maria Karlsson", "Maria Pedersen"),
    ],
    'de': [
        ("Anna Lindberg", "Anna Weber"),
        ("Peter Svensson", "Peter Müller"),
        ("Erik Johansson", "Erik Fischer"),
        ("Maria Karlsson", "Maria Schneider"),
    ],
}


def get_language(code: str) -> Language:
    """Look up a language; unknown codes fall back to the code itself."""
    if code in LANGUAGES:
        return LANGUAGES[code]
    return Language(code, code, code, code, '', '')


def language_label(code: str) -> str:
    return get_language(code).label


def localization_note(code: str, short: bool = False) -> str:
    """
    Cultural localization instructions for a target language.

    Swedish is the source culture, so it gets no note.
    """
    examples = NAME_EXAMPLES.get(code)
    if not examples:
        return ""

    language = get_language(code)
    if short:
        sample = ", ".join(f"{src} -> {dst}" for src, dst in examples[:3])
        return (
            "CULTURAL LOCALISATION (MANDATORY):\n"
            f"- Replace ALL Swedish/English person names with culturally appropriate {language.label} names. "
            f"Examples: {sample}.\n"
            f"- Translate ALL UI text (Reply, Comment, relative dates) to {language.label}.\n"
            f"- The result should look as if ORIGINALLY CREATED for a {language.label} audience."
        )

    names = "\n".join(f"  {src} -> {dst}" for src, dst in examples)
    return (
        f"- NAMES (MANDATORY): Replace ALL Swedish and English person names with culturally "
        f"appropriate {language.label} equivalents. Examples:\n{names}\n"
        f"  Apply the same principle to ANY other Swedish/English names encountered.\n"
        f"- DATES & TIME: {language.date_hint}\n"
        f"- UI ELEMENTS: {language.ui_hint}"
    )
