"""Language code normalization.

Stream language tags arrive as ISO 639-1 ("en"), ISO 639-2/T ("deu"),
ISO 639-2/B ("ger") or full names ("English"). Everything is normalized
to ISO 639-2/B, the form Matroska and ffmpeg use, before selection rules
compare languages.
"""

import logging

logger = logging.getLogger(__name__)

UNDEFINED = "und"

_SPECIAL_CODES = frozenset({"und", "mis", "mul", "zxx"})

# ISO 639-1 to ISO 639-2/B for languages common in video files
_ISO_639_1_TO_639_2B: dict[str, str] = {
    "ar": "ara",
    "bg": "bul",
    "ca": "cat",
    "cs": "cze",
    "da": "dan",
    "de": "ger",
    "el": "gre",
    "en": "eng",
    "es": "spa",
    "et": "est",
    "fa": "per",
    "fi": "fin",
    "fr": "fre",
    "he": "heb",
    "hi": "hin",
    "hr": "hrv",
    "hu": "hun",
    "id": "ind",
    "is": "ice",
    "it": "ita",
    "ja": "jpn",
    "ko": "kor",
    "lt": "lit",
    "lv": "lav",
    "ms": "may",
    "nb": "nob",
    "nl": "dut",
    "no": "nor",
    "pl": "pol",
    "pt": "por",
    "ro": "rum",
    "ru": "rus",
    "sk": "slo",
    "sl": "slv",
    "sr": "srp",
    "sv": "swe",
    "ta": "tam",
    "te": "tel",
    "th": "tha",
    "tr": "tur",
    "uk": "ukr",
    "vi": "vie",
    "zh": "chi",
}

# ISO 639-2/T to ISO 639-2/B where the two differ
_ISO_639_2T_TO_639_2B: dict[str, str] = {
    "ces": "cze",
    "deu": "ger",
    "ell": "gre",
    "fas": "per",
    "fra": "fre",
    "isl": "ice",
    "msa": "may",
    "nld": "dut",
    "ron": "rum",
    "slk": "slo",
    "zho": "chi",
}

_VALID_639_2B = frozenset(_ISO_639_1_TO_639_2B.values())

_LANGUAGE_NAME_TO_639_2B: dict[str, str] = {
    "arabic": "ara",
    "chinese": "chi",
    "czech": "cze",
    "danish": "dan",
    "dutch": "dut",
    "english": "eng",
    "finnish": "fin",
    "french": "fre",
    "german": "ger",
    "greek": "gre",
    "hebrew": "heb",
    "hindi": "hin",
    "hungarian": "hun",
    "italian": "ita",
    "japanese": "jpn",
    "korean": "kor",
    "norwegian": "nor",
    "polish": "pol",
    "portuguese": "por",
    "romanian": "rum",
    "russian": "rus",
    "spanish": "spa",
    "swedish": "swe",
    "thai": "tha",
    "turkish": "tur",
    "ukrainian": "ukr",
    "vietnamese": "vie",
}


def normalize_language(code: str | None, context: str | None = None) -> str:
    """Normalize a language code or name to ISO 639-2/B.

    Args:
        code: Language code (639-1, 639-2/B, 639-2/T) or English name.
        context: Optional file path used in warning messages.

    Returns:
        ISO 639-2/B code. "und" for empty or unrecognized input; unknown
        three-letter codes are kept as-is.

    Examples:
        >>> normalize_language("en")
        'eng'
        >>> normalize_language("deu")
        'ger'
        >>> normalize_language("English")
        'eng'
    """
    if not code:
        return UNDEFINED

    code = code.lower().strip()
    if code in _SPECIAL_CODES:
        return code

    if len(code) == 2:
        converted = _ISO_639_1_TO_639_2B.get(code)
        if converted is None:
            logger.warning(
                "Unknown ISO 639-1 code '%s'%s, using 'und'",
                code,
                f" in {context}" if context else "",
            )
            return UNDEFINED
        return converted

    if len(code) == 3:
        if code in _ISO_639_2T_TO_639_2B:
            return _ISO_639_2T_TO_639_2B[code]
        if code not in _VALID_639_2B:
            logger.debug("Unmapped ISO 639-2 code '%s', keeping as-is", code)
        return code

    converted = _LANGUAGE_NAME_TO_639_2B.get(code)
    if converted:
        return converted

    logger.warning(
        "Unrecognized language code format '%s'%s, using 'und'",
        code,
        f" in {context}" if context else "",
    )
    return UNDEFINED
