from typing import Literal

Language = Literal["en", "vi"]


def parse_accept_language(header_value: str | None) -> Language:
    """Pick the response language from the first ``Accept-Language`` entry."""
    if not header_value:
        return "en"
    first = header_value.split(",")[0].strip().lower()
    return "vi" if first.startswith("vi") else "en"


def localized_message(language: Language, en: str, vi: str) -> str:
    return vi if language == "vi" else en
