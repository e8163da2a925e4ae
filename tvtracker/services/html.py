from typing import Optional

from bs4 import BeautifulSoup


def strip_html(text: Optional[str]) -> str:
    """Drop markup from catalog summaries and decode HTML entities."""
    if not text:
        return ""
    return BeautifulSoup(text, "html.parser").get_text().strip()
