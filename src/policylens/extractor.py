"""Plain-text extraction from static HTML.

Scripts and styles are dropped and the visible text of the remaining markup is
joined with single spaces. No JavaScript runs, so pages that inject their
policy text client-side yield little or no content.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

_WHITESPACE_RE = re.compile(r"\s+")

# Navigation and footer text that tends to leak into extracted policies.
_BOILERPLATE: list[re.Pattern[str]] = [
    re.compile(r"cookie settings?", re.IGNORECASE),
    re.compile(r"accept all cookies", re.IGNORECASE),
    re.compile(r"privacy preferences", re.IGNORECASE),
    re.compile(r"manage cookies", re.IGNORECASE),
    re.compile(r"© \d{4}", re.IGNORECASE),
    re.compile(r"all rights reserved", re.IGNORECASE),
    re.compile(r"contact us", re.IGNORECASE),
    re.compile(r"about us", re.IGNORECASE),
]


def extract_text_from_html(html: str) -> str:
    soup = BeautifulSoup(html or "", "lxml")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text(separator=" ", strip=True)
    return _WHITESPACE_RE.sub(" ", text).strip()


def strip_boilerplate(text: str) -> str:
    """Remove cookie-banner and footer phrases, then re-collapse whitespace."""
    for pattern in _BOILERPLATE:
        text = pattern.sub("", text)
    return _WHITESPACE_RE.sub(" ", text).strip()
