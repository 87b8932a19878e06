"""SPA shell detection for fetched documents."""

import re

from selectolax.parser import HTMLParser

from .constants import SPA_SHELL_PATTERNS, SPA_TEXT_THRESHOLD

_SHELL_RES = [re.compile(pattern, re.IGNORECASE) for pattern in SPA_SHELL_PATTERNS]


def visible_text(html: str) -> str:
    """Body text with script/style/head stripped and whitespace collapsed."""
    tree = HTMLParser(html)
    for tag in ["script", "style", "noscript", "head", "template"]:
        for node in tree.css(tag):
            node.decompose()
    root = tree.body if tree.body is not None else tree.root
    if root is None:
        return ""
    text = root.text(separator=" ", strip=True) or ""
    return re.sub(r"\s+", " ", text).strip()


def is_spa(html: str) -> bool:
    """
    Classify a document as a client-rendered shell.

    True only when the visible text is nearly empty AND the markup carries an
    empty mount point or an ES-module script tag.
    """
    if not html or not html.strip():
        return False
    if len(visible_text(html)) >= SPA_TEXT_THRESHOLD:
        return False
    return any(pattern.search(html) for pattern in _SHELL_RES)
