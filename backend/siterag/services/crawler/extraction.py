"""Structured extraction: HTML to heading-delimited sections plus page metadata."""

import logging
import re
from typing import List, Optional, Set, Tuple

import trafilatura
from selectolax.parser import HTMLParser, Node

from .constants import (
    FALLBACK_CONTENT_SELECTORS,
    MIN_FALLBACK_TEXT_LENGTH,
    NON_CONTENT_TAGS,
    OTHER_INFO_SECTION,
    PAGE_CATEGORY_PATTERNS,
    PAGE_CONTENT_SECTION,
)
from .models import PageDocument, PageSection
from .urls import resolve_link

logger = logging.getLogger(__name__)

HEADING_TAGS = {"h1", "h2", "h3"}
CONTAINER_TAGS = {"div", "section", "article"}


class ContentExtractor:
    """Extracts structured content from pages."""

    def extract(self, html: str, base_url: str) -> PageDocument:
        """
        Parse HTML into a PageDocument.

        Args:
            html: Raw or rendered HTML
            base_url: URL the HTML was fetched from, used to resolve links

        Returns:
            PageDocument with metadata, ordered sections and same-origin links
        """
        full_tree = HTMLParser(html)
        title, description, theme_color = self._extract_meta(full_tree, base_url)
        links = self.extract_links(full_tree, base_url)

        tree = HTMLParser(html)
        for tag in NON_CONTENT_TAGS:
            for node in tree.css(tag):
                node.decompose()

        sections = self._extract_heading_sections(tree, base_url)

        collected: Set[str] = set()
        for section in sections:
            collected.update(section.content_lines)
        other_lines = [line for line in self._collect_tabular_lines(tree) if line not in collected]
        if other_lines:
            sections.append(PageSection(section_title=OTHER_INFO_SECTION, content_lines=other_lines))

        if len(sections) < 2:
            fallback_text = self._fallback_text(tree, html)
            if fallback_text:
                sections.append(PageSection(
                    section_title=PAGE_CONTENT_SECTION,
                    content_lines=[fallback_text],
                    unstructured=True,
                ))

        return PageDocument(
            url=base_url,
            title=title,
            description=description,
            category=classify_page_category(base_url),
            sections=sections,
            links=links,
            theme_color=theme_color,
        )

    def extract_links(self, tree: HTMLParser, base_url: str) -> List[str]:
        """All same-origin, non-asset page links in discovery order."""
        seen: Set[str] = set()
        links: List[str] = []
        for anchor in tree.css("a[href]"):
            resolved = resolve_link(anchor.attributes.get("href"), base_url)
            if resolved and resolved not in seen:
                seen.add(resolved)
                links.append(resolved)
        return links

    def _extract_meta(self, tree: HTMLParser, url: str) -> Tuple[str, str, str]:
        title = _node_text(tree.css_first("title"))
        description = _attr(tree.css_first('meta[name="description"]'), "content")
        og_title = _attr(tree.css_first('meta[property="og:title"]'), "content")
        og_description = _attr(tree.css_first('meta[property="og:description"]'), "content")
        theme_color = _attr(tree.css_first('meta[name="theme-color"]'), "content")
        return title or og_title or url, description or og_description, theme_color

    def _extract_heading_sections(self, tree: HTMLParser, base_url: str) -> List[PageSection]:
        sections: List[PageSection] = []
        for heading in tree.css("h1, h2, h3"):
            section_title = _node_text(heading)
            if len(section_title) < 2:
                continue
            section = PageSection(section_title=section_title)
            node = heading.next
            while node is not None:
                tag = node.tag
                if tag in HEADING_TAGS:
                    break
                if tag in CONTAINER_TAGS and node.css_first("h1, h2, h3") is not None:
                    break
                self._collect_node(node, section, base_url)
                node = node.next
            if not section.is_empty:
                sections.append(section)
        return sections

    def _collect_node(self, node: Node, section: PageSection, base_url: str) -> None:
        tag = node.tag
        if tag == "p":
            text = _node_text(node)
            if len(text) > 5:
                _append_unique(section.content_lines, text)
        elif tag in ("ul", "ol"):
            for item in node.css("li"):
                text = _node_text(item)
                if len(text) > 3:
                    _append_unique(section.content_lines, f"・{text}")
        elif tag == "table":
            for line in _table_lines(node):
                _append_unique(section.content_lines, line)
        elif tag == "dl":
            for line in _definition_lines(node):
                _append_unique(section.content_lines, line)
        elif tag in CONTAINER_TAGS:
            for inner in node.css("p, li"):
                text = _node_text(inner)
                if len(text) > 10:
                    _append_unique(section.content_lines, text)
            for table in node.css("table"):
                for line in _table_lines(table):
                    _append_unique(section.content_lines, line)
            for dl in node.css("dl"):
                for line in _definition_lines(dl):
                    _append_unique(section.content_lines, line)
        else:
            return

        for line in _link_lines(node, base_url):
            _append_unique(section.link_lines, line)

    def _collect_tabular_lines(self, tree: HTMLParser) -> List[str]:
        """Every table row and definition pair in the document, heading or not."""
        lines: List[str] = []
        for table in tree.css("table"):
            for line in _table_lines(table):
                _append_unique(lines, line)
        for dl in tree.css("dl"):
            for line in _definition_lines(dl):
                _append_unique(lines, line)
        return lines

    def _fallback_text(self, tree: HTMLParser, html: str) -> str:
        text = ""
        for selector in FALLBACK_CONTENT_SELECTORS:
            node = tree.css_first(selector)
            if node is not None:
                text = re.sub(r"\s+", " ", node.text(separator=" ") or "").strip()
                break
        if len(text) < MIN_FALLBACK_TEXT_LENGTH:
            extracted = trafilatura.extract(
                html,
                include_links=False,
                include_images=False,
                include_tables=True,
                no_fallback=False,
            ) or ""
            extracted = re.sub(r"\s+", " ", extracted).strip()
            if len(extracted) > len(text):
                text = extracted
        return text if len(text) >= MIN_FALLBACK_TEXT_LENGTH else ""


def classify_page_category(url: str) -> str:
    """Classify page category based on URL patterns."""
    url_lower = url.lower()
    for category, patterns in PAGE_CATEGORY_PATTERNS:
        if any(pattern in url_lower for pattern in patterns):
            return category
    return "general"


def _node_text(node: Optional[Node]) -> str:
    if node is None:
        return ""
    text = node.text(separator=" ", strip=True) or ""
    return re.sub(r"\s+", " ", text).strip()


def _attr(node: Optional[Node], key: str) -> str:
    if node is None:
        return ""
    value = node.attributes.get(key)
    return str(value).strip() if value else ""


def _append_unique(lines: List[str], line: str) -> None:
    if line and line not in lines:
        lines.append(line)


def _table_lines(table: Node) -> List[str]:
    lines: List[str] = []
    for row in table.css("tr"):
        cells = [_node_text(cell) for cell in row.css("th, td")]
        cells = [cell for cell in cells if cell]
        if not cells:
            continue
        if len(cells) == 2:
            lines.append(f"{cells[0]}: {cells[1]}")
        else:
            lines.append(" | ".join(cells))
    return lines


def _definition_lines(dl: Node) -> List[str]:
    lines: List[str] = []
    term = ""
    for child in dl.css("dt, dd"):
        if child.tag == "dt":
            term = _node_text(child)
        elif child.tag == "dd":
            value = _node_text(child)
            if term and value:
                lines.append(f"{term}: {value}")
            elif value:
                lines.append(value)
    return lines


def _link_lines(node: Node, base_url: str) -> List[str]:
    anchors = [node] if node.tag == "a" and node.attributes.get("href") else node.css("a[href]")
    lines: List[str] = []
    for anchor in anchors:
        label = _node_text(anchor)
        if len(label) <= 1:
            continue
        resolved = resolve_link(anchor.attributes.get("href"), base_url)
        if resolved:
            lines.append(f"Link: {label} → {resolved}")
    return lines
