"""Extract articles from PubMed baseline XML and decide which ones to keep."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from typing import Any
from xml.etree import ElementTree as ET

from pubmed_ingest.config_utils import DEFAULT_KEYWORDS
from pubmed_ingest.schema import Article, Author

logger = logging.getLogger(__name__)

ARTICLE_TAG = "PubmedArticle"
ARTICLE_START_PATTERN = re.compile(r"<PubmedArticle[\s>]")
FEED_CHUNK_CHARS = 64 * 1024


class DocumentParseError(Exception):
    """Raised when a document stops being well-formed XML."""


def _text(node: ET.Element) -> str:
    return "".join(node.itertext()).strip()


def _read_authors(author_list: ET.Element) -> list[Author]:
    authors: list[Author] = []
    for author in author_list.findall("Author"):
        last_name = author.find("LastName")
        fore_name = author.find("ForeName")
        authors.append(
            Author(
                first_name=_text(fore_name) if fore_name is not None else "",
                last_name=_text(last_name) if last_name is not None else "",
            )
        )
    return authors


def _read_article_data(node: ET.Element, fields: dict[str, Any]) -> None:
    for child in node:
        if child.tag == "ArticleTitle":
            if fields.get("title"):
                logger.debug("Multiple article titles found; keeping the last one")
            fields["title"] = _text(child)
        elif child.tag == "Abstract":
            sections = [_text(part) for part in child.findall("AbstractText")]
            fields["paper_abstract"] = " ".join(part for part in sections if part)
        elif child.tag == "Language":
            fields["language"] = _text(child)
        elif child.tag == "AuthorList":
            fields["authors"].extend(_read_authors(child))


def _read_doi(pubmed_data: ET.Element) -> str:
    # Only the article's own id list; references carry their own DOIs deeper down.
    for id_list in pubmed_data.findall("ArticleIdList"):
        for article_id in id_list.findall("ArticleId"):
            if article_id.get("IdType") == "doi":
                doi = _text(article_id)
                if doi:
                    return doi
    return ""


def _read_date(node: ET.Element) -> str:
    parts: dict[str, int] = {}
    for name in ("Year", "Month", "Day"):
        child = node.find(name)
        try:
            parts[name] = int(_text(child)) if child is not None else 0
        except ValueError:
            parts[name] = 0
    if all(value > 0 for value in parts.values()):
        return f"{parts['Year']:04d}-{parts['Month']:02d}-{parts['Day']:02d}"
    return ""


def build_article(node: ET.Element) -> Article:
    """Build an ``Article`` from a ``PubmedArticle`` element."""
    fields: dict[str, Any] = {"authors": [], "tags": []}
    for child in node.iter():
        if child.tag == "Article":
            _read_article_data(child, fields)
        elif child.tag == "Keyword":
            fields["tags"].append(_text(child))
        elif child.tag == "PubmedData":
            fields["id"] = _read_doi(child)
        elif child.tag == "DateCompleted":
            fields["date"] = _read_date(child)
    return Article(**fields)


class DocumentParser:
    """Lazily turn a PubMed XML document into articles.

    ``parse`` yields every article it can build, valid or not; callers drop
    invalid ones. If the XML breaks partway through, the articles already
    yielded stay usable and ``DocumentParseError`` is raised.
    """

    def __init__(self, chunk_chars: int = FEED_CHUNK_CHARS) -> None:
        self.chunk_chars = chunk_chars

    @staticmethod
    def count(text: str) -> int:
        """Estimate the number of articles without parsing the document."""
        return len(ARTICLE_START_PATTERN.findall(text))

    def parse(self, text: str) -> Iterator[Article]:
        parser = ET.XMLPullParser(events=("end",))
        try:
            for start in range(0, len(text), self.chunk_chars):
                parser.feed(text[start : start + self.chunk_chars])
                yield from self._drain(parser)
            parser.close()
            yield from self._drain(parser)
        except ET.ParseError as exc:
            raise DocumentParseError(str(exc)) from exc

    @staticmethod
    def _drain(parser: ET.XMLPullParser) -> Iterator[Article]:
        for _event, element in parser.read_events():
            if element.tag != ARTICLE_TAG:
                continue
            article = build_article(element)
            element.clear()
            yield article


class RecordFilter:
    """Keep articles whose title and abstract both mention a keyword."""

    def __init__(self, keywords: Iterable[str] = DEFAULT_KEYWORDS) -> None:
        self.keywords = tuple(keyword for keyword in keywords if keyword)

    def _mentions_keyword(self, text: str) -> bool:
        return any(keyword in text for keyword in self.keywords)

    def is_relevant(self, article: Article) -> bool:
        return self._mentions_keyword(article.title) and self._mentions_keyword(
            article.paper_abstract
        )
