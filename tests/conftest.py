import gzip
import hashlib
import re
import threading
from collections import Counter

import httpx
import pytest

from pubmed_ingest.channel import ProgressChannel
from pubmed_ingest.config_utils import build_settings

BASE_URL = "https://example.test/baseline"
ARCHIVE_PATTERN = re.compile(r"pubmed24n(\d{4})\.xml\.gz(\.md5)?$")


def make_article_xml(
    *,
    title="Early tumor growth in mice",
    abstract="We studied cancer progression.",
    doi="10.1000/example",
    authors=(("Ada", "Lovelace"),),
    date=(2020, 1, 2),
    keywords=("mice",),
):
    author_xml = "".join(
        f"<Author><LastName>{last}</LastName><ForeName>{first}</ForeName></Author>"
        for first, last in authors
    )
    keyword_xml = "".join(f"<Keyword>{keyword}</Keyword>" for keyword in keywords)
    year, month, day = date
    doi_xml = f'<ArticleId IdType="doi">{doi}</ArticleId>' if doi else ""
    return (
        "<PubmedArticle><MedlineCitation>"
        f"<DateCompleted><Year>{year}</Year><Month>{month}</Month>"
        f"<Day>{day}</Day></DateCompleted>"
        "<Article>"
        f"<ArticleTitle>{title}</ArticleTitle>"
        f"<Abstract><AbstractText>{abstract}</AbstractText></Abstract>"
        f"<AuthorList>{author_xml}</AuthorList>"
        "<Language>eng</Language>"
        "</Article>"
        f"<KeywordList>{keyword_xml}</KeywordList>"
        "</MedlineCitation><PubmedData><ArticleIdList>"
        '<ArticleId IdType="pubmed">12345</ArticleId>'
        f"{doi_xml}"
        "</ArticleIdList></PubmedData></PubmedArticle>"
    )


def make_document(*articles):
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        "<PubmedArticleSet>" + "".join(articles) + "</PubmedArticleSet>"
    )


class FakeArchiveServer:
    """In-memory stand-in for the remote baseline directory."""

    def __init__(self, documents=None):
        self.documents = dict(documents or {})
        self.failing_downloads = set()
        self.wrong_checksums = set()
        self.corrupt_archives = set()
        self.requests = Counter()
        self._lock = threading.Lock()

    def archive_bytes(self, index):
        if index in self.corrupt_archives:
            return b"this is not gzip data"
        return gzip.compress(self.documents[index].encode("utf-8"))

    def handler(self, request):
        match = ARCHIVE_PATTERN.search(request.url.path)
        if match is None:
            return httpx.Response(404)
        index = int(match.group(1))
        is_checksum = match.group(2) is not None
        with self._lock:
            self.requests[(index, "md5" if is_checksum else "gz")] += 1
        if index not in self.documents and index not in self.corrupt_archives:
            return httpx.Response(404)

        if is_checksum:
            digest = hashlib.md5(self.archive_bytes(index)).hexdigest()
            if index in self.wrong_checksums:
                digest = "0" * 32
            name = f"pubmed24n{index:04d}.xml.gz"
            return httpx.Response(200, text=f"MD5({name})= {digest}\n")

        if index in self.failing_downloads:
            return httpx.Response(500)
        payload = self.archive_bytes(index)
        return httpx.Response(
            200,
            headers={"Content-Length": str(len(payload))},
            content=payload,
        )

    def client_factory(self):
        return httpx.Client(transport=httpx.MockTransport(self.handler))

    @property
    def total_requests(self):
        return sum(self.requests.values())


@pytest.fixture
def settings(tmp_path):
    return build_settings(
        {
            "source": {"base_url": BASE_URL},
            "paths": {
                "output_dir": str(tmp_path / "out"),
                "staging_dir": str(tmp_path / "staging"),
            },
        }
    )


@pytest.fixture
def channel():
    return ProgressChannel()


def drain(channel):
    """Return every message currently waiting on the channel."""
    messages = []
    while True:
        message = channel.receive(timeout=0)
        if message is None:
            return messages
        messages.append(message)
