from __future__ import annotations

import hashlib
import posixpath
from urllib.parse import quote, unquote, urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

ASSETS_ROOT = "assets"


def is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.hostname)


def same_host(url: str, other: str) -> bool:
    return urlparse(url).hostname == urlparse(other).hostname


def short_hash(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()[:8]


def normalize_url(url: str) -> str:
    """Drop the fragment and give an empty path its root slash."""
    parsed = urlparse(urldefrag(url).url)
    return parsed._replace(path=parsed.path or "/").geturl()


def _segments(path: str) -> list[str]:
    # Decoded, so stored names match what a browser asks for
    return [seg for seg in unquote(path).split("/") if seg and seg not in {".", ".."}]


def page_path_for_url(url: str) -> str:
    """Map a page URL to its file inside the job directory.

    ``/`` -> ``index.html``, ``/docs/`` -> ``docs/index.html``,
    ``/about`` -> ``about.html``; paths with an extension are kept.
    ``/a`` and ``/a.html`` land on the same file.
    """
    path = urlparse(url).path or "/"
    segs = _segments(path)
    if not segs:
        return "index.html"
    if path.endswith("/"):
        segs.append("index.html")
    elif not posixpath.splitext(segs[-1])[1]:
        segs[-1] += ".html"
    return "/".join(segs)


def asset_path_for_url(url: str) -> str:
    """Map an asset URL to ``assets/<url path>``.

    A query string is folded into the file name as a short hash, so
    ``/img/a.png?v=2`` becomes ``assets/img/a_<hash>.png``.
    """
    parsed = urlparse(url)
    segs = _segments(parsed.path)
    if not segs or parsed.path.endswith("/"):
        segs.append("index")
    if parsed.query:
        stem, ext = posixpath.splitext(segs[-1])
        segs[-1] = f"{stem}_{short_hash(parsed.query)}{ext}"
    return "/".join([ASSETS_ROOT, *segs])


def relative_reference(target: str, from_page: str) -> str:
    """Path of ``target`` as seen from the page stored at ``from_page``."""
    return quote(posixpath.relpath(target, posixpath.dirname(from_page) or "."))


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag and tag.get("href"):
        return urljoin(fallback, tag["href"])
    return fallback
