import asyncio
import hashlib

import httpx
from bs4 import BeautifulSoup

from site_archiver.models import JobStatus
from site_archiver.services.assets import AssetPipeline, extract_links
from site_archiver.services.fetcher import PageFetcher


def _process(site, config, store, html, page_url="https://ex.test/"):
    job = store.create("https://ex.test/", "ex.test")
    store.update(job.id, status=JobStatus.PROCESSING)

    async def go():
        async with httpx.AsyncClient(transport=site.transport) as client:
            pipeline = AssetPipeline(store, job.id, PageFetcher(client, config))
            return await pipeline.process_page(html, page_url)

    rewritten, links = asyncio.run(go())
    return job.id, BeautifulSoup(rewritten, "html.parser"), links


def test_same_host_assets_are_saved_and_rewritten(site, config, store):
    site.add("https://ex.test/img/logo.png", b"png", content_type="image/png")
    site.add("https://ex.test/css/site.css", "body{}", content_type="text/css")
    site.add("https://ex.test/js/app.js", "1;", content_type="text/javascript")
    html = (
        '<html><head><link rel="stylesheet" href="/css/site.css"><script src="js/app.js"></script></head>'
        '<body><img src="/img/logo.png"></body></html>'
    )

    job_id, soup, _ = _process(site, config, store, html)

    assert soup.img["src"] == "assets/img/logo.png"
    assert soup.link["href"] == "assets/css/site.css"
    assert soup.script["src"] == "assets/js/app.js"
    assert store.read_file(job_id, "assets/img/logo.png") == b"png"
    assert sorted(a.path for a in store.get(job_id).assets) == [
        "assets/css/site.css",
        "assets/img/logo.png",
        "assets/js/app.js",
    ]


def test_cross_host_and_inline_references_untouched(site, config, store):
    html = (
        '<img src="https://cdn.other.test/x.png?a=1">'
        '<img src="data:image/png;base64,AAAA">'
        '<link rel="icon" href="/favicon.ico">'
    )

    job_id, soup, _ = _process(site, config, store, html)

    imgs = soup.find_all("img")
    assert imgs[0]["src"] == "https://cdn.other.test/x.png?a=1"
    assert imgs[1]["src"] == "data:image/png;base64,AAAA"
    assert soup.link["href"] == "/favicon.ico"
    assert site.hits == []
    assert store.get(job_id).assets == []


def test_query_assets_get_distinct_files(site, config, store):
    site.add("https://ex.test/img/a.png?v=1", b"one")
    site.add("https://ex.test/img/a.png?v=2", b"two")

    job_id, soup, _ = _process(site, config, store, '<img src="/img/a.png?v=1"><img src="/img/a.png?v=2">')

    first, second = (img["src"] for img in soup.find_all("img"))
    assert first == f"assets/img/a_{hashlib.md5(b'v=1').hexdigest()[:8]}.png"
    assert second == f"assets/img/a_{hashlib.md5(b'v=2').hexdigest()[:8]}.png"
    assert store.read_file(job_id, first) == b"one"
    assert store.read_file(job_id, second) == b"two"


def test_failed_asset_keeps_original_reference(site, config, store):
    site.add("https://ex.test/ok.png", b"ok")
    html = '<img src="/ok.png"><img src="https://ex.test/missing.png">'

    job_id, soup, _ = _process(site, config, store, html)

    ok, missing = soup.find_all("img")
    assert ok["src"] == "assets/ok.png"
    assert missing["src"] == "https://ex.test/missing.png"
    assert site.hits.count("https://ex.test/missing.png") == 3
    assert [a.path for a in store.get(job_id).assets] == ["assets/ok.png"]


def test_repeated_reference_downloaded_once(site, config, store):
    site.add("https://ex.test/dot.gif", b"gif")

    _, soup, _ = _process(site, config, store, '<img src="/dot.gif"><img src="dot.gif"><img src="./dot.gif">')

    assert [img["src"] for img in soup.find_all("img")] == ["assets/dot.gif"] * 3
    assert site.hits == ["https://ex.test/dot.gif"]


def test_assets_already_in_job_are_reused(site, config, store):
    site.add("https://ex.test/dot.gif", b"gif")
    job = store.create("https://ex.test/", "ex.test")
    store.update(job.id, status=JobStatus.PROCESSING)

    async def go():
        async with httpx.AsyncClient(transport=site.transport) as client:
            pipeline = AssetPipeline(store, job.id, PageFetcher(client, config))
            await pipeline.process_page('<img src="/dot.gif">', "https://ex.test/")
            return await pipeline.process_page('<img src="/dot.gif">', "https://ex.test/about")

    html, _ = asyncio.run(go())

    assert 'src="assets/dot.gif"' in html
    assert site.hits == ["https://ex.test/dot.gif"]


def test_nested_page_gets_relative_asset_path(site, config, store):
    site.add("https://ex.test/img/a.png", b"a")

    _, soup, _ = _process(site, config, store, '<img src="/img/a.png">', page_url="https://ex.test/blog/post")

    assert soup.img["src"] == "../assets/img/a.png"


def test_links_are_collected_in_order():
    soup = BeautifulSoup(
        '<a href="/b">b</a><a href="#top">top</a><a href="mailto:x@ex.test">m</a>'
        '<a href="tel:123">t</a><a href="javascript:void(0)">j</a>'
        '<a href="a#section">a</a><a href="/b">again</a><a href="https://other.test/">o</a>',
        "html.parser",
    )

    assert extract_links(soup, "https://ex.test/dir/") == [
        "https://ex.test/b",
        "https://ex.test/dir/a",
        "https://other.test/",
    ]


def test_process_page_returns_links(site, config, store):
    _, _, links = _process(site, config, store, '<a href="/about">About</a>')
    assert links == ["https://ex.test/about"]


def test_percent_encoded_asset_stored_under_decoded_name(site, config, store):
    site.add("https://ex.test/img/a%20b.png", b"spaced")

    job_id, soup, _ = _process(site, config, store, '<img src="/img/a%20b.png">')

    assert soup.img["src"] == "assets/img/a%20b.png"
    assert store.read_file(job_id, "assets/img/a b.png") == b"spaced"


def test_root_links_are_normalized():
    soup = BeautifulSoup('<a href="https://ex.test">home</a><a href="/">root</a>', "html.parser")
    assert extract_links(soup, "https://ex.test/about") == ["https://ex.test/"]
