from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Iterable, Sequence

from forum_sitemap.sitemap.types import NewsEntry, PageDescriptor, SitemapEntry


CONTENT_TYPE = "text/xml; charset=UTF-8"
SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
NEWS_NS = "http://www.google.com/schemas/sitemap-news/0.9"


def xml_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def news_language(default_locale: str) -> str:
    """Map a site locale to a news sitemap language tag.

    ``en_US`` -> ``en``, ``fr`` -> ``fr``; Chinese keeps its region because
    Google distinguishes ``zh-CN`` from ``zh-TW``.
    """
    language, _, region = default_locale.strip().lower().partition("_")
    if language == "zh" and region:
        return f"{language}-{region.upper()}"
    return language


def topic_url(base_url: str, slug: str, topic_id: int) -> str:
    return f"{base_url}/t/{slug}/{topic_id}"


def _serialize(root: ET.Element) -> bytes:
    return ET.tostring(root, encoding="UTF-8", xml_declaration=True)


def _add_text(parent: ET.Element, tag: str, value: str) -> ET.Element:
    child = ET.SubElement(parent, tag)
    child.text = value
    return child


def render_index(
    base_url: str,
    *,
    recent_lastmod: datetime,
    pages: Sequence[PageDescriptor],
) -> bytes:
    root = ET.Element("sitemapindex", {"xmlns": SITEMAP_NS})
    sitemaps = [(f"{base_url}/sitemap_recent.xml", recent_lastmod)]
    sitemaps.extend((f"{base_url}/sitemap_{page.index}.xml", page.last_modified) for page in pages)
    for loc, lastmod in sitemaps:
        node = ET.SubElement(root, "sitemap")
        _add_text(node, "loc", loc)
        _add_text(node, "lastmod", xml_timestamp(lastmod))
    return _serialize(root)


def render_urlset(
    base_url: str,
    entries: Iterable[SitemapEntry],
    *,
    posts_per_page: int | None = None,
) -> bytes:
    root = ET.Element("urlset", {"xmlns": SITEMAP_NS})
    for entry in entries:
        loc = topic_url(base_url, entry.slug, entry.topic_id)
        # Long topics link to the page holding their newest posts.
        if posts_per_page and entry.posts_count and entry.posts_count > posts_per_page:
            last_page = -(-entry.posts_count // posts_per_page)
            loc = f"{loc}?page={last_page}"
        node = ET.SubElement(root, "url")
        _add_text(node, "loc", loc)
        _add_text(node, "lastmod", xml_timestamp(entry.lastmod))
    return _serialize(root)


def render_news(
    base_url: str,
    entries: Iterable[NewsEntry],
    *,
    site_title: str,
    language: str,
) -> bytes:
    root = ET.Element("urlset", {"xmlns": SITEMAP_NS, "xmlns:news": NEWS_NS})
    for entry in entries:
        node = ET.SubElement(root, "url")
        _add_text(node, "loc", topic_url(base_url, entry.slug, entry.topic_id))
        news = ET.SubElement(node, "news:news")
        publication = ET.SubElement(news, "news:publication")
        _add_text(publication, "news:name", site_title)
        _add_text(publication, "news:language", language)
        _add_text(news, "news:publication_date", xml_timestamp(entry.published_at))
        _add_text(news, "news:title", entry.title)
    return _serialize(root)
