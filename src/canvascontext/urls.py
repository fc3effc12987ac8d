"""Canvas URL parsing and HTML scraping helpers.

Embedded file references are matched with regexes tuned to what Canvas'
rich content editor emits; links and plain text go through BeautifulSoup.
Pure functions, no I/O.
"""

from __future__ import annotations

import re
from urllib.parse import parse_qsl, unquote, urljoin, urlparse

from bs4 import BeautifulSoup

from canvascontext.models.canvas import CanvasUrlInfo
from canvascontext.models.discovery import DiscoveredFile, DiscoveredLink, LinkKind

_COURSE_RE = re.compile(r"/courses/(\d+)")
_FILE_RE = re.compile(r"/files/(\d+)")
_PAGE_RE = re.compile(r"/courses/\d+/pages/([^/?]+)")
_ASSIGNMENT_RE = re.compile(r"/courses/\d+/assignments/(\d+)")
_DISCUSSION_RE = re.compile(r"/courses/\d+/discussion_topics/(\d+)")
_MODULE_RE = re.compile(r"/courses/\d+/modules/(\d+)")
_COURSE_HOME_RE = re.compile(r"/courses/\d+/?$")

# Embedded file references, in priority order
_ANCHOR_FILE_RE = re.compile(r'href="[^"]*/files/(\d+)[^"]*"[^>]*>([^<]+)</a>')
_FILE_LINK_CLASS_RE = re.compile(
    r'class="instructure_file_link"[^>]*href="[^"]*/files/(\d+)[^"]*"[^>]*title="([^"]*)"[^>]*>'
)
_API_ENDPOINT_RE = re.compile(r'data-api-endpoint="[^"]*/files/(\d+)"')
_NEARBY_NAME_RE = re.compile(r'title="([^"]+)"|>([^<]+)</a>')
_NAME_CONTEXT_CHARS = 200

_WHITESPACE_RE = re.compile(r"\s+")
_STRIPPED_TAGS = ("script", "style")

_LOGIN_MARKERS = ("Sign in to your account", "Microsoft Corporation")


# ---------------------------------------------------------------------------
# URL parsing
# ---------------------------------------------------------------------------


def parse_canvas_url(url: str) -> CanvasUrlInfo:
    """Parse a Canvas web URL into a typed resource reference.

    File references take precedence over pages (a file link nested under a
    page path is still a file). URLs without ``/courses/<id>`` are invalid.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return CanvasUrlInfo()

    if not parsed.scheme or not parsed.netloc:
        return CanvasUrlInfo()

    base_url = f"{parsed.scheme}://{parsed.netloc}"
    query_params = dict(parse_qsl(parsed.query))
    common = {
        "base_url": base_url,
        "query_params": query_params,
        "module_item_id": query_params.get("module_item_id"),
    }
    path = parsed.path

    course_match = _COURSE_RE.search(path)
    if course_match is None:
        return CanvasUrlInfo(is_valid=False, **common)
    course_id = course_match.group(1)

    if match := _FILE_RE.search(path):
        return CanvasUrlInfo(
            kind="file", course_id=course_id, resource_id=match.group(1), is_valid=True, **common
        )

    if match := _PAGE_RE.search(path):
        slug = match.group(1)
        return CanvasUrlInfo(
            kind="page",
            course_id=course_id,
            resource_id=slug,
            resource_name=unquote(slug).replace("-", " "),
            is_valid=True,
            **common,
        )

    for kind, pattern in (
        ("assignment", _ASSIGNMENT_RE),
        ("discussion", _DISCUSSION_RE),
        ("module", _MODULE_RE),
    ):
        if match := pattern.search(path):
            return CanvasUrlInfo(
                kind=kind, course_id=course_id, resource_id=match.group(1), is_valid=True, **common
            )

    if _COURSE_HOME_RE.search(path):
        return CanvasUrlInfo(kind="course", course_id=course_id, is_valid=True, **common)

    return CanvasUrlInfo(kind="unknown", course_id=course_id, is_valid=True, **common)


def web_url_to_api_url(info: CanvasUrlInfo) -> str | None:
    """Map a parsed web URL to the equivalent REST endpoint, if there is one."""
    if not info.is_valid or not info.course_id:
        return None

    api = f"{info.base_url}/api/v1"
    course = f"{api}/courses/{info.course_id}"
    match info.kind:
        case "file":
            return f"{api}/files/{info.resource_id}"
        case "page":
            return f"{course}/pages/{info.resource_id}"
        case "assignment":
            return f"{course}/assignments/{info.resource_id}"
        case "discussion":
            return f"{course}/discussion_topics/{info.resource_id}"
        case "module":
            return f"{course}/modules/{info.resource_id}"
        case "course":
            return course
        case _:
            return None


def is_canvas_url(text: str) -> bool:
    parsed = urlparse(text)
    if not parsed.scheme or not parsed.netloc:
        return False
    return "instructure.com" in parsed.netloc or "/courses/" in parsed.path


def extract_page_slug(text: str) -> str:
    """Return the page slug of a Canvas page URL; bare slugs pass through."""
    if is_canvas_url(text):
        info = parse_canvas_url(text)
        return (info.resource_id or "") if info.kind == "page" else ""
    return text


# ---------------------------------------------------------------------------
# HTML extraction
# ---------------------------------------------------------------------------


def extract_file_refs(html: str, base_url: str, source_page_name: str = "") -> list[DiscoveredFile]:
    """Find embedded file references using three independent patterns.

    Deduplicated by file id; the first pattern to see an id names the file.
    """
    base_url = base_url.rstrip("/")
    found: dict[str, str] = {}

    for match in _ANCHOR_FILE_RE.finditer(html):
        found.setdefault(match.group(1), match.group(2).strip())

    for match in _FILE_LINK_CLASS_RE.finditer(html):
        found.setdefault(match.group(1), match.group(2).strip())

    for match in _API_ENDPOINT_RE.finditer(html):
        file_id = match.group(1)
        if file_id in found:
            continue
        start = max(0, match.start() - _NAME_CONTEXT_CHARS)
        context = html[start : match.start() + _NAME_CONTEXT_CHARS]
        name_match = _NEARBY_NAME_RE.search(context)
        name = (name_match.group(1) or name_match.group(2) or "").strip() if name_match else ""
        found[file_id] = name or f"File {file_id}"

    return [
        DiscoveredFile(
            file_id=file_id,
            file_name=name or f"File {file_id}",
            url=f"{base_url}/files/{file_id}",
            source_page_name=source_page_name,
        )
        for file_id, name in found.items()
    ]


def classify_link(url: str, base_url: str | None = None) -> LinkKind:
    if "youtube.com" in url or "vimeo.com" in url or "mediaspace" in url:
        return "video"
    if ".pdf" in url or ".doc" in url or ".ppt" in url:
        return "document"
    if base_url and urlparse(url).netloc == urlparse(base_url).netloc and "/courses/" in url:
        return "internal"
    return "external"


def extract_links(
    html: str, base_url: str | None = None, source_page_name: str = ""
) -> list[DiscoveredLink]:
    """Extract anchor links, classified by URL shape and deduplicated by URL.

    Relative ``/courses/...`` anchors are kept as internal links when a base
    URL is known; relative file links are left to :func:`extract_file_refs`.
    Anchors without visible text are skipped.
    """
    soup = BeautifulSoup(html, "html.parser")
    links: dict[str, DiscoveredLink] = {}

    for a_tag in soup.find_all("a", href=True):
        href = str(a_tag["href"]).strip()
        title = a_tag.get_text(" ", strip=True)
        if not title:
            continue

        if href.startswith(("http://", "https://")):
            url = href
            kind = classify_link(url, base_url)
        elif href.startswith("/courses/") and base_url and not _FILE_RE.search(href):
            url = urljoin(base_url.rstrip("/") + "/", href.lstrip("/"))
            kind = "internal"
        else:
            continue

        if url not in links:
            links[url] = DiscoveredLink(
                title=title, url=url, kind=kind, source_page_name=source_page_name
            )

    return list(links.values())


def html_to_text(html: str) -> str:
    """Drop scripts and styles, decode entities, and collapse whitespace."""
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(_STRIPPED_TAGS):
        tag.decompose()
    return _WHITESPACE_RE.sub(" ", soup.get_text(separator=" ", strip=True)).strip()


def looks_like_login_page(html: str) -> bool:
    """True when a fetched page is an SSO sign-in screen rather than content."""
    return any(marker in html for marker in _LOGIN_MARKERS)
