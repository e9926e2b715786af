#!/usr/bin/env python3
import argparse
import hashlib
import json
import logging
import os
import posixpath
import re
import sys
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union
from urllib.parse import unquote, urldefrag, urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup, FeatureNotFound
from bs4.element import Tag
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# -------------------- Config --------------------

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.7",
}

# url(...) with optional quoting, and the bare-string form of @import.
# The url() form of @import is covered by the url(...) branch.
CSS_REF_RE = re.compile(
    r"@import\s+(?P<q>[\"'])(?P<imp>[^\"')]+)(?P=q)|url\((?P<url>[^)]+)\)",
    re.IGNORECASE,
)
CSS_QUOTE_RE = re.compile(r"^['\"]|['\"]$")
WS_RE = re.compile(r"\s+")

SKIP_PREFIXES = ("#", "data:", "mailto:", "tel:", "javascript:", "blob:")
HYPERLINK_TAGS = {"a", "area"}

ASSET_EXTS = {
    ".css",
    ".js",
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".webp",
    ".avif",
    ".ico",
    ".woff",
    ".woff2",
    ".ttf",
    ".otf",
    ".eot",
    ".pdf",
    ".zip",
    ".rar",
    ".mp4",
    ".webm",
    ".mp3",
    ".wav",
    ".ogg",
    ".xml",
    ".json",
}

ATTR_KEY_MAP = {
    "class": "className",
    "http-equiv": "httpEquiv",
    "accept-charset": "acceptCharset",
    "charset": "charSet",
    "crossorigin": "crossOrigin",
    "referrerpolicy": "referrerPolicy",
    "hreflang": "hrefLang",
    "srcset": "srcSet",
    "content-security-policy": "contentSecurityPolicy",
    "tabindex": "tabIndex",
    "readonly": "readOnly",
    "maxlength": "maxLength",
    "minlength": "minLength",
}

DEFAULT_PORTS = {"http": 80, "https": 443}

# environment variable -> Settings field
ENV_VARS = {
    "SCRAPE_BASE_URL": "base_url",
    "BASE_PATH": "base_path",
    "SCRAPE_MAX_PAGES": "max_pages",
    "SCRAPE_AUTO_EN_VARIANTS": "auto_variants",
    "SCRAPE_EXTRA_URLS": "extra_urls",
    "SCRAPE_EXTRA_PATHS": "extra_paths",
    "SCRAPE_EXCLUDE_PATHS": "exclude_paths",
    "CONTENT_ROOT": "content_root",
    "PUBLIC_DIR": "asset_root",
}

# always added / always dropped; operator lists extend these
DEFAULT_EXTRA_PATHS = [
    "/en/",
    "/en/quienes-somos/",
    "/en/contacto/",
    "/en/actualidad/",
    "/en/te-necesitamos/",
    "/en/proyecto-incunest/",
    "/en/tutoriales/",
    "/en/dona/",
]
DEFAULT_EXCLUDE_PATHS = ["/category/sin-categoria/"]


# -------------------- Errors --------------------


class MirrorError(Exception):
    pass


class ConfigError(MirrorError):
    pass


class SitemapError(MirrorError):
    pass


class FetchError(MirrorError):
    def __init__(self, url: str, status: Optional[int] = None, reason: str = ""):
        self.url = url
        self.status = status
        msg = f"failed to fetch {url}"
        if status is not None:
            msg += f": HTTP {status}"
        if reason:
            msg += f" ({reason})"
        super().__init__(msg)


class ProbeResult(Enum):
    FOUND = "found"
    NOT_FOUND = "not-found"
    ERROR = "error"


class DownloadStatus(Enum):
    OK = "ok"
    HTTP_ERROR = "http-error"
    TRANSPORT_ERROR = "transport-error"
    WRITE_ERROR = "write-error"


# -------------------- Settings --------------------


@dataclass
class Settings:
    base_url: str = ""
    base_path: str = ""
    max_pages: int = 0
    auto_variants: bool = True
    extra_urls: List[str] = field(default_factory=list)
    extra_paths: List[str] = field(default_factory=list)
    exclude_paths: List[str] = field(default_factory=list)
    content_root: Path = Path("content")
    asset_root: Path = Path("public/remote-assets")

    # Layout of the mirrored site
    asset_url_prefix: str = "/remote-assets"
    sitemap_path: str = "/wp-sitemap.xml"
    sitemap_skip: List[str] = field(default_factory=lambda: ["wp-sitemap-users"])
    variant_pattern: str = r"^/articulo-[^/]+/?$"
    variant_language: str = "en"
    asset_markers: List[str] = field(
        default_factory=lambda: ["/wp-content/", "/wp-includes/"]
    )
    default_extra_paths: List[str] = field(
        default_factory=lambda: list(DEFAULT_EXTRA_PATHS)
    )
    default_exclude_paths: List[str] = field(
        default_factory=lambda: list(DEFAULT_EXCLUDE_PATHS)
    )

    # HTTP
    timeout: Optional[float] = 60.0
    retries: int = 0

    def validate(self) -> None:
        p = urlparse(self.base_url)
        if p.scheme not in {"http", "https"} or not p.netloc:
            raise ConfigError(f"base URL must be an http(s) URL, got {self.base_url!r}")
        try:
            re.compile(self.variant_pattern)
        except re.error as e:
            raise ConfigError(f"invalid variant pattern {self.variant_pattern!r}: {e}")
        if self.max_pages < 0:
            raise ConfigError("max pages must be >= 0")


def split_csv(value: Union[str, Iterable[str], None]) -> List[str]:
    if value is None:
        return []
    items = value.split(",") if isinstance(value, str) else list(value)
    return [str(v).strip() for v in items if str(v).strip()]


def parse_bool(value: Union[str, bool]) -> bool:
    if isinstance(value, bool):
        return value
    return value != "false"


def normalize_base_path(value: str) -> str:
    value = (value or "").strip()
    if not value or value == "/":
        return ""
    if not value.startswith("/"):
        value = "/" + value
    return value.rstrip("/")


def settings_from_env(environ: Mapping[str, str]) -> Dict[str, object]:
    out: Dict[str, object] = {}
    for var, name in ENV_VARS.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        if name == "max_pages":
            try:
                out[name] = int(raw)
            except ValueError:
                raise ConfigError(f"{var} must be an integer, got {raw!r}")
        elif name == "auto_variants":
            out[name] = parse_bool(raw)
        elif name in {"extra_urls", "extra_paths", "exclude_paths"}:
            out[name] = split_csv(raw)
        else:
            out[name] = raw
    return out


# -------------------- Utils --------------------


def can_fetch_url(u: Optional[str]) -> bool:
    if not u:
        return False
    u = u.strip()
    if not u or u.lower().startswith(SKIP_PREFIXES):
        return False
    return True


def resolve_url(raw: str, base: str) -> Optional[str]:
    try:
        absu = urljoin(base, raw.strip())
    except ValueError:
        return None
    p = urlparse(absu)
    if p.scheme not in {"http", "https"} or not p.netloc:
        return None
    return absu


def origin_of(u: str) -> Optional[Tuple[str, str, int]]:
    try:
        p = urlparse(u)
        port = p.port
    except ValueError:
        return None
    scheme = (p.scheme or "").lower()
    if not scheme or not p.hostname:
        return None
    return scheme, p.hostname.lower(), port or DEFAULT_PORTS.get(scheme, 0)


def is_same_origin(base: str, other: str) -> bool:
    b = origin_of(base)
    return b is not None and b == origin_of(other)


def normalize_pathname(path: str) -> str:
    if not path:
        return "/"
    if not path.startswith("/"):
        path = "/" + path
    return path if path.endswith("/") else path + "/"


def route_for_url(u: str) -> str:
    path = urlparse(u).path or "/"
    route = path if path.endswith("/") else path + "/"
    return "/" if route == "//" else route


def short_h(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()[:8]


def ensure_parent_dir(p: Path) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)


def atomic_write_json(path: Path, data: object) -> None:
    ensure_parent_dir(path)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp, path)


def build_session(
    settings: Settings, headers: Optional[Dict[str, str]] = None
) -> requests.Session:
    s = requests.Session()
    retry = Retry(
        total=settings.retries,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods={"GET", "HEAD"},
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS if headers is None else headers)
    return s


def request_timeout(settings: Settings) -> Optional[float]:
    return settings.timeout or None


def fetch_text(session: requests.Session, url: str, timeout: Optional[float]) -> str:
    try:
        r = session.get(url, timeout=timeout, allow_redirects=True)
    except requests.RequestException as e:
        raise FetchError(url, reason=str(e)) from e
    if not (200 <= r.status_code < 300):
        raise FetchError(url, status=r.status_code)
    if "charset" not in (r.headers.get("Content-Type") or "").lower():
        r.encoding = "utf-8"
    return r.text


# -------------------- Site --------------------


class Site:
    """Origin and path rules of the site being mirrored."""

    def __init__(self, settings: Settings):
        self.base_url = settings.base_url
        self.base_path = normalize_base_path(settings.base_path)
        self.asset_url_prefix = "/" + settings.asset_url_prefix.strip("/")
        self.asset_markers = list(settings.asset_markers)

    def is_internal(self, u: Optional[str]) -> bool:
        return bool(u) and is_same_origin(self.base_url, u)

    def prefix_base_path(self, path: str) -> str:
        if not self.base_path:
            return path
        if path == "/":
            return f"{self.base_path}/"
        return f"{self.base_path}{path}"

    def is_local_reference(self, raw: str) -> bool:
        raw = raw.strip()
        if raw.startswith(self.prefix_base_path(self.asset_url_prefix + "/")):
            return True
        return bool(self.base_path) and raw.startswith(self.base_path + "/")

    def looks_like_asset(self, u: str) -> bool:
        path = urlparse(u).path
        if any(marker in path for marker in self.asset_markers):
            return True
        ext = posixpath.splitext(path)[1].lower()
        return ext in ASSET_EXTS

    def route_href(self, u: str) -> str:
        p = urlparse(u)
        path = normalize_pathname(p.path)
        href = self.prefix_base_path(path)
        if p.query:
            href += "?" + p.query
        if p.fragment:
            href += "#" + p.fragment
        return href


# -------------------- Asset cache --------------------


def is_safe_segment(seg: str) -> bool:
    return bool(seg) and seg not in {".", ".."} and not any(c in seg for c in "/\\\0")


@dataclass(frozen=True)
class AssetEntry:
    url: str
    fs_path: Path
    public_path: str


def asset_relative_path(asset_url: str) -> str:
    p = urlparse(asset_url)
    segs = [s for s in p.path.split("/") if is_safe_segment(unquote(s))]
    clean = "/".join(segs)
    if not clean or p.path.endswith("/"):
        clean = f"{clean}/index" if clean else "index"
    if p.query:
        h = short_h("?" + p.query)
        stem, ext = posixpath.splitext(clean)
        if ext:
            clean = f"{stem}.{h}{ext}"
        else:
            clean = f"{clean}-{h}"
    return clean


class AssetCache:
    """Write-once URL -> local file mapping shared by every rewriting pass."""

    def __init__(
        self,
        site: Site,
        session: requests.Session,
        asset_root: Path,
        timeout: Optional[float] = None,
    ):
        self.site = site
        self.session = session
        self.asset_root = Path(asset_root)
        self.timeout = timeout
        self._entries: Dict[str, AssetEntry] = {}
        self._status: Dict[str, DownloadStatus] = {}
        self.in_progress: Set[Path] = set()
        self._lock = Lock()

    def __contains__(self, url: str) -> bool:
        return url in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, url: str) -> Optional[AssetEntry]:
        return self._entries.get(url)

    def status(self, url: str) -> Optional[DownloadStatus]:
        return self._status.get(url)

    def failures(self) -> Dict[str, DownloadStatus]:
        return {u: s for u, s in self._status.items() if s is not DownloadStatus.OK}

    def paths_for(self, url: str) -> AssetEntry:
        rel = asset_relative_path(url)
        fs_path = self.asset_root.joinpath(*unquote(rel).split("/"))
        public = self.site.prefix_base_path(f"{self.site.asset_url_prefix}/{rel}")
        return AssetEntry(url=url, fs_path=fs_path, public_path=public)

    def local_path(self, url: str, relative_to: Optional[Path] = None) -> str:
        url, frag = urldefrag(url)
        entry = self.resolve(url)
        if relative_to is None:
            local = entry.public_path
        else:
            local = Path(os.path.relpath(entry.fs_path, relative_to)).as_posix()
        return f"{local}#{frag}" if frag else local

    def resolve(self, url: str) -> AssetEntry:
        with self._lock:
            entry = self._entries.get(url)
            if entry is not None:
                logging.debug("asset cache hit: %s", url)
                return entry
            # reserve before downloading so recursive references see it
            entry = self.paths_for(url)
            self._entries[url] = entry

        status = self.download(entry)
        self._status[url] = status
        if status is DownloadStatus.OK and entry.fs_path.suffix.lower() == ".css":
            rewrite_css_file(entry.fs_path, url, self)
        return entry

    def download(self, entry: AssetEntry) -> DownloadStatus:
        root = self.asset_root.resolve()
        if root not in entry.fs_path.resolve().parents:
            logging.warning("Refusing to write %s outside %s", entry.fs_path, root)
            return DownloadStatus.WRITE_ERROR
        try:
            resp = self.session.get(
                entry.url, timeout=self.timeout, stream=True, allow_redirects=True
            )
            try:
                if not (200 <= resp.status_code < 300):
                    logging.warning(
                        "Skipping asset %s: HTTP %s", entry.url, resp.status_code
                    )
                    return DownloadStatus.HTTP_ERROR
                ensure_parent_dir(entry.fs_path)
                written = 0
                with open(entry.fs_path, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=64 * 1024):
                        if not chunk:
                            continue
                        written += len(chunk)
                        f.write(chunk)
            finally:
                resp.close()
        except requests.RequestException as e:
            logging.warning("Failed to download %s: %s", entry.url, e)
            return DownloadStatus.TRANSPORT_ERROR
        except OSError as e:
            logging.warning("Failed to write %s: %s", entry.fs_path, e)
            return DownloadStatus.WRITE_ERROR

        if written == 0:
            logging.warning("empty response %s", entry.url)
        logging.info("downloaded asset: %s -> %s", entry.url, entry.fs_path)
        return DownloadStatus.OK


# -------------------- Rewriters --------------------


def rewrite_css_text(
    css_text: str,
    base_url: str,
    cache: AssetCache,
    css_path: Optional[Path] = None,
) -> str:
    site = cache.site

    def map_url(raw: str) -> Optional[str]:
        if not can_fetch_url(raw) or site.is_local_reference(raw):
            return None
        absu = resolve_url(raw, base_url)
        if not site.is_internal(absu):
            return None
        return cache.local_path(absu, None if css_path is None else css_path.parent)

    def repl(m: re.Match) -> str:
        if m.group("imp") is not None:
            local = map_url(m.group("imp").strip())
            return m.group(0) if local is None else f"@import url({local})"
        cleaned = CSS_QUOTE_RE.sub("", m.group("url").strip())
        local = map_url(cleaned)
        return m.group(0) if local is None else f"url({local})"

    return CSS_REF_RE.sub(repl, css_text)


def rewrite_css_file(css_path: Path, css_url: str, cache: AssetCache) -> None:
    if css_path in cache.in_progress:
        return
    cache.in_progress.add(css_path)
    try:
        text = css_path.read_text(encoding="utf-8", errors="surrogateescape")
        new_text = rewrite_css_text(text, css_url, cache, css_path)
        if new_text != text:
            css_path.write_text(new_text, encoding="utf-8", errors="surrogateescape")
    except OSError as e:
        logging.warning("Failed to rewrite stylesheet %s: %s", css_path, e)
    finally:
        cache.in_progress.discard(css_path)


def rewrite_srcset(value: str, page_url: str, cache: AssetCache) -> str:
    site = cache.site
    parts = [p.strip() for p in value.split(",") if p.strip()]
    out: List[str] = []
    for part in parts:
        comp = WS_RE.split(part, maxsplit=1)
        url_part = comp[0]
        desc = comp[1] if len(comp) > 1 else ""
        if not can_fetch_url(url_part) or site.is_local_reference(url_part):
            out.append(part)
            continue
        absu = resolve_url(url_part, page_url)
        if not site.is_internal(absu):
            out.append(part)
            continue
        local = cache.local_path(absu)
        out.append(f"{local} {desc}" if desc else local)
    return ", ".join(out) if out else value


def rewrite_dom_assets(soup: BeautifulSoup, page_url: str, cache: AssetCache) -> None:
    site = cache.site

    for tag in soup.find_all(src=True):
        raw = tag.get("src")
        if not can_fetch_url(raw) or site.is_local_reference(raw):
            continue
        absu = resolve_url(raw, page_url)
        if site.is_internal(absu):
            tag["src"] = cache.local_path(absu)

    for tag in soup.find_all(href=True):
        raw = tag.get("href")
        if not can_fetch_url(raw) or site.is_local_reference(raw):
            continue
        absu = resolve_url(raw, page_url)
        if not site.is_internal(absu):
            continue
        if site.looks_like_asset(absu):
            tag["href"] = cache.local_path(absu)
        elif tag.name in HYPERLINK_TAGS:
            tag["href"] = site.route_href(absu)

    for tag in soup.find_all(srcset=True):
        raw = tag.get("srcset")
        if not raw:
            continue
        tag["srcset"] = rewrite_srcset(raw, page_url, cache)

    for style in soup.find_all("style"):
        text = style.string
        if not text or not text.strip():
            continue
        new_text = rewrite_css_text(str(text), page_url, cache)
        if new_text != text:
            style.string.replace_with(new_text)


# -------------------- Page scraper --------------------


@dataclass(frozen=True)
class PageDocument:
    route: str
    title: str
    meta: Tuple[Dict[str, object], ...]
    links: Tuple[Dict[str, object], ...]
    styles: Tuple[str, ...]
    scripts: Tuple[Dict[str, object], ...]
    body_html: str
    body_attrs: Dict[str, object]
    html_attrs: Dict[str, object]

    def to_dict(self) -> Dict[str, object]:
        return {
            "route": self.route,
            "title": self.title,
            "meta": [dict(m) for m in self.meta],
            "links": [dict(link) for link in self.links],
            "styles": list(self.styles),
            "scripts": [dict(s) for s in self.scripts],
            "bodyHtml": self.body_html,
            "bodyAttrs": dict(self.body_attrs),
            "htmlAttrs": dict(self.html_attrs),
        }


def bs4_parse(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml", multi_valued_attributes=None)
    except FeatureNotFound:
        return BeautifulSoup(html, "html.parser", multi_valued_attributes=None)


def normalize_attr_key(key: str) -> str:
    return ATTR_KEY_MAP.get(key.lower(), key)


def get_attrs(tag: Optional[Tag]) -> Dict[str, object]:
    if tag is None:
        return {}
    out: Dict[str, object] = {}
    for k, v in tag.attrs.items():
        if isinstance(v, list):
            v = " ".join(v)
        out[normalize_attr_key(k)] = True if v == "" or v == k else v
    return out


def tag_text(tag: Tag) -> str:
    return "".join(str(c) for c in tag.contents)


def scrape_page(url: str, session: requests.Session, cache: AssetCache) -> PageDocument:
    html = fetch_text(session, url, cache.timeout)
    soup = bs4_parse(html)

    rewrite_dom_assets(soup, url, cache)

    head = soup.head
    body = soup.body

    title = ""
    meta: List[Dict[str, object]] = []
    links: List[Dict[str, object]] = []
    styles: List[str] = []
    scripts: List[Dict[str, object]] = []
    if head is not None:
        title_tag = head.find("title")
        if title_tag is not None:
            title = title_tag.get_text().strip()
        meta = [get_attrs(t) for t in head.find_all("meta")]
        links = [get_attrs(t) for t in head.find_all("link")]
        styles = [tag_text(t) for t in head.find_all("style")]
        for t in head.find_all("script"):
            desc = get_attrs(t)
            inline = tag_text(t).strip()
            if inline:
                desc["inline"] = inline
            scripts.append(desc)

    return PageDocument(
        route=route_for_url(url),
        title=title,
        meta=tuple(meta),
        links=tuple(links),
        styles=tuple(styles),
        scripts=tuple(scripts),
        body_html=body.decode_contents() if body is not None else "",
        body_attrs=get_attrs(body),
        html_attrs=get_attrs(soup.html),
    )


# -------------------- Sitemaps / URL set --------------------


def parse_sitemap_xml(xml_text: str, source: str) -> Tuple[str, List[str]]:
    try:
        root = ET.fromstring(xml_text.strip())
    except ET.ParseError as e:
        raise SitemapError(f"invalid sitemap XML at {source}: {e}") from e
    kind = "index" if root.tag.endswith("sitemapindex") else "urlset"
    locs = [(loc.text or "").strip() for loc in root.findall(".//{*}loc")]
    return kind, [loc for loc in locs if loc]


def load_sitemap_urls(session: requests.Session, settings: Settings) -> List[str]:
    timeout = request_timeout(settings)
    index_url = settings.base_url.rstrip("/") + "/" + settings.sitemap_path.lstrip("/")
    kind, locs = parse_sitemap_xml(fetch_text(session, index_url, timeout), index_url)
    if kind == "urlset":
        return list(dict.fromkeys(locs))

    page_urls: Dict[str, None] = {}
    for sitemap_url in locs:
        if any(pat in sitemap_url for pat in settings.sitemap_skip):
            logging.debug("skipping sitemap %s", sitemap_url)
            continue
        _, urls = parse_sitemap_xml(
            fetch_text(session, sitemap_url, timeout), sitemap_url
        )
        for u in urls:
            page_urls.setdefault(u, None)
    return list(page_urls)


def add_extra_urls(urls: List[str], settings: Settings) -> List[str]:
    all_urls: Dict[str, None] = dict.fromkeys(urls)

    for extra in settings.extra_urls:
        p = urlparse(extra)
        if p.scheme not in {"http", "https"} or not p.netloc:
            logging.warning("Skipping invalid extra URL entry: %s", extra)
            continue
        if not p.path:
            p = p._replace(path="/")
        all_urls.setdefault(urlunparse(p), None)

    for extra_path in settings.default_extra_paths + settings.extra_paths:
        normalized = extra_path if extra_path.startswith("/") else "/" + extra_path
        absu = resolve_url(normalized, settings.base_url)
        if absu is None or WS_RE.search(normalized):
            logging.warning("Skipping invalid extra path entry: %s", extra_path)
            continue
        all_urls.setdefault(absu, None)

    return list(all_urls)


def probe_url(
    session: requests.Session, url: str, timeout: Optional[float]
) -> ProbeResult:
    try:
        head = session.head(url, timeout=timeout, allow_redirects=True)
        if 200 <= head.status_code < 300:
            return ProbeResult.FOUND
        if head.status_code in (403, 405):
            r = session.get(url, timeout=timeout, allow_redirects=True, stream=True)
            try:
                ok = 200 <= r.status_code < 300
            finally:
                r.close()
            return ProbeResult.FOUND if ok else ProbeResult.NOT_FOUND
    except requests.RequestException as e:
        logging.debug("probe failed for %s: %s", url, e)
        return ProbeResult.ERROR
    return ProbeResult.NOT_FOUND


def variant_candidates(urls: List[str], settings: Settings) -> List[str]:
    site = Site(settings)
    pattern = re.compile(settings.variant_pattern)
    lang_prefix = "/" + settings.variant_language.strip("/")
    existing = set(urls)
    candidates: List[str] = []
    for u in urls:
        if not site.is_internal(u):
            continue
        path = urlparse(u).path
        if path.startswith(lang_prefix + "/"):
            continue
        if not pattern.search(path):
            continue
        variant = urljoin(settings.base_url, lang_prefix + normalize_pathname(path))
        if variant not in existing and variant not in candidates:
            candidates.append(variant)
    return candidates


def add_language_variants(
    urls: List[str], session: requests.Session, settings: Settings
) -> List[str]:
    if not settings.auto_variants:
        return urls
    all_urls = list(urls)
    timeout = request_timeout(settings)
    for candidate in variant_candidates(urls, settings):
        result = probe_url(session, candidate, timeout)
        logging.debug("variant probe %s -> %s", candidate, result.value)
        if result is ProbeResult.FOUND:
            all_urls.append(candidate)
        elif result is ProbeResult.ERROR:
            logging.info("Could not check variant %s, leaving it out", candidate)
    return all_urls


def filter_excluded_urls(urls: List[str], exclude_paths: Iterable[str]) -> List[str]:
    excluded = {normalize_pathname(p) for p in exclude_paths}
    if not excluded:
        return urls
    return [u for u in urls if normalize_pathname(urlparse(u).path) not in excluded]


def build_url_set(session: requests.Session, settings: Settings) -> List[str]:
    urls = load_sitemap_urls(session, settings)
    logging.info("sitemap: %d URLs", len(urls))
    urls = add_extra_urls(urls, settings)
    urls = add_language_variants(urls, session, settings)
    urls = filter_excluded_urls(
        urls, settings.default_exclude_paths + settings.exclude_paths
    )
    if settings.max_pages > 0:
        urls = urls[: settings.max_pages]
    return urls


# -------------------- Output --------------------


def document_path_for_route(content_root: Path, route: str) -> Path:
    segs = [s for s in route.split("/") if s]
    return Path(content_root).joinpath(*segs, "index.json")


def write_page_document(content_root: Path, doc: PageDocument) -> Path:
    path = document_path_for_route(content_root, doc.route)
    atomic_write_json(path, doc.to_dict())
    return path


def write_routes(content_root: Path, routes: List[str]) -> Path:
    path = Path(content_root) / "routes.json"
    atomic_write_json(path, routes)
    return path


# -------------------- Main: mirror --------------------


@dataclass
class MirrorResult:
    routes: List[str]
    url_count: int
    asset_count: int
    failed_assets: Dict[str, DownloadStatus]


def mirror_site(
    settings: Settings, session: Optional[requests.Session] = None
) -> MirrorResult:
    settings.validate()
    content_root = Path(settings.content_root)
    asset_root = Path(settings.asset_root)
    content_root.mkdir(parents=True, exist_ok=True)
    asset_root.mkdir(parents=True, exist_ok=True)

    own_session = session is None
    if session is None:
        session = build_session(settings)
    cache = AssetCache(Site(settings), session, asset_root, request_timeout(settings))

    try:
        urls = build_url_set(session, settings)
        routes: List[str] = []
        seen_routes: Set[str] = set()
        for i, url in enumerate(urls, 1):
            route = route_for_url(url)
            if route in seen_routes:
                logging.warning("Skipping %s: route %s already scraped", url, route)
                continue
            logging.info("Scraping [%d/%d] %s", i, len(urls), url)
            doc = scrape_page(url, session, cache)
            write_page_document(content_root, doc)
            seen_routes.add(route)
            routes.append(route)
        write_routes(content_root, routes)
    finally:
        if own_session:
            session.close()

    failed = cache.failures()
    if failed:
        logging.warning("%d assets could not be downloaded", len(failed))
    logging.info("Done. Saved %d routes.", len(routes))
    return MirrorResult(
        routes=routes,
        url_count=len(urls),
        asset_count=len(cache),
        failed_assets=failed,
    )


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, object]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        try:
            import tomllib  # py311+
        except ImportError:
            try:
                import tomli as tomllib  # backport
            except ImportError:
                raise ConfigError("TOML config requires Python 3.11+ or 'tomli'")
        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        try:
            import yaml
        except ImportError:
            raise ConfigError("YAML config requires 'PyYAML'")
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ConfigError("Top-level YAML must be a mapping")
            return data
    else:
        raise ConfigError("Unsupported config format. Use .toml or .yaml")


def flatten_config(cfg: Mapping[str, object]) -> Dict[str, object]:
    flat = {k: v for k, v in cfg.items() if not isinstance(v, dict)}
    for g in ("scrape", "output", "variants", "http", "general"):
        if isinstance(cfg.get(g), dict):
            flat.update(cfg[g])
    flat = {k.replace("-", "_"): v for k, v in flat.items()}
    for name in (
        "extra_urls",
        "extra_paths",
        "exclude_paths",
        "default_extra_paths",
        "default_exclude_paths",
    ):
        if name in flat:
            flat[name] = split_csv(flat[name])
    return flat


# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Mirror a content-managed site into a static route manifest, "
        "per-route documents and a local asset tree.",
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)
    p.add_argument("--base-url", type=str, default="", help="site to mirror")
    p.add_argument(
        "--base-path", type=str, default="", help="deployment sub-path prefix"
    )
    p.add_argument(
        "--max-pages", type=int, default=0, help="max pages to scrape (0 = all)"
    )
    p.add_argument(
        "--no-variants",
        dest="auto_variants",
        action="store_false",
        help="do not probe language variants of article URLs",
    )
    p.add_argument(
        "--extra-url",
        dest="extra_urls",
        action="append",
        default=[],
        help="extra absolute URL to scrape",
    )
    p.add_argument(
        "--extra-path",
        dest="extra_paths",
        action="append",
        default=[],
        help="extra path (relative to base URL) to scrape",
    )
    p.add_argument(
        "--exclude-path",
        dest="exclude_paths",
        action="append",
        default=[],
        help="path to leave out",
    )
    p.add_argument(
        "--content-root", type=str, default="content", help="documents directory"
    )
    p.add_argument(
        "--asset-root",
        type=str,
        default="public/remote-assets",
        help="downloaded assets directory",
    )
    p.add_argument(
        "--timeout", type=float, default=60.0, help="request timeout seconds (0 = none)"
    )
    p.add_argument("--retries", type=int, default=0, help="HTTP retries per request")
    p.add_argument("--verbose", action="store_true", help="debug logging")
    return p


def parse_args(
    argv: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None
) -> argparse.Namespace:
    parser = build_arg_parser()
    parser.set_defaults(**settings_from_env(os.environ if environ is None else environ))
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        parser.set_defaults(**flatten_config(load_config_file(preliminary.config)))
    return parser.parse_args(argv)


def settings_from_args(args: argparse.Namespace) -> Settings:
    settings = Settings(
        base_url=args.base_url,
        base_path=normalize_base_path(args.base_path),
        max_pages=args.max_pages,
        auto_variants=parse_bool(args.auto_variants),
        extra_urls=split_csv(args.extra_urls),
        extra_paths=split_csv(args.extra_paths),
        exclude_paths=split_csv(args.exclude_paths),
        content_root=Path(args.content_root).resolve(),
        asset_root=Path(args.asset_root).resolve(),
        timeout=args.timeout,
        retries=max(0, args.retries),
    )
    for name in (
        "asset_url_prefix",
        "sitemap_path",
        "sitemap_skip",
        "variant_pattern",
        "variant_language",
        "asset_markers",
        "default_extra_paths",
        "default_exclude_paths",
    ):
        if hasattr(args, name):
            value = getattr(args, name)
            if name in {
                "sitemap_skip",
                "asset_markers",
                "default_extra_paths",
                "default_exclude_paths",
            }:
                value = split_csv(value)
            setattr(settings, name, value)
    return settings


def main(argv: Optional[List[str]] = None) -> None:
    try:
        args = parse_args(argv)
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.INFO,
            format="%(levelname)s: %(message)s",
        )
        mirror_site(settings_from_args(args))
    except MirrorError as e:
        logging.error("%s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
