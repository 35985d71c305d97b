from __future__ import annotations

import ipaddress
import json
import re
import socket
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from logger import log_event

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)
BLOCK_TAGS = (
    "p", "div", "br", "li", "ul", "ol", "tr", "td", "th", "table", "section", "article",
    "header", "footer", "h1", "h2", "h3", "h4", "h5", "h6", "dd", "dt",
)
MAX_REDIRECTS = 4
MAX_PAGE_BYTES = 2_000_000
CHUNK_BYTES = 64 * 1024
CHARSET_RE = re.compile(r"""charset=['"]?([\w.:-]+)""", re.IGNORECASE)


class PageFetchError(ValueError):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _is_public_ip(value: str) -> bool:
    try:
        ip = ipaddress.ip_address(value)
    except ValueError:
        return False
    return not (
        ip.is_private or ip.is_loopback or ip.is_link_local
        or ip.is_multicast or ip.is_reserved or ip.is_unspecified
    )


def host_is_private_or_local(hostname: str) -> bool:
    """True when the host is local, or any address it resolves to is non-public."""
    host = (hostname or "").strip().strip("[]").lower()
    if not host or host == "localhost" or host.endswith(".localhost") or host.endswith(".local"):
        return True
    try:
        ipaddress.ip_address(host)
        return not _is_public_ip(host)
    except ValueError:
        pass
    try:
        infos = socket.getaddrinfo(host, None)
    except socket.gaierror:
        # Unresolvable hosts fail later at fetch time
        return False
    return any(not _is_public_ip(info[4][0]) for info in infos)


def normalize_url(raw_url: str) -> str:
    url = (raw_url or "").strip()
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise PageFetchError("Product URL must be an http(s) URL")
    if host_is_private_or_local(parsed.hostname):
        raise PageFetchError("Private or local URLs are not allowed")
    return url


def _iter_json_nodes(data: Any) -> Iterator[Dict[str, Any]]:
    if isinstance(data, dict):
        yield data
        for value in data.values():
            yield from _iter_json_nodes(value)
    elif isinstance(data, list):
        for item in data:
            yield from _iter_json_nodes(item)


def _is_product(node: Dict[str, Any]) -> bool:
    kind = node.get("@type")
    kinds = [kind] if isinstance(kind, str) else (kind if isinstance(kind, list) else [])
    return any(str(k).lower() == "product" for k in kinds)


def _name_of(value: Any) -> str:
    if isinstance(value, dict):
        return str(value.get("name") or "")
    if isinstance(value, list) and value:
        return _name_of(value[0])
    return str(value or "")


def _product_record(node: Dict[str, Any]) -> Dict[str, Any]:
    offers = node.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else {}
    offers = offers if isinstance(offers, dict) else {}
    images = node.get("image")
    if isinstance(images, str):
        images = [images]
    elif isinstance(images, dict):
        images = [images.get("url")]
    images = [str(i.get("url") if isinstance(i, dict) else i) for i in images or [] if i]
    price = offers.get("price") or offers.get("lowPrice")
    currency = offers.get("priceCurrency") or ""
    return {
        "name": str(node.get("name") or ""),
        "brand": _name_of(node.get("brand")),
        "sku": str(node.get("sku") or ""),
        "gtin": str(node.get("gtin13") or node.get("gtin") or node.get("gtin12") or node.get("gtin8") or ""),
        "mpn": str(node.get("mpn") or ""),
        "price": f"{price} {currency}".strip() if price else "",
        "availability": str(offers.get("availability") or "").rsplit("/", 1)[-1],
        "description": _clean_text(BeautifulSoup(str(node.get("description") or ""), "html.parser").get_text(" ")),
        "images": images,
    }


def extract_product_json_ld(soup: BeautifulSoup) -> Optional[Dict[str, Any]]:
    """First schema.org Product record found in JSON-LD script blocks."""
    for script in soup.find_all("script", attrs={"type": re.compile(r"ld\+json", re.IGNORECASE)}):
        raw = script.string or script.get_text() or ""
        try:
            parsed = json.loads(raw.strip())
        except ValueError:
            continue
        for node in _iter_json_nodes(parsed):
            if _is_product(node):
                return _product_record(node)
    return None


def _clean_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"[ \t\f\v]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def visible_text(soup: BeautifulSoup) -> str:
    for tag in soup(["script", "style", "noscript", "template", "svg", "iframe"]):
        tag.decompose()
    for tag in soup.find_all(BLOCK_TAGS):
        tag.insert_before("\n")
        tag.insert_after("\n")
    # get_text decodes entities
    return _clean_text(soup.get_text())


def reduce_html(html: str, max_chars: int = 12000) -> str:
    """Render a product page as the plain-text product info block used in prompts."""
    soup = BeautifulSoup(html or "", "html.parser")
    title = _clean_text(soup.title.get_text(" ")) if soup.title else ""
    h1 = soup.find("h1")
    heading = _clean_text(h1.get_text(" ")) if h1 else ""
    meta = soup.find("meta", attrs={"name": re.compile(r"^description$", re.IGNORECASE)})
    meta_desc = _clean_text(meta.get("content") or "") if meta else ""
    product = extract_product_json_ld(soup)

    lines: List[str] = []
    if title:
        lines.append(f"Page title: {title}")
    if heading:
        lines.append(f"Heading: {heading}")
    if meta_desc:
        lines.append(f"Meta description: {meta_desc}")
    if product:
        lines.append("Structured product data:")
        for key in ("name", "brand", "sku", "gtin", "mpn", "price", "availability", "description"):
            if product.get(key):
                lines.append(f"- {key}: {product[key]}")
        if product.get("images"):
            lines.append(f"- images: {', '.join(product['images'][:5])}")
    lines.append("Page text:")
    lines.append(visible_text(soup))
    out = "\n".join(lines)
    return out[:max_chars].rstrip()


def _peer_address(response: requests.Response) -> Optional[str]:
    """IP the response actually came from, when the transport exposes its socket."""
    raw = getattr(response, "raw", None)
    conn = getattr(raw, "connection", None) or getattr(raw, "_connection", None)
    sock = getattr(conn, "sock", None)
    if sock is None:
        return None
    try:
        return str(sock.getpeername()[0])
    except (OSError, IndexError, TypeError):
        return None


def _check_peer(response: requests.Response) -> None:
    # The name is resolved again when connecting; the connected address is what counts
    peer = _peer_address(response)
    if peer is not None and not _is_public_ip(peer):
        response.close()
        raise PageFetchError("Private or local URLs are not allowed")


def _read_capped(response: requests.Response, max_bytes: int) -> str:
    chunks: List[bytes] = []
    total = 0
    try:
        for chunk in response.iter_content(chunk_size=CHUNK_BYTES):
            if not chunk:
                continue
            chunks.append(chunk)
            total += len(chunk)
            if total >= max_bytes:
                break
    finally:
        response.close()
    body = b"".join(chunks)[:max_bytes]
    m = CHARSET_RE.search(response.headers.get("content-type", ""))
    try:
        return body.decode(m.group(1) if m else "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


def fetch_product_page(
    url: str, timeout_s: float = 12.0, max_chars: int = 12000, max_bytes: int = MAX_PAGE_BYTES,
) -> str:
    """Fetch a public product page and reduce it to text.

    Every redirect target is re-checked, the connected address must be public,
    and at most `max_bytes` of the body are read.
    """
    current = normalize_url(url)
    headers = {"User-Agent": USER_AGENT, "Accept-Language": "en-US,en;q=0.9"}
    try:
        for _ in range(MAX_REDIRECTS + 1):
            response = requests.get(
                current, headers=headers, timeout=timeout_s, allow_redirects=False, stream=True,
            )
            _check_peer(response)
            if response.is_redirect and response.headers.get("location"):
                response.close()
                current = normalize_url(urljoin(current, response.headers["location"]))
                continue
            break
        else:
            raise PageFetchError("Too many redirects while fetching product URL", status_code=502)

        if response.status_code >= 400:
            response.close()
            raise PageFetchError(f"Product URL returned HTTP {response.status_code}", status_code=502)
        html = _read_capped(response, max_bytes)
    except requests.Timeout as e:
        raise PageFetchError(f"Timeout while fetching product URL ({int(timeout_s)}s)", status_code=502) from e
    except requests.RequestException as e:
        raise PageFetchError(f"Could not fetch product URL: {e.__class__.__name__}", status_code=502) from e

    text = reduce_html(html, max_chars=max_chars)
    log_event("PAGE_FETCH", f"host={urlparse(current).hostname} status={response.status_code} chars={len(text)}")
    return text
