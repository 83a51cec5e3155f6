"""Header conversions between aiohttp multidicts and wire mappings."""

from collections.abc import Iterable, Mapping

from multidict import CIMultiDict

HeaderMap = dict[str, str | list[str]]

# Recomputed by aiohttp on every hop because bodies are re-encoded as text
HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
        "content-length",
        "content-encoding",
    }
)


def to_text(value: str) -> str:
    """Replace undecodable bytes that aiohttp surfaced as lone surrogates."""
    return value.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


def to_wire(items: Iterable[tuple[str, str]]) -> HeaderMap:
    """Collapse header pairs into a mapping, keeping repeated values as lists."""
    headers: HeaderMap = {}
    for name, value in items:
        if name.lower() in HOP_BY_HOP:
            continue
        name, value = to_text(name), to_text(value)
        existing = headers.get(name)
        if existing is None:
            headers[name] = value
        elif isinstance(existing, list):
            existing.append(value)
        else:
            headers[name] = [existing, value]
    return headers


def from_wire(headers: Mapping[str, str | list[str]]) -> CIMultiDict[str]:
    """Expand a wire mapping into a multidict suitable for aiohttp."""
    result: CIMultiDict[str] = CIMultiDict()
    for name, value in headers.items():
        if name.lower() in HOP_BY_HOP:
            continue
        if isinstance(value, list):
            for item in value:
                result.add(name, item)
        else:
            result.add(name, value)
    return result
