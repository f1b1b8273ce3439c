"""Header helpers for the idempotency gate.

- Case-insensitive lookup of the idempotency key header
- Removal of volatile headers before a response is cached
- Replay metadata headers on gate responses
- Folding repeated response headers into one entry and back
"""

from collections.abc import Iterable

# Headers that differ between the original response and a replay
VOLATILE_HEADERS = {
    "date",
    "server",
    "connection",
    "transfer-encoding",
    "keep-alive",
    "trailer",
    "upgrade",
    "proxy-connection",
    "proxy-authenticate",
    "proxy-authorization",
    "content-length",
}

REPLAY_HEADER = "Idempotent-Replay"
KEY_HEADER = "Idempotency-Key"

# Set-Cookie cannot be comma-joined, so its repeats are newline-joined
SET_COOKIE = "set-cookie"
COOKIE_SEPARATOR = "\n"


def get_header_value(
    headers: dict[str, str],
    header_name: str,
    default: str | None = None,
) -> str | None:
    """Get header value with case-insensitive lookup.

    Example:
        >>> get_header_value({"Idempotency-Key": "abc"}, "idempotency-key")
        'abc'
        >>> get_header_value({}, "missing", "default")
        'default'
    """
    header_name_lower = header_name.lower()

    for key, value in headers.items():
        if key.lower() == header_name_lower:
            return value

    return default


def filter_response_headers(headers: dict[str, str]) -> dict[str, str]:
    """Drop volatile and replay-metadata headers from a response.

    content-length is dropped as well; the framework recomputes it from the
    replayed body.

    Example:
        >>> filter_response_headers({"Content-Type": "application/json", "Date": "x"})
        {'Content-Type': 'application/json'}
    """
    headers_to_remove = VOLATILE_HEADERS | {REPLAY_HEADER.lower(), KEY_HEADER.lower()}
    return {key: value for key, value in headers.items() if key.lower() not in headers_to_remove}


def add_replay_headers(
    headers: dict[str, str],
    idempotency_key: str,
    is_replay: bool = True,
) -> dict[str, str]:
    """Return a copy of ``headers`` with replay metadata added.

    Example:
        >>> add_replay_headers({}, "abc-123")
        {'Idempotent-Replay': 'true', 'Idempotency-Key': 'abc-123'}
    """
    result = {
        key: value
        for key, value in headers.items()
        if key.lower() not in {REPLAY_HEADER.lower(), KEY_HEADER.lower()}
    }
    result[REPLAY_HEADER] = "true" if is_replay else "false"
    result[KEY_HEADER] = idempotency_key
    return result


def fold_headers(raw: Iterable[tuple[bytes, bytes]]) -> dict[str, str]:
    """Collapse raw response headers into one entry per name.

    Repeated headers are comma-joined, except Set-Cookie whose values are
    joined with a newline so ``unfold_headers`` can split them again.

    Example:
        >>> fold_headers([(b"set-cookie", b"a=1"), (b"set-cookie", b"b=2")])
        {'set-cookie': 'a=1\\nb=2'}
    """
    folded: dict[str, str] = {}
    for raw_name, raw_value in raw:
        name = raw_name.decode("latin-1").lower()
        value = raw_value.decode("latin-1")
        if name not in folded:
            folded[name] = value
        elif name == SET_COOKIE:
            folded[name] = f"{folded[name]}{COOKIE_SEPARATOR}{value}"
        else:
            folded[name] = f"{folded[name]}, {value}"
    return folded


def unfold_headers(headers: dict[str, str]) -> list[tuple[str, str]]:
    """Expand folded headers into (name, value) pairs, one per Set-Cookie.

    Example:
        >>> unfold_headers({"set-cookie": "a=1\\nb=2"})
        [('set-cookie', 'a=1'), ('set-cookie', 'b=2')]
    """
    pairs: list[tuple[str, str]] = []
    for name, value in headers.items():
        if name.lower() == SET_COOKIE:
            pairs.extend((name, cookie) for cookie in value.split(COOKIE_SEPARATOR))
        else:
            pairs.append((name, value))
    return pairs
