import json
import re

_TAG_RE = re.compile(r'<[^>]*>')
_INT_PREFIX_RE = re.compile(r'^\s*([+-]?\d+)')


def sanitize_string(v):
    if not isinstance(v, str):
        return v
    # Strip HTML tags, then surrounding whitespace
    return _TAG_RE.sub('', v).strip()


def parse_json_param(raw):
    """Decode a JSON-encoded query parameter; anything unparseable is None."""
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        return None


def parse_int_param(raw) -> int | None:
    """Leading-integer parse ("20", " 7", "15abc" -> 15); None when there is none."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    match = _INT_PREFIX_RE.match(str(raw))
    return int(match.group(1)) if match else None
