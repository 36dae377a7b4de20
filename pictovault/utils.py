import json
import re
from datetime import datetime, timezone


def now_iso():
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


_ws_re = re.compile(r"\s+")
_slug_re = re.compile(r"[^a-z0-9_-]+")


def normalize_text(s):
    if s is None:
        return ""
    s = str(s).strip()
    s = _ws_re.sub(" ", s)
    return s


def normalize_language(language):
    lang = normalize_text(language).lower()
    return lang if len(lang) >= 2 else "en"


def slugify(value):
    """Lower-case, turn each run of chars outside [a-z0-9_-] into one "-", trim "-".

    "Food & Drink" -> "food-drink"; an empty result becomes "uncategorized".
    """
    slug = _slug_re.sub("-", normalize_text(value).lower()).strip("-")
    return slug or "uncategorized"


def clamp(value, low, high):
    return max(low, min(high, value))


def json_dumps(obj):
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), sort_keys=True)


def json_loads_list(raw):
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return [str(v) for v in data] if isinstance(data, list) else []
