from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from .constants import DEFAULT_LICENSE
from .utils import normalize_text


@dataclass
class OriginKeyword:
    keyword: Optional[str] = None
    plural: Optional[str] = None
    meaning: Optional[str] = None


@dataclass
class OriginPictogram:
    """A pictogram as the ARASAAC API describes it, parsed at the client boundary."""

    id: int
    keywords: List[OriginKeyword] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    desc: Optional[str] = None

    @classmethod
    def from_json(cls, obj):
        if not isinstance(obj, dict):
            raise ValueError(f"expected pictogram object, got {type(obj).__name__}")
        raw_id = obj.get("_id", obj.get("id"))
        if isinstance(raw_id, bool) or not isinstance(raw_id, (int, str)):
            raise ValueError("pictogram without _id")
        picto_id = int(raw_id)

        keywords = []
        for k in obj.get("keywords") or []:
            if not isinstance(k, dict):
                continue
            keywords.append(
                OriginKeyword(
                    keyword=_opt_str(k.get("keyword")),
                    plural=_opt_str(k.get("plural")),
                    meaning=_opt_str(k.get("meaning")),
                )
            )
        desc = _opt_str(obj.get("desc"))
        return cls(
            id=picto_id,
            keywords=keywords,
            categories=_str_list(obj.get("categories")),
            tags=_str_list(obj.get("tags")),
            desc=desc or None,
        )

    def to_json(self):
        return {
            "_id": self.id,
            "keywords": [asdict(k) for k in self.keywords],
            "categories": list(self.categories),
            "tags": list(self.tags),
            "desc": self.desc,
        }

    def keyword_tokens(self):
        out = set()
        for k in self.keywords:
            for cand in (k.keyword, k.plural, k.meaning):
                value = normalize_text(cand)
                if value:
                    out.add(value)
        return sorted(out)

    @property
    def primary_category(self):
        return self.categories[0] if self.categories else None


@dataclass
class PictogramRecord:
    arasaac_id: int
    keywords: List[str]
    category: Optional[str]
    categories: List[str]
    tags: List[str]
    language: str
    image_url: Optional[str] = None
    local_file_path: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    license: str = DEFAULT_LICENSE
    description: Optional[str] = None

    @classmethod
    def from_origin(cls, language, pic, image_url=None, license=DEFAULT_LICENSE):
        return cls(
            arasaac_id=pic.id,
            keywords=pic.keyword_tokens(),
            category=pic.primary_category,
            categories=list(pic.categories),
            tags=list(pic.tags),
            language=language,
            image_url=image_url,
            license=license,
            description=pic.desc,
        )

    def haystack(self):
        parts = [
            " ".join(self.keywords),
            " ".join(self.categories),
            " ".join(self.tags),
            self.description or "",
        ]
        return " ".join(p for p in parts if p)

    def to_dict(self):
        return asdict(self)


@dataclass
class SavedPictogram:
    arasaac_id: int
    label: Optional[str]
    used_count: int
    saved_at: Optional[str]
    keywords: List[str]
    categories: List[str]
    tags: List[str]
    language: str
    image_url: Optional[str] = None
    local_file_path: Optional[str] = None
    license: str = DEFAULT_LICENSE
    description: Optional[str] = None

    def to_dict(self):
        return asdict(self)


@dataclass
class PrefetchRunResult:
    processed_ids: int = 0
    downloaded: int = 0
    already_cached: int = 0
    hydrated_seeded: int = 0
    failed: int = 0
    idle_seconds: int = 0

    def to_dict(self):
        return asdict(self)


@dataclass
class PrefetchSettings:
    enabled: bool
    idle_minutes: int
    batch_size: int
    last_run_at: Optional[str] = None
    last_result: Optional[Dict[str, Any]] = None

    def to_dict(self, idle_seconds=0):
        out = asdict(self)
        out["idle_seconds"] = int(idle_seconds)
        return out


def _opt_str(value):
    if value is None:
        return None
    return str(value)


def _str_list(value):
    if not isinstance(value, list):
        return []
    out = []
    for v in value:
        text = normalize_text(v)
        if text:
            out.append(text)
    return out
