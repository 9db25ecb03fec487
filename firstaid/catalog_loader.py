from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from .schema import CATEGORY_ORDER, Category

logger = logging.getLogger(__name__)

CONTENT_DIR = Path(__file__).parent / "content"


class CatalogError(ValueError):
    """Bundled content violates a structural invariant."""


def load_categories_dir(content_dir: Optional[str | Path] = None) -> List[Category]:
    content_path = Path(content_dir) if content_dir is not None else CONTENT_DIR
    if not content_path.exists():
        raise FileNotFoundError(f"content dir not found: {content_path}")
    loaded: Dict[str, Category] = {}
    for p in sorted(content_path.glob("*.json")):
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
        try:
            category = Category(**data)
        except ValidationError as e:
            raise CatalogError(f"{p.name}: {e}") from e
        if category.id in loaded:
            raise CatalogError(f"{p.name}: category {category.id} defined twice")
        loaded[category.id] = category
        logger.debug("loaded %s: %d topics", p.name, len(category.topics))
    categories = [loaded[c] for c in CATEGORY_ORDER if c in loaded]
    check_references(categories)
    return categories


def check_references(categories: List[Category]) -> None:
    """Topic ids must be unique; links and cross listings must resolve."""
    seen: Dict[str, str] = {}
    for c in categories:
        for t in c.topics:
            if t.id in seen:
                raise CatalogError(f"topic {t.id} defined in both {seen[t.id]} and {c.id}")
            seen[t.id] = c.id
    for c in categories:
        for x in c.cross_listed:
            if x.topic_id not in seen:
                raise CatalogError(f"{c.id} cross-lists unknown topic {x.topic_id}")
        for t in c.topics:
            for target in t.linked_topics():
                if target not in seen:
                    raise CatalogError(f"{t.id} links to unknown topic {target}")
