from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from .catalog_loader import load_categories_dir
from .schema import Category, SearchResult, Step, Topic


class UnknownTopicError(KeyError):
    pass


class Catalog:
    """Read-only index over the bundled category -> topic -> step tree.

    Topics are listed under their own category. A category may also list
    topics owned elsewhere (``cross_listed``); those appear first, ahead of
    the category's own topics, and are searchable under the listing
    category with the listing's own keywords.
    """

    def __init__(self, categories: List[Category]):
        self._categories = list(categories)
        self._by_category: Dict[str, Category] = {c.id: c for c in self._categories}
        self._topics: Dict[str, Topic] = {t.id: t for c in self._categories for t in c.topics}

    def categories(self) -> List[Category]:
        return list(self._categories)

    def category(self, category_id: str) -> Category:
        try:
            return self._by_category[category_id]
        except KeyError:
            raise KeyError(f"unknown category: {category_id}") from None

    def list_topics(self, category_id: str) -> List[Topic]:
        c = self.category(category_id)
        return [self._topics[x.topic_id] for x in c.cross_listed] + list(c.topics)

    def get_topic(self, topic_id: str) -> Topic:
        try:
            return self._topics[topic_id]
        except KeyError:
            raise UnknownTopicError(topic_id) from None

    def get_steps(self, topic_id: str) -> List[Step]:
        return list(self.get_topic(topic_id).steps)

    def topics(self) -> Iterator[Topic]:
        return iter(self._topics.values())

    def _listed(self, c: Category) -> Iterator[Tuple[Topic, List[str]]]:
        for x in c.cross_listed:
            yield self._topics[x.topic_id], x.keywords
        for t in c.topics:
            yield t, t.keywords

    def search(self, query: str) -> List[SearchResult]:
        q = query.strip().lower()
        if not q:
            return [_category_result(c) for c in self._categories]
        terms = q.split()
        results: List[SearchResult] = []
        for c in self._categories:
            if q in c.title.lower() or q in c.subtitle.lower():
                results.append(_category_result(c))
            for topic, keywords in self._listed(c):
                if _matches_subtopic(topic.title, keywords, q, terms):
                    results.append(
                        SearchResult(
                            category=c.id,
                            title=topic.title,
                            subtitle=f"Part of {c.title}",
                            icon=c.icon,
                            color=c.color,
                            is_subtopic=True,
                            topic_id=topic.id,
                        )
                    )
        return results


def _category_result(c: Category) -> SearchResult:
    return SearchResult(
        category=c.id, title=c.title, subtitle=c.subtitle, icon=c.icon, color=c.color, is_subtopic=False
    )


def _matches_subtopic(title: str, keywords: List[str], q: str, terms: List[str]) -> bool:
    name = title.lower()
    if q in name:
        return True
    lowered = [k.lower() for k in keywords]
    return all(term in name or any(term in k for k in lowered) for term in terms)


_default: Optional[Catalog] = None


def load_catalog(content_dir: Optional[str | Path] = None) -> Catalog:
    """Load a catalog; the bundled content is parsed once and cached."""
    global _default
    if content_dir is not None:
        return Catalog(load_categories_dir(content_dir))
    if _default is None:
        _default = Catalog(load_categories_dir())
    return _default
