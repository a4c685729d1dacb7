"""Grouping of ready items by remediation subject."""

from __future__ import annotations

from dataclasses import dataclass, field

from access_review.collaborators.store import Store
from access_review.domain.factories import ItemFactory
from access_review.domain.models import Item
from access_review.utils.chunking import chunked


@dataclass
class Bucket:
    key: str
    identity: str | None = None
    item_ids: list[str] = field(default_factory=list)


def collect_buckets(
    store: Store, item_ids: list[str], factory: ItemFactory, batch_size: int
) -> list[Bucket]:
    """Bucket ``item_ids`` by the factory's key.

    Buckets come back sorted by key and their item ids sorted, so two runs over
    the same input visit items in the same order.
    """
    grouped: dict[str, Bucket] = {}
    for chunk in chunked(item_ids, batch_size):
        for item_id in chunk:
            item = store.load(Item, item_id)
            if item is None:
                continue
            key = factory.bucket_key(item)
            bucket = grouped.get(key)
            if bucket is None:
                bucket = grouped[key] = Bucket(key=key, identity=item.identity)
            bucket.item_ids.append(item.id)
        store.release_working_set()

    buckets = [grouped[key] for key in sorted(grouped)]
    for bucket in buckets:
        bucket.item_ids.sort()
    return buckets
