"""Model for manifests, and aggregation of manifest records by digest."""

import datetime
from collections.abc import Iterable
from dataclasses import dataclass, field
from functools import reduce
from typing import Self

type JSONManifest = dict[str, str | list[str]]

type ManifestMap = dict[str, Manifest]


def _later(
    a: datetime.datetime | None, b: datetime.datetime | None
) -> datetime.datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _earlier(
    a: datetime.datetime | None, b: datetime.datetime | None
) -> datetime.datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


@dataclass(frozen=True)
class Manifest:
    """Class representing the metadata we report for one manifest.

    Which fields are available depends on the registry.  Timestamps that
    the registry doesn't supply are `None`, which is not the same thing as
    the Unix epoch: reproducible builds routinely claim to have been
    created at time zero.
    """

    digest: str
    media_type: str | None = None
    tags: frozenset[str] = field(default_factory=frozenset)

    # Taken from the image config, so it's whatever the builder said.
    created: datetime.datetime | None = None

    # When the registry received the manifest.
    uploaded: datetime.datetime | None = None

    # When the registry last changed anything about it (tags, usually).
    updated: datetime.datetime | None = None

    def merge(self, other: Self) -> Self:
        """Combine two records describing the same digest.

        Tags are unioned.  For ``uploaded`` and ``updated`` the more recent
        time wins; for ``created``, the earlier one.  A missing value never
        replaces a present one.  The result doesn't depend on which record
        is ``self``.
        """
        if other.digest != self.digest:
            raise ValueError(
                f"Cannot merge manifest {other.digest} into {self.digest}"
            )
        media_types = [x for x in (self.media_type, other.media_type) if x]
        return type(self)(
            digest=self.digest,
            media_type=min(media_types) if media_types else None,
            tags=self.tags | other.tags,
            created=_earlier(self.created, other.created),
            uploaded=_later(self.uploaded, other.uploaded),
            updated=_later(self.updated, other.updated),
        )

    def to_dict(self) -> JSONManifest:
        # Absent fields are left out rather than written as null, and the
        # tag set becomes a sorted list.
        ret: JSONManifest = {"digest": self.digest}
        if self.media_type:
            ret["mediaType"] = self.media_type
        if self.tags:
            ret["tags"] = sorted(self.tags)
        for key, value in (
            ("timeCreated", self.created),
            ("timeUploaded", self.uploaded),
            ("timeUpdated", self.updated),
        ):
            if value is not None:
                ret[key] = value.isoformat()
        return ret


@dataclass(frozen=True)
class ManifestList:
    """The manifests of one repository, one per digest."""

    manifests: list[Manifest] = field(default_factory=list)


def _merge_into(merged: ManifestMap, record: Manifest) -> ManifestMap:
    # Updates merged in place
    if record.digest:
        existing = merged.get(record.digest)
        merged[record.digest] = (
            record if existing is None else existing.merge(record)
        )
    return merged


def merge_record(acc: ManifestMap, record: Manifest) -> ManifestMap:
    """Fold one manifest record into a digest-keyed map.

    Returns a new map; ``acc`` is left alone.  A record without a digest
    is dropped.
    """
    return _merge_into(dict(acc), record)


def merge_page(acc: ManifestMap, page: Iterable[Manifest]) -> ManifestMap:
    """Fold a page of manifest records into a digest-keyed map.

    Returns a new map; ``acc`` is left alone.
    """
    return reduce(_merge_into, page, dict(acc))


def aggregate_manifests(pages: Iterable[Iterable[Manifest]]) -> ManifestList:
    """Merge pages of per-tag or per-image records into one manifest list.

    Equivalent to folding every page with `merge_page`, except that one
    map is built in place and never copied.  Pages are consumed lazily,
    so an exception while fetching a page propagates before anything is
    returned.
    """
    merged: ManifestMap = {}
    for page in pages:
        reduce(_merge_into, page, merged)
    return ManifestList(manifests=list(merged.values()))
