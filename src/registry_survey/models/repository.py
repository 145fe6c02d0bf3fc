"""Model for repository listings, and flattening of repository namespaces."""

from collections.abc import Iterable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class RepositoryList:
    """The child repositories of a repository in a registry.

    ``repositories`` are relative to ``name``.  For a non-recursive listing
    they are the direct children only; for a recursive listing, every known
    descendant path.
    """

    name: str
    repositories: list[str] = field(default_factory=list)


def relative_repositories(
    parent: str, paths: Iterable[str], *, recursive: bool
) -> list[str]:
    """Flatten a namespace of repository paths relative to ``parent``.

    Most registries have no real tree of repositories, only a flat list of
    ``/``-delimited names.  Pick out the ones below ``parent`` and return
    them relative to it.

    Parameters
    ----------
    parent
        Repository path that results are relative to.  The empty string
        means every path is a descendant.
    paths
        Raw repository paths, possibly gathered from many pages.  A path
        equal to ``parent`` is never part of the result.
    recursive
        If true, return every descendant path.  Otherwise return each
        direct child once, however many descendants it has.

    Returns
    -------
    list of str
        Relative paths, without duplicates, in order of first appearance.
    """
    prefix = f"{parent}/" if parent else ""
    seen: set[str] = set()
    children: list[str] = []
    for path in paths:
        if path == parent or not path.startswith(prefix):
            continue
        relative = path[len(prefix) :]
        if not relative:
            continue
        child = relative if recursive else relative.split("/")[0]
        if child in seen:
            continue
        seen.add(child)
        children.append(child)
    return children
