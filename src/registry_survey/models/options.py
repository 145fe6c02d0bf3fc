from dataclasses import dataclass


@dataclass(frozen=True)
class ListOptions:
    """Options for listing repositories and manifests.

    Pagination is handled inside each client and never shows up here.
    """

    recursive: bool = False
