#!/usr/bin/env python3
"""
MDBList Ratings Media Data Models

This module contains the dataclasses describing the Jellyfin items the rating
pipeline works on. Only the fields needed for rating enrichment are modelled:
identity, provider ids, the two rating fields and the library folders the item
belongs to (for per-library source overrides).

Classes:
    LibraryFolder: A Jellyfin library (collection folder) an item belongs to
    MediaItem: Internal representation of a Movie or Series with its ratings

Project: MDBList Ratings
Version: 1.0.0
License: MIT
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


SUPPORTED_CONTENT_TYPES = {
    "Movie": "movie",
    "Series": "show",
}


@dataclass(slots=True)
class LibraryFolder:
    """
    A library (collection folder) that contains an item.

    Attributes:
        id (str): Jellyfin GUID of the collection folder, dashed or dashless
        name (str): Library display name
    """
    id: str = ""
    name: str = ""


@dataclass(slots=True)
class MediaItem:
    """
    Internal representation of a Jellyfin item for rating enrichment.

    The rating fields are mutated in place by the ratings updater and then handed
    back to the item store for persistence. Provider ids double as the storage for
    rating provenance tags, the same way Jellyfin plugins keep auxiliary ids.

    **Content Types:**
    MDBList uses `movie` and `show` path segments; Jellyfin uses `Movie` and
    `Series`. Any other item type is unsupported and yields no content type.

    Attributes:
        item_id (str): Jellyfin item id
        name (str): Display name
        item_type (str): Jellyfin item type (Movie, Series, Episode, ...)
        provider_ids (Dict[str, str]): External ids (Tmdb, Imdb, ...) and provenance tags
        community_rating (Optional[float]): 0-10 community rating
        critic_rating (Optional[float]): 0-100 critic rating
        libraries (List[LibraryFolder]): Libraries the item appears in

    Example:
        ```python
        item = MediaItem(
            item_id="c5a1...",
            name="The Matrix",
            item_type="Movie",
            provider_ids={"Tmdb": "603", "Imdb": "tt0133093"},
            libraries=[LibraryFolder(id="f137a2dd21bbc1b99aa5c0f6bf02a805", name="Movies")]
        )
        item.content_type  # "movie"
        item.tmdb_id       # "603"
        ```
    """
    item_id: str
    name: str
    item_type: str
    provider_ids: Dict[str, str] = field(default_factory=dict)
    community_rating: Optional[float] = None
    critic_rating: Optional[float] = None
    libraries: List[LibraryFolder] = field(default_factory=list)

    @property
    def content_type(self) -> Optional[str]:
        """MDBList content type for this item, or None when unsupported."""
        return SUPPORTED_CONTENT_TYPES.get(self.item_type)

    @property
    def is_movie(self) -> bool:
        return self.item_type == "Movie"

    def get_provider_id(self, name: str) -> Optional[str]:
        """Provider id lookup ignoring key case; blank values count as missing."""
        wanted = name.lower()
        for key, value in self.provider_ids.items():
            if key.lower() == wanted and value and str(value).strip():
                return str(value).strip()
        return None

    def set_provider_id(self, name: str, value: Optional[str]) -> None:
        """Set a provider id, or remove it (under any key casing) when value is None."""
        for key in [k for k in self.provider_ids if k.lower() == name.lower()]:
            del self.provider_ids[key]
        if value is not None:
            self.provider_ids[name] = value

    @property
    def tmdb_id(self) -> Optional[str]:
        return self.get_provider_id("Tmdb")

    @classmethod
    def from_jellyfin(cls, data: Dict[str, Any], libraries: Optional[List[LibraryFolder]] = None) -> "MediaItem":
        """
        Build a MediaItem from a Jellyfin `/Items` API record.

        Args:
            data (Dict[str, Any]): Item JSON as returned by Jellyfin
            libraries (Optional[List[LibraryFolder]]): Collection folders containing the item

        Returns:
            MediaItem: Item with ids, ratings and libraries populated
        """
        return cls(
            item_id=data.get("Id", ""),
            name=data.get("Name", ""),
            item_type=data.get("Type", ""),
            provider_ids=dict(data.get("ProviderIds") or {}),
            community_rating=data.get("CommunityRating"),
            critic_rating=data.get("CriticRating"),
            libraries=list(libraries or [])
        )
