"""Data models for remote content items.

The remote API speaks camelCase JSON; ContentItem keeps snake_case attributes
and converts at the boundary.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# Attribute name -> remote JSON field name
_FIELD_NAMES = {
    'id': 'id',
    'title': 'title',
    'description': 'description',
    'body': 'body',
    'slug': 'slug',
    'type': 'type',
    'author': 'author',
    'language': 'language',
    'tags': 'tags',
    'category': 'category',
    'cover_image_url': 'coverImageUrl',
    'cover_image_alt': 'coverImageAlt',
    'allow_comments': 'allowComments',
    'published_at': 'publishedAt',
    'created_at': 'createdAt',
    'updated_at': 'updatedAt',
}

# Fields the server assigns; never sent on create/update
SERVER_FIELDS = ('id', 'createdAt', 'updatedAt')

# Fields kept out of the local metadata file
METADATA_EXCLUDED_FIELDS = ('body', 'slug', 'type', 'createdAt', 'updatedAt', 'comments')

# Metadata fields that hold a media reference
MEDIA_FIELDS = ('coverImageUrl',)


@dataclass
class ContentItem:
    """One content item as exchanged with the remote content API.

    Attributes:
        title: Human readable title
        slug: URL slug, unique within a content type
        type: Content type (e.g. "page", "post")
        body: Markdown/MDX body text
        id: Server-assigned identifier (None before creation)
        extra: Remote fields this model does not name, carried through untouched

    Example:
        >>> item = ContentItem.from_dict({"id": 7, "title": "About", "slug": "about", "type": "page"})
        >>> item.id
        '7'
    """
    title: str = ""
    slug: str = ""
    type: str = ""
    body: str = ""
    description: Optional[str] = None
    author: Optional[str] = None
    language: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    category: Optional[str] = None
    cover_image_url: Optional[str] = None
    cover_image_alt: Optional[str] = None
    allow_comments: Optional[bool] = None
    published_at: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ContentItem':
        """Build a ContentItem from a remote (camelCase) JSON object."""
        known = set(_FIELD_NAMES.values())
        kwargs: Dict[str, Any] = {}
        for attr, name in _FIELD_NAMES.items():
            if name in data and data[name] is not None:
                kwargs[attr] = data[name]
        if 'id' in kwargs:
            kwargs['id'] = str(kwargs['id'])
        if 'tags' in kwargs and not isinstance(kwargs['tags'], list):
            kwargs['tags'] = [str(kwargs['tags'])]
        kwargs['extra'] = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Full camelCase representation, omitting unset optional fields."""
        result: Dict[str, Any] = dict(self.extra)
        for attr, name in _FIELD_NAMES.items():
            value = getattr(self, attr)
            if value is None:
                continue
            result[name] = value
        return result

    def to_payload(self) -> Dict[str, Any]:
        """Request body for create/update (server-assigned fields removed)."""
        payload = self.to_dict()
        for name in SERVER_FIELDS:
            payload.pop(name, None)
        payload.pop('comments', None)
        return payload

    def to_metadata(self) -> Dict[str, Any]:
        """Content of the local metadata file for this item."""
        metadata = self.to_dict()
        for name in METADATA_EXCLUDED_FIELDS:
            metadata.pop(name, None)
        return metadata

    @property
    def scope(self) -> str:
        """Media scope of this item ("<type>/<slug>")."""
        return f"{self.type}/{self.slug}"
