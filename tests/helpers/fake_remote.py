"""In-memory stand-ins for the remote content and media API.

FakeContentAPI and FakeMediaAPI implement the same methods as ContentAPI and
MediaAPI, keep their state in dictionaries and record every call, so tests
can run push and pull end to end without HTTP.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from unittest.mock import Mock

from content_sync.remote_client.api_wrapper import media_path_from_url, media_url
from content_sync.remote_client.errors import RemoteNotFoundError
from content_sync.remote_client.models import ContentItem

BASE_TIME = datetime(2024, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


class RemoteClock:
    """Monotonic fake server clock producing ISO timestamps."""

    def __init__(self):
        self._ticks = 0

    def now(self) -> str:
        self._ticks += 1
        value = BASE_TIME + timedelta(seconds=self._ticks)
        return value.isoformat().replace('+00:00', 'Z')


def create_mock_authenticator() -> Mock:
    """Authenticator mock whose refresh() always succeeds."""
    auth = Mock()
    auth.get_credentials.return_value = Mock(url="https://cms.example.com", access_token="token")
    auth.refresh.return_value = auth.get_credentials.return_value
    return auth


class FakeContentAPI:
    """Remote content store keyed by id."""

    def __init__(self, authenticator: Optional[Mock] = None, clock: Optional[RemoteClock] = None):
        self.authenticator = authenticator or create_mock_authenticator()
        self.clock = clock or RemoteClock()
        self.items: Dict[str, ContentItem] = {}
        self.calls: List[Tuple[str, str]] = []
        self._next_id = 100

    def seed(self, **fields) -> ContentItem:
        """Add an item as if it had been created remotely by someone else."""
        item = ContentItem(**fields)
        if item.id is None:
            item.id = str(self._next_id)
            self._next_id += 1
        item.updated_at = item.updated_at or self.clock.now()
        item.created_at = item.created_at or item.updated_at
        self.items[item.id] = item
        return item

    def edit(self, content_id: str, **fields) -> ContentItem:
        """Change an item remotely and advance its updatedAt."""
        item = self.items[content_id]
        for name, value in fields.items():
            setattr(item, name, value)
        item.updated_at = self.clock.now()
        return item

    def list(self) -> List[ContentItem]:
        self.calls.append(('list', ''))
        return [ContentItem.from_dict(item.to_dict()) for item in self.items.values()]

    def create(self, item: ContentItem) -> ContentItem:
        self.calls.append(('create', item.scope))
        created = ContentItem.from_dict(item.to_payload())
        created.id = str(self._next_id)
        self._next_id += 1
        created.updated_at = created.created_at = self.clock.now()
        self.items[created.id] = created
        return ContentItem.from_dict(created.to_dict())

    def update(self, content_id: str, item: ContentItem) -> ContentItem:
        self.calls.append(('update', content_id))
        if content_id not in self.items:
            raise RemoteNotFoundError(content_id)
        updated = ContentItem.from_dict(item.to_payload())
        updated.id = content_id
        updated.created_at = self.items[content_id].created_at
        updated.updated_at = self.clock.now()
        self.items[content_id] = updated
        return ContentItem.from_dict(updated.to_dict())

    def delete(self, content_id: str) -> None:
        self.calls.append(('delete', content_id))
        self.items.pop(content_id, None)

    def call_names(self) -> List[str]:
        return [name for name, _ in self.calls]


class FakeMediaAPI:
    """Remote media store keyed by "<scope>/<file>"."""

    def __init__(self, authenticator: Optional[Mock] = None):
        self.authenticator = authenticator or create_mock_authenticator()
        self.files: Dict[str, bytes] = {}
        self.calls: List[Tuple[str, str]] = []

    def upload(self, data: bytes, filename: str, scope: str) -> str:
        url = media_url(scope, filename)
        path = media_path_from_url(url)
        self.calls.append(('upload', path))
        self.files[path] = data
        return url

    def delete(self, media_path: str) -> None:
        relative = media_path_from_url(media_path) or media_path.lstrip('/')
        self.calls.append(('delete', relative))
        self.files.pop(relative, None)

    def download(self, url: str) -> bytes:
        relative = media_path_from_url(url) or url
        self.calls.append(('download', relative))
        if relative not in self.files:
            raise RemoteNotFoundError(relative)
        return self.files[relative]
