"""Rewriting of media references between local and remote form.

Bodies reference media in three recognized forms:

    ![alt](target "optional title")       Markdown image
    <img src="target" ...>                 HTML/JSX tag attribute
    /api/media/...  ./photo.png            bare path in running text

Remote form is the media URL (/api/media/<scope>/<file>, optionally with the
host). Local form is a path relative to the content folder (co-located media
as ./<file>, shared media as ../../../media/...). Each direction
leaves references already in the target form untouched, so both are
idempotent. This is a best-effort text substitution, not a markup parser.
"""

import logging
import re
from typing import Callable, Dict, Iterator, List, Match, Optional

from content_sync.local_state.layout import (
    MEDIA_EXTENSIONS,
    is_media_name,
    local_media_path,
    relative_reference,
    resolve_reference,
)
from content_sync.remote_client.api_wrapper import media_path_from_url

logger = logging.getLogger(__name__)

_EXTENSIONS = "|".join(sorted(ext.lstrip('.') for ext in MEDIA_EXTENSIONS))
_PATH_CHARS = r'[^\s"\'()<>\[\]]'

REFERENCE_PATTERN = re.compile(
    r'(?P<md_prefix>!\[[^\]]*\]\()(?P<md_target>[^)\s]+)(?P<md_suffix>(?:\s+"[^"]*")?\))'
    r'|(?P<tag_prefix><[A-Za-z][\w.-]*\b[^>]*?\s(?:src|poster)=)'
    r'(?P<quote>["\'])(?P<tag_target>[^"\']+)(?P=quote)'
    rf'|(?P<remote>(?:https?://{_PATH_CHARS}+?)?/api/media/{_PATH_CHARS}+)'
    rf'|(?P<local>(?<![\w/.])\.{{1,2}}/{_PATH_CHARS}+?\.(?:{_EXTENSIONS}))(?![\w])',
    re.IGNORECASE,
)

_TRAILING_PUNCTUATION = '.,;:!?'

TargetMapper = Callable[[str], Optional[str]]


def _split_trailing(text: str):
    stripped = text.rstrip(_TRAILING_PUNCTUATION)
    return stripped, text[len(stripped):]


def _iter_targets(text: str) -> Iterator[str]:
    for match in REFERENCE_PATTERN.finditer(text):
        if match.group('md_target') is not None:
            yield match.group('md_target')
        elif match.group('tag_target') is not None:
            yield match.group('tag_target')
        elif match.group('remote') is not None:
            yield _split_trailing(match.group('remote'))[0]
        else:
            yield match.group('local')


def find_references(text: str) -> List[str]:
    """All reference targets in text, in order of appearance, without duplicates."""
    seen: List[str] = []
    for target in _iter_targets(text or ""):
        if target not in seen:
            seen.append(target)
    return seen


def is_remote_media(target: str) -> bool:
    return media_path_from_url(target) is not None


def is_local_media(target: str) -> bool:
    """True for a relative reference to a media file."""
    if not target or target.startswith(('/', '#', 'data:')) or '://' in target:
        return False
    return is_media_name(target.split('?', 1)[0])


def rewrite_references(text: str, mapper: TargetMapper) -> str:
    """Replace every reference target for which mapper returns a new value."""
    if not text:
        return text

    def _replace(match: Match) -> str:
        if match.group('md_target') is not None:
            new_target = mapper(match.group('md_target'))
            if new_target is None:
                return match.group(0)
            return f"{match.group('md_prefix')}{new_target}{match.group('md_suffix')}"

        if match.group('tag_target') is not None:
            new_target = mapper(match.group('tag_target'))
            if new_target is None:
                return match.group(0)
            quote = match.group('quote')
            return f"{match.group('tag_prefix')}{quote}{new_target}{quote}"

        raw = match.group('remote') if match.group('remote') is not None else match.group('local')
        target, trailing = _split_trailing(raw)
        new_target = mapper(target)
        if new_target is None:
            return match.group(0)
        return f"{new_target}{trailing}"

    return REFERENCE_PATTERN.sub(_replace, text)


class MediaReferenceRewriter:
    """Converts media references of one content folder in both directions.

    Args:
        content_dir: Name of the content root
        media_dir: Name of the shared media root

    Example:
        >>> rewriter = MediaReferenceRewriter()
        >>> rewriter.to_local("![x](/api/media/page/about/x.png)", "content/page/about", "page/about")
        '![x](./x.png)'
    """

    def __init__(self, content_dir: str = "content", media_dir: str = "media"):
        self.content_dir = content_dir
        self.media_dir = media_dir

    def local_targets(self, text: str, folder: str) -> List[str]:
        """Workspace-relative paths of local media referenced from folder."""
        return [
            resolve_reference(folder, target.split('?', 1)[0])
            for target in find_references(text)
            if is_local_media(target)
        ]

    def remote_targets(self, text: str) -> List[str]:
        """Remote media URLs referenced in text."""
        return [target for target in find_references(text) if is_remote_media(target)]

    def target_to_remote(
        self,
        target: str,
        folder: str,
        url_for: Callable[[str], Optional[str]],
    ) -> Optional[str]:
        """Remote URL for one local target, or None to leave it unchanged.

        Args:
            target: Reference as written in the file
            folder: Folder of the referencing file
            url_for: Maps a workspace-relative media path to its remote URL
        """
        if not is_local_media(target):
            return None
        return url_for(resolve_reference(folder, target.split('?', 1)[0]))

    def target_to_local(self, target: str, folder: str, owner_scope: str) -> Optional[str]:
        """Local reference for one remote target, or None to leave it unchanged."""
        remote_path = media_path_from_url(target)
        if remote_path is None:
            return None
        local_path = local_media_path(remote_path, owner_scope, self.content_dir, self.media_dir)
        reference = relative_reference(folder, local_path)
        # Keep bare-text references recognizable as local paths
        return reference if reference.startswith('../') else f"./{reference}"

    def to_remote(
        self,
        text: str,
        folder: str,
        url_for: Callable[[str], Optional[str]],
    ) -> str:
        """Rewrite local media references in text to remote URLs."""
        return rewrite_references(text, lambda t: self.target_to_remote(t, folder, url_for))

    def to_local(self, text: str, folder: str, owner_scope: str) -> str:
        """Rewrite remote media URLs in text to local references."""
        return rewrite_references(text, lambda t: self.target_to_local(t, folder, owner_scope))

    def local_paths_for_remote(self, urls: List[str], owner_scope: str) -> Dict[str, str]:
        """Map each remote media URL to the workspace path it is stored at."""
        result: Dict[str, str] = {}
        for url in urls:
            remote_path = media_path_from_url(url)
            if remote_path is None:
                continue
            result[url] = local_media_path(remote_path, owner_scope, self.content_dir, self.media_dir)
        return result
