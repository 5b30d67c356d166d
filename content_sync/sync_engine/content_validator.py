"""Pre-push checks of content items.

Every problem found in a content item is either an error, which keeps the
item from being pushed, or a warning, which is reported but does not block
it. The same checks back the validate command and the push pipeline.
"""

import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from content_sync.local_state.errors import FilesystemError
from content_sync.local_state.layout import (
    BODY_FILE_NAME,
    CONTENT_DIR,
    MEDIA_DIR,
    counterpart_path,
    type_and_slug,
)
from content_sync.local_state.models import parse_timestamp
from content_sync.sync_engine.content_files import read_metadata, read_text, validate_metadata
from content_sync.sync_engine.media_references import MediaReferenceRewriter

logger = logging.getLogger(__name__)

MIN_TITLE_LENGTH = 3
MIN_BODY_LENGTH = 10
MIN_POST_DESCRIPTION_LENGTH = 10

HEADING_PATTERN = re.compile(r'^#+ ', re.MULTILINE)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class ValidationProblem:
    """One finding about one file.

    Attributes:
        path: Workspace-relative file the problem is in
        field: Metadata field, "body" or "media"
        message: Human readable description
        severity: Whether the problem blocks a push
    """
    path: str
    field: str
    message: str
    severity: Severity

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR


def field_errors(problems: List[ValidationProblem]) -> Dict[str, List[str]]:
    """Error messages grouped by field, in the shape ValidationRejectedError takes."""
    errors: Dict[str, List[str]] = {}
    for problem in problems:
        if problem.is_error:
            errors.setdefault(problem.field, []).append(problem.message)
    return errors


class ContentValidator:
    """Checks content items in a workspace before they are pushed.

    Example:
        >>> validator = ContentValidator("/work/site")
        >>> problems = validator.validate_item("content/page/about/index.mdx")
        >>> [p.message for p in problems if p.is_error]
        ['Media file not found: content/page/about/team.jpg']
    """

    def __init__(
        self,
        root: Union[str, Path],
        content_dir: str = CONTENT_DIR,
        media_dir: str = MEDIA_DIR,
    ):
        self.root = Path(root)
        self.content_dir = content_dir
        self.rewriter = MediaReferenceRewriter(content_dir, media_dir)

    def validate_item(
        self,
        body_path: str,
        metadata: Optional[Dict[str, Any]] = None,
        body: Optional[str] = None,
    ) -> List[ValidationProblem]:
        """Check one content item.

        Args:
            body_path: Workspace-relative path of the item's body file
            metadata: Parsed metadata; read from disk when omitted
            body: Body text; read from disk when omitted

        Returns:
            Problems in metadata, body, media order

        Raises:
            FilesystemError: If a file cannot be read or the metadata is not
                a JSON object
        """
        meta_path = counterpart_path(body_path) or ""
        if metadata is None:
            metadata = read_metadata(self.root, meta_path) if (self.root / meta_path).is_file() else {}
        if body is None:
            body = read_text(self.root, body_path)

        folder = body_path.rpartition('/')[0]
        problems = self._check_metadata(meta_path, metadata, body_path)
        problems.extend(self._check_body(body_path, body))
        problems.extend(self._check_media(body_path, body, folder))
        cover = metadata.get('coverImageUrl')
        if isinstance(cover, str) and cover:
            problems.extend(self._check_media(meta_path, f"![]({cover})", folder, field='coverImageUrl'))
        return problems

    def validate_all(self) -> List[ValidationProblem]:
        """Check every content item under the content directory."""
        problems: List[ValidationProblem] = []
        base = self.root / self.content_dir
        if not base.is_dir():
            return problems

        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith('.'))
            if BODY_FILE_NAME not in filenames:
                continue
            body_path = Path(dirpath, BODY_FILE_NAME).relative_to(self.root).as_posix()
            try:
                problems.extend(self.validate_item(body_path))
            except (FilesystemError, ValueError) as e:
                problems.append(ValidationProblem(body_path, 'file', str(e), Severity.ERROR))
        logger.info(f"Validation found {len(problems)} problem(s)")
        return problems

    def _check_metadata(
        self,
        meta_path: str,
        metadata: Dict[str, Any],
        body_path: str,
    ) -> List[ValidationProblem]:
        problems = [
            ValidationProblem(meta_path, name, message, Severity.ERROR)
            for name, messages in validate_metadata(metadata).items()
            for message in messages
        ]

        title = metadata.get('title')
        if isinstance(title, str) and title.strip() and len(title.strip()) < MIN_TITLE_LENGTH:
            problems.append(ValidationProblem(
                meta_path, 'title',
                f"title is too short (minimum {MIN_TITLE_LENGTH} characters)", Severity.WARNING,
            ))

        published_at = metadata.get('publishedAt')
        if published_at and parse_timestamp(str(published_at)) is None:
            problems.append(ValidationProblem(
                meta_path, 'publishedAt', f"invalid date format: {published_at}", Severity.ERROR,
            ))

        content_type, _ = type_and_slug(body_path)
        description = metadata.get('description')
        if content_type in ('post', 'blog') and isinstance(description, str) and description.strip():
            if len(description.strip()) < MIN_POST_DESCRIPTION_LENGTH:
                problems.append(ValidationProblem(
                    meta_path, 'description',
                    f"posts should have a meaningful description "
                    f"(minimum {MIN_POST_DESCRIPTION_LENGTH} characters)",
                    Severity.WARNING,
                ))
        return problems

    def _check_body(self, body_path: str, body: str) -> List[ValidationProblem]:
        problems: List[ValidationProblem] = []
        if len(body.strip()) < MIN_BODY_LENGTH:
            problems.append(ValidationProblem(
                body_path, 'body', "content appears to be empty or too short", Severity.WARNING,
            ))
        if not HEADING_PATTERN.search(body):
            problems.append(ValidationProblem(
                body_path, 'body', "content should include at least one heading (# Title)", Severity.WARNING,
            ))
        return problems

    def _check_media(
        self,
        path: str,
        text: str,
        folder: str,
        field: str = 'media',
    ) -> List[ValidationProblem]:
        problems: List[ValidationProblem] = []
        for media_path in self.rewriter.local_targets(text, folder):
            if not (self.root / media_path).is_file():
                problems.append(ValidationProblem(
                    path, field, f"Media file not found: {media_path}", Severity.ERROR,
                ))
        return problems
