"""HTTP wrapper for the remote content and media API.

This module wraps a requests Session and provides error translation from
HTTP exceptions to our typed exception hierarchy. It integrates with the
retry logic for handling rate limits.
"""

import logging
import mimetypes
import re
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from requests.exceptions import ConnectionError, Timeout

from .auth import Authenticator
from .errors import (
    APIAccessError,
    APIUnreachableError,
    AuthenticationRequiredError,
    RemoteNotFoundError,
    ValidationRejectedError,
)
from .models import ContentItem
from .retry_logic import retry_on_rate_limit

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30

MEDIA_URL_PREFIX = "/api/media/"


class APIWrapper:
    """Thin wrapper over requests with bearer auth and error translation.

    This class:
    1. Reads the credential from the Authenticator on every request, so a
       refreshed token is used immediately
    2. Translates HTTP errors to typed exceptions
    3. Integrates retry logic for 429 rate limits

    Example:
        >>> auth = Authenticator(url="https://cms.example.com")
        >>> api = ContentAPI(auth)
        >>> items = api.list()
    """

    def __init__(
        self,
        authenticator: Authenticator,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the API wrapper.

        Args:
            authenticator: Authenticator supplying the bearer credential
            timeout: Per-request timeout in seconds
            session: Optional pre-built session (tests inject a mock)
        """
        self._authenticator = authenticator
        self._timeout = timeout
        self._session = session or requests.Session()

    @property
    def authenticator(self) -> Authenticator:
        return self._authenticator

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        **kwargs: Any,
    ) -> requests.Response:
        """Send one request and return the successful response.

        Args:
            method: HTTP method
            path: API path below /api (e.g. "/content/12"), or an absolute URL
            operation: Description of the operation, used in errors and logs
            **kwargs: Passed through to requests (json, files, data, params)

        Returns:
            The response (status 2xx)

        Raises:
            AuthenticationRequiredError: On 401/403
            RemoteNotFoundError: On 404
            ValidationRejectedError: On 400/406/422
            APIUnreachableError: On timeouts and connection failures
            APIAccessError: On any other failure, or rate limit after retries
        """
        creds = self._authenticator.get_credentials()
        if path.startswith(('http://', 'https://')):
            url = path
        else:
            url = f"{creds.url}/api{path}"

        headers = {'Accept': 'application/json'}
        # Only send the bearer token to our own host
        if url.startswith(creds.url):
            headers['Authorization'] = f"Bearer {creds.access_token}"

        def _send() -> requests.Response:
            try:
                response = self._session.request(
                    method, url, headers=headers, timeout=self._timeout, **kwargs
                )
                response.raise_for_status()
                return response
            except requests.HTTPError as e:
                if e.response is not None and e.response.status_code == 429:
                    raise
                raise self._translate_error(e, operation) from e
            except requests.RequestException as e:
                raise self._translate_error(e, operation) from e

        logger.debug(f"{method} {url} ({operation})")
        return retry_on_rate_limit(_send)

    def _sanitize_credentials(self, text: str) -> str:
        """Sanitize error messages to prevent credential leakage.

        Example:
            >>> api._sanitize_credentials("Authorization: Bearer abc.def")
            'Authorization: ***REDACTED***'
        """
        if not text:
            return text

        sanitized = re.sub(r'://([\w.-]+):([\w.-]+)@', r'://***:***@', text)
        sanitized = re.sub(
            r'Authorization:\s*[^\n\r]+',
            'Authorization: ***REDACTED***',
            sanitized,
            flags=re.IGNORECASE
        )
        sanitized = re.sub(
            r'Bearer\s+[^\s\n\r]+',
            'Bearer ***REDACTED***',
            sanitized,
            flags=re.IGNORECASE
        )
        sanitized = re.sub(
            r'(access_?token|token|password)["\']?\s*[:=]\s*["\']?([^"\'\s&]+)',
            r'\1=***REDACTED***',
            sanitized,
            flags=re.IGNORECASE
        )
        return sanitized

    def _translate_error(self, exception: Exception, operation: str) -> Exception:
        """Translate requests exceptions to typed remote exceptions.

        Args:
            exception: The original exception from requests
            operation: Description of the operation that failed

        Returns:
            Exception: Translated exception (one of our typed exceptions)
        """
        if isinstance(exception, (Timeout, ConnectionError)):
            return APIUnreachableError(endpoint=self._endpoint())

        response = getattr(exception, 'response', None)
        status_code = getattr(response, 'status_code', None)

        if status_code in (401, 403):
            return AuthenticationRequiredError(
                endpoint=self._endpoint(),
                reason=f"HTTP {status_code} during {operation}"
            )

        if status_code == 404:
            match = re.search(r'\(([^)]+)\)', operation)
            return RemoteNotFoundError(match.group(1) if match else operation)

        if status_code in (400, 406, 422):
            title, field_errors = _parse_problem_details(response)
            return ValidationRejectedError(operation, title, field_errors)

        safe_error_msg = self._sanitize_credentials(str(exception))
        logger.error(f"API operation failed: {operation} - {safe_error_msg}")
        return APIAccessError(f"Remote API failure during {operation}")

    def _endpoint(self) -> str:
        try:
            return self._authenticator.get_credentials().url
        except AuthenticationRequiredError:
            return "unknown"


class ContentAPI(APIWrapper):
    """Content CRUD against /api/content."""

    def list(self) -> List[ContentItem]:
        """Fetch the full remote content snapshot in one call.

        Returns:
            List of every remote content item

        Raises:
            APIAccessError: If the response is not a list of items
        """
        response = self._request('GET', '/content/export', 'list_content()')
        data = response.json()
        if isinstance(data, dict):
            for key in ('data', 'items', 'content', 'results'):
                if isinstance(data.get(key), list):
                    data = data[key]
                    break
        if not isinstance(data, list):
            raise APIAccessError("Unexpected content export response format")
        logger.info(f"Fetched {len(data)} content items from remote")
        return [ContentItem.from_dict(item) for item in data if isinstance(item, dict)]

    def create(self, item: ContentItem) -> ContentItem:
        """Create a content item and return the server's view of it."""
        response = self._request(
            'POST', '/content', f"create_content({item.scope})", json=item.to_payload()
        )
        created = ContentItem.from_dict(response.json())
        logger.info(f"Created remote content {created.id} ({item.scope})")
        return created

    def update(self, content_id: str, item: ContentItem) -> ContentItem:
        """Update a content item in place by id.

        Raises:
            RemoteNotFoundError: If the id no longer exists remotely
        """
        _validate_content_id(content_id)
        response = self._request(
            'PATCH',
            f"/content/{quote(content_id, safe='')}",
            f"update_content({content_id})",
            json=item.to_payload(),
        )
        body = response.json() if response.content else {}
        updated = ContentItem.from_dict(body) if isinstance(body, dict) else ContentItem()
        if updated.id is None:
            updated.id = content_id
        logger.info(f"Updated remote content {content_id} ({item.scope})")
        return updated

    def delete(self, content_id: str) -> None:
        """Delete a content item. A missing item counts as deleted."""
        _validate_content_id(content_id)
        try:
            self._request(
                'DELETE',
                f"/content/{quote(content_id, safe='')}",
                f"delete_content({content_id})",
            )
        except RemoteNotFoundError:
            logger.info(f"Remote content {content_id} already absent, treating as deleted")
            return
        logger.info(f"Deleted remote content {content_id}")


class MediaAPI(APIWrapper):
    """Media upload/delete against /api/media."""

    def upload(self, data: bytes, filename: str, scope: str) -> str:
        """Upload one media file under a scope.

        Args:
            data: File bytes
            filename: File name to store remotely
            scope: Scope key ("<type>/<slug>" or a shared media folder)

        Returns:
            The remote URL of the uploaded file
        """
        mime_type = mimetypes.guess_type(filename)[0] or 'application/octet-stream'
        response = self._request(
            'POST',
            '/media',
            f"upload_media({scope}/{filename})",
            files={'File': (filename, data, mime_type)},
            data={'ScopeUid': scope},
        )
        body = response.json() if response.content else {}
        url = None
        if isinstance(body, dict):
            url = body.get('location') or body.get('url')
        if not url:
            url = media_url(scope, filename)
        logger.info(f"Uploaded media {scope}/{filename} -> {url}")
        return url

    def delete(self, media_path: str) -> None:
        """Delete a remote media file. A missing file counts as deleted.

        Args:
            media_path: "<scope>/<file>" or a full /api/media/... URL
        """
        relative = media_path_from_url(media_path) or media_path.lstrip('/')
        try:
            self._request('DELETE', f"/media/{relative}", f"delete_media({relative})")
        except RemoteNotFoundError:
            logger.info(f"Remote media {relative} already absent, treating as deleted")
            return
        logger.info(f"Deleted remote media {relative}")

    def download(self, url: str) -> bytes:
        """Download a media file by its remote URL."""
        path = url
        relative = media_path_from_url(url)
        if relative is not None and not url.startswith(('http://', 'https://')):
            path = f"/media/{relative}"
        response = self._request('GET', path, f"download_media({relative or url})")
        return response.content


def media_url(scope: str, filename: str) -> str:
    """Remote URL form of a media file.

    Example:
        >>> media_url("page/about", "team.jpg")
        '/api/media/page/about/team.jpg'
        >>> media_url("", "logo.png")
        '/api/media/logo.png'
    """
    scope = scope.strip('/')
    if not scope:
        return f"{MEDIA_URL_PREFIX}{filename}"
    return f"{MEDIA_URL_PREFIX}{scope}/{filename}"


def media_path_from_url(url: str) -> Optional[str]:
    """Extract "<scope>/<file>" from a remote media URL, or None."""
    index = url.find(MEDIA_URL_PREFIX)
    if index < 0:
        return None
    return url[index + len(MEDIA_URL_PREFIX):].split('?', 1)[0].split('#', 1)[0]


def _validate_content_id(content_id: str) -> None:
    """Reject empty ids, placeholder ids and ids that could escape the path.

    Raises:
        ValueError: If content_id is not a usable remote id
    """
    if not content_id or not str(content_id).strip():
        raise ValueError("content_id cannot be empty")
    if str(content_id).startswith('local:'):
        raise ValueError(f"Placeholder id '{content_id}' cannot be sent to the remote")
    if '/' in str(content_id) or '..' in str(content_id):
        raise ValueError(f"Invalid content_id format: '{content_id}'")


def _parse_problem_details(response: Optional[requests.Response]):
    """Parse an RFC 7807 problem document into (title, field_errors)."""
    if response is None:
        return "Validation failed", {}
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}", {}
    if not isinstance(body, dict):
        return f"HTTP {response.status_code}", {}

    title = body.get('title') or body.get('detail') or f"HTTP {response.status_code}"
    field_errors: Dict[str, List[str]] = {}
    errors = body.get('errors')
    if isinstance(errors, dict):
        for name, messages in errors.items():
            if isinstance(messages, list):
                field_errors[name] = [str(m) for m in messages]
            else:
                field_errors[name] = [str(messages)]
    return str(title), field_errors
