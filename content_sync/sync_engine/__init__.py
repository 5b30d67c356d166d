"""Synchronization engine for content sync.

This package detects local drift against the index, pushes it to the remote
API, pulls the remote snapshot back into local files, and keeps related
entries (body, metadata, media) linked.
"""

from .cancellation import CancellationToken
from .change_detector import ChangeDetector
from .content_files import scaffold_item
from .content_validator import ContentValidator, Severity, ValidationProblem
from .errors import BatchAbortedError, OperationCancelledError, SyncEngineError
from .file_watcher import FileEventCoalescer, WorkspaceWatcher
from .media_references import MediaReferenceRewriter
from .models import ChangeReport, ItemFailure, PullResult, PushResult, RenamePair
from .pull_synchronizer import PullSynchronizer
from .reconciler import Reconciler
from .relationship_manager import RelationshipManager

__all__ = [
    'BatchAbortedError',
    'CancellationToken',
    'ChangeDetector',
    'ChangeReport',
    'ContentValidator',
    'FileEventCoalescer',
    'ItemFailure',
    'MediaReferenceRewriter',
    'OperationCancelledError',
    'PullResult',
    'PullSynchronizer',
    'PushResult',
    'Reconciler',
    'RelationshipManager',
    'RenamePair',
    'Severity',
    'SyncEngineError',
    'ValidationProblem',
    'WorkspaceWatcher',
    'scaffold_item',
]
