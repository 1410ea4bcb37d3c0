"""Per-issue comment threads.

Same merge rules as the feature store: keyed by comment id, inserts are
idempotent, updates of unknown comments insert, deletes of unknown
comments are no-ops.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from pyissuemap.models.comment import Comment
from pyissuemap.state.events import MergeKind

_logger = logging.getLogger(__name__)

ThreadListener = Callable[[str, tuple[Comment, ...]], None]


class CommentStore:
    def __init__(self) -> None:
        self._threads: dict[str, dict[str, Comment]] = {}
        self._listeners: list[ThreadListener] = []

    def subscribe(self, listener: ThreadListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def replace(self, issue_id: str, comments: Iterable[Comment]) -> None:
        """Install a freshly loaded thread, keeping comments merged meanwhile."""
        thread = self._threads.setdefault(issue_id, {})
        loaded = {comment.id: comment for comment in comments}
        for comment_id, comment in thread.items():
            loaded.setdefault(comment_id, comment)
        self._threads[issue_id] = dict(
            sorted(loaded.items(), key=lambda item: (item[1].created_at is None, item[1].created_at))
        )
        self._notify(issue_id)

    def apply(self, kind: MergeKind, comment: Comment) -> bool:
        thread = self._threads.setdefault(comment.issue_id, {})
        if kind == MergeKind.DELETE:
            changed = thread.pop(comment.id, None) is not None
        elif kind == MergeKind.INSERT:
            changed = comment.id not in thread
            if changed:
                thread[comment.id] = comment
        else:
            changed = thread.get(comment.id) != comment
            thread[comment.id] = comment
        if changed:
            self._notify(comment.issue_id)
        return changed

    def remove(self, issue_id: str, comment_id: str) -> bool:
        thread = self._threads.get(issue_id)
        if thread is None or thread.pop(comment_id, None) is None:
            return False
        self._notify(issue_id)
        return True

    def thread(self, issue_id: str) -> tuple[Comment, ...]:
        return tuple(self._threads.get(issue_id, {}).values())

    def find(self, comment_id: str) -> Comment | None:
        for thread in self._threads.values():
            comment = thread.get(comment_id)
            if comment is not None:
                return comment
        return None

    def drop(self, issue_id: str) -> None:
        self._threads.pop(issue_id, None)

    def _notify(self, issue_id: str) -> None:
        comments = self.thread(issue_id)
        for listener in list(self._listeners):
            try:
                listener(issue_id, comments)
            except Exception:
                _logger.debug("Comment thread listener failed", exc_info=True)
