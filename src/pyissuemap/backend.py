"""Backend store collaborator.

:class:`BackendStore` is the contract the engine needs from the persistent
store. :class:`RestBackend` implements it over a PostgREST-style HTTP API.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any, Protocol

from pyissuemap._api import comments as _comments_api
from pyissuemap._api import issues as _issues_api
from pyissuemap._api import votes as _votes_api
from pyissuemap._transport import Transport
from pyissuemap.config import IssueMapConfig
from pyissuemap.models.comment import Comment
from pyissuemap.models.issue import Issue
from pyissuemap.models.requests import IssueQuery


class BackendStore(Protocol):
    async def query_issues(self, query: IssueQuery) -> tuple[list[Issue], int]: ...

    async def insert_issue(self, row: dict[str, Any]) -> Issue: ...

    async def insert_vote(self, issue_id: str, user_id: str) -> None: ...

    async def delete_vote(self, issue_id: str, user_id: str) -> None: ...

    async def fetch_voted_issue_ids(self, user_id: str, issue_ids: Iterable[str]) -> set[str]: ...

    async def fetch_comments(self, issue_id: str) -> list[Comment]: ...

    async def insert_comment(self, row: dict[str, Any]) -> Comment: ...

    async def delete_comment(self, comment_id: str, user_id: str) -> bool: ...


class RestBackend:
    """:class:`BackendStore` over HTTP.

    ``access_token`` is read on every call so a sign-in/out on the engine
    takes effect without rebuilding the backend.
    """

    def __init__(
        self,
        config: IssueMapConfig,
        transport: Transport,
        *,
        access_token: Callable[[], str | None] = lambda: None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._access_token = access_token

    async def query_issues(self, query: IssueQuery) -> tuple[list[Issue], int]:
        return await _issues_api.query_issues(
            self._config, self._transport, query, access_token=self._access_token()
        )

    async def insert_issue(self, row: dict[str, Any]) -> Issue:
        return await _issues_api.insert_issue(self._config, self._transport, row, access_token=self._access_token())

    async def insert_vote(self, issue_id: str, user_id: str) -> None:
        await _votes_api.insert_vote(
            self._config, self._transport, issue_id, user_id, access_token=self._access_token()
        )

    async def delete_vote(self, issue_id: str, user_id: str) -> None:
        await _votes_api.delete_vote(
            self._config, self._transport, issue_id, user_id, access_token=self._access_token()
        )

    async def fetch_voted_issue_ids(self, user_id: str, issue_ids: Iterable[str]) -> set[str]:
        return await _votes_api.fetch_voted_issue_ids(
            self._config, self._transport, user_id, issue_ids, access_token=self._access_token()
        )

    async def fetch_comments(self, issue_id: str) -> list[Comment]:
        return await _comments_api.fetch_comments(
            self._config, self._transport, issue_id, access_token=self._access_token()
        )

    async def insert_comment(self, row: dict[str, Any]) -> Comment:
        return await _comments_api.insert_comment(
            self._config, self._transport, row, access_token=self._access_token()
        )

    async def delete_comment(self, comment_id: str, user_id: str) -> bool:
        return await _comments_api.delete_comment(
            self._config, self._transport, comment_id, user_id, access_token=self._access_token()
        )
