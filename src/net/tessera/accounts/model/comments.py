import asyncio
from typing import Optional


class CommentSnapshot:
    """
    The last comment feed snapshot seen by the comment polling task.

    The polling task owns one instance, created at startup and handed to it through the
    application context, so the state can be inspected and replaced in tests without
    touching module globals.

    The snapshot is a fingerprint of the comment identifiers in the feed together with
    the identifiers themselves, which lets the task tell how many comments are new.
    """

    def __init__(self) -> None:
        self._fingerprint: Optional[str] = None
        self._comment_ids: frozenset[str] = frozenset()
        self._lock = asyncio.Lock()

    @property
    def fingerprint(self) -> Optional[str]:
        return self._fingerprint

    async def replace(self, fingerprint: str, comment_ids: frozenset[str]) -> int:
        """
        Store a new snapshot and return how many comment ids were not seen before.

        The first snapshot only establishes a baseline and reports zero new comments.
        """
        async with self._lock:
            if self._fingerprint is None:
                new_count = 0
            else:
                new_count = len(comment_ids - self._comment_ids)
            self._fingerprint = fingerprint
            self._comment_ids = comment_ids
            return new_count
