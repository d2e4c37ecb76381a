"""
Domain errors raised by the ranking core.

Only PersistenceUnavailable ever reaches a caller of the synchronous paths
(watch-event write, feed generation). Background analytics catch and log
everything; cron jobs log per row and carry on.
"""


class FeedRankError(Exception):
    pass


class PersistenceUnavailable(FeedRankError):
    """The backing store could not be reached."""


class MissingContentVector(FeedRankError):
    """A post has not been tagged yet; it contributes no interest signal."""

    def __init__(self, post_id: str) -> None:
        super().__init__(f"No content vector for post {post_id}")
        self.post_id = post_id


class CreatorNotFound(FeedRankError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"No trust score for creator {user_id}")
        self.user_id = user_id
