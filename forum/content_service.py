from typing import Optional

import gateway
from errors import ConstraintError, NotFoundError

# Threads and posts are joined with a short author summary. LEFT JOIN keeps
# rows whose author has been deleted (author_id nulled), shown without a name.
_THREAD_SELECT = (
    "SELECT t.id, t.title, t.content, t.author_id, t.created_at, "
    "u.username AS author_username, u.verified AS author_verified "
    "FROM threads t LEFT JOIN users u ON u.id = t.author_id"
)


def list_threads() -> list:
    """All threads with author summary and reply count, newest first."""
    # Reply count comes from a correlated subquery so the index page needs one query.
    # id breaks ties between threads created in the same second.
    return gateway.fetch_many(
        "SELECT t.id, t.title, t.content, t.author_id, t.created_at, "
        "u.username AS author_username, u.verified AS author_verified, "
        "(SELECT COUNT(*) FROM posts p WHERE p.thread_id = t.id) AS post_count "
        "FROM threads t LEFT JOIN users u ON u.id = t.author_id "
        "ORDER BY t.created_at DESC, t.id DESC",
        operation="list_threads",
    )


def create_thread(author_id: int, title: str, content: str) -> int:
    """
    Insert a thread and return its id.

    Titles and bodies are stored as given; an empty title is accepted.
    """
    result = gateway.mutate(
        "INSERT INTO threads (title, content, author_id) VALUES (:title, :content, :author_id)",
        {"title": title or "", "content": content or "", "author_id": author_id},
        operation="create_thread",
    )
    return result.last_insert_id


def get_thread(thread_id: int) -> Optional[dict]:
    # None when the id is unknown; the route turns that into a 404.
    return gateway.fetch_one(
        _THREAD_SELECT + " WHERE t.id = :id", {"id": thread_id}, operation="get_thread"
    )


def list_posts(thread_id: int) -> list:
    """Replies of one thread, oldest first."""
    return gateway.fetch_many(
        "SELECT p.id, p.thread_id, p.author_id, p.content, p.created_at, "
        "u.username AS author_username, u.verified AS author_verified "
        "FROM posts p LEFT JOIN users u ON u.id = p.author_id "
        "WHERE p.thread_id = :thread_id "
        "ORDER BY p.created_at ASC, p.id ASC",
        {"thread_id": thread_id},
        operation="list_posts",
    )


def create_post(thread_id: int, author_id: int, content: str) -> int:
    """
    Insert a reply and return its id.

    Foreign keys are enforced, so a reply to a thread that does not exist is
    rejected by the store and surfaces as NotFoundError.
    """
    try:
        result = gateway.mutate(
            "INSERT INTO posts (thread_id, author_id, content) "
            "VALUES (:thread_id, :author_id, :content)",
            {"thread_id": thread_id, "author_id": author_id, "content": content or ""},
            operation="create_post",
        )
    except ConstraintError as exc:
        # Only the thread_id foreign key can fail here; author_id is the logged-in user.
        raise NotFoundError("That thread does not exist.") from exc
    return result.last_insert_id
