"""SQL query builders for Chorus."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from chorus.paths import PostFilters


def build_posts_query(
    filters: PostFilters | None = None,
    *,
    root_only: bool = False,
    author_kind: str | None = None,
    author_id: int | None = None,
    default_limit: int = 50,
) -> tuple[str, dict[str, Any]]:
    """Build a newest-first post listing query with optional filters.

    Unscored posts count as score 0 for the score bounds.

    Returns:
        (sql, params) suitable for ``db.execute``
    """
    clauses = ["1=1"]
    params: dict[str, Any] = {}

    if root_only:
        clauses.append("p.depth = 0")

    if author_id is not None:
        clauses.append("p.author_kind = :author_kind AND p.author_id = :author_id")
        params["author_kind"] = author_kind
        params["author_id"] = author_id
    elif filters is not None and filters.author_kind is not None:
        clauses.append("p.author_kind = :author_kind")
        params["author_kind"] = filters.author_kind

    limit = default_limit
    if filters is not None:
        if filters.min_score is not None:
            clauses.append("COALESCE(p.score, 0) >= :min_score")
            params["min_score"] = filters.min_score
        if filters.max_score is not None:
            clauses.append("COALESCE(p.score, 0) <= :max_score")
            params["max_score"] = filters.max_score
        if filters.categories:
            names = []
            for i, category in enumerate(filters.categories):
                params[f"cat{i}"] = category
                names.append(f":cat{i}")
            clauses.append(
                "EXISTS (SELECT 1 FROM json_each(p.categories) "
                f"WHERE json_each.value IN ({', '.join(names)}))"
            )
        if filters.after is not None:
            clauses.append("p.created_at >= :after")
            params["after"] = filters.after
        if filters.before is not None:
            clauses.append("p.created_at <= :before")
            params["before"] = filters.before
        if filters.limit is not None:
            limit = filters.limit

    params["limit"] = max(limit, 0)
    sql = f"""
    SELECT p.*
    FROM posts p
    WHERE {' AND '.join(clauses)}
    ORDER BY p.created_at DESC, p.id DESC
    LIMIT :limit
    """
    return sql, params


def build_thread_query() -> str:
    """Build query for every post in a thread, oldest first."""
    return """
    SELECT *
    FROM posts
    WHERE id = :root_id OR root_post_id = :root_id
    ORDER BY created_at, id
    """


def build_post_similarity_query() -> str:
    """Build query for posts ranked by vector similarity.

    Uses the sqlite-vec virtual table for KNN search. sqlite-vec applies
    ``k`` before any join filters, so callers over-fetch and filter after.
    """
    return """
    SELECT p.*, pv.distance
    FROM posts_vec pv
    JOIN posts p ON pv.rowid = p.id
    WHERE pv.embedding MATCH :query_vector
      AND k = :k
    ORDER BY pv.distance
    """


def build_conversations_query() -> str:
    """Build query summarising every conversation a persona takes part in."""
    return """
    SELECT
        conversation_id,
        CASE WHEN from_handle = :handle THEN to_handle ELSE from_handle END
            AS other_handle,
        MAX(created_at) AS last_message_at,
        SUM(CASE WHEN to_handle = :handle AND read = 0 THEN 1 ELSE 0 END)
            AS unread_count,
        COUNT(*) AS message_count
    FROM messages
    WHERE from_handle = :handle OR to_handle = :handle
    GROUP BY conversation_id
    ORDER BY last_message_at DESC
    """


def build_vec_table_ddl(table: str, dimensions: int) -> str:
    """Build DDL for a sqlite-vec table."""
    safe_name = sanitize_table_name(table)
    return f"""
    CREATE VIRTUAL TABLE IF NOT EXISTS {safe_name}_vec
    USING vec0(embedding float[{dimensions}])
    """


def sanitize_table_name(name: str) -> str:
    """Sanitize a string for use as a table name.

    Only allows alphanumeric characters and underscores.
    """
    return "".join(c if c.isalnum() or c == "_" else "_" for c in name)
