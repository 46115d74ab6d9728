"""Community forum: posts, comments and likes."""
import logging
from typing import Any, Dict, List, Optional

from agrisense.services import database as db

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = "user_id, full_name"


def _with_profiles(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return db.fetch_with_related(rows, "profiles", "user_id", "user_id", "profiles", columns=PROFILE_COLUMNS)


def list_posts(search: Optional[str] = None) -> List[Dict[str, Any]]:
    """Newest posts first, each with its author's profile (or None)."""
    posts = db.select_rows("forum_posts", order_by="created_at", ascending=False)
    posts = _with_profiles(posts)
    if search and search.strip():
        needle = search.strip().lower()
        posts = [
            p for p in posts
            if needle in (p.get("title") or "").lower() or needle in (p.get("content") or "").lower()
        ]
    return posts


def create_post(user_id: str, title: str, content: str) -> Dict[str, Any]:
    if not (title or "").strip() or not (content or "").strip():
        raise ValueError("Please fill in all fields")
    post = db.insert_row("forum_posts", {"user_id": user_id, "title": title.strip(), "content": content.strip()})
    logger.info("Forum post created by %s", user_id)
    return post


def list_comments(post_id: str) -> List[Dict[str, Any]]:
    comments = db.select_rows("forum_comments", filters={"post_id": post_id}, order_by="created_at")
    return _with_profiles(comments)


def add_comment(user_id: str, post_id: str, content: str) -> Dict[str, Any]:
    if not (content or "").strip():
        raise ValueError("Comment cannot be empty")
    return db.insert_row("forum_comments", {"user_id": user_id, "post_id": post_id, "content": content.strip()})


def toggle_like(user_id: str, post_id: str) -> Dict[str, Any]:
    """Like the post, or remove the like if the user already liked it.

    The post's denormalized `likes_count` is rewritten from the like rows.
    """
    key = {"user_id": user_id, "post_id": post_id}
    if db.select_one("post_likes", key, columns="id"):
        db.delete_rows("post_likes", key)
        liked = False
    else:
        db.insert_row("post_likes", key)
        liked = True
    likes = db.count_rows("post_likes", {"post_id": post_id})
    db.update_rows("forum_posts", {"likes_count": likes}, {"id": post_id})
    return {"liked": liked, "likes": likes}
