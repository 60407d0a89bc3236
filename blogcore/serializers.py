"""
ORM → plain dict serialisation shared by the services.

Relationships are declared ``lazy="noload"``, so a relationship that the
calling query did not eager-load serialises as None / [] rather than
triggering I/O.  Credential hashes are never serialised.
"""
from datetime import datetime

from blogcore.models import Comment, ContentItem, User


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def author_to_dict(user: User | None) -> dict | None:
    """Compact author block embedded in content and comments."""
    if user is None:
        return None
    return {
        "id": user.id,
        "display_name": user.display_name,
        "avatar_url": user.avatar_url,
    }


def user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "display_name": user.display_name,
        "bio": user.bio,
        "avatar_url": user.avatar_url,
        "followers_count": user.followers_count,
        "following_count": user.following_count,
        "created_at": _iso(user.created_at),
    }


def content_to_dict(item: ContentItem) -> dict:
    """List view: everything except the body."""
    return {
        "id": item.id,
        "kind": item.kind.value,
        "title": item.title,
        "slug": item.slug,
        "excerpt": item.excerpt,
        "cover_image": (
            {"url": item.cover_url, "public_id": item.cover_media_id} if item.cover_url else None
        ),
        "status": item.status.value,
        "is_featured": item.is_featured,
        "category": item.category,
        "meta_description": item.meta_description,
        "reading_time": item.reading_time,
        "view_count": item.view_count,
        "likes_count": item.likes_count,
        "comments_count": item.comments_count,
        "published_at": _iso(item.published_at),
        "created_at": _iso(item.created_at),
        "updated_at": _iso(item.updated_at),
        "author_id": item.author_id,
        "author": author_to_dict(item.author),
        "tags": [t.name for t in item.tags],
    }


def content_detail_to_dict(item: ContentItem) -> dict:
    data = content_to_dict(item)
    data["body"] = item.body
    return data


def comment_to_dict(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "text": comment.text,
        "status": comment.status.value,
        "is_deleted": comment.is_deleted,
        "likes_count": comment.likes_count,
        "content_id": comment.content_id,
        "parent_comment_id": comment.parent_id,
        "author_id": comment.author_id,
        "author": author_to_dict(comment.author),
        "created_at": _iso(comment.created_at),
        "updated_at": _iso(comment.updated_at),
    }
