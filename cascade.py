"""Deleting a user together with everything that references them."""
from dataclasses import dataclass
from typing import Any, Dict

from sqlalchemy.orm import Session

from errors import NotFoundError, write_transaction
from logging_config import get_logger
from models import Comment, Post, PostTag, User
from policy import Action, Actor, Resource, enforce

logger = get_logger("cascade")


@dataclass
class CascadeReport:
    deleted_user: Dict[str, Any]
    posts_deleted: int
    comments_deleted: int


def _snapshot(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


def delete_user_cascade(db: Session, user_id: int) -> CascadeReport:
    """Remove a user, their comments, comments on their posts and their posts.

    Runs as one transaction: comments by the user, then comments left by
    others on the user's posts, then the posts (and their tags), then the
    user row. Any failure rolls the whole sequence back.
    """
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    deleted_user = _snapshot(user)

    with write_transaction(db):
        comments_deleted = (db.query(Comment)
                            .filter(Comment.author_id == user_id)
                            .delete(synchronize_session=False))

        post_ids = [post_id for (post_id,) in
                    db.query(Post.id).filter(Post.author_id == user_id).all()]

        if post_ids:
            comments_deleted += (db.query(Comment)
                                 .filter(Comment.post_id.in_(post_ids))
                                 .delete(synchronize_session=False))
            db.query(PostTag).filter(PostTag.post_id.in_(post_ids)).delete(synchronize_session=False)
            db.query(Post).filter(Post.id.in_(post_ids)).delete(synchronize_session=False)

        db.query(User).filter(User.id == user_id).delete(synchronize_session=False)

    db.expunge_all()
    return CascadeReport(deleted_user=deleted_user,
                         posts_deleted=len(post_ids),
                         comments_deleted=comments_deleted)


def delete_user(db: Session, actor: Actor, user_id: int) -> CascadeReport:
    """Admin entry point: policy check, cascade, audit log"""
    enforce(actor, Action.DELETE, Resource.user(user_id))
    report = delete_user_cascade(db, user_id)
    logger.info("User %s (%s) deleted by user %s: %d posts, %d comments",
                report.deleted_user["email"], report.deleted_user["name"], actor.id,
                report.posts_deleted, report.comments_deleted)
    return report
