"""Access control: who may do what to which row.

Every route asks the same question through ``decide`` instead of carrying
its own role checks:

    decide(actor, Action.UPDATE, Resource.post(owner_id=3, published=False))

The functions here are pure. They never touch the database; callers load
the row first and describe it with a ``Resource``.
"""
import enum
from dataclasses import dataclass
from typing import Optional, Union

from errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from models import Role


@dataclass(frozen=True)
class Anonymous:
    """Requester without a valid token."""

    @property
    def id(self) -> None:
        return None

    @property
    def role(self) -> None:
        return None


@dataclass(frozen=True)
class Authenticated:
    """Requester identified by a valid token."""
    id: int
    role: Role


Actor = Union[Anonymous, Authenticated]

ANONYMOUS = Anonymous()


def actor_for(user) -> Actor:
    """Build the actor for a loaded user row (or None)"""
    if user is None:
        return ANONYMOUS
    return Authenticated(id=user.id, role=Role(user.role))


class Action(str, enum.Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    LIST_ADMIN = "list_admin"


class ResourceKind(str, enum.Enum):
    POST = "post"
    COMMENT = "comment"
    CATEGORY = "category"
    USER = "user"


OWNED_KINDS = (ResourceKind.POST, ResourceKind.COMMENT)


@dataclass(frozen=True)
class Resource:
    """What the policy needs to know about a row.

    ``owner_id`` is the author for posts and comments and the user's own id
    for user rows.
    """
    kind: ResourceKind
    owner_id: Optional[int] = None
    published: Optional[bool] = None
    approved: Optional[bool] = None

    @classmethod
    def post(cls, owner_id: Optional[int] = None, published: Optional[bool] = None):
        return cls(ResourceKind.POST, owner_id=owner_id, published=published)

    @classmethod
    def comment(cls, owner_id: Optional[int] = None, approved: Optional[bool] = None):
        return cls(ResourceKind.COMMENT, owner_id=owner_id, approved=approved)

    @classmethod
    def category(cls):
        return cls(ResourceKind.CATEGORY)

    @classmethod
    def user(cls, user_id: Optional[int] = None):
        return cls(ResourceKind.USER, owner_id=user_id)

    @classmethod
    def of_post(cls, post):
        return cls.post(owner_id=post.author_id, published=bool(post.published))

    @classmethod
    def of_comment(cls, comment):
        return cls.comment(owner_id=comment.author_id, approved=bool(comment.approved))


class Denial(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    HIDDEN = "hidden"
    SELF_MODIFICATION = "self_modification"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    denial: Optional[Denial] = None
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def _deny(denial: Denial, reason: str) -> Decision:
    return Decision(False, denial, reason)


def _is_admin(actor: Actor) -> bool:
    return isinstance(actor, Authenticated) and actor.role == Role.ADMIN


def decide(actor: Actor, action: Action, resource: Resource) -> Decision:
    """Evaluate the rules in precedence order and return the first that applies"""
    authenticated = isinstance(actor, Authenticated)

    # 1. nobody changes the role of or deletes their own account, admins included;
    #    apart from that admins may do anything
    if (authenticated
            and resource.kind == ResourceKind.USER
            and resource.owner_id == actor.id
            and action in (Action.UPDATE, Action.DELETE)):
        if action == Action.UPDATE:
            return _deny(Denial.SELF_MODIFICATION, "Cannot modify your own role")
        return _deny(Denial.SELF_MODIFICATION, "Cannot delete your own account")
    if _is_admin(actor):
        return ALLOW

    # 2. owners may read, update and delete their posts and comments
    if (authenticated
            and resource.kind in OWNED_KINDS
            and resource.owner_id is not None
            and resource.owner_id == actor.id
            and action in (Action.READ, Action.UPDATE, Action.DELETE)):
        return ALLOW

    if action == Action.READ:
        # 3. published posts are public, the rest does not exist for others
        if resource.kind == ResourceKind.POST:
            if resource.published:
                return ALLOW
            return _deny(Denial.HIDDEN, "Post not found")
        # 4. same for comments awaiting approval
        if resource.kind == ResourceKind.COMMENT:
            if resource.approved:
                return ALLOW
            return _deny(Denial.HIDDEN, "Comment not found")
        if resource.kind == ResourceKind.CATEGORY:
            return ALLOW

    # 5. creation
    if action == Action.CREATE and resource.kind in OWNED_KINDS:
        if not authenticated:
            return _deny(Denial.UNAUTHENTICATED, "Authentication required")
        if resource.kind == ResourceKind.COMMENT:
            return ALLOW
        if actor.role in (Role.AUTHOR, Role.ADMIN):
            return ALLOW
        return _deny(Denial.FORBIDDEN, "Insufficient permissions")

    # 6 and 7. administrative actions were allowed above; everything else is denied
    if not authenticated:
        return _deny(Denial.UNAUTHENTICATED, "Authentication required")
    if action == Action.LIST_ADMIN or resource.kind in (ResourceKind.USER, ResourceKind.CATEGORY):
        return _deny(Denial.FORBIDDEN, "Insufficient permissions")
    return _deny(Denial.FORBIDDEN, f"Not authorized to {action.value} this {resource.kind.value}")


_DENIAL_ERRORS = {
    Denial.UNAUTHENTICATED: AuthenticationError,
    Denial.FORBIDDEN: AuthorizationError,
    Denial.HIDDEN: NotFoundError,
    Denial.SELF_MODIFICATION: ValidationError,
}


def enforce(actor: Actor, action: Action, resource: Resource) -> None:
    """Raise the matching AppError unless the actor may perform the action"""
    decision = decide(actor, action, resource)
    if not decision.allowed:
        raise _DENIAL_ERRORS[decision.denial](decision.reason)


def require_admin(actor: Actor) -> None:
    """Ensure the actor has admin privileges"""
    enforce(actor, Action.LIST_ADMIN, Resource.user())


# ---------------------------------------------------------------------------
# List visibility
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Visibility:
    """Which rows of a list an actor may see.

    ``unrestricted`` rows are all visible. Otherwise a row is visible when
    its status flag (``published``/``approved``) is set, or when
    ``or_owner_id`` is given and matches the row's author.
    """
    unrestricted: bool = False
    or_owner_id: Optional[int] = None


def post_visibility(actor: Actor) -> Visibility:
    if _is_admin(actor):
        return Visibility(unrestricted=True)
    if isinstance(actor, Authenticated) and actor.role == Role.AUTHOR:
        return Visibility(or_owner_id=actor.id)
    return Visibility()


def comment_visibility(actor: Actor) -> Visibility:
    if _is_admin(actor):
        return Visibility(unrestricted=True)
    if isinstance(actor, Authenticated):
        return Visibility(or_owner_id=actor.id)
    return Visibility()
