"""Core package for the storyforum discussion engine."""

from .aggregates import (
    AuthorStatistics,
    PostSummary,
    author_statistics,
    reply_count,
    reply_counts_by_post,
    summarise_posts,
)
from .assembly import ReplyForest, StructuralIssue, assemble
from .authorization import Action, can_perform, require_permission
from .coordinator import (
    MutationCoordinator,
    MutationKind,
    PendingOperation,
    PostView,
    PostViewState,
    ThreadView,
)
from .errors import (
    AuthorizationError,
    ForumError,
    NotFoundError,
    StoreUnavailableError,
    StructuralError,
    ValidationError,
)
from .identity import IdentityProvider, StaticIdentityProvider
from .models import Caller, Post, Reply, ReplyTreeNode, Role, Section
from .ordering import SortPolicy, filter_replies, order, order_tree
from .repository import ForumRepository
from .settings import ForumSettings
from .store import (
    SERVER_TIMESTAMP,
    DocumentStore,
    FileDocumentStore,
    InMemoryDocumentStore,
    RecordNotFoundError,
    StoredRecord,
    StoreError,
)

__all__ = [
    "Action",
    "AuthorStatistics",
    "AuthorizationError",
    "Caller",
    "DocumentStore",
    "FileDocumentStore",
    "ForumError",
    "ForumRepository",
    "ForumSettings",
    "IdentityProvider",
    "InMemoryDocumentStore",
    "MutationCoordinator",
    "MutationKind",
    "NotFoundError",
    "PendingOperation",
    "Post",
    "PostSummary",
    "PostView",
    "PostViewState",
    "RecordNotFoundError",
    "Reply",
    "ReplyForest",
    "ReplyTreeNode",
    "Role",
    "SERVER_TIMESTAMP",
    "Section",
    "SortPolicy",
    "StaticIdentityProvider",
    "StoreError",
    "StoreUnavailableError",
    "StoredRecord",
    "StructuralError",
    "StructuralIssue",
    "ThreadView",
    "ValidationError",
    "assemble",
    "author_statistics",
    "can_perform",
    "filter_replies",
    "order",
    "order_tree",
    "reply_count",
    "reply_counts_by_post",
    "require_permission",
    "summarise_posts",
]
