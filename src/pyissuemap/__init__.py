"""pyissuemap - Async location-tiered synchronization engine for map issues."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyissuemap")
except PackageNotFoundError:
    __version__ = "0+local"
from pyissuemap.config import IssueMapConfig, TierThresholds
from pyissuemap.engine import IssueMapEngine, SessionContext
from pyissuemap.exceptions import (
    AuthRequiredError,
    ConfigError,
    ConflictError,
    IssueMapError,
    NetworkError,
    QueryError,
    ValidationError,
)
from pyissuemap.models import (
    BoundingBox,
    Comment,
    Coordinate,
    GeocodeResult,
    Issue,
    IssueCategory,
    IssueDraft,
    IssuePage,
    LocationContext,
    LocationTier,
    SortOrder,
    Viewport,
)
from pyissuemap.realtime import SubscriptionState
from pyissuemap.view import NullView, ViewAdapter

__all__ = [
    "__version__",
    "AuthRequiredError",
    "BoundingBox",
    "Comment",
    "ConfigError",
    "ConflictError",
    "Coordinate",
    "GeocodeResult",
    "Issue",
    "IssueCategory",
    "IssueDraft",
    "IssueMapConfig",
    "IssueMapEngine",
    "IssueMapError",
    "IssuePage",
    "LocationContext",
    "LocationTier",
    "NetworkError",
    "NullView",
    "QueryError",
    "SessionContext",
    "SortOrder",
    "SubscriptionState",
    "TierThresholds",
    "ValidationError",
    "ViewAdapter",
]
