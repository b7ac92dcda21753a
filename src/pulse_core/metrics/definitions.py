"""Metric catalog: the fixed set of categories collected each day."""
from dataclasses import dataclass
from enum import Enum


class MetricScope(str, Enum):
    """How a category's count is bounded by the target date."""

    CUMULATIVE = "cumulative"
    DAILY = "daily"


@dataclass(frozen=True)
class MetricCategory:
    """A named quantity tracked per day."""

    name: str
    source: str
    scope: MetricScope
    display_name: str
    description: str
    unit: str
    metric_type: str = "count"
    format_pattern: str = "0,0"


USERS_TOTAL = MetricCategory(
    name="users_total",
    source="users",
    scope=MetricScope.CUMULATIVE,
    display_name="Total Users",
    description="Total number of registered users on the platform as of this date",
    unit="users",
)

POSTS_TOTAL = MetricCategory(
    name="posts_total",
    source="posts",
    scope=MetricScope.CUMULATIVE,
    display_name="Total Posts",
    description="Total number of posts/tracks created on the platform as of this date",
    unit="posts",
)

COMMENTS_TOTAL = MetricCategory(
    name="comments_total",
    source="comments",
    scope=MetricScope.CUMULATIVE,
    display_name="Total Comments",
    description="Total number of comments created on the platform as of this date",
    unit="comments",
)

POSTS_CREATED = MetricCategory(
    name="posts_created",
    source="posts",
    scope=MetricScope.DAILY,
    display_name="Posts Created",
    description="Number of new posts/tracks created on this specific date",
    unit="posts",
)

COMMENTS_CREATED = MetricCategory(
    name="comments_created",
    source="comments",
    scope=MetricScope.DAILY,
    display_name="Comments Created",
    description="Number of new comments created on this specific date",
    unit="comments",
)

DEFAULT_CATEGORIES: tuple[MetricCategory, ...] = (
    USERS_TOTAL,
    POSTS_TOTAL,
    COMMENTS_TOTAL,
    POSTS_CREATED,
    COMMENTS_CREATED,
)

# Sources scanned when resolving the earliest backfill date
ACTIVITY_SOURCES: tuple[str, ...] = ("posts", "comments")


def get_category(name: str) -> MetricCategory:
    """Look up a default category by name.

    Raises:
        KeyError: If no category has this name
    """
    for category in DEFAULT_CATEGORIES:
        if category.name == name:
            return category
    raise KeyError(name)
