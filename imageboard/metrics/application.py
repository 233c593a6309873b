"""Application-wide metrics computed from aggregate queries against the relational store.

These describe the site as a whole rather than any one worker, so they are
read once per scrape and never combined across workers.
"""

import logging
import platform

from sqlalchemy import case, func
from sqlalchemy.exc import SQLAlchemyError

from ..enums import JobStatus, TagCategory
from ..extensions import db
from ..models import BackgroundJob, Comment, Post, Tag, Upload, User
from .exceptions import StoreQueryFailure
from .process import package_version
from .registry import MergePolicy, MetricKind, MetricSet

logger = logging.getLogger(__name__)

COUNTER = MetricKind.COUNTER
GAUGE = MetricKind.GAUGE

# Every worker reads the same totals, so same-label gauges keep the largest reading.
_STORE_GAUGE = {"merge_policy": MergePolicy.MAX}

APPLICATION_SCHEMA = {
    "imageboard_info": (GAUGE, "Information about the current application build.", {
        "labels": ("version", "python_version", "flask_version", "sqlalchemy_version"),
        **_STORE_GAUGE,
    }),
    "imageboard_posts_total": (GAUGE, "The total number of posts.", {"labels": ("status",), **_STORE_GAUGE}),
    "imageboard_post_votes_total": (GAUGE, "The total number of post votes.", {"labels": ("type",), **_STORE_GAUGE}),
    "imageboard_favorites_total": (GAUGE, "The total number of favorites.", {"labels": (), **_STORE_GAUGE}),
    "imageboard_tags_total": (GAUGE, "The total number of tags (excluding empty tags).", {"labels": ("category",), **_STORE_GAUGE}),
    "imageboard_tags_post_count_total": (GAUGE, "The total number of tags on posts.", {"labels": ("category",), **_STORE_GAUGE}),
    "imageboard_comments_total": (GAUGE, "The total number of comments.", {"labels": ("deleted",), **_STORE_GAUGE}),
    "imageboard_uploads_total": (GAUGE, "The total number of uploads.", {"labels": ("status",), **_STORE_GAUGE}),
    "imageboard_users_total": (COUNTER, "The total number of users.", {"labels": ()}),
    "imageboard_background_jobs_total": (GAUGE, "The total number of background jobs.", {"labels": ("status",), **_STORE_GAUGE}),
}


class ApplicationMetrics:
    """Reads site-wide totals from the database into a fresh MetricSet on every call."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    def collect(self) -> MetricSet:
        """
        Query the store and build the application-wide metric set.

        Returns:
            MetricSet with one series per status/category bucket.

        Raises:
            StoreQueryFailure: If any aggregate query fails.
        """
        metrics = MetricSet(APPLICATION_SCHEMA)
        metrics.set("imageboard_info", {
            "version": package_version("imageboard"),
            "python_version": platform.python_version(),
            "flask_version": package_version("flask"),
            "sqlalchemy_version": package_version("sqlalchemy"),
        }, 1)

        try:
            self._collect_posts(metrics)
            self._collect_tags(metrics)
            self._collect_grouped(metrics)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(f"Application metrics query failed: {exc}")
            raise StoreQueryFailure(f"Failed to query application metrics: {exc}") from exc
        return metrics

    def _collect_posts(self, metrics: MetricSet) -> None:
        row = self.session.query(
            func.coalesce(func.sum(Post.up_score), 0),
            func.abs(func.coalesce(func.sum(Post.down_score), 0)),
            func.coalesce(func.sum(Post.fav_count), 0),
            func.coalesce(func.sum(case((Post.is_pending, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Post.is_flagged, 1), else_=0)), 0),
            func.coalesce(func.sum(case((Post.is_deleted, 1), else_=0)), 0),
            func.count(Post.id),
        ).one()
        upvotes, downvotes, favorites, pending, flagged, deleted, total = row

        metrics.set("imageboard_post_votes_total", {"type": "up"}, upvotes)
        metrics.set("imageboard_post_votes_total", {"type": "down"}, downvotes)
        metrics.set("imageboard_favorites_total", None, favorites)
        metrics.set("imageboard_posts_total", {"status": "pending"}, pending)
        metrics.set("imageboard_posts_total", {"status": "flagged"}, flagged)
        metrics.set("imageboard_posts_total", {"status": "deleted"}, deleted)
        metrics.set("imageboard_posts_total", {"status": "active"}, total - pending - flagged - deleted)

    def _collect_tags(self, metrics: MetricSet) -> None:
        rows = (
            self.session.query(Tag.category, func.count(Tag.id), func.sum(Tag.post_count))
            .filter(Tag.post_count > 0)
            .group_by(Tag.category)
            .all()
        )
        for category, count, post_count in rows:
            labels = {"category": TagCategory.name_for(category)}
            metrics.set("imageboard_tags_total", labels, count)
            metrics.set("imageboard_tags_post_count_total", labels, post_count)

    def _collect_grouped(self, metrics: MetricSet) -> None:
        for deleted, count in self.session.query(Comment.is_deleted, func.count(Comment.id)).group_by(Comment.is_deleted):
            metrics.set("imageboard_comments_total", {"deleted": bool(deleted)}, count)

        for status, count in self.session.query(Upload.status, func.count(Upload.id)).group_by(Upload.status):
            metrics.set("imageboard_uploads_total", {"status": status}, count)

        job_counts = dict(
            self.session.query(BackgroundJob.status, func.count(BackgroundJob.id)).group_by(BackgroundJob.status).all()
        )
        for status in JobStatus:
            metrics.set("imageboard_background_jobs_total", {"status": status.value}, job_counts.get(status.value, 0))

        metrics.set("imageboard_users_total", None, self.session.query(func.count(User.id)).scalar())
