from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from imageboard.enums import JobStatus, TagCategory, UploadStatus
from imageboard.extensions import db
from imageboard.metrics import ApplicationMetrics, MergePolicy, StoreQueryFailure
from imageboard.models import BackgroundJob, Comment, Post, Tag, Upload, User


@pytest.fixture()
def store(app):
    """Yield the session inside an app context and empty every table afterwards."""
    with app.app_context():
        try:
            yield db.session
        finally:
            db.session.rollback()
            for model in (Comment, Post, Tag, Upload, BackgroundJob, User):
                db.session.query(model).delete()
            db.session.commit()


def populate(session):
    alice = User(name="alice")
    bob = User(name="bob")
    session.add_all([alice, bob])
    session.flush()

    visible = Post(uploader_id=alice.id, up_score=5, down_score=-2, fav_count=3)
    pending = Post(uploader_id=alice.id, up_score=1, is_pending=True)
    flagged = Post(uploader_id=bob.id, down_score=-1, is_flagged=True)
    deleted = Post(uploader_id=bob.id, fav_count=1, is_deleted=True)
    session.add_all([visible, pending, flagged, deleted])
    session.flush()

    session.add_all([
        Comment(post_id=visible.id, body="nice"),
        Comment(post_id=visible.id, body="spam", is_deleted=True),
        Comment(post_id=pending.id, body="hm"),
        Tag(name="landscape", category=TagCategory.GENERAL.value, post_count=10),
        Tag(name="sky", category=TagCategory.GENERAL.value, post_count=4),
        Tag(name="some_artist", category=TagCategory.ARTIST.value, post_count=2),
        Tag(name="empty_tag", category=TagCategory.CHARACTER.value, post_count=0),
        Upload(status=UploadStatus.COMPLETED.value),
        Upload(status=UploadStatus.COMPLETED.value),
        Upload(status=UploadStatus.ERROR.value),
        BackgroundJob(job_class="PruneUploadsJob", status=JobStatus.FINISHED.value),
        BackgroundJob(job_class="PruneUploadsJob", status=JobStatus.QUEUED.value),
    ])
    session.commit()


def test_collect_counts_posts_and_votes(store):
    populate(store)
    metrics = ApplicationMetrics().collect()

    assert metrics.value("imageboard_posts_total", {"status": "pending"}) == 1
    assert metrics.value("imageboard_posts_total", {"status": "flagged"}) == 1
    assert metrics.value("imageboard_posts_total", {"status": "deleted"}) == 1
    assert metrics.value("imageboard_posts_total", {"status": "active"}) == 1
    assert metrics.value("imageboard_post_votes_total", {"type": "up"}) == 6
    assert metrics.value("imageboard_post_votes_total", {"type": "down"}) == 3
    assert metrics.value("imageboard_favorites_total") == 4
    assert metrics.value("imageboard_users_total") == 2


def test_collect_groups_tags_by_category_and_skips_empty_tags(store):
    populate(store)
    metrics = ApplicationMetrics().collect()

    assert metrics.value("imageboard_tags_total", {"category": "general"}) == 2
    assert metrics.value("imageboard_tags_post_count_total", {"category": "general"}) == 14
    assert metrics.value("imageboard_tags_total", {"category": "artist"}) == 1
    assert metrics.value("imageboard_tags_total", {"category": "character"}) is None


def test_collect_groups_comments_uploads_and_jobs(store):
    populate(store)
    metrics = ApplicationMetrics().collect()

    assert metrics.value("imageboard_comments_total", {"deleted": "false"}) == 2
    assert metrics.value("imageboard_comments_total", {"deleted": "true"}) == 1
    assert metrics.value("imageboard_uploads_total", {"status": "completed"}) == 2
    assert metrics.value("imageboard_uploads_total", {"status": "error"}) == 1
    assert metrics.value("imageboard_background_jobs_total", {"status": "finished"}) == 1
    assert metrics.value("imageboard_background_jobs_total", {"status": "queued"}) == 1
    # Every job status is reported, even when no job is in it.
    assert metrics.value("imageboard_background_jobs_total", {"status": "discarded"}) == 0


def test_collect_on_empty_store(store):
    metrics = ApplicationMetrics().collect()

    assert metrics.value("imageboard_posts_total", {"status": "active"}) == 0
    assert metrics.value("imageboard_post_votes_total", {"type": "up"}) == 0
    assert metrics.value("imageboard_users_total") == 0
    assert len(metrics["imageboard_tags_total"]) == 0
    (labels, value), = metrics["imageboard_info"].series()
    assert value == 1
    assert set(labels.keys()) == {"version", "python_version", "flask_version", "sqlalchemy_version"}


def test_store_gauges_do_not_double_count_across_workers(store):
    populate(store)
    first = ApplicationMetrics().collect()
    second = ApplicationMetrics().collect()

    combined = first.merge(second)

    assert first["imageboard_posts_total"].merge_policy is MergePolicy.MAX
    assert combined.value("imageboard_posts_total", {"status": "active"}) == 1


def test_query_failure_raises_store_query_failure():
    session = MagicMock()
    session.query.side_effect = OperationalError("SELECT 1", {}, Exception("database is locked"))

    with pytest.raises(StoreQueryFailure, match="database is locked"):
        ApplicationMetrics(session=session).collect()

    session.rollback.assert_called_once()
