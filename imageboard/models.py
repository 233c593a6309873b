from .enums import JobStatus, TagCategory, UploadStatus
from .extensions import db


class User(db.Model):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String, unique=True, nullable=False)

    posts = db.relationship("Post", back_populates="uploader")


class Post(db.Model):
    __tablename__ = "posts"
    id = db.Column(db.Integer, primary_key=True)
    uploader_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    up_score = db.Column(db.Integer, nullable=False, default=0)
    down_score = db.Column(db.Integer, nullable=False, default=0)
    fav_count = db.Column(db.Integer, nullable=False, default=0)
    is_pending = db.Column(db.Boolean, nullable=False, default=False)
    is_flagged = db.Column(db.Boolean, nullable=False, default=False)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    uploader = db.relationship("User", back_populates="posts")
    comments = db.relationship(
        "Comment", back_populates="post", cascade="all, delete-orphan"
    )


class Tag(db.Model):
    __tablename__ = "tags"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String, unique=True, nullable=False)
    category = db.Column(db.Integer, nullable=False, default=TagCategory.GENERAL.value)
    post_count = db.Column(db.Integer, nullable=False, default=0)


class Comment(db.Model):
    __tablename__ = "comments"
    id = db.Column(db.Integer, primary_key=True)
    post_id = db.Column(db.Integer, db.ForeignKey("posts.id"), nullable=False)
    body = db.Column(db.String, nullable=False, default="")
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    post = db.relationship("Post", back_populates="comments")


class Upload(db.Model):
    __tablename__ = "uploads"
    id = db.Column(db.Integer, primary_key=True)
    status = db.Column(db.String, nullable=False, default=UploadStatus.PENDING.value)


class BackgroundJob(db.Model):
    __tablename__ = "background_jobs"
    id = db.Column(db.Integer, primary_key=True)
    job_class = db.Column(db.String, nullable=False)
    status = db.Column(db.String, nullable=False, default=JobStatus.QUEUED.value)
