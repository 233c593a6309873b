"""Enumeration types for type-safe constants throughout the application."""

from enum import Enum


class TagCategory(int, Enum):
    """Tag categories as stored in the tags table."""

    GENERAL = 0
    ARTIST = 1
    COPYRIGHT = 3
    CHARACTER = 4
    META = 5

    @classmethod
    def name_for(cls, value) -> str:
        """
        Convert a stored category number to its lowercase name.

        Args:
            value: Integer category as stored in the database

        Returns:
            Category name, or "unknown" for values outside the enum
        """
        for category in cls:
            if category.value == value:
                return category.name.lower()
        return "unknown"


class JobStatus(str, Enum):
    """Lifecycle states of a background job."""

    QUEUED = "queued"
    RUNNING = "running"
    FINISHED = "finished"
    DISCARDED = "discarded"

    def __str__(self) -> str:
        """Return the string value of the enum."""
        return self.value


class UploadStatus(str, Enum):
    """Processing states of an upload."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    def __str__(self) -> str:
        """Return the string value of the enum."""
        return self.value
