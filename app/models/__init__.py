"""Database models package."""

from app.models.course import Course
from app.models.grade import Grade
from app.models.student import Student
from app.models.upload import Upload, UploadError, UploadStatus

__all__ = [
    # Student
    "Student",
    # Course
    "Course",
    # Grade
    "Grade",
    # Upload
    "Upload",
    "UploadError",
    "UploadStatus",
]
