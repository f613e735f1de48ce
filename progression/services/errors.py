"""Domain errors raised by engine commands.

Queries never raise for missing references (they answer with a safe
boolean); only commands that act on an explicit id do.  The API layer maps
each class to an HTTP status.
"""

from __future__ import annotations


class ProgressionError(Exception):
    pass


class NotFoundError(ProgressionError):
    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class OrphanLessonError(ProgressionError):
    """Lesson whose module or course no longer exists."""


class NotEnrolledError(ProgressionError):
    pass


class LessonLockedError(ProgressionError):
    pass
