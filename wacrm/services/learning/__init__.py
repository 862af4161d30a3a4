"""Learning service - memories, FAQ cache, patterns and the post-reply learning queue."""

from wacrm.services.learning.store import LearningStore
from wacrm.services.learning.worker import LearningJob, LearningQueue

__all__ = ["LearningJob", "LearningQueue", "LearningStore"]
