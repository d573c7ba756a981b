"""Site adapters."""

from .base import SiteAdapter
from .studyportals import StudyPortalsAdapter

__all__ = ["SiteAdapter", "StudyPortalsAdapter"]
