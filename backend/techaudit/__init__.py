"""
techaudit - technical SEO and security audit pipeline.
"""
from techaudit.config import settings

__version__ = settings.VERSION
