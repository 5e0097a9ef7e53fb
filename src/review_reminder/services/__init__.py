"""
Engine components and external collaborators.
"""
from .config_store import ConfigStore
from .engine import InstallationEngine
from .github_client import GitHubClient
from .installation_registry import InstallationRegistry
from .notification_dispatcher import NotificationDispatcher
from .report_generator import ReportGenerator
from .user_scheduler import UserScheduler

__all__ = [
    "ConfigStore",
    "GitHubClient",
    "InstallationEngine",
    "InstallationRegistry",
    "NotificationDispatcher",
    "ReportGenerator",
    "UserScheduler",
]
