"""Event loop modules for the docker event monitor."""

from .runner import EventMonitor, MonitorResult

__all__ = ['EventMonitor', 'MonitorResult']
