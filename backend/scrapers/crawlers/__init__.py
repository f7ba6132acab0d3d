"""Browser session management for JavaScript-rendered sites."""

from .browser import BrowserSession

__all__ = ['BrowserSession']
