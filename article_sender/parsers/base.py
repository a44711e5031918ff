"""
Base classes and interfaces for listing parsers.

This module defines the contract that all article discoverers must follow.
"""

from typing import Protocol, List


class LinkDiscoverer(Protocol):
    """
    Protocol for listing parsers.

    Classes implementing this protocol should be able to scan the content of a
    listing page and return the article URLs it links to, in the order they
    appear.
    """

    def discover(self, markup: str, source: str) -> List[str]:
        """Returns article URLs found in a listing page."""
