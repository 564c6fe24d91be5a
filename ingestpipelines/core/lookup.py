"""
Lookup clients used by enrichment processors.

This module provides the abstract LookupClient and an HTTP implementation
that resolves keys against a REST endpoint.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from .exceptions import ProcessorFailure

logger = logging.getLogger(__name__)


class LookupClient(ABC):
    """Abstract base class for key/value enrichment sources."""

    @abstractmethod
    def lookup(self, key: str, headers: Optional[Dict[str, str]] = None) -> Any:
        """
        Resolve a key.

        Returns:
            The value for the key, or None when the source has no entry

        Raises:
            ProcessorFailure: If the source could not be reached
        """
        pass

    def close(self) -> None:
        """Release any resources held by the client."""
        pass


class HttpLookupClient(LookupClient):
    """
    Lookup client backed by a REST endpoint.

    ``GET {base_url}/{key}`` is expected to return a JSON body; 404 means
    "no entry".
    """

    def __init__(self, base_url: str, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        """
        Initialize the HTTP lookup client.

        Args:
            base_url: Base URL keys are appended to
            timeout: Request timeout in seconds
            session: Optional preconfigured requests session
        """
        if not base_url:
            raise ValueError("HttpLookupClient requires a base_url")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def lookup(self, key: str, headers: Optional[Dict[str, str]] = None) -> Any:
        url = f"{self.base_url}/{requests.utils.quote(str(key), safe='')}"
        try:
            response = self.session.get(url, timeout=self.timeout, headers=headers)
        except requests.RequestException as e:
            raise ProcessorFailure(f"lookup of [{key}] failed: {e}") from e

        if response.status_code == 404:
            logger.debug(f"Lookup of {key} returned no entry")
            return None
        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            raise ProcessorFailure(f"lookup of [{key}] failed with status {response.status_code}") from e

        try:
            return response.json()
        except ValueError as e:
            raise ProcessorFailure(f"lookup of [{key}] returned a body that is not JSON") from e

    def close(self) -> None:
        self.session.close()
