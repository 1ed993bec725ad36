"""
Alias Table
===========
Manual overrides from VPN/anonymizer identifiers to the real organization
behind them. Shared by every in-flight fusion, so all access goes through
one lock.
"""

import logging
import threading
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class AliasTable:
    """Thread-safe identifier -> company mapping"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._entries: Dict[str, str] = {}
        self._lock = threading.RLock()
        for identifier, company in (initial or {}).items():
            self.add(identifier, company)

    def add(self, identifier: str, real_company: str) -> Tuple[str, str]:
        """
        Register an identifier. Re-adding an identifier replaces its target.

        Returns:
            The stored (identifier, company) pair

        Raises:
            ValueError: if either value is empty
        """
        identifier = (identifier or "").strip().lower()
        real_company = (real_company or "").strip()
        if not identifier or not real_company:
            raise ValueError("identifier and real company are both required")

        with self._lock:
            previous = self._entries.get(identifier)
            self._entries[identifier] = real_company

        if previous and previous != real_company:
            logger.info("Alias %r remapped: %s -> %s", identifier, previous, real_company)
        else:
            logger.info("Alias %r mapped to %s", identifier, real_company)
        return identifier, real_company

    def match(self, text: Optional[str]) -> Optional[Tuple[str, str]]:
        """
        Find the longest registered identifier contained in text.

        Returns:
            (identifier, company) or None
        """
        if not text:
            return None
        haystack = text.lower()
        with self._lock:
            entries = list(self._entries.items())

        best = None
        for identifier, company in entries:
            if identifier in haystack:
                if best is None or len(identifier) > len(best[0]):
                    best = (identifier, company)
        return best

    def get(self, identifier: str) -> Optional[str]:
        with self._lock:
            return self._entries.get((identifier or "").strip().lower())

    def snapshot(self) -> Dict[str, str]:
        with self._lock:
            return dict(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
