"""
Visit Store
===========
Volatile, append-only visit log plus the per-company rollups the dashboard
and leads views are built from. Insertion order is arrival order.
"""

import threading
from typing import Any, Dict, List

from ..models.schemas import Visit


class VisitStore:
    """In-memory visit log (replace with a database in production)"""

    def __init__(self):
        self._visits: List[Visit] = []
        self._lock = threading.Lock()

    def append(self, visit: Visit) -> int:
        """Append a visit and return the new total"""
        with self._lock:
            self._visits.append(visit)
            return len(self._visits)

    def count(self) -> int:
        with self._lock:
            return len(self._visits)

    def all(self) -> List[Visit]:
        with self._lock:
            return list(self._visits)

    def recent(self, limit: int = 10) -> List[Visit]:
        """Most recent visits, newest first"""
        if limit <= 0:
            return []
        with self._lock:
            tail = self._visits[-limit:]
        return list(reversed(tail))

    def rollup(self) -> List[Dict[str, Any]]:
        """
        Aggregate visits per company.

        Returns:
            One entry per company, sorted by descending lead score
            (ties broken by visit count, then most recent visit)
        """
        summary: Dict[str, Dict[str, Any]] = {}

        for visit in self.all():
            identity = visit.identity
            entry = summary.get(identity.company)
            if entry is None:
                entry = {
                    "company": identity.company,
                    "realCompany": identity.real_company,
                    "domain": identity.domain,
                    "location": identity.location,
                    "detectionMethod": identity.detection_method.value,
                    "confidence": identity.confidence,
                    "leadScore": identity.lead_score,
                    "isHighValue": identity.is_high_value,
                    "isVPN": identity.is_vpn,
                    "visits": 0,
                    "firstVisit": visit.timestamp.isoformat(),
                    "lastVisit": visit.timestamp.isoformat(),
                    "pages": [],
                }
                summary[identity.company] = entry

            entry["visits"] += 1
            entry["lastVisit"] = visit.timestamp.isoformat()
            if identity.lead_score > entry["leadScore"]:
                entry.update({
                    "leadScore": identity.lead_score,
                    "isHighValue": identity.is_high_value,
                    "detectionMethod": identity.detection_method.value,
                    "confidence": identity.confidence,
                    "domain": identity.domain or entry["domain"],
                })
            if visit.current_url and visit.current_url not in entry["pages"]:
                entry["pages"].append(visit.current_url)

        companies = list(summary.values())
        companies.sort(
            key=lambda c: (c["leadScore"], c["visits"], c["lastVisit"]),
            reverse=True,
        )
        return companies

    def referrer_rollup(self) -> List[Dict[str, Any]]:
        """
        Aggregate visits per referrer domain ("direct" when none was sent).

        Returns:
            One entry per domain, most visits first (ties: most recent)
        """
        summary: Dict[str, Dict[str, Any]] = {}

        for visit in self.all():
            entry = summary.setdefault(
                visit.referrer_domain,
                {"domain": visit.referrer_domain, "visits": 0, "lastVisit": None},
            )
            entry["visits"] += 1
            entry["lastVisit"] = visit.timestamp.isoformat()

        domains = list(summary.values())
        domains.sort(key=lambda d: (d["visits"], d["lastVisit"]), reverse=True)
        return domains

    def leads(self, threshold: int) -> List[Dict[str, Any]]:
        """Companies scoring above the threshold, one entry per company"""
        return [c for c in self.rollup() if c["leadScore"] >= threshold]
