"""
Pro-matching engine.

Given the customer's coverage (ZIP, optional city) and the requested service,
returns the workers eligible for assignment. Eligibility is binary; the
output keeps the order of the input pool.

Coverage rules (applied when the ZIP resolves in the ZIP directory):
    - worker declares neither city nor postal code → available everywhere
    - worker postal code equals the requested ZIP
    - worker city overlaps the ZIP's city or county (case-insensitive
      substring, either direction)

Skill rules (applied when a service is given):
    - worker declares no skills → generalist
    - a skill equals the service, or one contains the other
    - the service has synonym keywords and a skill overlaps one of them
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from servicehub.lib.coverage import ZipDirectory, default_zip_directory
from servicehub.lib.logging import get_logger
from servicehub.models.workers import Worker

logger = get_logger(__name__)


# service → keywords that identify a worker able to do it
SERVICE_SYNONYMS: dict[str, tuple[str, ...]] = {
    "plumbing": ("plumber", "pipe", "water", "drain"),
    "electrical": ("electrician", "electric", "wiring", "power"),
    "house cleaning": ("cleaner", "cleaning", "maid", "janitor"),
    "ac repair": ("hvac", "air conditioning", "cooling", "refrigeration"),
    "appliance repair": ("appliance", "repair", "technician", "fix"),
    "painting": ("painter", "paint", "decorator"),
    "handyman": ("handyman", "maintenance", "repair", "fix"),
    "pest control": ("pest", "exterminator", "bug", "insect"),
    "lawn care": ("landscaping", "lawn", "gardening", "mowing"),
    "moving": ("mover", "moving", "relocation", "transport"),
    "roofing": ("roofer", "roof", "shingle", "gutter"),
}


class MatchableWorker(Protocol):
    id: object
    city: Optional[str]
    postal_code: Optional[str]
    skills: Optional[Sequence[str]]


W = TypeVar("W", bound=MatchableWorker)


@dataclass(frozen=True)
class Coverage:
    zip: str
    city: Optional[str] = None


def _overlaps(a: str, b: str) -> bool:
    return bool(a) and bool(b) and (a in b or b in a)


def covers(worker: MatchableWorker, coverage: Coverage, zip_directory: ZipDirectory) -> bool:
    """True if the worker serves the requested location."""
    if not worker.city and not worker.postal_code:
        return True

    if worker.postal_code and worker.postal_code.strip() == coverage.zip:
        return True

    if worker.city:
        worker_city = worker.city.strip().lower()
        area = zip_directory.resolve(coverage.zip)
        names = []
        if area:
            names.extend([area.city.lower(), area.county.lower()])
        if coverage.city:
            names.append(coverage.city.strip().lower())
        return any(_overlaps(worker_city, name) for name in names)

    return False


def has_skill_for(worker: MatchableWorker, service: str) -> bool:
    """True if the worker's skill tags qualify them for the service."""
    skills = [s.strip().lower() for s in (worker.skills or []) if s and s.strip()]
    if not skills:
        return True

    wanted = service.strip().lower()
    keywords = SERVICE_SYNONYMS.get(wanted, ())
    for skill in skills:
        if skill == wanted or _overlaps(skill, wanted):
            return True
        if any(_overlaps(skill, keyword) for keyword in keywords):
            return True
    return False


def match(
    coverage: Coverage,
    service_category: Optional[str],
    worker_pool: Iterable[W],
    zip_directory: Optional[ZipDirectory] = None,
) -> list[W]:
    """
    Filter the pool down to workers eligible for the request.

    The coverage filter only applies to a complete ZIP that resolves in the
    directory; an empty coverage result is returned as is without looking at
    skills.
    """
    directory = zip_directory or default_zip_directory
    candidates = list(worker_pool)

    zip_code = (coverage.zip or "").strip()
    if len(zip_code) == 5 and directory.resolve(zip_code):
        candidates = [w for w in candidates if covers(w, Coverage(zip_code, coverage.city), directory)]
        if not candidates:
            return []

    if service_category and service_category.strip():
        candidates = [w for w in candidates if has_skill_for(w, service_category)]

    return candidates


def reconcile_selection(selected_id: Optional[UUID], matched: Iterable[MatchableWorker]) -> Optional[UUID]:
    """Keep the caller's selected worker only if it is still eligible."""
    if selected_id is None:
        return None
    ids = {str(worker.id) for worker in matched}
    return selected_id if str(selected_id) in ids else None


class MatchingService:
    """Loads the active worker pool and runs the matching engine over it."""

    def __init__(self, db_session: Session, zip_directory: Optional[ZipDirectory] = None):
        self.db = db_session
        self.zip_directory = zip_directory or default_zip_directory

    def active_workers(self) -> list[Worker]:
        stmt = select(Worker).where(Worker.is_active.is_(True)).order_by(Worker.created_at, Worker.name)
        return list(self.db.execute(stmt).scalars().all())

    def find_workers(self, zip_code: str, service: Optional[str] = None, city: Optional[str] = None) -> list[Worker]:
        pool = self.active_workers()
        matched = match(Coverage(zip_code, city), service, pool, self.zip_directory)
        logger.info(
            "Matched workers",
            extra={"zip": zip_code, "service": service, "pool_size": len(pool), "matched": len(matched)},
        )
        return matched
