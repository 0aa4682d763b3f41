"""
Read-side collaborators for the analytics engine, plus an in-memory store.

The engine never reaches for module-level state: it is handed a repository
(or a RepositorySnapshot taken from one) and works on that alone. Mutations
bump ``version`` and notify subscribers, which is how report caches learn
they are stale.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from sitelog.config import EngineSettings, load_settings
from sitelog.models.visit_models import (
    Project,
    ProjectLink,
    Team,
    TimeTracking,
    VisitRecord,
    project_link_from_identifier,
)

logger = logging.getLogger("sitelog-api")


# ---------------------------------------------------------------------------
# Contracts
# ---------------------------------------------------------------------------

class ProjectRepository(Protocol):
    def get_project_by_id(self, project_id: str) -> Optional[Project]: ...
    def list_projects(self) -> List[Project]: ...


class VisitRepository(Protocol):
    def list_visits_by_project(self, project_id: str) -> List[VisitRecord]: ...
    def list_all_visits(self) -> List[VisitRecord]: ...


class TeamRepository(Protocol):
    def list_teams(self) -> List[Team]: ...


class PersonnelDirectory(Protocol):
    def list_personnel_names(self) -> List[str]: ...


class SettingsProvider(Protocol):
    def get_settings(self) -> EngineSettings: ...


@dataclass(frozen=True)
class RepositorySnapshot:
    """Immutable view of every collection the engine reads, taken atomically."""
    version: int
    projects: Tuple[Project, ...]
    visits: Tuple[VisitRecord, ...]
    teams: Tuple[Team, ...]

    def project_index(self) -> Dict[str, Project]:
        return {p.id: p for p in self.projects}


# ---------------------------------------------------------------------------
# In-memory implementation
# ---------------------------------------------------------------------------

class InMemoryRepository:
    """
    Thread-safe in-memory store implementing all read contracts above.

    Insertion order is preserved for every collection; rankings rely on it
    for stable tie-breaking.
    """

    def __init__(
        self,
        projects: Iterable[Project] = (),
        visits: Iterable[VisitRecord] = (),
        teams: Iterable[Team] = (),
        personnel_names: Iterable[str] = (),
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._projects: Dict[str, Project] = {p.id: p for p in projects}
        self._visits: Dict[str, VisitRecord] = {v.id: v for v in visits}
        self._teams: Dict[str, Team] = {t.id: t for t in teams}
        self._personnel: List[str] = list(dict.fromkeys(personnel_names))
        self._settings = settings or load_settings()
        self._version = 0
        self._listeners: List[Callable[[int], None]] = []

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def get_project_by_id(self, project_id: str) -> Optional[Project]:
        with self._lock:
            return self._projects.get(project_id)

    def list_projects(self) -> List[Project]:
        with self._lock:
            return list(self._projects.values())

    def list_visits_by_project(self, project_id: str) -> List[VisitRecord]:
        with self._lock:
            return [v for v in self._visits.values() if v.project_id == project_id]

    def list_all_visits(self) -> List[VisitRecord]:
        with self._lock:
            return list(self._visits.values())

    def list_teams(self) -> List[Team]:
        with self._lock:
            return list(self._teams.values())

    def list_personnel_names(self) -> List[str]:
        """Known names: the directory plus anyone who appears on a visit."""
        with self._lock:
            names = list(self._personnel)
            for visit in self._visits.values():
                names.extend(visit.personnel)
            return list(dict.fromkeys(names))

    def get_settings(self) -> EngineSettings:
        with self._lock:
            return self._settings

    def snapshot(self) -> RepositorySnapshot:
        with self._lock:
            return RepositorySnapshot(
                version=self._version,
                projects=tuple(self._projects.values()),
                visits=tuple(self._visits.values()),
                teams=tuple(self._teams.values()),
            )

    # ------------------------------------------------------------------
    # Write API (used by the CRUD layer and tests)
    # ------------------------------------------------------------------

    def subscribe(self, listener: Callable[[int], None]) -> None:
        """``listener(new_version)`` is called after every mutation."""
        with self._lock:
            self._listeners.append(listener)

    def save_project(self, project: Project) -> None:
        with self._lock:
            self._projects[project.id] = project
        self._bump(f"project {project.id} saved")

    def delete_project(self, project_id: str) -> None:
        with self._lock:
            if self._projects.pop(project_id, None) is None:
                raise KeyError(project_id)
        self._bump(f"project {project_id} deleted")

    def save_visit(self, visit: VisitRecord) -> None:
        with self._lock:
            self._visits[visit.id] = visit
        self._bump(f"visit {visit.id} saved")

    def delete_visit(self, visit_id: str) -> None:
        with self._lock:
            if self._visits.pop(visit_id, None) is None:
                raise KeyError(visit_id)
        self._bump(f"visit {visit_id} deleted")

    def save_team(self, team: Team) -> None:
        with self._lock:
            self._teams[team.id] = team
        self._bump(f"team {team.id} saved")

    def add_personnel_name(self, name: str) -> None:
        with self._lock:
            if name in self._personnel:
                return
            self._personnel.append(name)
        self._bump(f"personnel {name} added")

    def update_settings(self, settings: EngineSettings) -> None:
        with self._lock:
            self._settings = settings
        self._bump("settings updated")

    def _bump(self, reason: str) -> None:
        with self._lock:
            self._version += 1
            version = self._version
            listeners = list(self._listeners)
        logger.debug(f"Repository version {version}: {reason}")
        for listener in listeners:
            listener(version)


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def visit_from_row(row: Dict[str, Any], blank_prefixes: tuple = ()) -> VisitRecord:
    """
    Build a VisitRecord from a storage row (snake_case column names).

    ``is_blank_worksheet`` wins over the id-prefix convention when present.
    """
    if row.get("is_blank_worksheet"):
        link = ProjectLink.blank()
    elif blank_prefixes:
        link = project_link_from_identifier(row.get("project_id"), blank_prefixes)
    else:
        link = project_link_from_identifier(row.get("project_id"))

    personnel = row.get("personnel") or ()
    return VisitRecord(
        id=str(row["id"]),
        project=link,
        date=_parse_date(row["date"]),
        personnel=tuple(p for p in personnel if isinstance(p, str) and p),
        time_tracking=TimeTracking(
            departure_time=row.get("departure"),
            arrival_time=row.get("arrival"),
            end_time=row.get("end_time"),
            break_duration=row.get("break_time"),
            total_hours=row.get("total_hours"),
        ),
        hourly_rate=row.get("hourly_rate"),
        invoiced=bool(row.get("invoiced", False)),
        signed_quote_amount=row.get("signed_quote_amount"),
        tasks_performed=row.get("tasks"),
    )


def project_from_row(row: Dict[str, Any]) -> Project:
    return Project(
        id=str(row["id"]),
        name=row.get("name", ""),
        team=row.get("team_id") or row.get("team"),
        visit_duration=row.get("visit_duration"),
        annual_visits=int(row.get("annual_visits") or 0),
        annual_total_hours=float(row.get("annual_total_hours") or 0.0),
    )
