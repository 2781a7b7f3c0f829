# services/activity_projector.py
"""
Post-commit side effects of a mutation.

publish() runs after the request transaction committed:
  1. writes the activity_logs row in its own session; a failure is logged and
     returned as a warning, the committed mutation stands
  2. hands a notification intent to a single consumer thread which resolves the
     recipients (actor, project members, client user, end-client user) and
     inserts notifications rows. Without a running consumer the intent is
     handled inline.
"""
import logging
import queue
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal
from deps.auth import Identity
from errors import AuditFailure
from models import ActivityLog, Client, EndClient, Notification, Project, ProjectMember, utcnow

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class ActivityEvent:
    event_context: str            # "Element Type", "Invoice", ...
    event_name: str               # "Create", "PUT", "Delete", ...
    description: str
    identity: Identity
    project_id: Optional[int] = None
    notify_message: Optional[str] = None
    action_path: Optional[str] = None     # e.g. "/project/12/element"


@dataclass
class NotificationIntent:
    project_id: Optional[int]
    actor_user_id: int
    message: str
    action: Optional[str]


class ActivityProjector:
    def __init__(self, session_factory: Callable[[], Session], base_url: str = ""):
        self.session_factory = session_factory
        self.base_url = (base_url or "").rstrip("/")
        self._queue: "queue.Queue" = queue.Queue()
        self._worker: Optional[threading.Thread] = None

    # ---------- lifecycle ----------
    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._worker = threading.Thread(target=self._run, name="activity-projector", daemon=True)
        self._worker.start()
        logger.info("activity projector started")

    def stop(self, timeout: float = 5.0) -> None:
        if not self.running:
            return
        self._queue.put(_STOP)
        self._worker.join(timeout)
        self._worker = None
        logger.info("activity projector stopped")

    def drain(self) -> None:
        """Block until every queued intent was handled."""
        self._queue.join()

    # ---------- publish ----------
    def publish(self, event: ActivityEvent) -> List[str]:
        warnings: List[str] = []
        try:
            self._write_audit(event)
        except SQLAlchemyError as e:
            failure = AuditFailure("Activity log was not recorded", reason=str(e))
            logger.error("audit write failed for %s/%s: %s", event.event_context, event.event_name, e)
            warnings.append(failure.message)

        if event.notify_message:
            intent = NotificationIntent(
                project_id=event.project_id,
                actor_user_id=event.identity.user_id,
                message=event.notify_message,
                action=f"{self.base_url}{event.action_path}" if event.action_path else None,
            )
            if self.running:
                self._queue.put(intent)
            else:
                try:
                    self._deliver(intent)
                except SQLAlchemyError as e:
                    logger.error("notification fan-out failed: %s", e)
                    warnings.append(AuditFailure("Notifications were not sent").message)
        return warnings

    def _write_audit(self, event: ActivityEvent) -> None:
        ident = event.identity
        with self.session_factory() as s:
            s.add(ActivityLog(
                created_at=utcnow(),
                user_name=ident.display_name,
                host_name=ident.host_name,
                ip_address=ident.ip_address,
                event_context=event.event_context,
                event_name=event.event_name,
                description=event.description,
                project_id=event.project_id,
            ))
            s.commit()

    # ---------- consumer ----------
    def recipients(self, s: Session, project_id: Optional[int], actor_user_id: int) -> Set[int]:
        users = {actor_user_id}
        if project_id is None:
            return users
        users.update(
            uid for (uid,) in s.query(ProjectMember.user_id).filter(ProjectMember.project_id == project_id).all()
        )
        chain = (
            s.query(EndClient.user_id, Client.user_id)
              .select_from(Project)
              .join(EndClient, EndClient.id == Project.end_client_id)
              .join(Client, Client.id == EndClient.client_id)
              .filter(Project.id == project_id)
              .first()
        )
        if chain:
            users.update(uid for uid in chain if uid)
        return users

    def _deliver(self, intent: NotificationIntent) -> int:
        with self.session_factory() as s:
            now = utcnow()
            targets = sorted(self.recipients(s, intent.project_id, intent.actor_user_id))
            for uid in targets:
                s.add(Notification(
                    user_id=uid,
                    message=intent.message,
                    status="unread",
                    action=intent.action,
                    created_at=now,
                    updated_at=now,
                ))
            s.commit()
        return len(targets)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._deliver(item)
            except Exception:
                # consumer must outlive a bad intent
                logger.exception("notification fan-out failed (project=%s)", getattr(item, "project_id", None))
            finally:
                self._queue.task_done()


_projector: Optional[ActivityProjector] = None


def init_projector(session_factory: Callable[[], Session]) -> ActivityProjector:
    global _projector
    _projector = ActivityProjector(session_factory, get_settings().app_base_url)
    return _projector


def get_projector() -> ActivityProjector:
    """FastAPI dependency."""
    global _projector
    if _projector is None:
        init_projector(SessionLocal)
    return _projector
