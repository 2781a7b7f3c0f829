from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from deps.auth import Identity, get_identity
from errors import BadInput, NotFound
from models import Drawing
from schemas import DrawingOut, DrawingRevisionIn, DrawingRevisionOut
from services import revision_store
from services.activity_projector import ActivityEvent, ActivityProjector, get_projector
from utils.db_context import QueryTier, deadline

router = APIRouter(prefix="/drawings", tags=["drawings"])


def _get_drawing(db: Session, drawing_id: int, for_update: bool = False) -> Drawing:
    q = db.query(Drawing).filter(Drawing.id == drawing_id)
    if for_update:
        q = q.with_for_update()
    d = q.first()
    if d is None:
        raise NotFound("Drawing not found", drawing_id=drawing_id)
    return d


@router.get("/{drawing_id}")
def get_drawing(
    drawing_id: int,
    db: Session = Depends(deadline(QueryTier.FAST)),
    ident: Identity = Depends(get_identity),
):
    d = _get_drawing(db, drawing_id)
    return DrawingOut.model_validate(d)


@router.get("/{drawing_id}/revisions", response_model=List[DrawingRevisionOut])
def list_revisions(
    drawing_id: int,
    db: Session = Depends(deadline(QueryTier.FAST)),
    ident: Identity = Depends(get_identity),
):
    _get_drawing(db, drawing_id)
    return revision_store.list_drawing_revisions(db, drawing_id)


@router.post("/{drawing_id}/revisions", status_code=201)
def append_revision(
    drawing_id: int,
    payload: DrawingRevisionIn,
    db: Session = Depends(deadline()),
    ident: Identity = Depends(get_identity),
    projector: ActivityProjector = Depends(get_projector),
):
    d = _get_drawing(db, drawing_id, for_update=True)
    latest = revision_store.latest_drawing_version(db, d.id)
    if payload.version is not None and payload.version <= latest:
        raise BadInput(f"version must be greater than {latest}", drawing_id=d.id)

    rev_id = revision_store.append_drawing_revision(
        db, d,
        file=payload.file,
        comments=payload.comments,
        actor=ident.display_name,
        version=payload.version,
    )
    out = {"id": rev_id, "drawing_id": d.id, "version": d.current_version}
    project_id = d.project_id
    db.commit()

    out["warnings"] = projector.publish(ActivityEvent(
        event_context="Drawing",
        event_name="Revision",
        description=f"Drawing {drawing_id} revised to version {out['version']}",
        identity=ident,
        project_id=project_id,
    ))
    return out
