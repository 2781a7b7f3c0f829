# deps/authz.py
from fastapi import Depends
from sqlalchemy import select, true

from deps.auth import Identity, get_identity
from errors import Forbidden
from models import Client, EndClient, Project

SUPERADMIN = "superadmin"
ADMIN = "admin"


def visible_project_ids(identity: Identity):
    """Subquery of project ids whose client chain belongs to this admin."""
    return (
        select(Project.id)
        .join(EndClient, EndClient.id == Project.end_client_id)
        .join(Client, Client.id == EndClient.client_id)
        .where(Client.user_id == identity.user_id)
    )


def role_scope(identity: Identity, project_id_col):
    """
    Row filter for project-owned aggregates:
      superadmin -> everything, admin -> own client chain, anyone else -> Forbidden.
    Usage: query.filter(role_scope(ident, Invoice.project_id))
    """
    if identity.role_name == SUPERADMIN:
        return true()
    if identity.role_name == ADMIN:
        return project_id_col.in_(visible_project_ids(identity))
    raise Forbidden(f"Role '{identity.role_name}' cannot list this resource")


def require_roles(*roles: str):
    def dep(identity: Identity = Depends(get_identity)) -> Identity:
        if identity.role_name not in roles:
            need = ", ".join(roles)
            raise Forbidden(f"Need any of: {need}")
        return identity
    return dep
