from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from portal.concerns.scope import DepartmentScope, build_scope
from portal.concerns.service import ConcernService
from portal.core.config import Settings, get_settings
from portal.dependencies.auth import CurrentUser, Role, Surface, User, role_required

require_editor = role_required(Role.EDITOR)
require_viewer = role_required(Role.VIEWER)

EditorUser = Annotated[User, Depends(require_editor)]
ViewerUser = Annotated[User, Depends(require_viewer)]


def scope_for_surface(surface: Surface | None, settings: Settings) -> DepartmentScope:
    """Map an admin surface to the departments it may see."""

    if surface is Surface.SYSAD:
        return DepartmentScope.all()
    if surface is Surface.MERCHANT:
        return build_scope(exact=settings.merchant_departments)
    if surface is Surface.MOTORPOOL:
        return build_scope(contains=settings.motorpool_departments)
    if surface is Surface.TREASURY:
        return build_scope(contains=settings.treasury_departments)
    raise HTTPException(status_code=403, detail="No admin surface assigned")


async def get_concern_service(request: Request) -> ConcernService:
    service = getattr(request.app.state, "concern_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Concern service is not configured")
    return service


async def get_submitter(user: CurrentUser) -> User:
    """Any signed-in account with an email can read the concerns it filed."""

    if not user.email:
        raise HTTPException(status_code=403, detail="No submitter email on this account")
    return user


async def get_viewer_scope(user: ViewerUser) -> DepartmentScope:
    return scope_for_surface(user.surface, get_settings())


async def get_editor_scope(user: EditorUser) -> DepartmentScope:
    return scope_for_surface(user.surface, get_settings())


SubmitterUser = Annotated[User, Depends(get_submitter)]
ConcernServiceDep = Annotated[ConcernService, Depends(get_concern_service)]
ViewerScope = Annotated[DepartmentScope, Depends(get_viewer_scope)]
EditorScope = Annotated[DepartmentScope, Depends(get_editor_scope)]
