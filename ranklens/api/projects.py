"""
Project endpoints
"""
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from typing import Any, Optional

from ranklens.api.deps import Services, check_secret, get_services
from ranklens.services.project_store import MalformedStoredJson
from ranklens.utils.logger import log

router = APIRouter(prefix="/projects", tags=["projects"])


@router.get("")
async def list_projects(services: Services = Depends(get_services)):
    """Project summaries sorted by label"""
    projects = await services.projects.load_project_summaries()
    return {"projects": projects}


@router.post("/{project_id}")
async def upsert_project(
    project_id: str,
    payload: Any = Body(...),
    secret: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    """Store a synced sheet export and drop the project's derived caches"""
    check_secret(secret)
    try:
        project = await services.projects.upsert_project(project_id.strip(), payload)
    except MalformedStoredJson as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "project": project.summary()}


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    secret: Optional[str] = Query(None),
    services: Services = Depends(get_services),
):
    """Delete a project and every cache entry derived from it"""
    check_secret(secret)
    project_id = project_id.strip()
    if not project_id:
        raise HTTPException(status_code=400, detail="Invalid project id")

    try:
        removed = await services.projects.delete_project(project_id)
    except Exception as e:
        log.error(f"Failed to delete project {project_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to delete project")

    if not removed:
        raise HTTPException(status_code=404, detail=f"Project '{project_id}' not found")
    return {"success": True, "id": project_id}
