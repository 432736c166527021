from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.db import repository as repo
from app.pipeline.contracts import ProjectFile
from app.schemas.jobs import FileEntry, FileUpdateRequest, FileUpdateResponse, ProjectFilesResponse
from app.tasks.jobs import get_orchestrator

router = APIRouter(prefix="/projects")


@router.get("/{project_id}/files", response_model=ProjectFilesResponse)
def list_files(project_id: str, db: Session = Depends(get_db)):
    files = repo.get_project_files(db, project_id)
    return ProjectFilesResponse(
        project_id=project_id,
        files=[FileEntry(filename=f.filename, content=f.content) for f in files],
    )


@router.post("/{project_id}/files", response_model=FileUpdateResponse)
def update_file(project_id: str, req: FileUpdateRequest, db: Session = Depends(get_db)):
    """Upsert one file and optionally push it to the live preview.

    The orchestrator's preview store is per process and the API process never
    deploys, so a URL the host reports for the push is written to the
    project's latest ``deployments`` row instead.
    """
    changed = ProjectFile(filename=req.file_path, content=req.content)
    repo.save_project_files(db, project_id, [changed])
    preview_updated = None
    if req.redeploy:
        preview_updated = get_orchestrator().update_files(
            project_id, [changed],
            on_new_url=lambda url: repo.update_deployment_url(db, project_id, url),
        )
    return FileUpdateResponse(success=True, file_path=req.file_path, preview_updated=preview_updated)
