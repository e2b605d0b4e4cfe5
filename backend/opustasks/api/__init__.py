"""API router package."""

from fastapi import APIRouter

from opustasks.api.v1 import (
    assistant,
    auth,
    health,
    mutations,
    projects,
    sections,
    sharing,
    tasks,
)

router = APIRouter()

router.include_router(health.router, tags=["Health"])
router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
router.include_router(projects.router, prefix="/projects", tags=["Projects"])
router.include_router(sections.router, tags=["Sections"])
router.include_router(tasks.router, prefix="/tasks", tags=["Tasks"])
router.include_router(sharing.router, prefix="/sharing", tags=["Sharing"])
router.include_router(mutations.router, prefix="/mutations", tags=["Mutations"])
router.include_router(assistant.router, prefix="/assistant", tags=["AI Assistant"])
