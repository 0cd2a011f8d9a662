from fastapi import APIRouter

from tablesync.api.tasks import router as tasks_router

router = APIRouter()


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}

# Mount task routes
router.include_router(tasks_router)
