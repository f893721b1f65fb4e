from fastapi import APIRouter

from buildhost import __version__

router = APIRouter()


@router.get("/")
async def root():
    return {"message": "buildhost", "version": __version__}


@router.get("/health")
async def health():
    return {"status": "healthy"}
