from typing import Annotated

from fastapi import APIRouter, Depends

from .dependencies import ServiceContainer, get_container
from .models import HealthResponse

router = APIRouter(tags=["health"])

@router.get("/health", response_model=HealthResponse)
def health(container: Annotated[ServiceContainer, Depends(get_container)]):
    return {"status": "ok", "vector_backend": container.settings.vector_backend}
