"""Public verification keys."""

from fastapi import APIRouter

from authcore.api.deps import Service
from authcore.crypto.types import JWKSResponse

router = APIRouter()


@router.get("/.well-known/jwks.json")
async def jwks(service: Service) -> JWKSResponse:
    """GET /.well-known/jwks.json -- every key still valid for verification."""
    return await service.jwks()
