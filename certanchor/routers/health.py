"""
Health check endpoints for diagnosing service dependencies.
"""
import logging

from fastapi import APIRouter, Depends

from certanchor.config import Settings, get_settings
from certanchor.document.scan import scanner_available
from certanchor.exceptions import RegistryError
from certanchor.registry.client import RegistryClient, get_registry_client

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/health",
    tags=["health"],
)


@router.get("/registry")
async def health_check_registry(
    settings: Settings = Depends(get_settings),
    registry: RegistryClient = Depends(get_registry_client),
):
    """
    Check that the RPC node answers and the registry contract is deployed.
    """
    result = {
        "chain": settings.chain_name,
        "expected_chain_id": settings.chain_id,
        "rpc_url": settings.rpc_url,
        "contract_address": settings.contract_address or None,
        "error": None,
    }

    try:
        info = await registry.ping()
    except RegistryError as e:
        logger.warning(f"Registry health check failed: {e.kind} - {e.message}")
        result["error"] = e.message
        result["error_kind"] = e.registry_kind.value
        return {"status": "unhealthy", "registry": result}

    result.update(info)
    if info["chain_id"] != settings.chain_id:
        result["error"] = f"RPC reports chain id {info['chain_id']}, expected {settings.chain_id}"
        return {"status": "unhealthy", "registry": result}

    return {"status": "healthy", "registry": result}


@router.get("/scanner")
async def health_check_scanner():
    """
    Check that the zbar library needed for QR scanning can be loaded.
    """
    if scanner_available():
        return {"status": "healthy", "scanner": {"backend": "zbar", "available": True}}
    return {
        "status": "unhealthy",
        "scanner": {
            "backend": "zbar",
            "available": False,
            "error": "zbar shared library not found; install libzbar0",
        },
    }
