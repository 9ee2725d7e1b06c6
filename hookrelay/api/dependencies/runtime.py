"""
FastAPI dependency exposing the delivery runtime built at startup

Usage:
    @router.get("/stats")
    async def stats(runtime: DeliveryRuntime = Depends(get_runtime)):
        return await runtime.ledger.stats()
"""
from fastapi import HTTPException, Request, status

from hookrelay.workers.runtime import DeliveryRuntime


def get_runtime(request: Request) -> DeliveryRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Delivery runtime not initialized",
        )
    return runtime
