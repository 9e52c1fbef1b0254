from fastapi import HTTPException, Request

from clusterwms.core.controller import Controller


async def get_controller(request: Request) -> Controller:
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="No controller attached")
    return controller
