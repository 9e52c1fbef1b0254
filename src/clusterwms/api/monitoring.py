from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from clusterwms import __version__
from clusterwms.core.controller import Controller
from clusterwms.models.status import ControllerStatus, PlaceholderSummary

from .deps import get_controller

router = APIRouter(tags=["monitoring"])


@router.get("/health")
async def health():
    return {"status": "ok", "version": __version__}


@router.get("/status", response_model=ControllerStatus)
async def status(controller: Controller = Depends(get_controller)):
    return controller.status()


@router.get("/placeholders", response_model=list[PlaceholderSummary])
async def placeholders(controller: Controller = Depends(get_controller)):
    if controller.manager is None:
        return []
    jobs = controller.manager.history + controller.manager.active()
    return [ph.summary() for ph in sorted(jobs, key=lambda p: p.id)]


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics(controller: Controller = Depends(get_controller)):
    counts = controller.status().placeholders_by_status
    lines = []
    lines.append("# HELP clusterwms_placeholder_jobs Number of placeholder jobs by status")
    lines.append("# TYPE clusterwms_placeholder_jobs gauge")
    for status_val, count in counts.items():
        lines.append(f'clusterwms_placeholder_jobs{{status="{status_val}"}} {count}')
    lines.append("# HELP clusterwms_individual_mode Whether tasks are submitted one per reservation")
    lines.append("# TYPE clusterwms_individual_mode gauge")
    lines.append(f"clusterwms_individual_mode {int(controller.strategy.individual_mode)}")
    return "\n".join(lines) + "\n"
