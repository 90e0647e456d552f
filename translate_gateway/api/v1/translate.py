"""Translate API — batch translation and job cancellation."""

from fastapi import APIRouter, Depends, HTTPException

from translate_gateway.api.deps import get_gateway
from translate_gateway.gateway.errors import Aborted, SchedulerClosed
from translate_gateway.gateway.gateway import TranslationGateway
from translate_gateway.schemas.translate import CancelJobResponse, TranslateRequest, TranslateResponse

router = APIRouter(tags=["translate"])


@router.post("/translate", response_model=TranslateResponse)
async def translate(body: TranslateRequest, gateway: TranslationGateway = Depends(get_gateway)):
    """Translate ``texts``. Per-item failures are reported in ``errors`` by input index."""
    try:
        results = await gateway.translate_items(
            body.texts,
            source_lang=body.source_lang,
            target_lang=body.target_lang,
            job_id=body.job_id,
        )
    except Aborted:
        raise HTTPException(status_code=409, detail=f"Job {body.job_id or '-'} cancelled")
    except SchedulerClosed:
        raise HTTPException(status_code=503, detail="Translation gateway is shutting down")

    return TranslateResponse(
        outputs=[r.text if r.ok and r.text is not None else r.source_text for r in results],
        errors={r.index: str(r.error) for r in results if not r.ok},
        cached=sum(1 for r in results if r.cached),
        skipped=sum(1 for r in results if r.skipped),
    )


@router.post("/jobs/{job_id}/cancel", response_model=CancelJobResponse)
async def cancel_job(job_id: str, gateway: TranslationGateway = Depends(get_gateway)):
    """Cancel all queued and in-flight requests of a job."""
    return CancelJobResponse(ok=True, aborted=gateway.cancel(job_id))
