import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from src.alwayscare.api.deps import OwnerContext, get_current_owner, get_analysis_service, get_upload_storage
from src.alwayscare.api.schemas import RecordStatusResponse, record_to_response
from src.alwayscare.infra.storage import UploadStorage
from src.alwayscare.services.analysis_service import AnalysisService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/images", tags=["images"])


@router.post("", response_model=RecordStatusResponse, status_code=status.HTTP_201_CREATED)
async def upload_image(
    image: UploadFile = File(...),
    ctx: OwnerContext = Depends(get_current_owner),
    svc: AnalysisService = Depends(get_analysis_service),
    storage: UploadStorage = Depends(get_upload_storage),
):
    # one byte past the cap is enough to reject an oversized upload
    data = await image.read(storage.max_bytes + 1)
    try:
        location = storage.save(image.filename or "", data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        record = svc.submit(ctx.user_id, location, original_filename=image.filename)
    except Exception:
        logger.exception("upload of %s failed, discarding stored file", image.filename)
        storage.discard(location)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error during image upload",
        )

    return record_to_response(record)
