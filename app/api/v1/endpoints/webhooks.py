"""
Endpoints para webhooks de ShipStation.

La firma HMAC se valida sobre el cuerpo crudo antes de parsear el JSON.
"""

import json
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from app.api.v1.schemas.sync_schemas import ShipStationWebhookPayload
from app.services.tracking_sync_service import TrackingSyncService, get_tracking_sync_service
from app.utils.error_handler import WebhookPayloadException, WebhookSignatureException

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-shipstation-signature"

# Crear router
router = APIRouter()


@router.post("/shipstation", status_code=status.HTTP_200_OK)
async def receive_shipstation_webhook(
    request: Request,
    service: TrackingSyncService = Depends(get_tracking_sync_service),
) -> JSONResponse:
    """
    Recibe un webhook de ShipStation y escribe el tracking en IQR.

    Returns:
        JSONResponse: {success, message}; 400 si falta el cuerpo del envío

    Raises:
        WebhookSignatureException: Firma ausente o inválida (401)
        WebhookPayloadException: JSON inválido (400)
    """
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    logger.info(f"📨 Received ShipStation webhook ({len(raw_body)} bytes)")

    if not service.validate_webhook_signature(raw_body, signature):
        logger.warning(f"Invalid webhook signature from {request.client.host if request.client else 'unknown'}")
        raise WebhookSignatureException()

    try:
        payload = ShipStationWebhookPayload.model_validate(json.loads(raw_body or b"{}"))
    except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
        raise WebhookPayloadException(f"Invalid webhook payload: {e}") from e

    result = await service.handle_webhook(payload)

    # Un evento de envío sin datos es un error estructural del lado de ShipStation
    status_code = 400 if not result.success and payload.data is None else 200
    return JSONResponse(status_code=status_code, content=result.model_dump())
