from datetime import date, datetime
from typing import Any, Dict, Type

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ....application.services.record_service import RecordService
from ....core.dependencies import get_record_service
from ....domain.exceptions import RecordNotFoundError
from ....domain.models import ConflictDecision, EditableRecord, RecordKind, User
from ....domain.models.records import record_to_dict
from ...api.dependencies import get_current_user
from ...api.schemas.records import (
    EducationPayload,
    EducationUpdate,
    ExtraProfessionalExperiencePayload,
    ExtraProfessionalExperienceUpdate,
    ProfessionalExperiencePayload,
    ProfessionalExperienceUpdate,
)

router = APIRouter(prefix="/api/records", tags=["Career Records"])


def _register_routes(
    kind: RecordKind,
    create_schema: Type[BaseModel],
    update_schema: Type[BaseModel],
) -> None:
    path = f"/{kind.value}"
    suffix = kind.name.lower()

    async def list_records(
        user: User = Depends(get_current_user),
        service: RecordService = Depends(get_record_service),
    ) -> Dict[str, Any]:
        items = [_serialize_record(kind, record) for record in service.list(kind, user.id)]
        return {"items": items, "count": len(items)}

    async def create_record(
        payload: create_schema,  # type: ignore[valid-type]
        user: User = Depends(get_current_user),
        service: RecordService = Depends(get_record_service),
    ) -> Dict[str, Any]:
        record = service.create(kind, user.id, payload.model_dump())
        return _serialize_record(kind, record)

    async def get_record(
        record_id: str,
        user: User = Depends(get_current_user),
        service: RecordService = Depends(get_record_service),
    ) -> Dict[str, Any]:
        try:
            record = service.get(kind, user.id, record_id)
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return _serialize_record(kind, record)

    async def update_record(
        record_id: str,
        payload: update_schema,  # type: ignore[valid-type]
        user: User = Depends(get_current_user),
        service: RecordService = Depends(get_record_service),
    ) -> Any:
        try:
            outcome = service.update(kind, user.id, record_id, payload.updated_at, payload.changes())
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        if isinstance(outcome, ConflictDecision):
            return _conflict_response(kind, outcome)
        return _serialize_record(kind, outcome)

    async def delete_record(
        record_id: str,
        user: User = Depends(get_current_user),
        service: RecordService = Depends(get_record_service),
    ) -> Response:
        try:
            service.delete(kind, user.id, record_id)
        except RecordNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    router.add_api_route(path, list_records, methods=["GET"], name=f"list_{suffix}")
    router.add_api_route(
        path,
        create_record,
        methods=["POST"],
        status_code=status.HTTP_201_CREATED,
        name=f"create_{suffix}",
    )
    router.add_api_route(f"{path}/{{record_id}}", get_record, methods=["GET"], name=f"get_{suffix}")
    router.add_api_route(
        f"{path}/{{record_id}}",
        update_record,
        methods=["PATCH"],
        name=f"update_{suffix}",
        responses={status.HTTP_409_CONFLICT: {"description": "Record changed since the client loaded it"}},
    )
    router.add_api_route(
        f"{path}/{{record_id}}",
        delete_record,
        methods=["DELETE"],
        status_code=status.HTTP_204_NO_CONTENT,
        name=f"delete_{suffix}",
    )


_register_routes(RecordKind.PROFESSIONAL, ProfessionalExperiencePayload, ProfessionalExperienceUpdate)
_register_routes(
    RecordKind.EXTRA_PROFESSIONAL,
    ExtraProfessionalExperiencePayload,
    ExtraProfessionalExperienceUpdate,
)
_register_routes(RecordKind.EDUCATION, EducationPayload, EducationUpdate)


def _conflict_response(kind: RecordKind, decision: ConflictDecision) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={
            "error": "conflict",
            "message": "This item was modified since you loaded it",
            "conflict": True,
            "serverData": _serialize_record(kind, decision.server_snapshot),
            "serverUpdatedAt": decision.server_timestamp.isoformat(),
            "localUpdatedAt": decision.local_timestamp.isoformat(),
        },
    )


def _serialize_record(kind: RecordKind, record: EditableRecord) -> Dict[str, Any]:
    data: Dict[str, Any] = {"kind": kind.value}
    for key, value in record_to_dict(record).items():
        if isinstance(value, (date, datetime)):
            value = value.isoformat()
        data[key] = value
    return data
