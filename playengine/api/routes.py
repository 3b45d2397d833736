from __future__ import annotations

import logging

import redis
from fastapi import APIRouter, Depends, HTTPException, status

from playengine.actions import dispatch_action
from playengine.api.deps import SessionRegistry, get_redis, get_registry, get_settings
from playengine.api.models import (
    ActionRequest,
    ActionResponse,
    GameResults,
    ManifestValidateRequest,
    ManifestValidateResponse,
    SessionCreateRequest,
    SessionResumeRequest,
    SessionView,
)
from playengine.config import EngineSettings
from playengine.engine import GameEngine
from playengine.errors import ManifestValidationError, SnapshotMismatchError
from playengine.manifest import inspect_manifest, load_manifest
from playengine.session_store import get_snapshot
from playengine.streams import RedisStreamSink

logger = logging.getLogger(__name__)

router = APIRouter()


def _view(engine: GameEngine) -> SessionView:
    return SessionView(
        state=engine.state,
        current_scene=engine.current_scene,
        is_terminal=engine.navigator.at_terminal(),
        results=engine.results,
    )


def _rejected(e: ManifestValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={
            "message": str(e),
            "errors": [v.model_dump(mode="json", by_alias=True) for v in e.violations],
        },
    )


def _require_engine(registry: SessionRegistry, session_id: str) -> GameEngine:
    engine = registry.get(session_id)
    if engine is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return engine


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/manifests/validate", response_model=ManifestValidateResponse)
async def validate_manifest_route(payload: ManifestValidateRequest) -> ManifestValidateResponse:
    report = inspect_manifest(payload.manifest)
    return ManifestValidateResponse(
        valid=report.valid,
        errors=list(report.violations),
        warnings=list(report.warnings),
    )


@router.post("/sessions", response_model=SessionView, status_code=status.HTTP_201_CREATED)
async def create_session_route(
    payload: SessionCreateRequest,
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
    settings: EngineSettings = Depends(get_settings),
) -> SessionView:
    if payload.session_id is not None and registry.get(payload.session_id) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Session already exists")

    try:
        engine = GameEngine.start(
            payload.manifest,
            session_id=payload.session_id,
            store=r,
            sink=RedisStreamSink(r=r),
            policy=settings.auto_advance_policy,
            retry=settings.retry_policy(),
        )
    except ManifestValidationError as e:
        raise _rejected(e) from e

    async with registry.save_lock(engine.state.session_id):
        await engine.autosave_now_async()
    registry.add(engine)
    return _view(engine)


@router.get("/sessions/{session_id}", response_model=SessionView)
async def get_session_route(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> SessionView:
    return _view(_require_engine(registry, session_id))


@router.post("/sessions/{session_id}/actions", response_model=ActionResponse)
async def session_action_route(
    session_id: str,
    payload: ActionRequest,
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
) -> ActionResponse:
    engine = _require_engine(registry, session_id)
    engine.attach(store=r, sink=RedisStreamSink(r=r))

    result = dispatch_action(engine=engine, action=payload.action, payload=payload.model_dump())
    async with registry.save_lock(session_id):
        await engine.autosave_now_async()
    registry.note(engine)

    return ActionResponse(
        accepted=result.accepted,
        error=result.error,
        error_kind=result.error_kind,
        outcome=result.outcome_dict(),
        session=_view(engine),
    )


@router.post("/sessions/{session_id}/resume", response_model=SessionView)
async def resume_session_route(
    session_id: str,
    payload: SessionResumeRequest,
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
    settings: EngineSettings = Depends(get_settings),
) -> SessionView:
    try:
        manifest = load_manifest(payload.manifest)
    except ManifestValidationError as e:
        raise _rejected(e) from e

    snapshot = get_snapshot(r=r, game_id=manifest.game_id, session_id=session_id)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Snapshot not found")

    try:
        engine = GameEngine.resume(
            snapshot,
            manifest,
            store=r,
            sink=RedisStreamSink(r=r),
            policy=settings.auto_advance_policy,
            retry=settings.retry_policy(),
        )
    except SnapshotMismatchError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    registry.add(engine)
    return _view(engine)


@router.get("/sessions/{session_id}/results", response_model=GameResults)
async def session_results_route(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> GameResults:
    engine = _require_engine(registry, session_id)
    if engine.results is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Session is still in progress")
    return engine.results


@router.delete("/sessions/{session_id}")
async def delete_session_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
) -> dict[str, str]:
    engine = _require_engine(registry, session_id)
    engine.attach(store=r, sink=None)
    async with registry.save_lock(session_id):
        await engine.autosave_now_async()
    registry.remove(session_id)
    logger.info("session %s released", session_id)
    return {"status": "deleted", "sessionId": session_id}
