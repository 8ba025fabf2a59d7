"""HTTP and WebSocket surface for order submission and status streaming."""

from __future__ import annotations

import contextlib
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import Settings, load_settings
from ..engine import OrderExecutionEngine, generate_order_id
from ..errors import PersistenceError, QueueClosedError, ValidationError
from ..execution import OrderStatus, OrderSubmission, to_validation_error
from ..streaming import WebSocketChannel

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api/orders', tags=['orders'])


def _engine(request: Request) -> OrderExecutionEngine:
    return request.app.state.engine


@router.post('/execute')
async def execute_order(request: Request, submission: OrderSubmission) -> Dict[str, Any]:
    """Validate and enqueue an order; progress is streamed on ``/ws/{orderId}``."""
    order_id = submission.order_id or generate_order_id()
    result = await _engine(request).submit(submission.to_request(), order_id=order_id)
    message = 'Order already submitted' if result.duplicate else 'Order submitted successfully'
    return {
        'orderId': result.order_id,
        'status': OrderStatus.PENDING.value,
        'message': message,
        'duplicate': result.duplicate,
    }


@router.get('/metrics')
async def order_metrics(request: Request) -> Dict[str, int]:
    engine = _engine(request)
    metrics = engine.get_metrics()
    metrics['activeConnections'] = engine.broadcaster.active_connections
    return metrics


@router.get('/history/{user_id}')
async def order_history(request: Request, user_id: str, limit: int = Query(50, ge=1, le=500)) -> Dict[str, Any]:
    orders = await _engine(request).get_order_history(user_id, limit)
    return {'userId': user_id, 'orders': [order.to_dict() for order in orders]}


@router.get('/{order_id}')
async def get_order(request: Request, order_id: str) -> Dict[str, Any]:
    engine = _engine(request)
    order = await engine.get_order(order_id)
    job = engine.queue.get_job(order_id)
    if order is None and job is None:
        raise HTTPException(status_code=404, detail=f'Order {order_id} not found')
    executions = await engine.get_executions(order_id)
    return {
        'orderId': order_id,
        'order': order.to_dict() if order is not None else None,
        'job': {'state': job.state.value, 'attempts': job.attempts_made, 'lastError': job.last_error} if job else None,
        'executions': [
            {**execution.to_payload(), 'attempt': execution.attempt, 'failureReason': execution.failure_reason}
            for execution in executions
        ],
    }


@router.websocket('/ws/{order_id}')
async def order_stream(websocket: WebSocket, order_id: str) -> None:
    engine: OrderExecutionEngine = websocket.app.state.engine
    await websocket.accept()
    channel = WebSocketChannel(websocket)
    await engine.subscribe(order_id, channel)
    try:
        while channel.is_open:
            await websocket.receive_text()
            engine.broadcaster.acknowledge(order_id)
    except WebSocketDisconnect:
        logger.info('WebSocket closed for order %s', order_id)
    finally:
        await engine.broadcaster.detach(order_id, channel)


def _error_response(status_code: int, error: str, exc: ValidationError | QueueClosedError | PersistenceError) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={'error': error, 'code': exc.error_code, 'message': exc.message, 'details': exc.details},
    )


def create_app(
    settings: Optional[Settings] = None,
    engine: Optional[OrderExecutionEngine] = None,
) -> FastAPI:
    """Build the FastAPI application; the engine is started and stopped with it."""
    settings = settings or load_settings()
    engine = engine or OrderExecutionEngine.from_settings(settings)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await engine.start()
        try:
            yield
        finally:
            await engine.stop()

    app = FastAPI(title='Order Execution Engine API', version=__version__, lifespan=lifespan)
    app.state.engine = engine
    app.state.settings = settings
    app.add_middleware(CORSMiddleware, allow_origins=['*'], allow_methods=['*'], allow_headers=['*'])
    app.include_router(router)

    @app.exception_handler(RequestValidationError)
    async def _request_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(400, 'Invalid request', to_validation_error(exc.errors()))

    @app.exception_handler(ValidationError)
    async def _validation_error(_: Request, exc: ValidationError) -> JSONResponse:
        return _error_response(400, 'Invalid order', exc)

    @app.exception_handler(QueueClosedError)
    async def _queue_closed(_: Request, exc: QueueClosedError) -> JSONResponse:
        return _error_response(503, 'Service shutting down', exc)

    @app.exception_handler(PersistenceError)
    async def _persistence_error(_: Request, exc: PersistenceError) -> JSONResponse:
        logger.error('Storage unavailable: %s', exc.message)
        return _error_response(503, 'Storage unavailable', exc)

    @app.get('/health')
    async def health() -> Dict[str, str]:
        return {'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat()}

    @app.get('/')
    async def root() -> Dict[str, Any]:
        return {
            'name': 'Order Execution Engine API',
            'status': 'running',
            'version': __version__,
            'endpoints': {
                'health': '/health',
                'execute_order': 'POST /api/orders/execute',
                'metrics': '/api/orders/metrics',
                'order': '/api/orders/{orderId}',
                'history': '/api/orders/history/{userId}',
                'websocket': '/api/orders/ws/{orderId}',
            },
        }

    return app


__all__ = ['create_app', 'router']
