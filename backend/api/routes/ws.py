"""WebSocket endpoint for live job updates."""

import json

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from api.websockets.connection_manager import manager
from app.dependencies import get_jobs
from worker.jobs import JobService

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, jobs: JobService = Depends(get_jobs)):
    """
    WebSocket endpoint for job execution updates.

    Client messages:
    - {"type": "subscribe", "jobId": ...}
    - {"type": "unsubscribe", "jobId": ...}
    - {"type": "ping"}

    Server pushes, for each subscribed job:
    - workflow_progress, task_status, workflow_complete,
      workflow_failed, workflow_stopped

    A subscribe is answered with ``subscribed`` followed by the job's current
    task states (and its terminal event if it already finished), so a client
    that subscribes after a fast job has ended still sees the outcome.
    """
    await manager.connect(websocket)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                await websocket.send_text(json.dumps({"type": "error", "message": "Invalid JSON"}))
                continue
            if not isinstance(msg, dict):
                continue

            msg_type = msg.get("type")
            job_id = msg.get("jobId")
            if msg_type == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
            elif msg_type == "subscribe" and job_id:
                manager.subscribe(websocket, job_id)
                # taken in the same step as subscribe so no broadcast falls in between
                replay = jobs.replay_messages(job_id)
                await websocket.send_text(json.dumps({"type": "subscribed", "jobId": job_id}))
                for message in replay:
                    await manager.send_to(websocket, job_id, message)
            elif msg_type == "unsubscribe" and job_id:
                manager.unsubscribe(websocket, job_id)
            else:
                logger.debug("Ignoring WebSocket message", type=msg_type)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("WebSocket error", error=str(e))
    finally:
        await manager.disconnect(websocket)
