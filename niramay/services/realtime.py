"""Pushes the subworker roster to connected admin dashboards."""
import json
import logging
from typing import List

from fastapi import WebSocket
from sqlalchemy.orm import Session

from niramay.schemas.schemas import SubWorkerOut
from niramay.services.assignment import fetch_subworkers, worker_stats

logger = logging.getLogger(__name__)


class RosterBroadcaster:
    """Manages admin WebSocket connections.

    Every roster-affecting write triggers a full re-fetch of the roster, which
    replaces whatever the dashboard currently holds; there is no incremental merge.
    """

    def __init__(self):
        self.connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket, user_id: str):
        await websocket.accept()
        self.connections.append(websocket)
        logger.info(f"Roster WebSocket connected: user_id={user_id}")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.connections:
            self.connections.remove(websocket)
            logger.info("Roster WebSocket disconnected")

    @staticmethod
    def snapshot(db: Session) -> str:
        workers = fetch_subworkers(db)
        return json.dumps({
            "event_type": "roster",
            "workers": [SubWorkerOut.model_validate(w).model_dump() for w in workers],
            "stats": worker_stats(workers).model_dump(),
        })

    async def send_roster(self, websocket: WebSocket, db: Session):
        await websocket.send_text(self.snapshot(db))

    async def publish_roster(self, db: Session):
        if not self.connections:
            return
        message = self.snapshot(db)
        disconnected = []
        for websocket in list(self.connections):
            try:
                await websocket.send_text(message)
            except Exception as e:
                logger.error(f"Error broadcasting roster: {e}")
                disconnected.append(websocket)
        for websocket in disconnected:
            self.disconnect(websocket)
        logger.info(f"Broadcasted roster to {len(self.connections)} connections")
