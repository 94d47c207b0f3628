"""FastAPI surface: submit tasks and poll their status."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from patchpilot.errors import TaskAlreadyProcessing
from patchpilot.identity import __version__
from patchpilot.parallel import TaskQueue
from patchpilot.state import Task


class SubmitTaskRequest(BaseModel):
    repoUrl: str = Field(..., min_length=1)
    taskDescription: str = Field(..., min_length=1)
    id: str | None = None
    title: str | None = None
    targetFile: str | None = None


def create_app(queue: TaskQueue) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        queue.shutdown(wait=True)

    app = FastAPI(
        title="patchpilot",
        description="Task-to-pull-request pipeline",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.queue = queue
    store = queue.store

    @app.exception_handler(RequestValidationError)
    async def missing_fields(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "error": "repoUrl and taskDescription are required",
                "detail": [err.get("msg", "") for err in exc.errors()],
            },
        )

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "version": __version__}

    @app.post("/api/tasks", status_code=202)
    def submit_task(body: SubmitTaskRequest) -> dict:
        extra = {}
        if body.title:
            extra["title"] = body.title
        if body.targetFile:
            extra["targetFile"] = body.targetFile
        task = Task.from_request(body.repoUrl, body.taskDescription, task_id=body.id, **extra)
        try:
            queue.submit(task)
        except TaskAlreadyProcessing as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        return {"taskId": task.task_id, "status": "processing"}

    @app.get("/api/tasks/status")
    def all_statuses() -> dict:
        return {tid: entry.to_public() for tid, entry in store.all().items()}

    @app.get("/api/tasks/{task_id}/status")
    def task_status(task_id: str) -> dict:
        return store.get(task_id).to_public()

    @app.delete("/api/tasks/{task_id}/status")
    def evict_status(task_id: str) -> dict:
        try:
            evicted = store.evict_finished(task_id)
        except TaskAlreadyProcessing as e:
            raise HTTPException(status_code=409, detail=f"Task {task_id} is still processing") from e
        if not evicted:
            raise HTTPException(status_code=404, detail=f"No status for task {task_id}")
        return {"taskId": task_id, "evicted": True}

    return app
