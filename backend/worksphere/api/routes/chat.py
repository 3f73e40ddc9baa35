from __future__ import annotations

from fastapi import APIRouter, Request

from ...models import ChatRequest, ChatResponse
from ...pipeline import WorkspacePipeline

router = APIRouter(tags=["chat"])


def get_pipeline(request: Request) -> WorkspacePipeline:
    return request.app.state.pipeline


@router.post("/chat", response_model=ChatResponse)
async def chat(payload: ChatRequest, request: Request) -> ChatResponse:
    """Run one chat turn through the agent pipeline."""
    return await get_pipeline(request).run(payload)
