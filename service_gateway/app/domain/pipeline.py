"""
Ordered middleware pipeline for proxied routes.
"""

from typing import Awaitable, Callable, List, Sequence

from fastapi import Request

from .context import RequestContext

Stage = Callable[[Request, RequestContext], Awaitable[RequestContext]]


class Pipeline:
    """Run stages strictly in order; the first exception short-circuits."""

    def __init__(self, stages: Sequence[Stage]):
        self.stages: List[Stage] = list(stages)

    def __len__(self) -> int:
        return len(self.stages)

    async def run(self, request: Request, ctx: RequestContext) -> RequestContext:
        for stage in self.stages:
            ctx = await stage(request, ctx)
        return ctx
