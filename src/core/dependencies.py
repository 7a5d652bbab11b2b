"""
Dependency injection for the application
"""

from fastapi import Request, Depends

from domains.pipeline.services.pipeline_service import DispatchPipeline


async def get_service_context(request: Request):
    """Get the service context created by the lifespan"""
    return request.app.state.service


async def get_pipeline(service=Depends(get_service_context)) -> DispatchPipeline:
    """Get the dispatch pipeline"""
    return service.pipeline
