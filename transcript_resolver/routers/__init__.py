"""API routers."""
from .transcripts import router as transcripts_router

__all__ = ["transcripts_router"]
