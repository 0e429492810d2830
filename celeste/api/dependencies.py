"""FastAPI dependencies: the process-wide AnalysisService.

Tests swap the service via app.dependency_overrides[get_analysis_service].
"""

from __future__ import annotations

from functools import lru_cache

from celeste.service import AnalysisService
from celeste.storage.repository import SupabaseBehavioralStore


@lru_cache(maxsize=1)
def get_analysis_service() -> AnalysisService:
    return AnalysisService(store=SupabaseBehavioralStore())
