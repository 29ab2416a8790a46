"""
Pydantic schemas for crash report context records.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class AttachedThread(BaseModel):
    name: str
    ident: int
    attached_at: datetime


class CrashContext(BaseModel):
    """Context written ahead of any fatal-crash traceback."""

    record: str = "crash_context"
    application: Optional[str] = None
    version: Optional[str] = None
    pid: int
    hostname: str
    written_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    signals: List[str] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)
    threads: List[AttachedThread] = Field(default_factory=list)
