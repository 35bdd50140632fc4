"""
Response Models
===============

Uniform result returned by every public persistence operation. Nothing raises
across the public boundary: failures travel in ``error``.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

from typing import Optional, Dict, Any
import time

from pydantic import BaseModel, Field

from .common import RecordSource


class ErrorResponse(BaseModel):
    """Standard error payload"""
    error: str = Field(..., description="Error message")
    error_type: Optional[str] = Field(None, description="Type of error")
    error_code: Optional[str] = Field(None, description="Machine-readable error code")
    context: Optional[Dict[str, Any]] = Field(None, description="Additional error context")
    timestamp: Optional[float] = Field(None, description="Error timestamp")


class OperationResult(BaseModel):
    """
    {data, error} result of a repository or façade call.

    ``source`` tells which store served the call; it is None when neither
    store was reached (validation failures).
    """
    data: Any = Field(None, description="Operation payload")
    error: Optional[ErrorResponse] = Field(None, description="Error, None on success")
    source: Optional[RecordSource] = Field(None, description="Store that served the call")

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, data: Any = None, source: Optional[RecordSource] = None) -> "OperationResult":
        return cls(data=data, source=source)

    @classmethod
    def fail(cls, error: Dict[str, Any], source: Optional[RecordSource] = None) -> "OperationResult":
        payload = dict(error)
        payload.setdefault("timestamp", time.time())
        return cls(error=ErrorResponse(**payload), source=source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "error": self.error.model_dump() if self.error else None,
            "success": self.success,
            "source": self.source.value if self.source else None,
        }
