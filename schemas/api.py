"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime

from schemas.ingestion import EndpointConfig, SyncReport, Watermark, utcnow

# ============================================================================
# Health Check Schemas
# ============================================================================

class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=utcnow)
    environment: str
    database_connected: bool
    scheduler_running: bool = False
    endpoints_tracked: int = 0
    last_ingestion_time: Optional[datetime] = None

    @model_validator(mode="after")
    def determine_status(self) -> "HealthCheckResponse":
        """Determine overall health status"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.last_ingestion_time is None:
            self.status = "degraded"  # Seeded watermark rows, but no sync has run
        else:
            self.status = "healthy"
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "environment": "production",
                "database_connected": True,
                "scheduler_running": True,
                "endpoints_tracked": 4,
                "last_ingestion_time": "2024-01-15T02:00:41Z"
            }
        }

# ============================================================================
# Watermark / Endpoint Schemas
# ============================================================================

class WatermarkListResponse(BaseModel):
    """Every stored watermark"""
    total: int
    watermarks: List[Watermark] = Field(default_factory=list)


class EndpointListResponse(BaseModel):
    """Configured endpoints, active or not"""
    total: int
    active: int
    endpoints: List[EndpointConfig] = Field(default_factory=list)

# ============================================================================
# Sync Schemas
# ============================================================================

class SyncResponse(BaseModel):
    """Result of a manually triggered sync"""
    report: SyncReport
    summary: str

    @classmethod
    def from_report(cls, report: SyncReport) -> "SyncResponse":
        return cls(report=report, summary=report.render())

# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Watermark not found",
                "detail": "No watermark stored for rest:customers",
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }
