"""SiteHistory — 2023 annual-return figures for a real-time monitor.

The live feeds carry no volume and no history.  A separately maintained
mapping matches each real-time site to its entry in the 2023 Event Duration
Monitoring returns, with a permitted flow rate where one is known, so a
completed event can be put in context.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

LITRES_PER_M3 = 1000


class SiteHistory(BaseModel):
    realtime_site_id: str = Field(..., min_length=1)
    historical_site_id: Optional[str] = None
    confidence: Optional[str] = Field(default=None, description="Quality of the site match")
    distance_meters: Optional[float] = Field(default=None, ge=0)
    spill_count_2023: int = Field(default=0, ge=0)
    avg_duration_per_spill_hrs: float = Field(default=0.0, ge=0)
    total_duration_hrs_2023: float = Field(default=0.0, ge=0)
    estimated_flow_m3_hour: Optional[float] = Field(
        default=None,
        gt=0,
        description="Permitted maximum flow; None when the mapping has no flow rate",
    )

    model_config = {"frozen": True}

    def estimated_volume_m3(self, duration_minutes: Optional[int]) -> Optional[int]:
        """Upper-bound volume for a discharge of *duration_minutes*, rounded."""
        if self.estimated_flow_m3_hour is None or duration_minutes is None:
            return None
        return round(duration_minutes / 60.0 * self.estimated_flow_m3_hour)

    def estimated_volume_litres(self, duration_minutes: Optional[int]) -> Optional[int]:
        volume = self.estimated_volume_m3(duration_minutes)
        return None if volume is None else volume * LITRES_PER_M3

    def duration_vs_average(self, duration_minutes: Optional[int]) -> Optional[float]:
        """Event duration as a fraction of the 2023 average spill, if there is one."""
        if duration_minutes is None or self.avg_duration_per_spill_hrs <= 0:
            return None
        return duration_minutes / 60.0 / self.avg_duration_per_spill_hrs
