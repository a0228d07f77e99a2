"""Upstream source definitions.

Each source is one water company's ArcGIS FeatureServer layer published to
the Water UK National Storm Overflow Hub (data licensed CC BY 4.0).  The
``adapter`` field names the registered FeatureAdapter that understands the
layer's attribute schema.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class SourceConfig(BaseModel):
    """Static configuration for one upstream feed."""

    source_id: str = Field(..., min_length=1, pattern=r"^[a-z0-9_]+$")
    name: str = Field(..., min_length=1)
    endpoint: str = Field(..., min_length=1, description="FeatureServer base URL")
    layer_id: int = Field(default=0, ge=0)
    adapter: str = Field(default="storm_overflow_hub")
    update_frequency_minutes: int = Field(default=60, gt=0)
    enabled: bool = True

    model_config = {"frozen": True}

    @property
    def short_name(self) -> str:
        """Company name without the generic suffix, for space-constrained posts."""
        return self.name.replace(" Water", "").replace(" Utilities", "")


DEFAULT_SOURCES: tuple[SourceConfig, ...] = (
    SourceConfig(
        source_id="anglian_water",
        name="Anglian Water",
        endpoint="https://services3.arcgis.com/VCOY1atHWVcDlvlJ/arcgis/rest/services/stream_service_outfall_locations_view/FeatureServer",
        update_frequency_minutes=60,
    ),
    SourceConfig(
        source_id="thames_water",
        name="Thames Water",
        endpoint="https://services2.arcgis.com/g6o32ZDQ33GpCIu3/arcgis/rest/services/Thames_Water_Storm_Overflow_Activity_(Production)_view/FeatureServer",
        update_frequency_minutes=5,
    ),
    SourceConfig(
        source_id="united_utilities",
        name="United Utilities",
        endpoint="https://services5.arcgis.com/5eoLvR0f8HKb7HWP/arcgis/rest/services/United_Utilities_Storm_Overflow_Activity/FeatureServer",
        update_frequency_minutes=60,
    ),
    SourceConfig(
        source_id="yorkshire_water",
        name="Yorkshire Water",
        endpoint="https://services-eu1.arcgis.com/1WqkK5cDKUbF0CkH/arcgis/rest/services/Yorkshire_Water_Storm_Overflow_Activity/FeatureServer",
        update_frequency_minutes=60,
    ),
    SourceConfig(
        source_id="southern_water",
        name="Southern Water",
        endpoint="https://services-eu1.arcgis.com/XxS6FebPX29TRGDJ/arcgis/rest/services/Southern_Water_Storm_Overflow_Activity/FeatureServer",
        update_frequency_minutes=15,
    ),
    SourceConfig(
        source_id="severn_trent_water",
        name="Severn Trent Water",
        endpoint="https://services1.arcgis.com/NO7lTIlnxRMMG9Gw/arcgis/rest/services/Severn_Trent_Water_Storm_Overflow_Activity/FeatureServer",
        update_frequency_minutes=60,
    ),
)
