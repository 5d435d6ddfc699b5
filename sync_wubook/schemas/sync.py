from typing import Optional

from pydantic import BaseModel, Field


class ImportByArrivalPayload(BaseModel):
    """
    Schema for importing reservations by arrival date.
    Omit from_date to run in auto mode (tomorrow and the day after).
    """

    property_ids: Optional[list[str]] = Field(None, description="Properties to import")
    from_date: Optional[str] = Field(None, description="First arrival, dd/mm/yyyy or yyyy-mm-dd")
    to_date: Optional[str] = Field(None, description="Last arrival, dd/mm/yyyy or yyyy-mm-dd")
    dry_run: Optional[bool] = Field(None, description="Override DRY_RUN setting")


class SyncTodayPayload(BaseModel):
    property_ids: Optional[list[str]] = Field(None, description="Properties to sync")
    dry_run: Optional[bool] = Field(None, description="Override DRY_RUN setting")


class EnrichPayload(BaseModel):
    """
    Schema for an enrichment run. A reservation_id enriches that one
    reservation regardless of mode.
    """

    reservation_id: Optional[str] = Field(None, description="Enrich only this reservation")
    mode: str = Field("pending", description="pending, active or force")
    limit: int = Field(10, description="Maximum reservations selected")
    dry_run: Optional[bool] = Field(None, description="Override DRY_RUN setting")
    force_update: bool = Field(False, description="Same as mode=force")


class FxLinkPayload(BaseModel):
    """
    Schema for FX linking. Linking is a dry run unless dry_run is false.
    """

    since: Optional[str] = Field(None, description="First arrival date (yyyy-mm-dd)")
    until: Optional[str] = Field(None, description="Last arrival date (yyyy-mm-dd)")
    force: bool = Field(False, description="Overwrite existing fx_on_checkin")
    dry_run: bool = Field(True, description="Count matches without writing")
    property_ids: Optional[list[str]] = Field(None, description="Restrict to these properties")
    page_size: int = Field(500, description="Reservations per page (50..1000)")
    backfill_days: Optional[int] = Field(None, description="Lookback without a watermark")
    currency: Optional[str] = Field(None, description="Quote currency (default: local)")
