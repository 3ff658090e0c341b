# app/schemas/settings.py
from pydantic import BaseModel, Field
from typing import List, Optional

# Keys of the per-tenant settings documents in `tenant_settings`
REP_PROGRAM_KEY = "rep_program"
CART_AUTOMATION_KEY = "abandoned_cart_automation"
ANNOUNCEMENT_AUTOMATION_KEY = "announcement_automation"
EMAIL_SETTINGS_KEY = "email"

DEFAULT_LEVEL_THRESHOLDS = [100, 300, 600, 1000, 1500, 2500, 4000, 6000, 10000]
DEFAULT_LEVEL_NAMES = [
    "Rookie", "Starter", "Rising", "Proven", "Veteran",
    "Elite", "Champion", "Legend", "Icon", "Mythic",
]


class RepProgramSettings(BaseModel):
    enabled: bool = True
    points_per_sale: int = 10
    currency_per_sale: int = 0
    currency_name: str = "FRL"
    level_thresholds: List[int] = Field(default_factory=lambda: list(DEFAULT_LEVEL_THRESHOLDS))
    level_names: List[str] = Field(default_factory=lambda: list(DEFAULT_LEVEL_NAMES))
    email_from_name: Optional[str] = None
    email_from_address: Optional[str] = None

    def level_name(self, level: int) -> str:
        if 1 <= level <= len(self.level_names):
            return self.level_names[level - 1]
        return f"Level {level}"


class CartRecoveryStep(BaseModel):
    """One email in the abandoned-cart sequence, delay counted from cart creation."""
    id: str
    delay_minutes: int = 0
    enabled: bool = True
    subject: Optional[str] = None
    preview_text: Optional[str] = None
    include_discount: bool = False
    discount_code: Optional[str] = None
    discount_percent: Optional[int] = None


class CartAutomationSettings(BaseModel):
    enabled: bool = False
    steps: List[CartRecoveryStep] = Field(default_factory=list)


class AnnouncementAutomationSettings(BaseModel):
    enabled: bool = True
    step_1_enabled: bool = True
    step_2_enabled: bool = True
    step_3_enabled: bool = True
    step_4_enabled: bool = True
    step_4_delay_hours: int = 48

    step_1_subject: Optional[str] = None
    step_1_heading: Optional[str] = None
    step_1_body: Optional[str] = None
    step_2_subject: Optional[str] = None
    step_2_heading: Optional[str] = None
    step_2_body: Optional[str] = None
    step_3_subject: Optional[str] = None
    step_3_heading: Optional[str] = None
    step_3_body: Optional[str] = None
    step_4_subject: Optional[str] = None
    step_4_heading: Optional[str] = None
    step_4_body: Optional[str] = None

    def step_enabled(self, step: int) -> bool:
        return bool(getattr(self, f"step_{step}_enabled"))

    def step_copy(self, step: int) -> dict:
        return {
            "subject": getattr(self, f"step_{step}_subject"),
            "heading": getattr(self, f"step_{step}_heading"),
            "body": getattr(self, f"step_{step}_body"),
        }


class EmailSettings(BaseModel):
    from_name: str = "Tickets"
    from_email: Optional[str] = None
    reply_to: Optional[str] = None
    accent_color: str = "#ff0033"
    logo_url: Optional[str] = None
    order_confirmation_enabled: bool = True


class TenantSettingsUpdate(BaseModel):
    """Partial document merged into the stored settings."""
    data: dict
