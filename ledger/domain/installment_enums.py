from enum import Enum


class InstallmentFrequency(str, Enum):
    monthly = "monthly"
    quarterly = "quarterly"
    custom = "custom"


class InstallmentPlanStatus(str, Enum):
    active = "active"
    completed = "completed"
    cancelled = "cancelled"
