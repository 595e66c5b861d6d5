from niramay.core.database import Base
from niramay.models.models import (
    Profile,
    Report,
    EcoStoreItem,
    Redemption,
    RewardTransaction,
    Notification,
)

__all__ = [
    "Base",
    "Profile",
    "Report",
    "EcoStoreItem",
    "Redemption",
    "RewardTransaction",
    "Notification",
]
