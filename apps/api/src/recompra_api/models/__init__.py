"""SQLAlchemy models package."""

# Import all models
from .organization import Operator, Organization, OrganizationMembership, WhatsappConnection  # noqa: F401
from .client import RECENT_CLIENTS_SEGMENT, Client, Partner  # noqa: F401
from .sale import Sale, SaleStatus  # noqa: F401
from .cashback import (  # noqa: F401
    CashbackProgram,
    CashbackProgramBalance,
    CashbackProgramTransaction,
    CashbackRuleType,
    CashbackTransactionStatus,
    CashbackTransactionType,
)
from .campaign import (  # noqa: F401
    TIME_BLOCKS,
    Campaign,
    CampaignTrigger,
    Interaction,
    InteractionStatus,
    MessageTemplate,
    TimeUnit,
)
