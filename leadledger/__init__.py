"""leadledger: job lead access and commission settlement for a contractor marketplace.

Contractors unlock customer jobs with lead credits or a card payment, each
job admits a capped number of contractors, the customer picks a winner, and
the platform collects commission when the customer confirms the work on a
job won through a credit lead.

Usage:
    from leadledger import Marketplace

    market = Marketplace.open()
    grant = market.grant_access(job_id, contractor_id, "credit")
"""

from leadledger.config import MarketConfig
from leadledger.errors import MarketError
from leadledger.market import Marketplace

__version__ = "0.4.0"
__all__ = ["Marketplace", "MarketConfig", "MarketError", "__version__"]
