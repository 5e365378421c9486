"""
Domain exceptions raised by the campaign dispatch pipeline.

Routes translate these into ``ApiException`` responses; the scheduler loop
catches them per campaign.
"""


class CampaignError(Exception):
    """Base class for campaign pipeline errors."""


class CampaignNotFound(CampaignError):
    def __init__(self, campaign_id: int):
        self.campaign_id = campaign_id
        super().__init__(f"Campaign not found: {campaign_id}")


class CampaignValidationError(CampaignError):
    """Campaign is not in a state that allows the requested action. Nothing was changed."""


class CampaignTransitionConflict(CampaignError):
    """Conditional status update matched no row (another worker moved it first)."""


class CampaignDataError(CampaignError):
    """Stored campaign data is unusable, e.g. malformed segment id JSON."""


class CampaignSendError(CampaignError):
    """Fatal pipeline failure; the campaign was rolled back to draft."""

    def __init__(self, campaign_id: int, message: str):
        self.campaign_id = campaign_id
        super().__init__(f"Campaign send failed: {message}")


class TemplateNotFound(CampaignError):
    def __init__(self, template_id):
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id}")


class ProviderError(Exception):
    """Delivery provider rejected a batch or could not be reached."""


class ProviderRateLimited(ProviderError):
    """Delivery provider asked us to slow down; the batch may be retried."""


class InvalidUnsubscribeToken(Exception):
    pass
