"""CampaignHQ: email campaign scheduling, batch delivery and engagement metrics."""

__version__ = "1.0.0"
