from .batch_sender import BatchSender, RetryPolicy, SendResult
from .metrics import DailyMetricsResult, MetricsAggregator
from .provider import DeliveryProvider, OutboundMessage, ResendProvider
from .recipients import Recipient, RecipientResolver
from .renderer import RenderedEmail, TemplateCache, TemplateRenderer
from .scheduler import DispatchResult, PeriodicTrigger, ScheduledDispatcher, build_dispatcher
from .state_machine import CampaignStateMachine, can_transition, parse_segment_ids
from .tracking import TrackingOptions, apply_email_tracking

__all__ = [
    "BatchSender",
    "RetryPolicy",
    "SendResult",
    "DailyMetricsResult",
    "MetricsAggregator",
    "DeliveryProvider",
    "OutboundMessage",
    "ResendProvider",
    "Recipient",
    "RecipientResolver",
    "RenderedEmail",
    "TemplateCache",
    "TemplateRenderer",
    "DispatchResult",
    "PeriodicTrigger",
    "ScheduledDispatcher",
    "build_dispatcher",
    "CampaignStateMachine",
    "can_transition",
    "parse_segment_ids",
    "TrackingOptions",
    "apply_email_tracking",
]
