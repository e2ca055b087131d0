"""
crm_services -- cross-module orchestration.

Responsibility:
    Wires module services together (``LifecycleOrchestrator``), reacts to
    lifecycle events (``CrmLifecycleHooks``), and owns the best-effort
    boundary around the email and PDF collaborators.

Architecture position:
    crm_services -> crm_modules -> crm_kernel.  Neither crm_modules nor
    crm_kernel imports from this package.
"""

from crm_services.document_delivery import DeliveryResult, DocumentDelivery, PendingDelivery
from crm_services.lifecycle_hooks import CrmLifecycleHooks, PendingNotification
from crm_services.lifecycle_orchestrator import LifecycleOrchestrator
from crm_services.notifications import (
    BestEffortDispatcher,
    DocumentRenderer,
    LoggingDispatcher,
    NotificationDispatcher,
)

__all__ = [
    "BestEffortDispatcher",
    "CrmLifecycleHooks",
    "DeliveryResult",
    "DocumentDelivery",
    "DocumentRenderer",
    "LifecycleOrchestrator",
    "LoggingDispatcher",
    "NotificationDispatcher",
    "PendingDelivery",
    "PendingNotification",
]
