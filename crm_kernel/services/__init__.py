"""Kernel services: numbering, share links, sagas."""

from crm_kernel.services.sequence_service import (
    DocumentNumberService,
    NumberFormat,
    SequenceService,
)
from crm_kernel.services.saga import Saga
from crm_kernel.services.share_link_service import ShareLink, ShareLinkService

__all__ = [
    "DocumentNumberService",
    "NumberFormat",
    "Saga",
    "SequenceService",
    "ShareLink",
    "ShareLinkService",
]
