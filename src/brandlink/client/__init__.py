"""Client side of custom domain provisioning.

The wizard and the list controller drive a DomainService, either the remote
API client or a LocalDomainService bound to one tenant.
"""

from brandlink.client.api import DomainApiClient
from brandlink.client.controller import (
    ConfirmationDialog,
    ConfirmationState,
    DomainListController,
)
from brandlink.client.service import DomainService, LocalDomainService
from brandlink.client.wizard import (
    Draft,
    PollState,
    ProvisioningWizard,
    WizardState,
    WizardStep,
)

__all__ = [
    "DomainApiClient",
    "DomainService",
    "LocalDomainService",
    "ProvisioningWizard",
    "WizardStep",
    "WizardState",
    "PollState",
    "Draft",
    "DomainListController",
    "ConfirmationDialog",
    "ConfirmationState",
]
