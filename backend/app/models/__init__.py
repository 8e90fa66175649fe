from .tenancy import Organization, Store
from .compensation import (
    OrganizationPayoutSetting,
    EmployeeCompensationPlan,
    EmployeeCommissionTier,
    ServiceCommissionOverride,
)
from .payouts import PayoutSnapshotEntry, LedgerImmutableError, ENTRY_TYPE_SALE, ENTRY_TYPE_REFUND

__all__ = [
    'Organization', 'Store',
    'OrganizationPayoutSetting',
    'EmployeeCompensationPlan', 'EmployeeCommissionTier', 'ServiceCommissionOverride',
    'PayoutSnapshotEntry', 'LedgerImmutableError', 'ENTRY_TYPE_SALE', 'ENTRY_TYPE_REFUND',
]
