from enum import StrEnum


class Reason(StrEnum):
    CONFIGURATION_PROBLEM = 'ConfigurationProblem'
    GARDEN_CLUSTER_INTERACTION_PROBLEM = 'GardenClusterProblem'
    CRATE_CLUSTER_INTERACTION_PROBLEM = 'CrateClusterInteractionProblem'
    SHOOT_IDENTIFICATION_NOT_POSSIBLE = 'ShootIdentificationNotPossible'
    APISERVER_ACCESS_PROVISIONING_NOT_POSSIBLE = 'APIServerAccessProvisioningNotPossible'
    AUDIT_LOG_PROBLEM = 'AuditLogProblem'
    WAITING_FOR_GARDENER_SHOOT = 'WaitingForGardenerShoot'


class ReasonableError(Exception):
    """Error carrying a machine-readable reason, so callers can classify it without string matching."""

    default_reason: Reason | None = None

    def __init__(self, message: str, reason: Reason | str | None = None):
        super().__init__(message)
        self.message = message
        self.reason = reason if reason is not None else self.default_reason

    def with_reason(self, reason: Reason | str) -> 'ReasonableError':
        self.reason = reason
        return self

    def __str__(self) -> str:
        return self.message


class ReasonableErrorList(ReasonableError):
    def __init__(self, errors: list[ReasonableError]):
        self.errors = [e for e in errors if e is not None]
        reason = next((e.reason for e in self.errors if e.reason), None)
        super().__init__('\n'.join(str(e) for e in self.errors), reason)

    def __bool__(self) -> bool:
        return len(self.errors) > 0


class ConfigurationError(ReasonableError):
    default_reason = Reason.CONFIGURATION_PROBLEM


class InvalidProviderConfigurationError(ConfigurationError):
    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__('invalid provider configuration:\n' + '\n'.join(f'  - {e}' for e in errors))


class SubnetAllocationError(ConfigurationError):
    pass


class GardenClusterError(ReasonableError):
    default_reason = Reason.GARDEN_CLUSTER_INTERACTION_PROBLEM


class ConflictError(GardenClusterError):
    """Optimistic locking conflict on a write, resolved by requeueing."""


class TenantClusterError(ReasonableError):
    default_reason = Reason.CRATE_CLUSTER_INTERACTION_PROBLEM


class ShootIdentificationError(ReasonableError):
    default_reason = Reason.SHOOT_IDENTIFICATION_NOT_POSSIBLE


class AccessProvisioningError(ReasonableError):
    default_reason = Reason.APISERVER_ACCESS_PROVISIONING_NOT_POSSIBLE


class AuditLogError(ReasonableError):
    default_reason = Reason.AUDIT_LOG_PROBLEM


class NamespaceTerminatedException(Exception):
    pass
