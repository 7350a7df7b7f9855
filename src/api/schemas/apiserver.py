from datetime import datetime
from enum import StrEnum

from pydantic import Field

from src.api.schemas.meta import KubernetesModel, LocalObjectReference, ObjectMeta
from src.api.schemas.region import RegionSpecification


class APIServerType(StrEnum):
    # workerless shoot cluster
    GARDENER = 'Gardener'
    # shoot cluster with worker nodes
    GARDENER_DEDICATED = 'GardenerDedicated'


class FailureToleranceType(StrEnum):
    NODE = 'node'
    ZONE = 'zone'


class HighAvailabilityConfig(KubernetesModel):
    failure_tolerance_type: FailureToleranceType


class AuditLogConfig(KubernetesModel):
    type: str
    tenant_id: str = Field(alias='tenantID')
    service_url: str = Field(alias='serviceURL')
    policy_ref: LocalObjectReference
    secret_ref: LocalObjectReference


class EncryptionConfig(KubernetesModel):
    resources: list[str] = Field(default_factory=list)


class APIServerGardenerConfig(KubernetesModel):
    region: str = ''
    audit_log: AuditLogConfig | None = None
    high_availability_config: HighAvailabilityConfig | None = None
    encryption_config: EncryptionConfig | None = None


class ShootOverwrite(KubernetesModel):
    name: str = ''
    namespace: str = ''


class GardenerInternalConfiguration(KubernetesModel):
    shoot_overwrite: ShootOverwrite | None = None
    landscape_configuration: str = ''
    k8s_version_overwrite: str = Field('', alias='k8sVersionOverwrite')


class APIServerInternalConfiguration(KubernetesModel):
    gardener_config: GardenerInternalConfiguration | None = Field(None, alias='gardener')


class APIServerSpec(KubernetesModel):
    type: APIServerType = APIServerType.GARDENER_DEDICATED
    gardener_config: APIServerGardenerConfig | None = Field(None, alias='gardener')
    internal: APIServerInternalConfiguration | None = None
    desired_region: RegionSpecification | None = None


class APIServerAccess(KubernetesModel):
    kubeconfig: str = ''
    creation_timestamp: datetime | None = None
    expiration_timestamp: datetime | None = None


class GardenerStatus(KubernetesModel):
    shoot: dict | None = None


class APIServerStatus(KubernetesModel):
    endpoint: str = ''
    service_account_issuer: str = ''
    admin_access: APIServerAccess | None = None
    gardener_status: GardenerStatus | None = Field(None, alias='gardener')


class APIServer(KubernetesModel):
    api_version: str = 'core.openmcp.cloud/v1alpha1'
    kind: str = 'APIServer'
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: APIServerSpec = Field(default_factory=APIServerSpec)
    status: APIServerStatus = Field(default_factory=APIServerStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def gardener_config(self) -> APIServerGardenerConfig | None:
        return self.spec.gardener_config

    @property
    def internal_gardener_config(self) -> GardenerInternalConfiguration | None:
        return self.spec.internal.gardener_config if self.spec.internal is not None else None

    @property
    def landscape_configuration(self) -> str:
        internal = self.internal_gardener_config
        return internal.landscape_configuration if internal is not None else ''
