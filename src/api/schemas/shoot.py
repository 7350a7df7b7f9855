from typing import Any

from pydantic import Field

from src.api.schemas.meta import KubernetesModel, ObjectMeta

GARDENER_API_GROUP = 'core.gardener.cloud'
GARDENER_API_VERSION = 'v1beta1'


class CloudProfileReference(KubernetesModel):
    kind: str = 'CloudProfile'
    name: str


class ShootMachineImage(KubernetesModel):
    name: str
    version: str | None = None
    provider_config: dict[str, Any] | None = None


class Machine(KubernetesModel):
    type: str = ''
    image: ShootMachineImage | None = None
    architecture: str | None = None


class Volume(KubernetesModel):
    type: str | None = None
    volume_size: str = Field('', alias='size')


class Worker(KubernetesModel):
    name: str = ''
    machine: Machine
    minimum: int = 0
    maximum: int = 0
    max_surge: int | str | None = None
    max_unavailable: int | str | None = None
    zones: list[str] = Field(default_factory=list)
    volume: Volume | None = None


class Provider(KubernetesModel):
    type: str | None = None
    infrastructure_config: dict[str, Any] | None = None
    control_plane_config: dict[str, Any] | None = None
    workers: list[Worker] = Field(default_factory=list)


class Networking(KubernetesModel):
    type: str | None = None
    nodes: str | None = None
    pods: str | None = None
    services: str | None = None


class ConfigMapReference(KubernetesModel):
    name: str


class AuditPolicy(KubernetesModel):
    config_map_ref: ConfigMapReference | None = None


class AuditConfig(KubernetesModel):
    audit_policy: AuditPolicy | None = None


class EncryptionConfig(KubernetesModel):
    resources: list[str] = Field(default_factory=list)


class KubeAPIServerConfig(KubernetesModel):
    runtime_config: dict[str, bool] | None = None
    audit_config: AuditConfig | None = None
    encryption_config: EncryptionConfig | None = None


class Kubernetes(KubernetesModel):
    version: str | None = None
    kube_api_server: KubeAPIServerConfig | None = Field(None, alias='kubeAPIServer')


class Extension(KubernetesModel):
    type: str
    provider_config: dict[str, Any] | None = None
    disabled: bool | None = None


class CrossVersionObjectReference(KubernetesModel):
    api_version: str
    kind: str
    name: str


class NamedResourceReference(KubernetesModel):
    name: str
    resource_ref: CrossVersionObjectReference


class Hibernation(KubernetesModel):
    enabled: bool | None = None


class FailureTolerance(KubernetesModel):
    type: str


class HighAvailability(KubernetesModel):
    failure_tolerance: FailureTolerance


class ControlPlane(KubernetesModel):
    high_availability: HighAvailability | None = None


class ShootSpec(KubernetesModel):
    purpose: str | None = None
    cloud_profile: CloudProfileReference | None = None
    provider: Provider = Field(default_factory=Provider)
    networking: Networking | None = None
    region: str | None = None
    kubernetes: Kubernetes = Field(default_factory=Kubernetes)
    extensions: list[Extension] | None = None
    resources: list[NamedResourceReference] | None = None
    hibernation: Hibernation | None = None
    control_plane: ControlPlane | None = None
    secret_binding_name: str | None = None


class Condition(KubernetesModel):
    type: str
    status: str
    reason: str | None = None
    message: str | None = None
    last_transition_time: str | None = None
    last_update_time: str | None = None


class LastOperation(KubernetesModel):
    type: str = ''
    state: str = ''
    description: str = ''
    progress: int | None = None
    last_update_time: str | None = None


class AdvertisedAddress(KubernetesModel):
    name: str
    url: str


class ShootStatus(KubernetesModel):
    conditions: list[Condition] = Field(default_factory=list)
    observed_generation: int | None = None
    last_operation: LastOperation | None = None
    advertised_addresses: list[AdvertisedAddress] = Field(default_factory=list)


class Shoot(KubernetesModel):
    api_version: str = f'{GARDENER_API_GROUP}/{GARDENER_API_VERSION}'
    kind: str = 'Shoot'
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: ShootSpec = Field(default_factory=ShootSpec)
    status: ShootStatus | None = None


class ShootTemplate(KubernetesModel):
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: ShootSpec = Field(default_factory=ShootSpec)
