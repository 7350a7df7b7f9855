import re

from packaging.version import InvalidVersion, Version

from src.api.schemas.apiserver import APIServer, APIServerType
from src.api.schemas.region import Direction
from src.api.schemas.shoot import (
    AuditConfig,
    AuditPolicy,
    CloudProfileReference,
    ConfigMapReference,
    ControlPlane,
    CrossVersionObjectReference,
    EncryptionConfig,
    Extension,
    FailureTolerance,
    HighAvailability,
    Hibernation,
    KubeAPIServerConfig,
    NamedResourceReference,
    Networking,
    Shoot,
)
from src.core.exceptions import ConfigurationError
from src.core.landscapes.configuration import CompletedGardenerConfiguration, CompletedMultiGardenerConfiguration
from src.core.providers.shoot_builder_factory import ShootBuilderFactory
from src.core.regions.geography import get_closest_regions
from src.core.regions.mapper import get_predefined_mapper
from src.core.utils import hash_as_number, k8s_name_hash, prefix_with_namespace, setup_logger

BACK_REFERENCE_LABEL_NAME = 'openmcp.cloud/mcp-name'
BACK_REFERENCE_LABEL_NAMESPACE = 'openmcp.cloud/mcp-namespace'
BACK_REFERENCE_LABEL_PROJECT = 'openmcp.cloud/mcp-project'
BACK_REFERENCE_LABEL_WORKSPACE = 'openmcp.cloud/mcp-workspace'

WORKER_GENERATION_ANNOTATION = 'apiserver.openmcp.cloud/worker-generation'

ENFORCED_ANNOTATIONS = {
    'shoot.gardener.cloud/cleanup-extended-apis-finalize-grace-period-seconds': '30',
    'authentication.gardener.cloud/issuer': 'managed',
}

SHOOT_PURPOSE_PRODUCTION = 'production'
RUNTIME_CONFIG_APIS = ('apps/v1', 'batch/v1')
OIDC_EXTENSION_TYPE = 'shoot-oidc-service'
AUDITLOG_EXTENSION_TYPE = 'shoot-auditlog-service'
AUDITLOG_CREDENTIALS_NAME = 'auditlog-credentials'
AUDITLOG_POLICY_SUFFIX = 'auditlog-policy'

# gardener limits shoot name + project name
MAX_SHOOT_AND_PROJECT_NAME_LENGTH = 21


def compute_k8s_version(configured: str, existing: str) -> str:
    """
    Returns the kubernetes version the shoot should have.

    The existing version is kept unless the configured one is strictly greater. A configured version without
    patch component compares as patch 0, so it never replaces an existing patch release of the same minor version.
    """
    if not existing:
        return configured
    if not configured:
        return existing

    try:
        if Version(configured) > Version(existing):
            return configured
    except InvalidVersion as e:
        raise ConfigurationError(f"unable to compare kubernetes versions '{configured}' and '{existing}': {e}") from e

    return existing


def compute_shoot_name(owner_name: str, owner_namespace: str, project: str) -> str:
    max_length = MAX_SHOOT_AND_PROJECT_NAME_LENGTH - len(project)
    if max_length < 1:
        raise ConfigurationError(f"project name '{project}' is too long to derive a shoot name")

    return k8s_name_hash(owner_namespace, owner_name)[:max_length]


def merge_enforced(existing: dict[str, str] | None, enforced: dict[str, str]) -> dict[str, str]:
    return {**(existing or {}), **enforced}


class ShootConverter:
    def __init__(self, apiserver_type: APIServerType, gardener_config: CompletedMultiGardenerConfiguration):
        self._logger = setup_logger('ShootConverter')
        self._apiserver_type = apiserver_type
        self._gardener_config = gardener_config

    def resolve_configuration(self, apiserver: APIServer) -> CompletedGardenerConfiguration:
        try:
            _, configuration = self._gardener_config.landscape_configuration(apiserver.landscape_configuration)
        except ConfigurationError as e:
            raise ConfigurationError(f'error resolving landscape and configuration: {e}') from e

        return configuration

    def get_shoot_name(
        self, shoot: Shoot | None, apiserver: APIServer, configuration: CompletedGardenerConfiguration
    ) -> str:
        if shoot is not None and shoot.metadata.name:
            return shoot.metadata.name

        internal = apiserver.internal_gardener_config
        if internal is not None and internal.shoot_overwrite is not None and internal.shoot_overwrite.name:
            return internal.shoot_overwrite.name

        return compute_shoot_name(apiserver.name, apiserver.namespace, configuration.project)

    def get_shoot_namespace(self, apiserver: APIServer, configuration: CompletedGardenerConfiguration) -> str:
        internal = apiserver.internal_gardener_config
        if internal is not None and internal.shoot_overwrite is not None and internal.shoot_overwrite.namespace:
            return internal.shoot_overwrite.namespace

        return configuration.project_namespace

    def convert(self, apiserver: APIServer, shoot: Shoot | None = None) -> Shoot:
        """
        Computes the desired shoot for the given APIServer, based on the existing shoot if any.

        The given shoot is not modified. Fields which gardener treats as immutable are only set if they are empty.
        """
        configuration = self.resolve_configuration(apiserver)
        shoot = shoot.model_copy(deep=True) if shoot is not None else Shoot()
        spec = shoot.spec
        gardener_config = apiserver.gardener_config
        owner_hash = hash_as_number(apiserver.name, apiserver.namespace)

        shoot.metadata.name = self.get_shoot_name(shoot, apiserver, configuration)
        if not shoot.metadata.namespace:
            shoot.metadata.namespace = self.get_shoot_namespace(apiserver, configuration)
        shoot_key = f'{shoot.metadata.namespace}/{shoot.metadata.name}'

        template = configuration.shoot_template
        shoot.metadata.annotations = merge_enforced(
            shoot.metadata.annotations, {**(template.metadata.annotations or {}), **ENFORCED_ANNOTATIONS}
        )
        shoot.metadata.labels = merge_enforced(shoot.metadata.labels, self._enforced_labels(apiserver, configuration))

        if spec.purpose is None:
            self._logger.debug(f'[{shoot_key}] Setting purpose to {SHOOT_PURPOSE_PRODUCTION}')
            spec.purpose = SHOOT_PURPOSE_PRODUCTION
        if spec.cloud_profile is None:
            self._logger.debug(f'[{shoot_key}] Setting cloud profile to {configuration.cloud_profile}')
            spec.cloud_profile = CloudProfileReference(kind='CloudProfile', name=configuration.cloud_profile)
        if not spec.provider.type:
            self._logger.debug(f'[{shoot_key}] Setting provider type to {configuration.provider_type}')
            spec.provider.type = configuration.provider_type
        if spec.hibernation is None:
            spec.hibernation = Hibernation()
        spec.hibernation.enabled = False

        if not spec.region:
            spec.region = self._select_region(apiserver, configuration, owner_hash)
            self._logger.info(f'[{shoot_key}] Selected region {spec.region}')

        configured_version = ''
        internal = apiserver.internal_gardener_config
        if internal is not None and internal.k8s_version_overwrite:
            configured_version = internal.k8s_version_overwrite
        existing_version = spec.kubernetes.version or ''
        version = compute_k8s_version(configured_version, existing_version)
        # a version the shoot already runs stays valid after the cloudprofile dropped it
        valid_versions = configuration.valid_k8s_versions
        if version != existing_version and valid_versions and version not in valid_versions:
            raise ConfigurationError(
                f"kubernetes version '{version}' is not offered by cloudprofile '{configuration.cloud_profile}'"
            )
        spec.kubernetes.version = version or None

        if spec.kubernetes.kube_api_server is None:
            spec.kubernetes.kube_api_server = KubeAPIServerConfig()
        kube_api_server = spec.kubernetes.kube_api_server
        kube_api_server.runtime_config = {**(kube_api_server.runtime_config or {}), **dict.fromkeys(RUNTIME_CONFIG_APIS, True)}

        if not any(extension.type == OIDC_EXTENSION_TYPE for extension in spec.extensions or []):
            self._logger.debug(f"[{shoot_key}] Adding '{OIDC_EXTENSION_TYPE}' extension")
            spec.extensions = [*(spec.extensions or []), Extension(type=OIDC_EXTENSION_TYPE)]

        if gardener_config is not None and gardener_config.audit_log is not None:
            self._add_audit_log(shoot, apiserver)
        else:
            self._remove_audit_log(shoot)

        if self._apiserver_type == APIServerType.GARDENER_DEDICATED:
            self._configure_workers(shoot, apiserver, configuration)

        ha_config = gardener_config.high_availability_config if gardener_config is not None else None
        if ha_config is not None:
            if spec.control_plane is None:
                spec.control_plane = ControlPlane()
            spec.control_plane.high_availability = HighAvailability(
                failure_tolerance=FailureTolerance(type=ha_config.failure_tolerance_type)
            )
        elif spec.control_plane is not None:
            spec.control_plane.high_availability = None

        encryption_config = gardener_config.encryption_config if gardener_config is not None else None
        if encryption_config is not None:
            kube_api_server.encryption_config = EncryptionConfig(resources=list(encryption_config.resources))
        else:
            kube_api_server.encryption_config = None

        return shoot

    def _enforced_labels(self, apiserver: APIServer, configuration: CompletedGardenerConfiguration) -> dict[str, str]:
        labels = {
            **(configuration.shoot_template.metadata.labels or {}),
            BACK_REFERENCE_LABEL_NAME: apiserver.name,
            BACK_REFERENCE_LABEL_NAMESPACE: apiserver.namespace,
        }

        apiserver_labels = apiserver.metadata.labels or {}
        for key in (BACK_REFERENCE_LABEL_PROJECT, BACK_REFERENCE_LABEL_WORKSPACE):
            if key in apiserver_labels:
                labels[key] = apiserver_labels[key]

        return labels

    def _select_region(self, apiserver: APIServer, configuration: CompletedGardenerConfiguration, owner_hash: int) -> str:
        gardener_config = apiserver.gardener_config
        if gardener_config is not None and gardener_config.region:
            self._logger.debug(f'Using region {gardener_config.region} from the APIServer spec')
            return gardener_config.region

        desired_region = apiserver.spec.desired_region
        if desired_region is not None and desired_region.name:
            if not desired_region.direction:
                desired_region = desired_region.model_copy(update={'direction': Direction.CENTRAL})

            mapper = get_predefined_mapper(configuration.provider_type)
            if mapper is None:
                raise ConfigurationError(
                    f"no region mapping known for provider '{configuration.provider_type}', "
                    'desired region cannot be resolved'
                )

            try:
                regions = get_closest_regions(
                    desired_region, mapper, sorted(configuration.valid_regions.keys()), prefer_same_region=True
                )
            except re.error as e:
                raise ConfigurationError(f'error finding closest regions for {desired_region}: {e}') from e

            if regions:
                return regions[owner_hash % len(regions)]

            self._logger.warning(f'No configured region matches desired region {desired_region}, using default region')

        if not configuration.default_region:
            raise ConfigurationError(
                f"unable to determine a region: no region requested and configuration '{configuration.full_name}' "
                'does not define a default region'
            )

        return configuration.default_region

    def _add_audit_log(self, shoot: Shoot, apiserver: APIServer) -> None:
        audit_log = apiserver.gardener_config.audit_log
        spec = shoot.spec

        spec.kubernetes.kube_api_server.audit_config = AuditConfig(
            audit_policy=AuditPolicy(
                config_map_ref=ConfigMapReference(name=prefix_with_namespace(shoot.metadata.name, AUDITLOG_POLICY_SUFFIX))
            )
        )

        provider_config = {
            'apiVersion': 'service.auditlog.extensions.gardener.cloud/v1alpha1',
            'kind': 'AuditlogConfig',
            'type': audit_log.type,
            'tenantID': audit_log.tenant_id,
            'serviceURL': audit_log.service_url,
            'secretReferenceName': AUDITLOG_CREDENTIALS_NAME,
        }
        extensions = spec.extensions or []
        for extension in extensions:
            if extension.type == AUDITLOG_EXTENSION_TYPE:
                extension.provider_config = provider_config
                break
        else:
            extensions.append(Extension(type=AUDITLOG_EXTENSION_TYPE, provider_config=provider_config))
        spec.extensions = extensions

        resource_ref = CrossVersionObjectReference(
            api_version='v1', kind='Secret', name=prefix_with_namespace(shoot.metadata.name, AUDITLOG_CREDENTIALS_NAME)
        )
        resources = spec.resources or []
        for resource in resources:
            if resource.name == AUDITLOG_CREDENTIALS_NAME:
                resource.resource_ref = resource_ref
                break
        else:
            resources.append(NamedResourceReference(name=AUDITLOG_CREDENTIALS_NAME, resource_ref=resource_ref))
        spec.resources = resources

    def _remove_audit_log(self, shoot: Shoot) -> None:
        spec = shoot.spec
        spec.kubernetes.kube_api_server.audit_config = None

        if spec.extensions is not None:
            spec.extensions = [e for e in spec.extensions if e.type != AUDITLOG_EXTENSION_TYPE]
        if spec.resources is not None:
            spec.resources = [r for r in spec.resources if r.name != AUDITLOG_CREDENTIALS_NAME] or None

    def _configure_workers(
        self, shoot: Shoot, apiserver: APIServer, configuration: CompletedGardenerConfiguration
    ) -> None:
        spec = shoot.spec
        template_spec = configuration.shoot_template.spec

        region = configuration.valid_regions.get(spec.region)
        if region is None:
            raise ConfigurationError(
                f"region '{spec.region}' is not valid for configuration '{configuration.full_name}'"
            )

        gardener_config = apiserver.gardener_config
        builder = ShootBuilderFactory.get_builder(
            configuration.provider_type,
            owner_name=apiserver.name,
            owner_namespace=apiserver.namespace,
            shoot_template=configuration.shoot_template,
            region=region,
            existing_control_plane_config=spec.provider.control_plane_config,
            ha_config=gardener_config.high_availability_config if gardener_config is not None else None,
        )

        if spec.networking is None:
            spec.networking = Networking()
        if spec.networking.type is None:
            spec.networking.type = template_spec.networking.type
        if spec.networking.nodes is None:
            spec.networking.nodes = template_spec.networking.nodes

        if spec.provider.infrastructure_config is None:
            spec.provider.infrastructure_config = builder.new_infrastructure_config()
        if spec.provider.control_plane_config is None:
            spec.provider.control_plane_config = builder.new_control_plane_config()

        annotations = shoot.metadata.annotations
        generation = int(annotations.get(WORKER_GENERATION_ANNOTATION, '0'))
        added = builder.adjust_workers(spec.provider, generation + 1)
        if added:
            annotations[WORKER_GENERATION_ANNOTATION] = str(generation + 1)
            self._logger.info(f'Added {added} worker group(s) to shoot {shoot.metadata.namespace}/{shoot.metadata.name}')

        if spec.secret_binding_name is None:
            spec.secret_binding_name = template_spec.secret_binding_name
