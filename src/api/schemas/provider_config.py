import re

from pydantic import Field

from src.api.schemas.meta import KubernetesModel
from src.api.schemas.shoot import ShootTemplate

DEFAULT_LANDSCAPE_NAME = 'default'
DEFAULT_CONFIGURATION_NAME = 'default'
DEFAULT_SERVICE_ACCOUNT_NAMESPACE = 'openmcp-system'
DEFAULT_ADMIN_SERVICE_ACCOUNT_NAME = 'admin'

DEFAULT_LANDSCAPE_AND_CONFIGURATION_REGEX = re.compile(r'^[a-z0-9-]+/[a-z0-9-]+$')


class AvailabilityZone(KubernetesModel):
    name: str


class Region(KubernetesModel):
    name: str
    zones: list[AvailabilityZone] = Field(default_factory=list)

    @property
    def zone_names(self) -> list[str]:
        return [zone.name for zone in self.zones]


class GardenerConfiguration(KubernetesModel):
    name: str = ''
    project: str = ''
    cloud_profile: str = ''
    shoot_template: ShootTemplate | None = None
    regions: list[Region] = Field(default_factory=list)
    default_region: str = ''


class GardenerLandscape(KubernetesModel):
    name: str = ''
    kubeconfig: str = ''
    configs: list[GardenerConfiguration] = Field(default_factory=list)


class MultiGardenerConfiguration(GardenerConfiguration):
    """
    Gardener part of the provider configuration.

    Either the multi-landscape fields (default_config, landscapes) are set, or the legacy single
    configuration fields inherited from GardenerConfiguration plus kubeconfig.
    """

    kubeconfig: str = ''
    default_config: str = ''
    landscapes: list[GardenerLandscape] = Field(default_factory=list)

    @property
    def is_legacy(self) -> bool:
        return not self.default_config and not self.landscapes

    def normalized(self) -> 'MultiGardenerConfiguration':
        """Returns the multi-landscape form, converting a legacy single configuration if necessary."""
        if not self.is_legacy:
            return self

        return MultiGardenerConfiguration(
            default_config=f'{DEFAULT_LANDSCAPE_NAME}/{DEFAULT_CONFIGURATION_NAME}',
            landscapes=[
                GardenerLandscape(
                    name=DEFAULT_LANDSCAPE_NAME,
                    kubeconfig=self.kubeconfig,
                    configs=[
                        GardenerConfiguration(
                            name=DEFAULT_CONFIGURATION_NAME,
                            project=self.project,
                            cloud_profile=self.cloud_profile,
                            shoot_template=self.shoot_template,
                            regions=self.regions,
                            default_region=self.default_region,
                        )
                    ],
                )
            ],
        )


class APIServerProviderConfiguration(KubernetesModel):
    service_account_namespace: str | None = None
    admin_service_account_name: str | None = None
    gardener_config: MultiGardenerConfiguration | None = Field(None, alias='gardener')


def validate_provider_configuration(cfg: APIServerProviderConfiguration | None) -> list[str]:
    if cfg is None:
        return ['<root>: Required value: APIServer provider configuration must not be empty']

    if cfg.gardener_config is None:
        return []

    return validate_gardener_configuration(cfg.gardener_config, 'gardener')


def validate_gardener_configuration(cfg: MultiGardenerConfiguration, path: str) -> list[str]:
    errors = []

    if cfg.is_legacy:
        errors.extend(_validate_configuration(cfg, path))
        if not cfg.kubeconfig:
            errors.append(f'{path}.kubeconfig: Required value: kubeconfig must not be empty')
        return errors

    if not cfg.default_config:
        errors.append(f'{path}.defaultConfig: Required value: default landscape/configuration name must not be empty')
    elif not DEFAULT_LANDSCAPE_AND_CONFIGURATION_REGEX.match(cfg.default_config):
        errors.append(
            f'{path}.defaultConfig: Invalid value: "{cfg.default_config}": '
            "default configuration name must follow the format '<landscape-name>/<config-name>'"
        )

    if not cfg.landscapes:
        errors.append(f'{path}.landscapes: Required value: landscapes must not be empty')

    known_landscapes = set()
    for i, landscape in enumerate(cfg.landscapes):
        landscape_path = f'{path}.landscapes[{i}]'
        if not landscape.name:
            errors.append(f'{landscape_path}.name: Required value: landscape name must not be empty')
        if landscape.name in known_landscapes:
            errors.append(f'{landscape_path}.name: Duplicate value: "{landscape.name}"')
        if not landscape.configs:
            errors.append(f'{landscape_path}.configs: Required value: configurations must not be empty')
        if not landscape.kubeconfig:
            errors.append(f'{landscape_path}.kubeconfig: Required value: kubeconfig must not be empty')

        known_landscapes.add(landscape.name)

        known_configs = set()
        for j, config in enumerate(landscape.configs):
            config_path = f'{landscape_path}.configs[{j}]'
            if not config.name:
                errors.append(f'{config_path}.name: Required value: configuration name must not be empty')
            if config.name in known_configs:
                errors.append(f'{config_path}.name: Duplicate value: "{config.name}"')

            known_configs.add(config.name)
            errors.extend(_validate_configuration(config, config_path))

    return errors


def _validate_configuration(cfg: GardenerConfiguration, path: str) -> list[str]:
    errors = []

    if not cfg.project:
        errors.append(f'{path}.project: Required value: project name must not be empty')
    if not cfg.cloud_profile:
        errors.append(f'{path}.cloudProfile: Required value: cloudprofile name must not be empty')
    if not cfg.regions:
        errors.append(f'{path}.regions: Required value: regions must not be empty')

    errors.extend(validate_shoot_template(cfg.shoot_template, f'{path}.shootTemplate'))

    return errors


def validate_shoot_template(template: ShootTemplate | None, path: str) -> list[str]:
    if template is None:
        return [f'{path}: Required value: shootTemplate must not be empty']

    errors = []
    spec_path = f'{path}.spec'
    spec = template.spec

    if spec.networking is None:
        errors.append(f'{spec_path}.networking: Required value: networking must not be empty')
    else:
        if spec.networking.type is None:
            errors.append(f'{spec_path}.networking.type: Required value: networking type must not be empty')
        if spec.networking.nodes is None:
            errors.append(f'{spec_path}.networking.nodes: Required value: networking nodes must not be empty')

    if not spec.provider.type:
        errors.append(f'{spec_path}.provider.type: Required value: provider type must not be empty')
    if spec.provider.infrastructure_config is None:
        errors.append(f'{spec_path}.provider.infrastructureConfig: Required value: infrastructureConfig must not be empty')
    if not spec.provider.workers:
        errors.append(f'{spec_path}.provider.workers: Required value: workers must not be empty')

    for i, worker in enumerate(spec.provider.workers):
        worker_path = f'{spec_path}.provider.workers[{i}]'
        if worker.machine.architecture is None:
            errors.append(f'{worker_path}.machine.architecture: Required value: architecture must not be empty')
        if worker.machine.image is None:
            errors.append(f'{worker_path}.machine.image: Required value: machine image must not be empty')
        elif worker.machine.image.version is None:
            errors.append(f'{worker_path}.machine.image.version: Required value: machine image version must not be empty')
        if not worker.machine.type:
            errors.append(f'{worker_path}.machine.type: Required value: machine type must not be empty')
        if worker.volume is None:
            errors.append(f'{worker_path}.volume: Required value: volume must not be empty')
        else:
            if worker.volume.type is None:
                errors.append(f'{worker_path}.volume.type: Required value: volume type must not be empty')
            if not worker.volume.volume_size:
                errors.append(f'{worker_path}.volume.size: Required value: volume size must not be empty')

    if spec.secret_binding_name is None:
        errors.append(f'{spec_path}.secretBindingName: Required value: secretBindingName must not be empty')

    return errors
