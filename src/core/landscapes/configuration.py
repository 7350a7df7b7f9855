from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType

import yaml
from pydantic import ValidationError

from src.api.schemas.apiserver import APIServerType
from src.api.schemas.provider_config import (
    DEFAULT_ADMIN_SERVICE_ACCOUNT_NAME,
    DEFAULT_SERVICE_ACCOUNT_NAMESPACE,
    APIServerProviderConfiguration,
    GardenerConfiguration,
    MultiGardenerConfiguration,
    Region,
    validate_provider_configuration,
)
from src.api.schemas.shoot import ShootTemplate
from src.core.config import PATH_TO_PROVIDER_CONFIG
from src.core.exceptions import ConfigurationError, InvalidProviderConfigurationError, ReasonableError
from src.core.kubernetes.garden_client import GardenClient
from src.core.utils import setup_logger

GardenClientFactory = Callable[[str, str], GardenClient]


def default_client_factory(landscape_name: str, kubeconfig: str) -> GardenClient:
    return GardenClient.from_kubeconfig(kubeconfig)


@dataclass(frozen=True)
class CompletedCommonConfig:
    service_account_namespace: str = DEFAULT_SERVICE_ACCOUNT_NAMESPACE
    admin_service_account_name: str = DEFAULT_ADMIN_SERVICE_ACCOUNT_NAME


@dataclass(frozen=True)
class CompletedGardenerConfiguration:
    name: str
    landscape: str
    project: str
    project_namespace: str
    cloud_profile: str
    provider_type: str
    shoot_template: ShootTemplate
    client: GardenClient
    default_region: str = ''
    valid_regions: Mapping[str, Region] = field(default_factory=dict)
    valid_k8s_versions: frozenset[str] = frozenset()

    @property
    def full_name(self) -> str:
        return f'{self.landscape}/{self.name}'


@dataclass(frozen=True)
class CompletedGardenerLandscape:
    name: str
    client: GardenClient
    configurations: Mapping[str, CompletedGardenerConfiguration]


@dataclass(frozen=True)
class CompletedMultiGardenerConfiguration:
    default_landscape: str
    default_configuration: str
    landscapes: Mapping[str, CompletedGardenerLandscape]

    def landscape_configuration(
        self, *selector: str
    ) -> tuple[CompletedGardenerLandscape, CompletedGardenerConfiguration]:
        """
        Resolves a landscape and configuration.

        Accepts no argument (defaults), one combined '<landscape>/<config>' argument (empty means defaults)
        or two separate arguments for landscape and configuration.
        """
        match len(selector):
            case 0:
                return self._from_landscape_and_config(self.default_landscape, self.default_configuration)
            case 1:
                return self._from_combined(selector[0])
            case 2:
                return self._from_landscape_and_config(selector[0], selector[1])
            case _:
                raise ConfigurationError(
                    'invalid arguments: expected either one combined argument or two separate arguments, '
                    f'got {len(selector)}'
                )

    def _from_combined(self, combined: str) -> tuple[CompletedGardenerLandscape, CompletedGardenerConfiguration]:
        if not combined:
            return self._from_landscape_and_config(self.default_landscape, self.default_configuration)

        fields = combined.split('/')
        if len(fields) != 2:
            raise ConfigurationError(f"expected format is '<landscape-name>/<config-name>', but got '{combined}'")
        if not fields[0] or not fields[1]:
            raise ConfigurationError('invalid arguments: landscape and config must not be empty in combined format')

        return self._from_landscape_and_config(fields[0], fields[1])

    def _from_landscape_and_config(
        self, landscape: str, configuration: str
    ) -> tuple[CompletedGardenerLandscape, CompletedGardenerConfiguration]:
        if not landscape:
            landscape = self.default_landscape
        elif landscape != self.default_landscape and not configuration:
            raise ConfigurationError(
                'invalid arguments: config can only be defaulted if landscape is also default '
                f"(default landscape '{self.default_landscape}', given landscape '{landscape}')"
            )

        completed_landscape = self.landscapes.get(landscape)
        if completed_landscape is None:
            raise ConfigurationError(f"unable to get Gardener landscape: unknown landscape '{landscape}'")

        configuration = configuration or self.default_configuration
        completed_configuration = completed_landscape.configurations.get(configuration)
        if completed_configuration is None:
            raise ConfigurationError(f"unable to get Gardener configuration: unknown configuration '{configuration}'")

        return completed_landscape, completed_configuration


@dataclass(frozen=True)
class CompletedAPIServerProviderConfiguration:
    common: CompletedCommonConfig
    gardener_config: CompletedMultiGardenerConfiguration | None = None
    configured_types: frozenset[APIServerType] = frozenset()


class LandscapeResolver:
    """Turns the static provider configuration into a completed one, using live data from the landscapes."""

    def __init__(self, provider_config: APIServerProviderConfiguration, client_factory: GardenClientFactory = default_client_factory):
        self._logger = setup_logger('LandscapeResolver')
        self._provider_config = provider_config
        self._client_factory = client_factory

    def complete(self) -> CompletedAPIServerProviderConfiguration:
        errors = validate_provider_configuration(self._provider_config)
        if errors:
            raise InvalidProviderConfigurationError(errors)

        common = CompletedCommonConfig(
            service_account_namespace=self._provider_config.service_account_namespace or DEFAULT_SERVICE_ACCOUNT_NAMESPACE,
            admin_service_account_name=self._provider_config.admin_service_account_name or DEFAULT_ADMIN_SERVICE_ACCOUNT_NAME,
        )

        if self._provider_config.gardener_config is None:
            return CompletedAPIServerProviderConfiguration(common=common)

        gardener_config = self._complete_gardener(self._provider_config.gardener_config)

        return CompletedAPIServerProviderConfiguration(
            common=common,
            gardener_config=gardener_config,
            configured_types=frozenset({APIServerType.GARDENER, APIServerType.GARDENER_DEDICATED}),
        )

    def _complete_gardener(self, cfg: MultiGardenerConfiguration) -> CompletedMultiGardenerConfiguration:
        cfg = cfg.normalized()

        default_landscape, default_configuration = cfg.default_config.split('/')

        landscapes = {}
        for landscape in cfg.landscapes:
            try:
                garden_client = self._client_factory(landscape.name, landscape.kubeconfig)
            except ReasonableError:
                raise
            except Exception as e:
                self._logger.exception(f"Error creating client for landscape '{landscape.name}'", exc_info=False)
                raise ConfigurationError(f"error creating client for landscape '{landscape.name}': {e}") from e

            configurations = {}
            for configuration in landscape.configs:
                configurations[configuration.name] = self._complete_configuration(
                    landscape.name, configuration, garden_client
                )
                self._logger.info(f'Configuration {landscape.name}/{configuration.name} completed')

            landscapes[landscape.name] = CompletedGardenerLandscape(
                name=landscape.name, client=garden_client, configurations=MappingProxyType(configurations)
            )

        if default_landscape not in landscapes or default_configuration not in landscapes[default_landscape].configurations:
            raise ConfigurationError(f"default configuration '{cfg.default_config}' does not exist")

        return CompletedMultiGardenerConfiguration(
            default_landscape=default_landscape,
            default_configuration=default_configuration,
            landscapes=MappingProxyType(landscapes),
        )

    def _complete_configuration(
        self, landscape_name: str, cfg: GardenerConfiguration, garden_client: GardenClient
    ) -> CompletedGardenerConfiguration:
        prefix = f'[{landscape_name}/{cfg.name}]'

        project = garden_client.get_project(cfg.project)
        project_namespace = project.get('spec', {}).get('namespace')
        if not project_namespace:
            raise ConfigurationError(f'{prefix} project namespace is not set')

        cloud_profile = garden_client.get_cloud_profile(cfg.cloud_profile)
        cloud_profile_spec = cloud_profile.get('spec', {})

        declared_regions = {region.name for region in cfg.regions}
        valid_regions = {}
        for region in cloud_profile_spec.get('regions', []):
            if region.get('name') in declared_regions:
                valid_regions[region['name']] = Region.model_validate(region)

        valid_k8s_versions = set()
        for version in cloud_profile_spec.get('kubernetes', {}).get('versions', []):
            full_version = version.get('version', '')
            parts = full_version.split('.')
            valid_k8s_versions.add(full_version)
            if len(parts) >= 2:
                valid_k8s_versions.add(f'{parts[0]}.{parts[1]}')

        if cfg.default_region:
            if cfg.default_region not in declared_regions:
                raise ConfigurationError(
                    f"{prefix} the specified default region '{cfg.default_region}' is not among the configured regions"
                )
            if cfg.default_region not in valid_regions:
                raise ConfigurationError(
                    f"{prefix} the specified default region '{cfg.default_region}' is not valid "
                    f"for the chosen cloudprofile '{cfg.cloud_profile}'"
                )

        return CompletedGardenerConfiguration(
            name=cfg.name,
            landscape=landscape_name,
            project=cfg.project,
            project_namespace=project_namespace,
            cloud_profile=cfg.cloud_profile,
            provider_type=cloud_profile_spec.get('type', ''),
            shoot_template=cfg.shoot_template,
            client=garden_client,
            default_region=cfg.default_region,
            valid_regions=MappingProxyType(valid_regions),
            valid_k8s_versions=frozenset(valid_k8s_versions),
        )


def load_provider_configuration(path: Path = PATH_TO_PROVIDER_CONFIG) -> APIServerProviderConfiguration:
    try:
        raw = yaml.safe_load(path.read_text(encoding='utf-8')) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"unable to read provider configuration '{path}': {e}") from e

    try:
        return APIServerProviderConfiguration.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"unable to parse provider configuration '{path}': {e}") from e
