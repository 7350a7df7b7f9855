from datetime import UTC, datetime, timedelta
from types import MappingProxyType
from unittest.mock import MagicMock

import pytest

from src.api.schemas.apiserver import APIServer, APIServerType
from src.api.schemas.provider_config import Region
from src.api.schemas.shoot import Shoot, ShootTemplate
from src.core.exceptions import ConflictError, GardenClusterError
from src.core.kubernetes.kubernetes_client import OperationResult
from src.core.landscapes.configuration import (
    CompletedAPIServerProviderConfiguration,
    CompletedCommonConfig,
    CompletedGardenerConfiguration,
    CompletedGardenerLandscape,
    CompletedMultiGardenerConfiguration,
)

PROJECT = 'mcp'
PROJECT_NAMESPACE = 'garden-mcp'

ADMIN_KUBECONFIG = """
apiVersion: v1
kind: Config
clusters:
  - name: shoot--mcp--abc
    cluster:
      server: https://api.abc.mcp.shoot.example.com
      certificate-authority-data: Y2VydA==
contexts:
  - name: shoot--mcp--abc
    context:
      cluster: shoot--mcp--abc
      user: shoot--mcp--abc
current-context: shoot--mcp--abc
users:
  - name: shoot--mcp--abc
    user:
      client-certificate-data: Y2VydA==
"""


class FakeGardenClient:
    """In-memory stand-in for GardenClient."""

    def __init__(self, projects: dict | None = None, cloud_profiles: dict | None = None):
        self.projects = projects or {}
        self.cloud_profiles = cloud_profiles or {}
        self.shoots: dict[tuple[str, str], Shoot] = {}
        self.config_maps: dict[tuple[str, str], dict] = {}
        self.secrets: dict[tuple[str, str], tuple[dict, str]] = {}
        self.annotations: dict[tuple[str, str], dict] = {}
        self.conflict_on_update = False
        self.fail_writes = False
        self.admin_kubeconfig_requests = 0

    def get_project(self, name: str) -> dict:
        if name not in self.projects:
            raise GardenClusterError(f"Error fetching projects '{name}': Not Found")
        return self.projects[name]

    def get_cloud_profile(self, name: str) -> dict:
        if name not in self.cloud_profiles:
            raise GardenClusterError(f"Error fetching cloudprofiles '{name}': Not Found")
        return self.cloud_profiles[name]

    def get_shoot(self, name: str, namespace: str) -> Shoot | None:
        shoot = self.shoots.get((namespace, name))
        return shoot.model_copy(deep=True) if shoot is not None else None

    def list_shoots(self, namespace: str, labels: dict[str, str]) -> list[Shoot]:
        return [
            shoot.model_copy(deep=True)
            for (ns, _), shoot in self.shoots.items()
            if ns == namespace and labels.items() <= (shoot.metadata.labels or {}).items()
        ]

    def create_shoot(self, shoot: Shoot) -> Shoot:
        if self.fail_writes:
            raise GardenClusterError('Error creating shoot: Internal Server Error')
        stored = shoot.model_copy(deep=True)
        stored.metadata.generation = 1
        stored.metadata.resource_version = '1'
        self.shoots[(shoot.metadata.namespace, shoot.metadata.name)] = stored
        return stored.model_copy(deep=True)

    def update_shoot(self, shoot: Shoot) -> Shoot:
        if self.conflict_on_update:
            raise ConflictError(f"conflict while updating shoot '{shoot.metadata.namespace}/{shoot.metadata.name}': Conflict")
        key = (shoot.metadata.namespace, shoot.metadata.name)
        existing = self.shoots[key]
        stored = shoot.model_copy(deep=True)
        stored.status = existing.status
        stored.metadata.generation = existing.metadata.generation
        if existing.spec.to_dict() != shoot.spec.to_dict():
            stored.metadata.generation += 1
        self.shoots[key] = stored
        return stored.model_copy(deep=True)

    def annotate_shoot(self, shoot: Shoot, annotations: dict[str, str]) -> None:
        self.annotations.setdefault((shoot.metadata.namespace, shoot.metadata.name), {}).update(annotations)

    def delete_shoot(self, shoot: Shoot) -> None:
        stored = self.shoots.get((shoot.metadata.namespace, shoot.metadata.name))
        if stored is not None:
            stored.metadata.deletion_timestamp = '2026-01-01T00:00:00Z'

    def get_config_map(self, name: str, namespace: str) -> dict | None:
        return self.config_maps.get((namespace, name))

    def create_or_update_config_map(self, name: str, namespace: str, data: dict) -> OperationResult:
        if self.fail_writes:
            raise GardenClusterError(f"Error writing configmap '{namespace}/{name}': Forbidden")
        existing = self.config_maps.get((namespace, name))
        self.config_maps[(namespace, name)] = dict(data)
        if existing is None:
            return OperationResult.CREATED
        return OperationResult.UNCHANGED if existing == data else OperationResult.UPDATED

    def create_or_update_secret(self, name: str, namespace: str, data: dict, secret_type: str = 'Opaque') -> OperationResult:
        if self.fail_writes:
            raise GardenClusterError(f"Error writing secret '{namespace}/{name}': Forbidden")
        existing = self.secrets.get((namespace, name))
        self.secrets[(namespace, name)] = (dict(data), secret_type)
        if existing is None:
            return OperationResult.CREATED
        return OperationResult.UNCHANGED if existing == (data, secret_type) else OperationResult.UPDATED

    def delete_config_map(self, name: str, namespace: str) -> None:
        self.config_maps.pop((namespace, name), None)

    def delete_secret(self, name: str, namespace: str) -> None:
        self.secrets.pop((namespace, name), None)

    def request_admin_kubeconfig(self, shoot: Shoot, validity: timedelta) -> str:
        self.admin_kubeconfig_requests += 1
        return ADMIN_KUBECONFIG


class FakeTenantClient:
    """In-memory stand-in for the client of the tenant cluster, only reads are needed."""

    def __init__(self):
        self.config_maps: dict[tuple[str, str], dict] = {}
        self.secrets: dict[tuple[str, str], tuple[dict, str]] = {}

    def get_config_map(self, name: str, namespace: str) -> dict | None:
        return self.config_maps.get((namespace, name))

    def get_secret(self, name: str, namespace: str) -> tuple[dict, str] | None:
        return self.secrets.get((namespace, name))


def make_region(name: str, zone_suffixes: str = 'abc') -> Region:
    return Region(name=name, zones=[{'name': f'{name}-{suffix}'} for suffix in zone_suffixes])


def make_shoot_template(provider_type: str = 'gcp', infrastructure_config: dict | None = None) -> ShootTemplate:
    if infrastructure_config is None:
        infrastructure_config = {
            'apiVersion': f'{provider_type}.provider.extensions.gardener.cloud/v1alpha1',
            'kind': 'InfrastructureConfig',
            'networks': {'workers': '10.180.0.0/16'},
        }

    return ShootTemplate.model_validate({
        'metadata': {'labels': {'openmcp.cloud/managed-by': 'apiserver'}},
        'spec': {
            'networking': {'type': 'calico', 'nodes': '10.180.0.0/16'},
            'provider': {
                'type': provider_type,
                'infrastructureConfig': infrastructure_config,
                'workers': [{
                    'name': 'default',
                    'machine': {
                        'type': 'n2-standard-4',
                        'architecture': 'amd64',
                        'image': {'name': 'gardenlinux', 'version': '1592.1.0'},
                    },
                    'minimum': 1,
                    'maximum': 3,
                    'volume': {'type': 'pd-balanced', 'size': '50Gi'},
                }],
            },
            'secretBindingName': 'mcp-secret',
        },
    })


def make_configuration(
    client,
    provider_type: str = 'gcp',
    regions: list[Region] | None = None,
    default_region: str = 'europe-west1',
    shoot_template: ShootTemplate | None = None,
    name: str = 'default',
    landscape: str = 'default',
) -> CompletedGardenerConfiguration:
    if regions is None:
        regions = [make_region('europe-west1', 'bcd'), make_region('us-central1', 'abcf')]

    return CompletedGardenerConfiguration(
        name=name,
        landscape=landscape,
        project=PROJECT,
        project_namespace=PROJECT_NAMESPACE,
        cloud_profile=provider_type,
        provider_type=provider_type,
        shoot_template=shoot_template or make_shoot_template(provider_type),
        client=client,
        default_region=default_region,
        valid_regions=MappingProxyType({region.name: region for region in regions}),
        valid_k8s_versions=frozenset({'1.30', '1.30.5', '1.31', '1.31.2'}),
    )


def make_multi_configuration(*configurations: CompletedGardenerConfiguration) -> CompletedMultiGardenerConfiguration:
    landscapes = {}
    for configuration in configurations:
        landscape = landscapes.setdefault(configuration.landscape, {})
        landscape[configuration.name] = configuration

    return CompletedMultiGardenerConfiguration(
        default_landscape=configurations[0].landscape,
        default_configuration=configurations[0].name,
        landscapes=MappingProxyType({
            name: CompletedGardenerLandscape(
                name=name, client=configurations[0].client, configurations=MappingProxyType(configs)
            )
            for name, configs in landscapes.items()
        }),
    )


def make_apiserver(name: str = 'mcp', namespace: str = 'project-x--ws-y', **spec) -> APIServer:
    return APIServer.model_validate({
        'metadata': {'name': name, 'namespace': namespace},
        'spec': {'type': 'GardenerDedicated', **spec},
    })


@pytest.fixture
def garden_client():
    return FakeGardenClient()


@pytest.fixture
def tenant_client():
    return FakeTenantClient()


@pytest.fixture
def gcp_configuration(garden_client):
    return make_configuration(garden_client)


@pytest.fixture
def gardener_config(gcp_configuration):
    return make_multi_configuration(gcp_configuration)


@pytest.fixture
def provider_config(gardener_config):
    return CompletedAPIServerProviderConfiguration(
        common=CompletedCommonConfig(),
        gardener_config=gardener_config,
        configured_types=frozenset({APIServerType.GARDENER, APIServerType.GARDENER_DEDICATED}),
    )


@pytest.fixture
def shoot_client():
    client = MagicMock()
    client.create_service_account_token.side_effect = lambda name, namespace, validity: (
        'sa-token', datetime.now(UTC) + validity
    )
    return client
