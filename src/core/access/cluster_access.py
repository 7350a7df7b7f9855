from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import yaml

from src.api.schemas.apiserver import APIServerAccess
from src.api.schemas.shoot import Shoot
from src.core.config import ADMIN_ACCESS_VALIDITY, TEMPORARY_ADMIN_KUBECONFIG_VALIDITY
from src.core.exceptions import AccessProvisioningError, ReasonableError
from src.core.kubernetes.garden_client import GardenClient
from src.core.kubernetes.kubernetes_client import KubernetesClient
from src.core.landscapes.configuration import CompletedCommonConfig
from src.core.template_loader import template_loader
from src.core.utils import setup_logger

# share of the validity after which an access is renewed
RENEWAL_THRESHOLD = 0.8

ShootClientFactory = Callable[[str], KubernetesClient]


def default_shoot_client_factory(kubeconfig: str) -> KubernetesClient:
    return KubernetesClient.from_kubeconfig(kubeconfig, error_class=AccessProvisioningError)


def compute_renewal_time(access: APIServerAccess | None) -> datetime | None:
    """Returns the point in time at which 80% of the access' validity have passed, if it can be computed."""
    if access is None or access.creation_timestamp is None or access.expiration_timestamp is None:
        return None

    validity = access.expiration_timestamp - access.creation_timestamp

    return access.creation_timestamp + validity * RENEWAL_THRESHOLD


def needs_renewal(access: APIServerAccess | None, now: datetime) -> bool:
    if access is None:
        return True

    renewal_time = compute_renewal_time(access)

    return renewal_time is not None and renewal_time <= now


def parse_kubeconfig_cluster(kubeconfig: str) -> tuple[str, str]:
    """Returns server and certificate authority data of the current context's cluster."""
    try:
        parsed = yaml.safe_load(kubeconfig) or {}
    except yaml.YAMLError as e:
        raise AccessProvisioningError(f'unable to parse admin kubeconfig: {e}') from e

    current_context = parsed.get('current-context', '')
    context = next((c.get('context', {}) for c in parsed.get('contexts', []) if c.get('name') == current_context), None)
    if context is None:
        raise AccessProvisioningError(f"current context '{current_context}' not found in admin kubeconfig")

    cluster = next((c.get('cluster', {}) for c in parsed.get('clusters', []) if c.get('name') == context.get('cluster')), None)
    if cluster is None or not cluster.get('server'):
        raise AccessProvisioningError(f"cluster '{context.get('cluster')}' not found in admin kubeconfig")

    return cluster['server'], cluster.get('certificate-authority-data', '')


class GardenerClusterAccessEnabler:
    """Gets a client for a shoot cluster, using a short-lived admin kubeconfig requested from the garden."""

    def __init__(
        self,
        garden_client: GardenClient,
        shoot: Shoot,
        client_factory: ShootClientFactory = default_shoot_client_factory,
    ):
        self._logger = setup_logger('GardenerClusterAccessEnabler')
        self._garden_client = garden_client
        self._shoot = shoot
        self._client_factory = client_factory

        self.kubeconfig: str | None = None
        self.client: KubernetesClient | None = None

    def init(self) -> None:
        try:
            self.kubeconfig = self._garden_client.request_admin_kubeconfig(self._shoot, TEMPORARY_ADMIN_KUBECONFIG_VALIDITY)
        except ReasonableError as e:
            raise AccessProvisioningError(f'error requesting admin kubeconfig for shoot: {e}') from e

        try:
            self.client = self._client_factory(self.kubeconfig)
        except ReasonableError:
            raise
        except Exception as e:
            raise AccessProvisioningError(f'error creating client for shoot cluster: {e}') from e

        self._logger.debug(f'Admin access to shoot {self._shoot.metadata.namespace}/{self._shoot.metadata.name} initialized')


def create_admin_access(
    enabler: GardenerClusterAccessEnabler, service_account_name: str, namespace: str, now: datetime
) -> APIServerAccess:
    shoot_client = enabler.client
    shoot_client.create_namespace(namespace)
    shoot_client.ensure_service_account(service_account_name, namespace)
    shoot_client.ensure_cluster_role_binding(
        f'{service_account_name}--cluster-admin', 'cluster-admin', service_account_name, namespace
    )
    token, expiration = shoot_client.create_service_account_token(service_account_name, namespace, ADMIN_ACCESS_VALIDITY)

    server, certificate_authority_data = parse_kubeconfig_cluster(enabler.kubeconfig)
    kubeconfig = template_loader.render_template(
        'token-kubeconfig.yaml',
        'kubernetes',
        {
            'server': server,
            'certificate_authority_data': certificate_authority_data,
            'user': service_account_name,
            'token': token,
        },
    )

    return APIServerAccess(
        kubeconfig=kubeconfig,
        creation_timestamp=now,
        expiration_timestamp=expiration or now + ADMIN_ACCESS_VALIDITY,
    )


def get_cluster_access(
    common_config: CompletedCommonConfig,
    existing_access: APIServerAccess | None,
    enabler: GardenerClusterAccessEnabler,
    now: datetime | None = None,
) -> tuple[APIServerAccess, timedelta | None]:
    """
    Returns the admin access for the cluster, renewing it if it is missing or 80% of its validity have passed.

    The second value is the time until the access should be renewed, if known.
    """
    logger = setup_logger('ClusterAccess')
    now = now or datetime.now(UTC)

    access = existing_access
    if needs_renewal(existing_access, now):
        logger.info(f'Creating admin access {common_config.service_account_namespace}/{common_config.admin_service_account_name}')
        try:
            enabler.init()
            access = create_admin_access(
                enabler, common_config.admin_service_account_name, common_config.service_account_namespace, now
            )
        except AccessProvisioningError:
            raise
        except ReasonableError as e:
            raise AccessProvisioningError(f'error creating/renewing admin access for shoot cluster: {e}') from e

    renewal_time = compute_renewal_time(access)
    if renewal_time is None:
        return access, None

    return access, max(renewal_time - now, timedelta(0))
