from src.api.schemas.apiserver import APIServer
from src.core.exceptions import AuditLogError, ReasonableError
from src.core.kubernetes.garden_client import GardenClient
from src.core.kubernetes.kubernetes_client import KubernetesClient, OperationResult
from src.core.shoots.conversion import AUDITLOG_CREDENTIALS_NAME, AUDITLOG_POLICY_SUFFIX
from src.core.utils import prefix_with_namespace, setup_logger

GARDENER_OPERATION_ANNOTATION = 'gardener.cloud/operation'
GARDENER_OPERATION_RECONCILE = 'reconcile'


def audit_log_policy_name(shoot_name: str) -> str:
    return prefix_with_namespace(shoot_name, AUDITLOG_POLICY_SUFFIX)


def audit_log_credentials_name(shoot_name: str) -> str:
    return prefix_with_namespace(shoot_name, AUDITLOG_CREDENTIALS_NAME)


class AuditLogReconciler:
    """
    Mirrors the audit log policy and credentials of an APIServer from the tenant cluster into the garden.

    Gardener does not notice content changes of referenced resources, so a changed copy results in
    annotations which make gardener reconcile the shoot.
    """

    def __init__(self, garden_client: GardenClient, tenant_client: KubernetesClient | None = None):
        self._logger = setup_logger('AuditLogReconciler')
        self._garden_client = garden_client
        self._tenant_client = tenant_client

    def reconcile(self, apiserver: APIServer, shoot_name: str, shoot_namespace: str) -> dict[str, str] | None:
        gardener_config = apiserver.gardener_config
        if gardener_config is None or gardener_config.audit_log is None:
            self.delete(shoot_name, shoot_namespace)
            return None

        if self._tenant_client is None:
            raise AuditLogError('audit log is enabled, but no client for the tenant cluster is available')

        audit_log = gardener_config.audit_log
        try:
            policy_result = self._copy_policy(apiserver, audit_log.policy_ref.name, shoot_name, shoot_namespace)
            credentials_result = self._copy_credentials(
                apiserver, audit_log.secret_ref.name, shoot_name, shoot_namespace
            )
        except AuditLogError:
            raise
        except ReasonableError as e:
            self._logger.exception(f'Error mirroring audit log resources for shoot {shoot_namespace}/{shoot_name}', exc_info=False)
            raise AuditLogError(f'error mirroring audit log resources: {e}') from e

        if policy_result != OperationResult.UNCHANGED or credentials_result != OperationResult.UNCHANGED:
            self._logger.info(f'Audit log resources of shoot {shoot_namespace}/{shoot_name} changed, requesting reconcile')
            return {GARDENER_OPERATION_ANNOTATION: GARDENER_OPERATION_RECONCILE}

        return None

    def delete(self, shoot_name: str, shoot_namespace: str) -> None:
        try:
            self._garden_client.delete_config_map(audit_log_policy_name(shoot_name), shoot_namespace)
            self._garden_client.delete_secret(audit_log_credentials_name(shoot_name), shoot_namespace)
        except ReasonableError as e:
            raise AuditLogError(f'error deleting audit log resources: {e}') from e

    def _copy_policy(self, apiserver: APIServer, source_name: str, shoot_name: str, shoot_namespace: str) -> OperationResult:
        data = self._tenant_client.get_config_map(source_name, apiserver.namespace)
        if data is None:
            raise AuditLogError(f"audit log policy configmap '{apiserver.namespace}/{source_name}' not found")

        return self._garden_client.create_or_update_config_map(audit_log_policy_name(shoot_name), shoot_namespace, data)

    def _copy_credentials(
        self, apiserver: APIServer, source_name: str, shoot_name: str, shoot_namespace: str
    ) -> OperationResult:
        secret = self._tenant_client.get_secret(source_name, apiserver.namespace)
        if secret is None:
            raise AuditLogError(f"audit log credentials secret '{apiserver.namespace}/{source_name}' not found")

        data, secret_type = secret
        return self._garden_client.create_or_update_secret(
            audit_log_credentials_name(shoot_name), shoot_namespace, data, secret_type
        )
