import json
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Self

import yaml
from kubernetes import client, config
from kubernetes.client import ApiException
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from src.core.config import KUBERNETES_REQUEST_TIMEOUT
from src.core.exceptions import NamespaceTerminatedException, ReasonableError, TenantClusterError
from src.core.utils import setup_logger

MANAGED_LABEL = 'apiserver.openmcp.cloud/managed'


class OperationResult(StrEnum):
    UNCHANGED = 'unchanged'
    CREATED = 'created'
    UPDATED = 'updated'


class KubernetesClients:
    def __init__(self, api_client: client.ApiClient):
        self.api = api_client
        self.core = client.CoreV1Api(api_client)  # Namespaces, ConfigMaps, Secrets, ServiceAccounts
        self.rbac = client.RbacAuthorizationV1Api(api_client)  # Role-Based Access Control
        self.custom_objects = client.CustomObjectsApi(api_client)  # Custom Resources (CRDs)


class KubernetesClient:
    """
    Thin wrapper around the kubernetes API of one cluster.

    Errors other than 'not found' are raised as error_class, so callers can tell which cluster failed.
    """

    error_class: type[ReasonableError] = TenantClusterError

    def __init__(self, api_client: client.ApiClient, error_class: type[ReasonableError] | None = None):
        self._logger = setup_logger(self.__class__.__name__)
        self._clients = KubernetesClients(api_client)
        self._request_timeout = KUBERNETES_REQUEST_TIMEOUT

        if error_class is not None:
            self.error_class = error_class

    @classmethod
    def from_kubeconfig(cls, kubeconfig: str, error_class: type[ReasonableError] | None = None) -> Self:
        return cls(config.new_client_from_config_dict(yaml.safe_load(kubeconfig)), error_class)

    def _error(self, msg: str, exception: ApiException) -> ReasonableError:
        self._logger.exception(f'{msg}: {exception.status} {exception.reason}', exc_info=False)
        return self.error_class(f'{msg}: {exception.reason}')

    def _parse_kubernetes_api_exception(self, exception: ApiException) -> tuple[str, str]:
        try:
            body = json.loads(exception.body)
        except (TypeError, ValueError):
            return exception.reason or '', str(exception.body or '')

        self._logger.debug(f'Original reason: {exception.reason}')

        return body.get('reason', ''), body.get('message', '')

    def get_config_map(self, name: str, namespace: str) -> dict[str, str] | None:
        try:
            config_map = self._clients.core.read_namespaced_config_map(
                name, namespace, _request_timeout=self._request_timeout
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise self._error(f"Error retrieving configmap '{namespace}/{name}'", e) from e

        return config_map.data or {}

    def get_secret(self, name: str, namespace: str) -> tuple[dict[str, str], str] | None:
        """Returns the base64 encoded secret data and the secret type, or None if the secret does not exist."""
        try:
            secret = self._clients.core.read_namespaced_secret(name, namespace, _request_timeout=self._request_timeout)
        except ApiException as e:
            if e.status == 404:
                return None
            raise self._error(f"Error retrieving secret '{namespace}/{name}'", e) from e

        return secret.data or {}, secret.type or 'Opaque'

    def create_or_update_config_map(self, name: str, namespace: str, data: dict[str, str]) -> OperationResult:
        body = client.V1ConfigMap(
            api_version='v1', kind='ConfigMap', metadata=client.V1ObjectMeta(name=name, namespace=namespace), data=data
        )

        try:
            try:
                existing = self._clients.core.read_namespaced_config_map(
                    name, namespace, _request_timeout=self._request_timeout
                )
            except ApiException as e:
                if e.status != 404:
                    raise
                self._clients.core.create_namespaced_config_map(namespace, body, _request_timeout=self._request_timeout)
                self._logger.info(f'Configmap {namespace}/{name} created')
                return OperationResult.CREATED

            if (existing.data or {}) == data:
                return OperationResult.UNCHANGED

            body.metadata.resource_version = existing.metadata.resource_version
            self._clients.core.replace_namespaced_config_map(
                name, namespace, body, _request_timeout=self._request_timeout
            )
        except ApiException as e:
            raise self._error(f"Error writing configmap '{namespace}/{name}'", e) from e

        self._logger.info(f'Configmap {namespace}/{name} updated')
        return OperationResult.UPDATED

    def create_or_update_secret(
        self, name: str, namespace: str, data: dict[str, str], secret_type: str = 'Opaque'
    ) -> OperationResult:
        body = client.V1Secret(
            api_version='v1',
            kind='Secret',
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            data=data,
            type=secret_type,
        )

        try:
            try:
                existing = self._clients.core.read_namespaced_secret(
                    name, namespace, _request_timeout=self._request_timeout
                )
            except ApiException as e:
                if e.status != 404:
                    raise
                self._clients.core.create_namespaced_secret(namespace, body, _request_timeout=self._request_timeout)
                self._logger.info(f'Secret {namespace}/{name} created')
                return OperationResult.CREATED

            if (existing.data or {}) == data and (existing.type or 'Opaque') == secret_type:
                return OperationResult.UNCHANGED

            if (existing.type or 'Opaque') != secret_type:
                # the secret type is immutable
                self._clients.core.delete_namespaced_secret(name, namespace, _request_timeout=self._request_timeout)
                self._clients.core.create_namespaced_secret(namespace, body, _request_timeout=self._request_timeout)
            else:
                body.metadata.resource_version = existing.metadata.resource_version
                self._clients.core.replace_namespaced_secret(
                    name, namespace, body, _request_timeout=self._request_timeout
                )
        except ApiException as e:
            raise self._error(f"Error writing secret '{namespace}/{name}'", e) from e

        self._logger.info(f'Secret {namespace}/{name} updated')
        return OperationResult.UPDATED

    def delete_config_map(self, name: str, namespace: str) -> None:
        try:
            self._clients.core.delete_namespaced_config_map(name, namespace, _request_timeout=self._request_timeout)
            self._logger.info(f'Configmap {namespace}/{name} deleted')
        except ApiException as e:
            if e.status != 404:
                raise self._error(f"Error deleting configmap '{namespace}/{name}'", e) from e

    def delete_secret(self, name: str, namespace: str) -> None:
        try:
            self._clients.core.delete_namespaced_secret(name, namespace, _request_timeout=self._request_timeout)
            self._logger.info(f'Secret {namespace}/{name} deleted')
        except ApiException as e:
            if e.status != 404:
                raise self._error(f"Error deleting secret '{namespace}/{name}'", e) from e

    @retry(retry=retry_if_exception_type(NamespaceTerminatedException), wait=wait_fixed(10), stop=stop_after_attempt(10), reraise=True)
    def create_namespace(self, namespace: str) -> None:
        try:
            self._clients.core.create_namespace(
                client.V1Namespace(metadata=client.V1ObjectMeta(name=namespace)), _request_timeout=self._request_timeout
            )
            self._logger.info(f'Namespace {namespace} created')
        except ApiException as e:
            reason, message = self._parse_kubernetes_api_exception(e)
            self._logger.debug(f'Reason: {reason}')
            self._logger.debug(f'Body: {message}')
            if reason in ('AlreadyExists', 'NamespaceTerminating'):
                if 'object is being deleted' in message or 'is being terminated' in message:
                    self._logger.warning('Namespace is being deleted, retrying...')
                    raise NamespaceTerminatedException from e

                self._logger.debug(f'Namespace {namespace} already exists, skipping creation')
                return

            raise self._error(f"Error creating namespace '{namespace}'", e) from e

    def ensure_service_account(self, name: str, namespace: str) -> None:
        """Creates the service account, failing if an account with the same name exists which is not managed by us."""
        try:
            existing = self._clients.core.read_namespaced_service_account(
                name, namespace, _request_timeout=self._request_timeout
            )
        except ApiException as e:
            if e.status != 404:
                raise self._error(f"Error retrieving serviceaccount '{namespace}/{name}'", e) from e
            existing = None

        if existing is not None:
            if (existing.metadata.labels or {}).get(MANAGED_LABEL) != 'true':
                raise self.error_class(
                    f"serviceaccount '{namespace}/{name}' already exists but is not managed by this controller"
                )
            return

        body = client.V1ServiceAccount(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace, labels={MANAGED_LABEL: 'true'})
        )
        try:
            self._clients.core.create_namespaced_service_account(namespace, body, _request_timeout=self._request_timeout)
        except ApiException as e:
            raise self._error(f"Error creating serviceaccount '{namespace}/{name}'", e) from e

        self._logger.info(f'Serviceaccount {namespace}/{name} created')

    def ensure_cluster_role_binding(
        self, name: str, cluster_role: str, service_account_name: str, service_account_namespace: str
    ) -> None:
        body = client.V1ClusterRoleBinding(
            metadata=client.V1ObjectMeta(name=name, labels={MANAGED_LABEL: 'true'}),
            role_ref=client.V1RoleRef(api_group='rbac.authorization.k8s.io', kind='ClusterRole', name=cluster_role),
            subjects=[
                client.RbacV1Subject(kind='ServiceAccount', name=service_account_name, namespace=service_account_namespace)
            ],
        )

        try:
            try:
                existing = self._clients.rbac.read_cluster_role_binding(name, _request_timeout=self._request_timeout)
            except ApiException as e:
                if e.status != 404:
                    raise
                self._clients.rbac.create_cluster_role_binding(body, _request_timeout=self._request_timeout)
                self._logger.info(f'Clusterrolebinding {name} created')
                return

            if (existing.metadata.labels or {}).get(MANAGED_LABEL) != 'true':
                raise self.error_class(f"clusterrolebinding '{name}' already exists but is not managed by this controller")

            body.metadata.resource_version = existing.metadata.resource_version
            self._clients.rbac.replace_cluster_role_binding(name, body, _request_timeout=self._request_timeout)
        except ApiException as e:
            raise self._error(f"Error writing clusterrolebinding '{name}'", e) from e

    def create_service_account_token(self, name: str, namespace: str, validity: timedelta) -> tuple[str, datetime]:
        body = client.AuthenticationV1TokenRequest(
            spec=client.V1TokenRequestSpec(audiences=[], expiration_seconds=int(validity.total_seconds()))
        )

        try:
            response = self._clients.core.create_namespaced_service_account_token(
                name, namespace, body, _request_timeout=self._request_timeout
            )
        except ApiException as e:
            raise self._error(f"Error requesting token for serviceaccount '{namespace}/{name}'", e) from e

        return response.status.token, response.status.expiration_timestamp
