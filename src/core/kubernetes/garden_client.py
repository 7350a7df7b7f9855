import base64
from datetime import timedelta

from kubernetes.client import ApiException

from src.api.schemas.shoot import GARDENER_API_GROUP, GARDENER_API_VERSION, Shoot
from src.core.exceptions import ConflictError, GardenClusterError
from src.core.kubernetes.kubernetes_client import KubernetesClient

DELETION_CONFIRMATION_ANNOTATION = 'confirmation.gardener.cloud/deletion'


class GardenClient(KubernetesClient):
    """Client for a Gardener landscape, adds access to projects, cloudprofiles and shoots."""

    error_class = GardenClusterError

    def _get_cluster_object(self, plural: str, name: str) -> dict:
        try:
            return self._clients.custom_objects.get_cluster_custom_object(
                GARDENER_API_GROUP, GARDENER_API_VERSION, plural, name, _request_timeout=self._request_timeout
            )
        except ApiException as e:
            raise self._error(f"Error fetching {plural} '{name}'", e) from e

    def get_project(self, name: str) -> dict:
        return self._get_cluster_object('projects', name)

    def get_cloud_profile(self, name: str) -> dict:
        return self._get_cluster_object('cloudprofiles', name)

    def get_shoot(self, name: str, namespace: str) -> Shoot | None:
        try:
            manifest = self._clients.custom_objects.get_namespaced_custom_object(
                GARDENER_API_GROUP, GARDENER_API_VERSION, namespace, 'shoots', name,
                _request_timeout=self._request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise self._error(f"Error fetching shoot '{namespace}/{name}'", e) from e

        return Shoot.model_validate(manifest)

    def list_shoots(self, namespace: str, labels: dict[str, str]) -> list[Shoot]:
        label_selector = ','.join(f'{k}={v}' for k, v in sorted(labels.items()))

        try:
            response = self._clients.custom_objects.list_namespaced_custom_object(
                GARDENER_API_GROUP, GARDENER_API_VERSION, namespace, 'shoots',
                label_selector=label_selector, _request_timeout=self._request_timeout,
            )
        except ApiException as e:
            raise self._error(f"Error listing shoots in namespace '{namespace}'", e) from e

        return [Shoot.model_validate(item) for item in response.get('items', [])]

    def create_shoot(self, shoot: Shoot) -> Shoot:
        namespace = shoot.metadata.namespace

        try:
            manifest = self._clients.custom_objects.create_namespaced_custom_object(
                GARDENER_API_GROUP, GARDENER_API_VERSION, namespace, 'shoots', shoot.to_dict(),
                _request_timeout=self._request_timeout,
            )
        except ApiException as e:
            raise self._error(f"Error creating shoot '{namespace}/{shoot.metadata.name}'", e) from e

        self._logger.info(f'Shoot {namespace}/{shoot.metadata.name} created')
        return Shoot.model_validate(manifest)

    def update_shoot(self, shoot: Shoot) -> Shoot:
        namespace, name = shoot.metadata.namespace, shoot.metadata.name

        try:
            manifest = self._clients.custom_objects.replace_namespaced_custom_object(
                GARDENER_API_GROUP, GARDENER_API_VERSION, namespace, 'shoots', name, shoot.to_dict(),
                _request_timeout=self._request_timeout,
            )
        except ApiException as e:
            if e.status == 409:
                self._logger.warning(f'Conflict while updating shoot {namespace}/{name}')
                raise ConflictError(f"conflict while updating shoot '{namespace}/{name}': {e.reason}") from e
            raise self._error(f"Error updating shoot '{namespace}/{name}'", e) from e

        self._logger.info(f'Shoot {namespace}/{name} updated')
        return Shoot.model_validate(manifest)

    def annotate_shoot(self, shoot: Shoot, annotations: dict[str, str]) -> None:
        namespace, name = shoot.metadata.namespace, shoot.metadata.name

        try:
            self._clients.custom_objects.patch_namespaced_custom_object(
                GARDENER_API_GROUP, GARDENER_API_VERSION, namespace, 'shoots', name,
                {'metadata': {'annotations': annotations}},
                _content_type='application/merge-patch+json', _request_timeout=self._request_timeout,
            )
        except ApiException as e:
            raise self._error(f"Error annotating shoot '{namespace}/{name}'", e) from e

    def delete_shoot(self, shoot: Shoot) -> None:
        namespace, name = shoot.metadata.namespace, shoot.metadata.name

        try:
            self._clients.custom_objects.delete_namespaced_custom_object(
                GARDENER_API_GROUP, GARDENER_API_VERSION, namespace, 'shoots', name,
                _request_timeout=self._request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise self._error(f"Error deleting shoot '{namespace}/{name}'", e) from e

        self._logger.info(f'Shoot {namespace}/{name} deleted')

    def request_admin_kubeconfig(self, shoot: Shoot, validity: timedelta) -> str:
        """Requests a short-lived admin kubeconfig via the shoots/adminkubeconfig subresource."""
        namespace, name = shoot.metadata.namespace, shoot.metadata.name
        body = {
            'apiVersion': 'authentication.gardener.cloud/v1alpha1',
            'kind': 'AdminKubeconfigRequest',
            'spec': {'expirationSeconds': int(validity.total_seconds())},
        }

        try:
            response = self._clients.api.call_api(
                f'/apis/{GARDENER_API_GROUP}/{GARDENER_API_VERSION}/namespaces/{{namespace}}/shoots/{{name}}/adminkubeconfig',
                'POST',
                path_params={'namespace': namespace, 'name': name},
                header_params={'Accept': 'application/json', 'Content-Type': 'application/json'},
                body=body,
                auth_settings=['BearerToken'],
                response_type='object',
                _return_http_data_only=True,
                _request_timeout=self._request_timeout,
            )
        except ApiException as e:
            raise self._error(f"Error requesting admin kubeconfig for shoot '{namespace}/{name}'", e) from e

        return base64.b64decode(response['status']['kubeconfig']).decode('utf-8')
