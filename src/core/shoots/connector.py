from src.api.schemas.apiserver import APIServer, APIServerStatus, GardenerStatus
from src.api.schemas.shoot import Shoot
from src.core.access.cluster_access import (
    GardenerClusterAccessEnabler,
    ShootClientFactory,
    default_shoot_client_factory,
    get_cluster_access,
)
from src.core.config import SHOOT_NOT_READY_REQUEUE_INTERVAL
from src.core.exceptions import (
    ConfigurationError,
    ConflictError,
    GardenClusterError,
    Reason,
    ReasonableError,
    ReasonableErrorList,
    ShootIdentificationError,
)
from src.core.kubernetes.garden_client import DELETION_CONFIRMATION_ANNOTATION
from src.core.kubernetes.kubernetes_client import KubernetesClient
from src.core.landscapes.configuration import CompletedAPIServerProviderConfiguration, CompletedGardenerConfiguration
from src.core.shoots.auditlog import AuditLogReconciler
from src.core.shoots.conversion import BACK_REFERENCE_LABEL_NAME, BACK_REFERENCE_LABEL_NAMESPACE, ShootConverter
from src.core.shoots.reconcile_result import ReconcileResult, is_shoot_ready, last_operation_message
from src.core.utils import setup_logger

ADVERTISED_ADDRESS_EXTERNAL = 'external'
ADVERTISED_ADDRESS_INTERNAL = 'internal'
ADVERTISED_ADDRESS_SERVICE_ACCOUNT_ISSUER = 'service-account-issuer'

# metadata which only makes sense on the live object
_STRIPPED_METADATA_FIELDS = (
    'finalizers',
    'resourceVersion',
    'creationTimestamp',
    'generateName',
    'generation',
    'managedFields',
    'deletionGracePeriodSeconds',
    'deletionTimestamp',
    'ownerReferences',
)


def inject_shoot_manifest(status: APIServerStatus, shoot: Shoot) -> None:
    """Stores the shoot manifest, without status and server-side metadata, in the APIServer status."""
    manifest = shoot.to_dict()
    manifest.pop('status', None)
    for field in _STRIPPED_METADATA_FIELDS:
        manifest['metadata'].pop(field, None)

    status.gardener_status = GardenerStatus(shoot=manifest)


def _failed(error: ReasonableError, reason: str, update_status=None) -> ReconcileResult:
    return ReconcileResult(
        healthy=False, reason=error.reason or reason, message=str(error), update_status=update_status, error=error
    )


class GardenerConnector:
    """Creates, updates and deletes the gardener shoot belonging to an APIServer."""

    def __init__(
        self,
        provider_config: CompletedAPIServerProviderConfiguration,
        shoot_client_factory: ShootClientFactory = default_shoot_client_factory,
    ):
        if provider_config.gardener_config is None:
            raise ConfigurationError('gardener configuration is required for the gardener connector')

        self._logger = setup_logger('GardenerConnector')
        self._provider_config = provider_config
        self._shoot_client_factory = shoot_client_factory

    def _converter(self, apiserver: APIServer) -> ShootConverter:
        if apiserver.spec.type not in self._provider_config.configured_types:
            raise ConfigurationError(f"APIServer type '{apiserver.spec.type}' is not configured")

        return ShootConverter(apiserver.spec.type, self._provider_config.gardener_config)

    def get_shoot(
        self, apiserver: APIServer, configuration: CompletedGardenerConfiguration, in_deletion: bool = False
    ) -> Shoot | None:
        """
        Returns the shoot belonging to the APIServer, or None if there is none.

        The reference in the APIServer status is preferred. Without it, the shoot is searched by its back-reference labels.
        A referenced shoot which does not exist anymore is only accepted as absent during deletion.
        """
        garden_client = configuration.client
        gardener_status = apiserver.status.gardener_status

        if gardener_status is not None and gardener_status.shoot:
            metadata = gardener_status.shoot.get('metadata') or {}
            name, namespace = metadata.get('name'), metadata.get('namespace')
            if not name or not namespace:
                raise ShootIdentificationError('shoot reference in APIServer status is missing name or namespace')

            self._logger.debug(f'Found shoot reference {namespace}/{name}')
            shoot = garden_client.get_shoot(name, namespace)
            if shoot is None and not in_deletion:
                raise GardenClusterError(f"shoot '{namespace}/{name}' referenced in APIServer status not found")

            return shoot

        self._logger.debug('No reference to shoot found, searching for shoot with matching back-reference')
        shoots = garden_client.list_shoots(
            configuration.project_namespace,
            {BACK_REFERENCE_LABEL_NAME: apiserver.name, BACK_REFERENCE_LABEL_NAMESPACE: apiserver.namespace},
        )
        if len(shoots) > 1:
            raise ShootIdentificationError(
                f"found {len(shoots)} shoots referencing APIServer '{apiserver.namespace}/{apiserver.name}', "
                'there should never be more than one'
            )

        return shoots[0] if shoots else None

    def handle_create_or_update(
        self, apiserver: APIServer, tenant_client: KubernetesClient | None = None
    ) -> ReconcileResult:
        try:
            converter = self._converter(apiserver)
            configuration = converter.resolve_configuration(apiserver)
        except ConfigurationError as e:
            self._logger.exception(f'Configuration error for APIServer {apiserver.namespace}/{apiserver.name}: {e}', exc_info=False)
            return _failed(e, Reason.CONFIGURATION_PROBLEM)

        try:
            shoot = self.get_shoot(apiserver, configuration)
        except ReasonableError as e:
            self._logger.exception(f'Error checking for corresponding shoot: {e}', exc_info=False)
            shoot = None

        # audit log problems are reported, but do not block the shoot reconciliation
        audit_log_error = None
        audit_log_annotations = None
        try:
            shoot_name = converter.get_shoot_name(shoot, apiserver, configuration)
            shoot_namespace = shoot.metadata.namespace if shoot is not None else converter.get_shoot_namespace(apiserver, configuration)
            audit_log_annotations = AuditLogReconciler(configuration.client, tenant_client).reconcile(
                apiserver, shoot_name, shoot_namespace
            )
        except ReasonableError as e:
            self._logger.exception(f'Error reconciling audit log resources: {e}', exc_info=False)
            audit_log_error = e

        try:
            desired = converter.convert(apiserver, shoot)
        except ReasonableError as e:
            self._logger.exception(f'Error converting APIServer to shoot: {e}', exc_info=False)
            error = ReasonableErrorList([e.with_reason(e.reason or Reason.CONFIGURATION_PROBLEM), audit_log_error])
            return _failed(error, Reason.CONFIGURATION_PROBLEM)

        if shoot is not None and audit_log_annotations:
            desired.metadata.annotations.update(audit_log_annotations)

        def update_manifest(status: APIServerStatus) -> None:
            inject_shoot_manifest(status, desired)

        try:
            if shoot is None:
                self._logger.info(f'No existing shoot found, creating {desired.metadata.namespace}/{desired.metadata.name}')
                current = configuration.client.create_shoot(desired)
            else:
                self._logger.debug(f'Updating existing shoot {desired.metadata.namespace}/{desired.metadata.name}')
                current = configuration.client.update_shoot(desired)
        except ConflictError as e:
            return ReconcileResult(
                healthy=False,
                reason=Reason.GARDEN_CLUSTER_INTERACTION_PROBLEM,
                message=str(e),
                requeue=True,
                update_status=update_manifest,
            )
        except ReasonableError as e:
            self._logger.exception(f'Error writing shoot: {e}', exc_info=False)
            return _failed(ReasonableErrorList([e, audit_log_error]), Reason.GARDEN_CLUSTER_INTERACTION_PROBLEM, update_manifest)

        shoot_key = f'{current.metadata.namespace}/{current.metadata.name}'
        shoot_ready, not_ready_message = (False, 'Shoot has just been created.') if shoot is None else is_shoot_ready(current)

        admin_access = None
        requeue_after = SHOOT_NOT_READY_REQUEUE_INTERVAL
        if shoot_ready:
            self._logger.debug(f'Shoot {shoot_key} is ready')
            enabler = GardenerClusterAccessEnabler(configuration.client, current, self._shoot_client_factory)
            try:
                admin_access, requeue_after = get_cluster_access(
                    self._provider_config.common, apiserver.status.admin_access, enabler
                )
            except ReasonableError as e:
                self._logger.exception(f'Error creating kubeconfigs for shoot {shoot_key}: {e}', exc_info=False)
                error = ReasonableErrorList(
                    [e.with_reason(Reason.APISERVER_ACCESS_PROVISIONING_NOT_POSSIBLE), audit_log_error]
                )
                return _failed(error, Reason.APISERVER_ACCESS_PROVISIONING_NOT_POSSIBLE, update_manifest)
        else:
            self._logger.debug(f'Shoot {shoot_key} is not ready yet, requeueing APIServer')

        def update_status(status: APIServerStatus) -> None:
            inject_shoot_manifest(status, current)

            for address in current.status.advertised_addresses if current.status is not None else []:
                if address.name == ADVERTISED_ADDRESS_EXTERNAL:
                    status.endpoint = address.url
                elif address.name == ADVERTISED_ADDRESS_SERVICE_ACCOUNT_ISSUER:
                    status.service_account_issuer = address.url
                elif address.name != ADVERTISED_ADDRESS_INTERNAL:
                    self._logger.warning(f"Unexpected endpoint name '{address.name}' in shoot's advertised addresses")

            if admin_access is not None:
                status.admin_access = admin_access

        messages = [m for m in (last_operation_message(current), '' if shoot_ready else not_ready_message) if m]

        if audit_log_error is not None:
            messages.append(str(audit_log_error))
            return ReconcileResult(
                healthy=False,
                reason=audit_log_error.reason or Reason.AUDIT_LOG_PROBLEM,
                message='\n'.join(messages),
                requeue_after=requeue_after,
                update_status=update_status,
                error=ReasonableErrorList([audit_log_error]),
            )

        return ReconcileResult(
            healthy=shoot_ready,
            reason='' if shoot_ready else Reason.WAITING_FOR_GARDENER_SHOOT,
            message='\n'.join(messages),
            requeue_after=requeue_after,
            update_status=update_status,
        )

    def handle_delete(self, apiserver: APIServer, tenant_client: KubernetesClient | None = None) -> ReconcileResult:
        try:
            converter = self._converter(apiserver)
            configuration = converter.resolve_configuration(apiserver)
        except ConfigurationError as e:
            return _failed(e, Reason.CONFIGURATION_PROBLEM)

        try:
            shoot = self.get_shoot(apiserver, configuration, in_deletion=True)
        except ReasonableError as e:
            self._logger.exception(f'Error fetching corresponding shoot: {e}', exc_info=False)
            return _failed(e, Reason.GARDEN_CLUSTER_INTERACTION_PROBLEM)

        if shoot is None:
            self._logger.debug(f'Shoot of APIServer {apiserver.namespace}/{apiserver.name} has been deleted')

            def clear_status(status: APIServerStatus) -> None:
                status.admin_access = None
                if status.gardener_status is not None:
                    status.gardener_status.shoot = None

            return ReconcileResult(healthy=True, message='Shoot has been deleted.', update_status=clear_status)

        try:
            AuditLogReconciler(configuration.client, tenant_client).delete(shoot.metadata.name, shoot.metadata.namespace)
        except ReasonableError as e:
            return _failed(e, Reason.AUDIT_LOG_PROBLEM)

        if shoot.metadata.deletion_timestamp is None:
            self._logger.info(f'Deleting shoot {shoot.metadata.namespace}/{shoot.metadata.name}')
            try:
                configuration.client.annotate_shoot(shoot, {DELETION_CONFIRMATION_ANNOTATION: 'true'})
                configuration.client.delete_shoot(shoot)
            except ReasonableError as e:
                self._logger.exception(f'Error deleting shoot: {e}', exc_info=False)
                return _failed(e, Reason.GARDEN_CLUSTER_INTERACTION_PROBLEM)

        return ReconcileResult(
            healthy=False,
            reason=Reason.WAITING_FOR_GARDENER_SHOOT,
            message=last_operation_message(shoot) or 'Waiting for shoot cluster to be deleted.',
            requeue_after=SHOOT_NOT_READY_REQUEUE_INTERVAL,
        )
