import copy
from abc import ABC, abstractmethod
from typing import Any

from src.api.schemas.apiserver import FailureToleranceType, HighAvailabilityConfig
from src.api.schemas.provider_config import Region
from src.api.schemas.shoot import Provider, ShootTemplate, Worker
from src.core.utils import k8s_name_hash, setup_logger

# quorum-safe number of zones for zone-tolerant worker pools
MAX_HA_ZONES = 3


def worker_differences(a: Worker, b: Worker) -> list[str]:
    """
    Compares two worker pools, ignoring their names.

    Image version, architecture, max surge and max unavailable are only compared if both sides have them set.
    """
    diffs = []
    image_a, image_b = a.machine.image, b.machine.image

    if (image_a.name if image_a else None) != (image_b.name if image_b else None):
        diffs.append(f'machine.image.name: {image_a and image_a.name} != {image_b and image_b.name}')
    if image_a and image_b and image_a.version is not None and image_b.version is not None and image_a.version != image_b.version:
        diffs.append(f'machine.image.version: {image_a.version} != {image_b.version}')
    if a.machine.type != b.machine.type:
        diffs.append(f'machine.type: {a.machine.type} != {b.machine.type}')
    if a.machine.architecture is not None and b.machine.architecture is not None and a.machine.architecture != b.machine.architecture:
        diffs.append(f'machine.architecture: {a.machine.architecture} != {b.machine.architecture}')
    if a.minimum != b.minimum:
        diffs.append(f'minimum: {a.minimum} != {b.minimum}')
    if a.maximum != b.maximum:
        diffs.append(f'maximum: {a.maximum} != {b.maximum}')
    if a.max_surge is not None and b.max_surge is not None and a.max_surge != b.max_surge:
        diffs.append(f'maxSurge: {a.max_surge} != {b.max_surge}')
    if a.max_unavailable is not None and b.max_unavailable is not None and a.max_unavailable != b.max_unavailable:
        diffs.append(f'maxUnavailable: {a.max_unavailable} != {b.max_unavailable}')
    if set(a.zones) != set(b.zones):
        diffs.append(f'zones: [{", ".join(a.zones)}] != [{", ".join(b.zones)}]')

    return diffs


def worker_equals(a: Worker, b: Worker) -> bool:
    return not worker_differences(a, b)


class BaseShootBuilder(ABC):
    name: str

    def __init__(
        self,
        owner_name: str,
        owner_namespace: str,
        shoot_template: ShootTemplate,
        region: Region,
        control_plane_zone: str,
        ha_config: HighAvailabilityConfig | None = None,
    ):
        self._logger = setup_logger(f'{self.name.upper()}ShootBuilder')

        self._owner_name = owner_name
        self._owner_namespace = owner_namespace
        self._shoot_template = shoot_template
        self._region = region
        self._control_plane_zone = control_plane_zone
        self._ha_config = ha_config

    @property
    def control_plane_zone(self) -> str:
        return self._control_plane_zone

    @property
    def worker_zones(self) -> list[str]:
        return self._region.zone_names

    def new_infrastructure_config(self) -> dict[str, Any]:
        return copy.deepcopy(self._shoot_template.spec.provider.infrastructure_config or {})

    @abstractmethod
    def new_control_plane_config(self) -> dict[str, Any]:
        pass

    def worker_name(self, index: int, generation: int) -> str:
        return f'worker-{k8s_name_hash(self._owner_namespace, self._owner_name, str(index), str(generation))[:5]}'

    def desired_workers(self, generation: int) -> list[Worker]:
        workers = [worker.model_copy(deep=True) for worker in self._shoot_template.spec.provider.workers]

        for index, worker in enumerate(workers):
            worker.name = self.worker_name(index, generation)

            if self._ha_config is None:
                worker.zones = [self._control_plane_zone]
                continue

            worker.minimum = min(MAX_HA_ZONES, len(self.worker_zones))
            worker.maximum = max(worker.minimum, worker.maximum)

            if self._ha_config.failure_tolerance_type == FailureToleranceType.ZONE:
                worker.zones = self.worker_zones[:worker.minimum]
            else:
                worker.zones = [self._control_plane_zone]

        return workers

    def adjust_workers(self, provider: Provider, generation: int) -> int:
        """
        Reconciles the worker pools of the given provider with the desired ones.

        Existing pools which match a desired pool (ignoring the name) are kept as they are, desired pools without
        a match are appended, all other existing pools are dropped. Returns the number of appended pools.
        """
        kept = set()
        added = []

        for index, desired in enumerate(self.desired_workers(generation)):
            for existing_index, existing in enumerate(provider.workers):
                if existing_index in kept:
                    continue

                diffs = worker_differences(desired, existing)
                if not diffs:
                    self._logger.debug(f'Keeping existing worker group {existing.name} for desired worker group {index}')
                    kept.add(existing_index)
                    break

                self._logger.debug(f'Existing worker group {existing.name} does not match desired worker group {index}: {diffs}')
            else:
                self._logger.debug(f'Adding new worker group {desired.name}')
                added.append(desired)

        for existing_index, existing in enumerate(provider.workers):
            if existing_index not in kept:
                self._logger.debug(f'Discarding existing worker group {existing.name}')

        provider.workers = [w for i, w in enumerate(provider.workers) if i in kept] + added

        return len(added)
