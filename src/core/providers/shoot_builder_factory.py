from typing import ClassVar

from src.api.schemas.apiserver import HighAvailabilityConfig
from src.api.schemas.provider_config import Region
from src.api.schemas.shoot import ShootTemplate
from src.core.exceptions import ConfigurationError
from src.core.providers.aws_shoot_builder import AWSShootBuilder
from src.core.providers.base_shoot_builder import BaseShootBuilder
from src.core.providers.gcp_shoot_builder import GCPShootBuilder
from src.core.utils import hash_as_number


def determine_control_plane_zone(
    existing_control_plane_config: dict | None, zones: list[str], owner_name: str, owner_namespace: str
) -> str:
    """The zone from an existing control plane config wins, otherwise one of the zones is picked deterministically."""
    zone = (existing_control_plane_config or {}).get('zone')
    if isinstance(zone, str) and zone:
        return zone

    if not zones:
        return ''

    return zones[hash_as_number(owner_name, owner_namespace) % len(zones)]


class ShootBuilderFactory:
    # provider type (lowercase) -> builder class
    _registry: ClassVar[dict[str, type[BaseShootBuilder]]] = {}

    @classmethod
    def register_builder(cls, builder_class: type[BaseShootBuilder]) -> None:
        if builder_class.name in cls._registry:
            raise ValueError(f"Shoot builder for provider '{builder_class.name}' is already registered.")

        cls._registry[builder_class.name] = builder_class

    @classmethod
    def get_registered_providers(cls) -> list[str]:
        return list(cls._registry.keys())

    @classmethod
    def get_builder(
        cls,
        provider_type: str,
        owner_name: str,
        owner_namespace: str,
        shoot_template: ShootTemplate,
        region: Region,
        existing_control_plane_config: dict | None = None,
        ha_config: HighAvailabilityConfig | None = None,
    ) -> BaseShootBuilder:
        builder_class = cls._registry.get(provider_type.lower())
        if builder_class is None:
            raise ConfigurationError(f'unsupported cloud provider: {provider_type}')

        control_plane_zone = determine_control_plane_zone(
            existing_control_plane_config, region.zone_names, owner_name, owner_namespace
        )
        if not control_plane_zone:
            raise ConfigurationError(f"region '{region.name}' does not have any zones")

        return builder_class(owner_name, owner_namespace, shoot_template, region, control_plane_zone, ha_config)


ShootBuilderFactory.register_builder(AWSShootBuilder)
ShootBuilderFactory.register_builder(GCPShootBuilder)
