from dataclasses import dataclass, field

from src.api.schemas.region import Direction, GenericRegion
from src.core.regions.geography import DEFAULT_REGION

_DIRECTIONS = {
    Direction.CENTRAL: 'central',
    Direction.NORTH: 'north',
    Direction.EAST: 'east',
    Direction.SOUTH: 'south',
    Direction.WEST: 'west',
}


@dataclass(frozen=True)
class BasicRegionMapper:
    """
    Maps generic region specifications to provider-specific region regexes.

    In the format string, %R is replaced by the mapped region and %D by the mapped direction,
    e.g. '%R-%D-[0-9]+' maps (europe, central) to 'eu-central-[0-9]+' if europe maps to 'eu'.
    An empty region defaults to europe; an empty direction defaults to central if default_missing_direction is set.
    """

    format: str
    region_mapping: dict[str, str] = field(default_factory=dict)
    direction_mapping: dict[str, str] = field(default_factory=dict)
    default_missing_direction: bool = False

    def map_generic_to_specific(self, region: str, direction: str) -> str:
        region = region or DEFAULT_REGION.name
        mapped_region = self.region_mapping.get(region)
        if mapped_region is None:
            return ''

        if not direction and self.default_missing_direction:
            direction = DEFAULT_REGION.direction
        mapped_direction = self.direction_mapping.get(direction, '')

        return self.format.replace('%R', mapped_region).replace('%D', mapped_direction)


AWS_MAPPER = BasicRegionMapper(
    format='^%R-%D[a-z]{0,4}-[0-9]+[a-z]*$',
    region_mapping={
        GenericRegion.AFRICA: 'af',
        GenericRegion.ASIA: 'ap',
        GenericRegion.AUSTRALIA: 'ap',
        GenericRegion.EUROPE: 'eu',
        GenericRegion.NORTHAMERICA: 'us',
        GenericRegion.SOUTHAMERICA: 'sa',
    },
    direction_mapping=_DIRECTIONS,
    default_missing_direction=True,
)

GCP_MAPPER = BasicRegionMapper(
    format='^%R-%D[a-z]{0,4}[0-9]+(-[a-z]+)?$',
    region_mapping={
        GenericRegion.AFRICA: 'me',  # closest match gcp offers
        GenericRegion.ASIA: 'asia',
        GenericRegion.AUSTRALIA: 'australia',
        GenericRegion.EUROPE: 'europe',
        GenericRegion.NORTHAMERICA: 'us',
        GenericRegion.SOUTHAMERICA: 'southamerica',
    },
    direction_mapping=_DIRECTIONS,
    default_missing_direction=True,
)

_PREDEFINED_MAPPERS = {
    'aws': AWS_MAPPER,
    'gcp': GCP_MAPPER,
}


def get_predefined_mapper(provider_type: str) -> BasicRegionMapper | None:
    return _PREDEFINED_MAPPERS.get(provider_type.lower())
