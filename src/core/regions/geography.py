import re
from collections import deque
from collections.abc import Mapping
from types import MappingProxyType
from typing import Protocol

from src.api.schemas.region import Direction, GenericRegion, RegionSpecification

# ordered: a direction is closest to CENTRAL, then to its two non-opposite directions
DIRECTION_PROXIMITY: Mapping[str, tuple[str, ...]] = MappingProxyType({
    Direction.CENTRAL: (Direction.NORTH, Direction.EAST, Direction.SOUTH, Direction.WEST),
    Direction.NORTH: (Direction.CENTRAL, Direction.WEST, Direction.EAST),
    Direction.EAST: (Direction.CENTRAL, Direction.NORTH, Direction.SOUTH),
    Direction.SOUTH: (Direction.CENTRAL, Direction.EAST, Direction.WEST),
    Direction.WEST: (Direction.CENTRAL, Direction.SOUTH, Direction.NORTH),
})

OPPOSITE_DIRECTION: Mapping[str, str] = MappingProxyType({
    Direction.NORTH: Direction.SOUTH,
    Direction.EAST: Direction.WEST,
    Direction.SOUTH: Direction.NORTH,
    Direction.WEST: Direction.EAST,
})

WORLD: Mapping[str, Mapping[str, str]] = MappingProxyType({
    GenericRegion.AFRICA: MappingProxyType({
        Direction.NORTH: GenericRegion.EUROPE,
        Direction.EAST: GenericRegion.AUSTRALIA,
        Direction.WEST: GenericRegion.SOUTHAMERICA,
    }),
    GenericRegion.ASIA: MappingProxyType({
        Direction.EAST: GenericRegion.NORTHAMERICA,
        Direction.SOUTH: GenericRegion.AUSTRALIA,
        Direction.WEST: GenericRegion.EUROPE,
    }),
    GenericRegion.AUSTRALIA: MappingProxyType({
        Direction.NORTH: GenericRegion.ASIA,
        Direction.EAST: GenericRegion.SOUTHAMERICA,
        Direction.WEST: GenericRegion.AFRICA,
    }),
    GenericRegion.EUROPE: MappingProxyType({
        Direction.EAST: GenericRegion.ASIA,
        Direction.SOUTH: GenericRegion.AFRICA,
        Direction.WEST: GenericRegion.NORTHAMERICA,
    }),
    GenericRegion.NORTHAMERICA: MappingProxyType({
        Direction.EAST: GenericRegion.EUROPE,
        Direction.SOUTH: GenericRegion.SOUTHAMERICA,
        Direction.WEST: GenericRegion.ASIA,
    }),
    GenericRegion.SOUTHAMERICA: MappingProxyType({
        Direction.NORTH: GenericRegion.NORTHAMERICA,
        Direction.EAST: GenericRegion.AFRICA,
        Direction.WEST: GenericRegion.AUSTRALIA,
    }),
})

DEFAULT_REGION = RegionSpecification(name=GenericRegion.EUROPE, direction=Direction.CENTRAL)

_SENTINEL = RegionSpecification(name='DUMMY', direction='DUMMY')


class RegionMapper(Protocol):
    def map_generic_to_specific(self, region: str, direction: str) -> str:
        """Returns a regex matching the provider-specific regions, or an empty string if there is no mapping."""


def sort_by_proximity(
    start: RegionSpecification, prefer_same_region: bool = False, world: Mapping[str, Mapping[str, str]] = WORLD
) -> list[list[RegionSpecification]]:
    """
    Breadth-first search over the world graph, starting at the given region specification.

    Each inner list contains all region specifications with the same distance to the start,
    the outer list is ordered by increasing distance.
    If prefer_same_region is set, all directions of the start region come first, before any other region is considered.
    """
    queue = deque([start, _SENTINEL])
    visited = set()
    same_region_mode = prefer_same_region
    result = []
    current_group = []
    add_sentinel = False

    while True:
        if not queue:
            if not same_region_mode:
                break
            # start region is exhausted, search again to include the other regions
            visited.clear()
            queue.extend((start, _SENTINEL))
            same_region_mode = False

        current = queue.popleft()
        if current == _SENTINEL:
            if current_group:
                result.append(current_group)
                current_group = []
            if add_sentinel:
                queue.append(_SENTINEL)
                add_sentinel = False
            continue

        if not current.direction:
            current = current.model_copy(update={'direction': Direction.CENTRAL})
        if current in visited:
            continue

        add_sentinel = True
        if not (prefer_same_region and not same_region_mode and current.name == start.name):
            current_group.append(current)
        visited.add(current)

        neighbors = world.get(current.name)
        if neighbors is None:
            continue

        for direction in DIRECTION_PROXIMITY.get(current.direction, ()):
            queue.append(RegionSpecification(name=current.name, direction=direction))

        if not same_region_mode and current.direction in neighbors:
            queue.append(RegionSpecification(
                name=neighbors[current.direction], direction=OPPOSITE_DIRECTION[current.direction]
            ))

    return result


def get_closest_regions(
    origin: RegionSpecification, mapper: RegionMapper, available_regions: list[str], prefer_same_region: bool = False
) -> list[str]:
    """
    Returns the available regions which are closest to the origin, sorted alphabetically.

    All returned regions have the same (minimal) distance to the origin. An empty list is returned if no
    available region matches at any distance. Raises re.error if a generated regex is invalid.
    """
    for group in sort_by_proximity(origin, prefer_same_region):
        matches = []
        for region in group:
            regex = mapper.map_generic_to_specific(region.name, region.direction)
            if not regex:
                continue
            matches.extend(filter_regions(available_regions, regex))

        if matches:
            return sorted(matches)

    return []


def filter_regions(regions: list[str], regex: str) -> list[str]:
    try:
        matcher = re.compile(regex)
    except re.error as e:
        raise re.error(f"error compiling regex '{regex}': {e}") from e

    return [region for region in regions if matcher.search(region)]
