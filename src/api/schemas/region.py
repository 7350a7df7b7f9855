from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class GenericRegion(StrEnum):
    AFRICA = 'africa'
    ASIA = 'asia'
    AUSTRALIA = 'australia'
    EUROPE = 'europe'
    NORTHAMERICA = 'northamerica'
    SOUTHAMERICA = 'southamerica'


class Direction(StrEnum):
    CENTRAL = 'central'
    NORTH = 'north'
    EAST = 'east'
    SOUTH = 'south'
    WEST = 'west'


class RegionSpecification(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ''
    direction: str = ''
