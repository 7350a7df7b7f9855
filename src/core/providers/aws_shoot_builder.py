import ipaddress
from typing import Any, override

from src.core.exceptions import ConfigurationError, SubnetAllocationError
from src.core.providers.base_shoot_builder import BaseShootBuilder
from src.core.template_loader import template_loader

WORKERS_PREFIX_LENGTH = 19
PUBLIC_PREFIX_LENGTH = 20
INTERNAL_PREFIX_LENGTH = 20

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def next_subnet(last_address: int, prefix_length: int, version: int = 4) -> IPNetwork:
    """Returns the first subnet with the given prefix length which starts after the given address."""
    network_class = ipaddress.IPv4Network if version == 4 else ipaddress.IPv6Network
    max_prefix_length = 32 if version == 4 else 128
    size = 1 << (max_prefix_length - prefix_length)

    start = (last_address // size + 1) * size
    if start + size > 1 << max_prefix_length:
        raise OverflowError(f'no /{prefix_length} subnet left after address {last_address}')

    return network_class((start, prefix_length))


def allocate_zone_subnets(vpc_cidr: str, zones: list[str]) -> list[dict[str, str]]:
    """
    Allocates a workers, a public and an internal subnet per zone, sequentially from the start of the vpc.

    Raises SubnetAllocationError if a subnet does not fit into the vpc.
    """
    try:
        vpc = ipaddress.ip_network(vpc_cidr)
    except ValueError as e:
        raise ConfigurationError(f"networks.vpc.cidr '{vpc_cidr}' is not a valid CIDR: {e}") from e

    result = []
    # pretend the previous subnet ends right before the vpc
    last_address = int(vpc.network_address) - 1

    for zone in zones:
        subnets = {}
        for kind, prefix_length in (
            ('workers', WORKERS_PREFIX_LENGTH),
            ('public', PUBLIC_PREFIX_LENGTH),
            ('internal', INTERNAL_PREFIX_LENGTH),
        ):
            try:
                subnet = next_subnet(last_address, prefix_length, vpc.version)
            except OverflowError as e:
                raise SubnetAllocationError(
                    f"unable to calculate '{kind}' subnet for zone '{zone}': address space exhausted"
                ) from e

            if not subnet.subnet_of(vpc):
                raise SubnetAllocationError(
                    f"unable to calculate '{kind}' subnet for zone '{zone}': "
                    f"vpc CIDR range '{vpc}' does not fully contain computed subnet '{subnet}'"
                )

            subnets[kind] = str(subnet)
            last_address = int(subnet.broadcast_address)

        result.append({'name': zone, **subnets})

    return result


class AWSShootBuilder(BaseShootBuilder):
    name = 'aws'

    @override
    def new_control_plane_config(self) -> dict[str, Any]:
        return template_loader.render_manifest('aws-control-plane-config.yaml', 'gardener')

    @override
    def new_infrastructure_config(self) -> dict[str, Any]:
        infrastructure_config = super().new_infrastructure_config()
        networks = infrastructure_config.setdefault('networks', {})

        if networks.get('zones'):
            return infrastructure_config

        vpc_cidr = (networks.get('vpc') or {}).get('cidr')
        if not vpc_cidr:
            raise ConfigurationError('networks.vpc.cidr is not defined in the AWS infrastructure config')

        networks['zones'] = allocate_zone_subnets(vpc_cidr, self.worker_zones)
        self._logger.debug(f'Allocated subnets for zones {self.worker_zones} in vpc {vpc_cidr}')

        return infrastructure_config
