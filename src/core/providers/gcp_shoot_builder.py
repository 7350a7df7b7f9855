from typing import Any, override

from src.core.providers.base_shoot_builder import BaseShootBuilder
from src.core.template_loader import template_loader


class GCPShootBuilder(BaseShootBuilder):
    name = 'gcp'

    @override
    def new_control_plane_config(self) -> dict[str, Any]:
        return template_loader.render_manifest(
            'gcp-control-plane-config.yaml', 'gardener', {'zone': self.control_plane_zone}
        )
