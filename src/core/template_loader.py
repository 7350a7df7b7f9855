from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined, Template, meta
from jinja2.exceptions import TemplateNotFound
from src.core.utils import setup_logger

DEFAULT_TEMPLATES_DIR = Path(__file__).parent.resolve() / 'templates'


class TemplateLoader:
    """
    Renders the bundled manifest templates.

    Templates live in one subfolder per module ('kubernetes' for plain cluster objects, 'gardener' for provider
    extension configs). Every variable used by a template has to be passed in explicitly.
    """

    _TEMPLATE_SUBFOLDERS = ('kubernetes', 'gardener')

    def __init__(self, templates_dir: Path | None = None) -> None:
        self._logger = setup_logger('TemplateLoader')
        self._templates_dir = templates_dir or DEFAULT_TEMPLATES_DIR

        if not self._templates_dir.is_dir():
            raise FileNotFoundError(f'Templates directory not found at: {self._templates_dir}.')

        # rendered output is YAML, not HTML
        self._environment = Environment(
            loader=FileSystemLoader(self._templates_dir), autoescape=False, undefined=StrictUndefined  # noqa: S701
        )

    def _validate_template_module(self, template_module: str | None) -> str:
        if template_module is not None and template_module not in self._TEMPLATE_SUBFOLDERS:
            raise ValueError(
                f"Invalid template module: '{template_module}'. Must be one of {self._TEMPLATE_SUBFOLDERS} or None."
            )

        return './' if template_module is None else template_module

    def _load(self, template_name: str, template_module: str | None) -> tuple[str, Template]:
        template_path = f'{self._validate_template_module(template_module)}/{template_name}'

        try:
            return template_path, self._environment.get_template(template_path)
        except TemplateNotFound as e:
            self._logger.exception(f"Template '{template_path}' not found in {self._templates_dir}", exc_info=False)
            raise TemplateNotFound(f"Template '{template_path}' not found.") from e

    def _missing_variables(self, template_path: str, values: dict[str, Any]) -> set[str]:
        source, _, _ = self._environment.loader.get_source(self._environment, template_path)

        return meta.find_undeclared_variables(self._environment.parse(source)) - values.keys()

    def get_template(self, template_name: str, template_module: str | None = None) -> Path:
        _, template = self._load(template_name, template_module)

        return Path(template.filename)

    def render_template(
        self, template_name: str, template_module: str | None = None, values: dict[str, Any] | None = None
    ) -> str:
        values = {} if values is None else values
        if not isinstance(values, dict):
            raise TypeError('Template values must be a dictionary')

        template_path, template = self._load(template_name, template_module)

        missing = self._missing_variables(template_path, values)
        if missing:
            raise ValueError(
                f"There are variables in the template '{template_path}' "
                f"that are not provided in the 'values' dictionary: {missing}"
            )

        return template.render(**values)

    def render_manifest(
        self, template_name: str, template_module: str | None = None, values: dict[str, Any] | None = None
    ) -> dict:
        """Renders a YAML template and parses it into a dictionary."""
        return yaml.safe_load(self.render_template(template_name, template_module, values))


template_loader = TemplateLoader()
