from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class KubernetesModel(BaseModel):
    """Base for kubernetes-style manifests: camelCase on the wire, unknown fields kept on round trip."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='allow')

    def to_dict(self) -> dict:
        return self.model_dump(mode='json', by_alias=True, exclude_none=True)


class ObjectMeta(KubernetesModel):
    name: str = ''
    namespace: str = ''
    labels: dict[str, str] | None = None
    annotations: dict[str, str] | None = None
    generation: int | None = None
    resource_version: str | None = None
    uid: str | None = None
    creation_timestamp: str | None = None
    deletion_timestamp: str | None = None


class LocalObjectReference(KubernetesModel):
    name: str
