import dataclasses

import pytest
from conftest import (
    PROJECT,
    PROJECT_NAMESPACE,
    make_apiserver,
    make_configuration,
    make_multi_configuration,
    make_region,
    make_shoot_template,
)

from src.api.schemas.apiserver import APIServerType
from src.core.exceptions import ConfigurationError, Reason, SubnetAllocationError
from src.core.shoots.conversion import (
    AUDITLOG_CREDENTIALS_NAME,
    AUDITLOG_EXTENSION_TYPE,
    BACK_REFERENCE_LABEL_NAME,
    BACK_REFERENCE_LABEL_NAMESPACE,
    BACK_REFERENCE_LABEL_PROJECT,
    BACK_REFERENCE_LABEL_WORKSPACE,
    ENFORCED_ANNOTATIONS,
    OIDC_EXTENSION_TYPE,
    WORKER_GENERATION_ANNOTATION,
    ShootConverter,
    compute_k8s_version,
    compute_shoot_name,
)
from src.core.utils import hash_as_number

AUDIT_LOG = {
    "type": "standard",
    "tenantID": "tenant-1",
    "serviceURL": "https://auditlog.example.com",
    "policyRef": {"name": "audit-policy"},
    "secretRef": {"name": "audit-credentials"},
}


@pytest.fixture
def converter(gardener_config):
    return ShootConverter(APIServerType.GARDENER_DEDICATED, gardener_config)


def converter_for(configuration, apiserver_type=APIServerType.GARDENER_DEDICATED):
    return ShootConverter(apiserver_type, make_multi_configuration(configuration))


class TestComputeK8sVersion:
    @pytest.mark.parametrize(
        "configured, existing, expected",
        [
            ("", "", ""),
            ("1.30", "", "1.30"),
            ("", "1.30.5", "1.30.5"),
            ("1.31", "1.30.5", "1.31"),
            ("1.30.5", "1.31.2", "1.31.2"),
            ("1.31.2", "1.31", "1.31.2"),
            ("1.30.5", "1.30.5", "1.30.5"),
            ("1.3", "1.2.4", "1.3"),
            # a version without patch never replaces a patch release of the same minor
            ("1.30", "1.30.5", "1.30.5"),
        ],
    )
    def test_version_selection(self, configured, existing, expected):
        assert compute_k8s_version(configured, existing) == expected

    def test_invalid_version(self):
        with pytest.raises(ConfigurationError, match="unable to compare kubernetes versions 'latest' and '1.30'"):
            compute_k8s_version("latest", "1.30")


class TestComputeShootName:
    def test_length_is_limited_by_project_name(self):
        assert len(compute_shoot_name("mcp", "project-x--ws-y", "mcp")) == 18
        assert len(compute_shoot_name("mcp", "project-x--ws-y", "a-much-longer-name")) == 3

    def test_name_is_deterministic(self):
        assert compute_shoot_name("mcp", "ns", PROJECT) == compute_shoot_name("mcp", "ns", PROJECT)
        assert compute_shoot_name("mcp", "ns", PROJECT) != compute_shoot_name("mcp", "other", PROJECT)

    def test_project_name_too_long(self):
        with pytest.raises(ConfigurationError, match="is too long to derive a shoot name"):
            compute_shoot_name("mcp", "ns", "x" * 21)


class TestNewShoot:
    def test_defaults(self, converter):
        apiserver = make_apiserver()

        shoot = converter.convert(apiserver)
        spec = shoot.spec

        assert shoot.metadata.name == compute_shoot_name("mcp", "project-x--ws-y", PROJECT)
        assert shoot.metadata.namespace == PROJECT_NAMESPACE
        assert spec.purpose == "production"
        assert spec.cloud_profile.name == "gcp"
        assert spec.provider.type == "gcp"
        assert spec.hibernation.enabled is False
        assert spec.region == "europe-west1"
        assert spec.kubernetes.version is None
        assert spec.kubernetes.kube_api_server.runtime_config == {"apps/v1": True, "batch/v1": True}
        assert spec.kubernetes.kube_api_server.audit_config is None
        assert spec.kubernetes.kube_api_server.encryption_config is None
        assert [extension.type for extension in spec.extensions] == [OIDC_EXTENSION_TYPE]
        assert spec.resources is None
        assert spec.control_plane is None

    def test_metadata(self, converter):
        shoot = converter.convert(make_apiserver())

        assert ENFORCED_ANNOTATIONS.items() <= shoot.metadata.annotations.items()
        assert shoot.metadata.labels == {
            "openmcp.cloud/managed-by": "apiserver",
            BACK_REFERENCE_LABEL_NAME: "mcp",
            BACK_REFERENCE_LABEL_NAMESPACE: "project-x--ws-y",
        }

    def test_workers_and_provider_configs(self, converter):
        shoot = converter.convert(make_apiserver())
        spec = shoot.spec
        control_plane_zone = spec.provider.control_plane_config["zone"]

        assert control_plane_zone in ("europe-west1-b", "europe-west1-c", "europe-west1-d")
        assert len(spec.provider.workers) == 1
        assert spec.provider.workers[0].zones == [control_plane_zone]
        assert spec.provider.workers[0].machine.type == "n2-standard-4"
        assert spec.provider.infrastructure_config["networks"] == {"workers": "10.180.0.0/16"}
        assert (spec.networking.type, spec.networking.nodes) == ("calico", "10.180.0.0/16")
        assert spec.secret_binding_name == "mcp-secret"
        assert shoot.metadata.annotations[WORKER_GENERATION_ANNOTATION] == "1"

    def test_workerless_shoot(self, gcp_configuration):
        shoot = converter_for(gcp_configuration, APIServerType.GARDENER).convert(make_apiserver())

        assert shoot.spec.provider.workers == []
        assert shoot.spec.provider.infrastructure_config is None
        assert shoot.spec.networking is None
        assert WORKER_GENERATION_ANNOTATION not in shoot.metadata.annotations

    def test_project_and_workspace_labels_are_propagated(self, converter):
        apiserver = make_apiserver()
        apiserver.metadata.labels = {BACK_REFERENCE_LABEL_PROJECT: "x", BACK_REFERENCE_LABEL_WORKSPACE: "y", "other": "z"}

        labels = converter.convert(apiserver).metadata.labels

        assert labels[BACK_REFERENCE_LABEL_PROJECT] == "x"
        assert labels[BACK_REFERENCE_LABEL_WORKSPACE] == "y"
        assert "other" not in labels

    def test_shoot_overwrite(self, converter):
        apiserver = make_apiserver(internal={"gardener": {"shootOverwrite": {"name": "legacy", "namespace": "garden-other"}}})

        shoot = converter.convert(apiserver)

        assert (shoot.metadata.namespace, shoot.metadata.name) == ("garden-other", "legacy")

    def test_project_name_too_long(self, gcp_configuration):
        configuration = dataclasses.replace(gcp_configuration, project="p" * 21)

        with pytest.raises(ConfigurationError):
            converter_for(configuration).convert(make_apiserver())


class TestExistingShoot:
    def test_reconversion_is_stable(self, converter):
        apiserver = make_apiserver()
        shoot = converter.convert(apiserver)

        assert converter.convert(apiserver, shoot).to_dict() == shoot.to_dict()

    def test_input_is_not_modified(self, converter):
        shoot = converter.convert(make_apiserver())
        before = shoot.to_dict()

        converter.convert(make_apiserver(gardener={"highAvailabilityConfig": {"failureToleranceType": "zone"}}), shoot)

        assert shoot.to_dict() == before

    def test_existing_labels_and_annotations_are_kept(self, converter):
        shoot = converter.convert(make_apiserver())
        shoot.metadata.labels = {"custom": "keep", BACK_REFERENCE_LABEL_NAME: "wrong"}
        shoot.metadata.annotations["custom"] = "keep"

        updated = converter.convert(make_apiserver(), shoot)

        assert updated.metadata.labels["custom"] == "keep"
        assert updated.metadata.labels[BACK_REFERENCE_LABEL_NAME] == "mcp"
        assert updated.metadata.annotations["custom"] == "keep"

    def test_immutable_fields_are_kept(self, converter):
        shoot = converter.convert(make_apiserver())
        shoot.spec.region = "us-central1"
        shoot.spec.purpose = "evaluation"
        shoot.spec.provider.control_plane_config = {"zone": "us-central1-f"}

        updated = converter.convert(make_apiserver(gardener={"region": "europe-west1"}), shoot)

        assert updated.spec.region == "us-central1"
        assert updated.spec.purpose == "evaluation"
        assert updated.spec.provider.control_plane_config == {"zone": "us-central1-f"}
        assert updated.spec.provider.workers[0].zones == ["us-central1-f"]

    def test_hibernation_is_disabled(self, converter):
        shoot = converter.convert(make_apiserver())
        shoot.spec.hibernation.enabled = True

        assert converter.convert(make_apiserver(), shoot).spec.hibernation.enabled is False

    def test_oidc_extension_is_not_duplicated(self, converter):
        shoot = converter.convert(make_apiserver())

        shoot = converter.convert(make_apiserver(), shoot)

        assert [extension.type for extension in shoot.spec.extensions] == [OIDC_EXTENSION_TYPE]

    def test_existing_runtime_config_is_kept(self, converter):
        shoot = converter.convert(make_apiserver())
        shoot.spec.kubernetes.kube_api_server.runtime_config = {"apps/v1": False, "custom/v1": True}

        runtime_config = converter.convert(make_apiserver(), shoot).spec.kubernetes.kube_api_server.runtime_config

        assert runtime_config == {"apps/v1": True, "custom/v1": True, "batch/v1": True}


class TestKubernetesVersion:
    def test_pinned_version(self, converter):
        shoot = converter.convert(make_apiserver(internal={"gardener": {"k8sVersionOverwrite": "1.31"}}))

        assert shoot.spec.kubernetes.version == "1.31"

    def test_pinned_version_not_offered(self, converter):
        with pytest.raises(ConfigurationError, match="kubernetes version '1.29' is not offered by cloudprofile 'gcp'"):
            converter.convert(make_apiserver(internal={"gardener": {"k8sVersionOverwrite": "1.29"}}))

    def test_existing_patch_version_is_kept(self, converter):
        apiserver = make_apiserver(internal={"gardener": {"k8sVersionOverwrite": "1.31"}})
        shoot = converter.convert(apiserver)
        shoot.spec.kubernetes.version = "1.31.2"

        assert converter.convert(apiserver, shoot).spec.kubernetes.version == "1.31.2"

    def test_existing_version_no_longer_offered_is_kept(self, converter):
        apiserver = make_apiserver(internal={"gardener": {"k8sVersionOverwrite": "1.30"}})
        shoot = converter.convert(apiserver)
        shoot.spec.kubernetes.version = "1.30.3"

        assert converter.convert(apiserver, shoot).spec.kubernetes.version == "1.30.3"

    def test_pinned_upgrade_to_version_not_offered(self, converter):
        shoot = converter.convert(make_apiserver())
        shoot.spec.kubernetes.version = "1.31.2"
        apiserver = make_apiserver(internal={"gardener": {"k8sVersionOverwrite": "1.32"}})

        with pytest.raises(ConfigurationError, match="kubernetes version '1.32' is not offered by cloudprofile 'gcp'"):
            converter.convert(apiserver, shoot)

    def test_existing_version_is_kept_without_pin(self, converter):
        shoot = converter.convert(make_apiserver())
        shoot.spec.kubernetes.version = "1.30.5"

        assert converter.convert(make_apiserver(), shoot).spec.kubernetes.version == "1.30.5"


class TestRegionSelection:
    def test_explicit_region(self, converter):
        shoot = converter.convert(make_apiserver(gardener={"region": "us-central1"}))

        assert shoot.spec.region == "us-central1"
        assert shoot.spec.provider.workers[0].zones[0].startswith("us-central1-")

    def test_explicit_region_not_configured(self, converter):
        with pytest.raises(ConfigurationError, match="region 'mars-north1' is not valid for configuration 'default/default'"):
            converter.convert(make_apiserver(gardener={"region": "mars-north1"}))

    def test_desired_region(self, converter):
        shoot = converter.convert(make_apiserver(desiredRegion={"name": "northamerica", "direction": "central"}))

        assert shoot.spec.region == "us-central1"

    def test_desired_region_picks_deterministically_among_closest(self, garden_client):
        configuration = make_configuration(
            garden_client,
            regions=[make_region("asia-south1"), make_region("asia-south2")],
            default_region="",
        )
        expected = ["asia-south1", "asia-south2"][hash_as_number("mcp", "project-x--ws-y") % 2]

        shoot = converter_for(configuration).convert(make_apiserver(desiredRegion={"name": "asia", "direction": "north"}))

        assert shoot.spec.region == expected

    def test_desired_region_with_zone_high_availability(self, garden_client):
        configuration = make_configuration(
            garden_client,
            regions=[make_region("asia-south1", "abc"), make_region("asia-south2", "ab")],
            default_region="",
        )
        apiserver = make_apiserver(
            desiredRegion={"name": "asia", "direction": "north"},
            gardener={"highAvailabilityConfig": {"failureToleranceType": "zone"}},
        )

        shoot = converter_for(configuration).convert(apiserver)

        zone_count = len(configuration.valid_regions[shoot.spec.region].zones)
        worker = shoot.spec.provider.workers[0]
        assert shoot.spec.region in ("asia-south1", "asia-south2")
        assert len(worker.zones) == min(3, zone_count)
        assert worker.minimum == min(3, zone_count)
        assert all(zone.startswith(f"{shoot.spec.region}-") for zone in worker.zones)

    def test_desired_region_without_direction(self, converter):
        shoot = converter.convert(make_apiserver(desiredRegion={"name": "europe"}))

        assert shoot.spec.region == "europe-west1"

    def test_desired_region_for_unmapped_provider(self, garden_client):
        configuration = make_configuration(garden_client, provider_type="openstack", regions=[make_region("eu-de-1")])

        with pytest.raises(ConfigurationError, match="no region mapping known for provider 'openstack'") as exc_info:
            converter_for(configuration).convert(make_apiserver(desiredRegion={"name": "europe"}))

        assert exc_info.value.reason == Reason.CONFIGURATION_PROBLEM

    def test_no_default_region(self, garden_client):
        configuration = make_configuration(garden_client, default_region="")

        with pytest.raises(ConfigurationError, match="unable to determine a region"):
            converter_for(configuration).convert(make_apiserver())


class TestOptionalFeatures:
    def test_audit_log_is_added(self, converter):
        shoot = converter.convert(make_apiserver(gardener={"auditLog": AUDIT_LOG}))
        name = shoot.metadata.name
        spec = shoot.spec

        assert spec.kubernetes.kube_api_server.audit_config.audit_policy.config_map_ref.name == f"{name}--auditlog-policy"
        extension = next(e for e in spec.extensions if e.type == AUDITLOG_EXTENSION_TYPE)
        assert extension.provider_config == {
            "apiVersion": "service.auditlog.extensions.gardener.cloud/v1alpha1",
            "kind": "AuditlogConfig",
            "type": "standard",
            "tenantID": "tenant-1",
            "serviceURL": "https://auditlog.example.com",
            "secretReferenceName": AUDITLOG_CREDENTIALS_NAME,
        }
        assert len(spec.resources) == 1
        assert spec.resources[0].name == AUDITLOG_CREDENTIALS_NAME
        assert spec.resources[0].resource_ref.name == f"{name}--auditlog-credentials"
        assert spec.resources[0].resource_ref.kind == "Secret"

    def test_audit_log_is_updated_in_place(self, converter):
        shoot = converter.convert(make_apiserver(gardener={"auditLog": AUDIT_LOG}))

        updated = converter.convert(make_apiserver(gardener={"auditLog": {**AUDIT_LOG, "tenantID": "tenant-2"}}), shoot)

        extensions = [e for e in updated.spec.extensions if e.type == AUDITLOG_EXTENSION_TYPE]
        assert len(extensions) == 1
        assert extensions[0].provider_config["tenantID"] == "tenant-2"
        assert len(updated.spec.resources) == 1

    def test_audit_log_is_removed(self, converter):
        shoot = converter.convert(make_apiserver(gardener={"auditLog": AUDIT_LOG}))

        updated = converter.convert(make_apiserver(), shoot)

        assert updated.spec.kubernetes.kube_api_server.audit_config is None
        assert [extension.type for extension in updated.spec.extensions] == [OIDC_EXTENSION_TYPE]
        assert updated.spec.resources is None

    def test_encryption_config(self, converter):
        shoot = converter.convert(make_apiserver(gardener={"encryptionConfig": {"resources": ["configmaps"]}}))

        assert shoot.spec.kubernetes.kube_api_server.encryption_config.resources == ["configmaps"]
        assert converter.convert(make_apiserver(), shoot).spec.kubernetes.kube_api_server.encryption_config is None

    def test_high_availability(self, converter):
        shoot = converter.convert(make_apiserver())
        old_worker = shoot.spec.provider.workers[0].name

        updated = converter.convert(make_apiserver(gardener={"highAvailabilityConfig": {"failureToleranceType": "zone"}}), shoot)

        assert updated.spec.control_plane.high_availability.failure_tolerance.type == "zone"
        assert len(updated.spec.provider.workers) == 1
        assert updated.spec.provider.workers[0].name != old_worker
        assert sorted(updated.spec.provider.workers[0].zones) == ["europe-west1-b", "europe-west1-c", "europe-west1-d"]
        assert updated.metadata.annotations[WORKER_GENERATION_ANNOTATION] == "2"

    def test_one_way_fields_survive_high_availability_change(self, converter):
        shoot = converter.convert(make_apiserver())
        shoot.spec.provider.type = "gcp-legacy"
        shoot.spec.secret_binding_name = "old-binding"
        control_plane_config = dict(shoot.spec.provider.control_plane_config)

        updated = converter.convert(make_apiserver(gardener={"highAvailabilityConfig": {"failureToleranceType": "node"}}), shoot)

        assert updated.spec.provider.type == "gcp-legacy"
        assert updated.spec.secret_binding_name == "old-binding"
        assert updated.spec.provider.control_plane_config == control_plane_config
        assert updated.spec.provider.workers[0].zones == [control_plane_config["zone"]]

    def test_high_availability_is_cleared(self, converter):
        shoot = converter.convert(make_apiserver(gardener={"highAvailabilityConfig": {"failureToleranceType": "node"}}))

        updated = converter.convert(make_apiserver(), shoot)

        assert updated.spec.control_plane.high_availability is None
        assert updated.spec.provider.workers[0].minimum == 1
        assert updated.metadata.annotations[WORKER_GENERATION_ANNOTATION] == "2"


class TestConfigurationResolution:
    def test_unknown_landscape(self, converter):
        apiserver = make_apiserver(internal={"gardener": {"landscapeConfiguration": "unknown/default"}})

        with pytest.raises(ConfigurationError, match="error resolving landscape and configuration: .*unknown landscape 'unknown'"):
            converter.convert(apiserver)

    def test_named_configuration(self, garden_client):
        default = make_configuration(garden_client)
        other = make_configuration(garden_client, name="aws", provider_type="aws", regions=[make_region("eu-west-1")], default_region="eu-west-1")
        converter = ShootConverter(APIServerType.GARDENER, make_multi_configuration(default, other))

        shoot = converter.convert(make_apiserver(internal={"gardener": {"landscapeConfiguration": "default/aws"}}))

        assert shoot.spec.provider.type == "aws"
        assert shoot.spec.region == "eu-west-1"


def aws_converter(client, vpc_cidr):
    infrastructure_config = {
        "apiVersion": "aws.provider.extensions.gardener.cloud/v1alpha1",
        "kind": "InfrastructureConfig",
        "networks": {"vpc": {"cidr": vpc_cidr}},
    }
    configuration = make_configuration(
        client,
        provider_type="aws",
        regions=[make_region("eu-west-1", "abc")],
        default_region="eu-west-1",
        shoot_template=make_shoot_template("aws", infrastructure_config),
    )

    return converter_for(configuration)


class TestAWSShoot:
    def test_subnets_are_allocated_per_zone(self, garden_client):
        shoot = aws_converter(garden_client, "10.0.0.0/16").convert(make_apiserver())

        networks = shoot.spec.provider.infrastructure_config["networks"]
        assert networks["vpc"] == {"cidr": "10.0.0.0/16"}
        assert networks["zones"] == [
            {"name": "eu-west-1-a", "workers": "10.0.0.0/19", "public": "10.0.32.0/20", "internal": "10.0.48.0/20"},
            {"name": "eu-west-1-b", "workers": "10.0.64.0/19", "public": "10.0.96.0/20", "internal": "10.0.112.0/20"},
            {"name": "eu-west-1-c", "workers": "10.0.128.0/19", "public": "10.0.160.0/20", "internal": "10.0.176.0/20"},
        ]
        assert shoot.spec.region == "eu-west-1"
        assert shoot.spec.provider.workers[0].zones[0] in {"eu-west-1-a", "eu-west-1-b", "eu-west-1-c"}

    def test_subnets_are_kept_on_update(self, garden_client):
        converter = aws_converter(garden_client, "10.0.0.0/16")
        shoot = converter.convert(make_apiserver())

        updated = converter.convert(make_apiserver(), shoot)

        assert updated.spec.provider.infrastructure_config == shoot.spec.provider.infrastructure_config

    def test_vpc_too_small(self, garden_client):
        with pytest.raises(SubnetAllocationError, match="unable to calculate 'workers' subnet for zone 'eu-west-1-a'"):
            aws_converter(garden_client, "10.0.0.0/20").convert(make_apiserver())

    def test_vpc_too_small_leaves_existing_shoot_unmodified(self, garden_client):
        shoot = aws_converter(garden_client, "10.0.0.0/16").convert(make_apiserver())
        shoot.spec.provider.infrastructure_config = None
        before = shoot.to_dict()

        with pytest.raises(SubnetAllocationError):
            aws_converter(garden_client, "10.0.0.0/20").convert(make_apiserver(), shoot)

        assert shoot.to_dict() == before
