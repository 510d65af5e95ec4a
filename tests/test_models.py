"""Tests for deckhand models and engine output decoding."""

from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from deckhand.core.exceptions import ParseError
from deckhand.models import (
    ContainerConfig,
    ContainerSpec,
    ContainerStatus,
    ImageUpdateCheck,
    Mount,
    PortMapping,
    UpdateRequest,
    parse_status,
)
from deckhand.models.engine import (
    ImageInspectEntry,
    ImageListEntry,
    InspectEntry,
    NetworkEntry,
    PsEntry,
    StatsEntry,
    VolumeEntry,
    decode_list,
    split_reference,
)


class TestParseStatus:
    """Every engine state maps onto ContainerStatus."""

    @pytest.mark.parametrize(
        "state,expected",
        [
            ("running", ContainerStatus.RUNNING),
            ("Running", ContainerStatus.RUNNING),
            ("exited", ContainerStatus.EXITED),
            ("stopped", ContainerStatus.EXITED),
            ("configured", ContainerStatus.CREATED),
            ("initialized", ContainerStatus.CREATED),
            ("paused", ContainerStatus.PAUSED),
            ("dead", ContainerStatus.DEAD),
            ("something-new", ContainerStatus.UNKNOWN),
            ("", ContainerStatus.UNKNOWN),
            (None, ContainerStatus.UNKNOWN),
            (3, ContainerStatus.UNKNOWN),
        ],
    )
    def test_mapping(self, state, expected):
        assert parse_status(state) is expected


class TestPortMapping:
    def test_protocol_normalized(self):
        assert PortMapping(container_port=53, protocol="UDP").protocol == "udp"
        assert PortMapping(container_port=80, protocol=None).protocol == "tcp"

    def test_bounds(self):
        with pytest.raises(ValidationError):
            PortMapping(container_port=0)
        with pytest.raises(ValidationError):
            PortMapping(container_port=80, host_port=70000)

    def test_to_arg(self):
        assert PortMapping(host_port=8080, container_port=80).to_arg() == "8080:80"
        assert PortMapping(container_port=80).to_arg() == "80"
        assert (
            PortMapping(host_ip="127.0.0.1", host_port=53, container_port=53, protocol="udp").to_arg()
            == "127.0.0.1:53:53/udp"
        )

    def test_to_arg_ipv6_and_random_host_port(self):
        assert PortMapping(host_ip="::", host_port=8080, container_port=80).to_arg() == "[::]:8080:80"
        assert PortMapping(host_ip="[::1]", host_port=80, container_port=80).to_arg() == "[::1]:80:80"
        assert PortMapping(host_ip="127.0.0.1", container_port=80).to_arg() == "127.0.0.1::80"


class TestMount:
    def test_to_arg(self):
        assert Mount(source="/srv/data", target="/data").to_arg() == "/srv/data:/data"
        assert Mount(source="cache", target="/c", type="volume", read_only=True).to_arg() == "cache:/c:ro"

    def test_is_bind(self):
        assert Mount(source="/a", target="/b").is_bind
        assert not Mount(source="vol", target="/b", type="volume").is_bind


class TestPsEntry:
    """Shapes seen across engine versions in ``ps`` output."""

    def test_list_names_and_snake_case_ports(self, ps_output):
        summary = PsEntry.model_validate(ps_output[0]).to_summary()

        assert summary.name == "web"
        assert summary.status is ContainerStatus.RUNNING
        assert summary.has_web_ui is True
        assert summary.icon == "globe"
        assert summary.uptime == "Up 2 hours"
        assert summary.created == datetime.fromtimestamp(1700000000, tz=UTC)
        assert summary.ports == [PortMapping(host_port=8080, container_port=80)]

    def test_string_names_and_null_fields(self, ps_output):
        entry = PsEntry.model_validate(ps_output[1])
        summary = entry.to_summary()

        assert summary.name == "db"
        assert summary.status is ContainerStatus.EXITED
        assert summary.ports == []
        assert entry.mounts == []
        assert summary.created == datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=UTC)

    def test_mounts_as_destination_strings(self, ps_output):
        entry = PsEntry.model_validate(ps_output[0])
        assert [m.destination for m in entry.mounts] == ["/usr/share/nginx/html"]

    def test_comma_separated_names(self):
        entry = PsEntry.model_validate({"ID": "x", "Names": "first,second", "State": "running"})
        assert entry.names == ["first", "second"]
        assert entry.name == "first"

    def test_pascal_case_ports_with_range(self):
        entry = PsEntry.model_validate(
            {
                "Id": "x",
                "Ports": [{"HostIp": "0.0.0.0", "HostPort": 9000, "ContainerPort": 9000, "Protocol": "TCP", "Range": 3}],
            }
        )
        assert [(p.host_port, p.container_port) for p in entry.ports] == [
            (9000, 9000),
            (9001, 9001),
            (9002, 9002),
        ]
        assert all(p.host_ip == "0.0.0.0" for p in entry.ports)

    def test_cli_port_strings(self):
        entry = PsEntry.model_validate(
            {"Id": "x", "Ports": "0.0.0.0:8080-8081->80-81/tcp, 53/udp, [::]:443->443/tcp"}
        )
        assert [(p.host_ip, p.host_port, p.container_port, p.protocol) for p in entry.ports] == [
            ("0.0.0.0", 8080, 80, "tcp"),
            ("0.0.0.0", 8081, 81, "tcp"),
            ("", 0, 53, "udp"),
            ("::", 443, 443, "tcp"),
        ]

    def test_unknown_state_is_unknown(self):
        summary = PsEntry.model_validate({"Id": "x", "Names": ["n"], "State": "hibernating"}).to_summary()
        assert summary.status is ContainerStatus.UNKNOWN

    def test_unknown_keys_ignored(self):
        entry = PsEntry.model_validate({"Id": "x", "Names": ["n"], "Pod": "", "IsInfra": False})
        assert entry.id == "x"


class TestInspectEntry:
    def test_to_container(self, inspect_output):
        container = InspectEntry.model_validate(inspect_output[0]).to_container()

        assert container.name == "web"
        assert container.image == "docker.io/library/nginx:latest"
        assert container.status is ContainerStatus.RUNNING
        assert container.pid == 4242
        assert container.entrypoint == ["/docker-entrypoint.sh"]
        assert container.ports == [PortMapping(host_port=8080, container_port=80)]
        assert container.networks == ["podman"]
        assert container.restart_policy == "always"
        assert container.cpu_limit == 1.5
        assert container.memory_limit == 268435456
        assert container.has_web_ui is True
        assert len(container.bind_mounts) == 1

    def test_named_volume_keeps_its_name(self, inspect_output):
        container = InspectEntry.model_validate(inspect_output[0]).to_container()
        volume = next(m for m in container.mounts if m.type == "volume")
        assert volume.source == "web-cache"
        assert volume.read_only is True

    def test_to_config_strips_engine_labels(self, inspect_output):
        config = InspectEntry.model_validate(inspect_output[0]).to_config()

        assert config.labels == {"app": "site"}
        assert config.has_web_ui is True
        assert config.web_ui_port == 8080
        assert config.icon == "globe"
        assert config.environment["NGINX_PORT"] == "80"
        assert config.environment["SECRET"] == "hunter2"
        assert config.command == ["nginx", "-g", "daemon off;"]
        assert config.container_id == "a1b2c3d4e5f6a1b2c3d4e5f6"

    def test_missing_sections_default(self):
        container = InspectEntry.model_validate({"Id": "abc", "Name": "/bare"}).to_container()
        assert container.name == "bare"
        assert container.status is ContainerStatus.UNKNOWN
        assert container.mounts == []


class TestContainerConfig:
    def test_with_image_keeps_settings(self, inspect_output):
        config = InspectEntry.model_validate(inspect_output[0]).to_config()
        spec = config.with_image("docker.io/library/nginx:1.27")

        assert isinstance(spec, ContainerSpec)
        assert not isinstance(spec, ContainerConfig)
        assert spec.image == "docker.io/library/nginx:1.27"
        assert spec.name == config.name
        assert spec.volumes == config.volumes
        assert spec.ports == config.ports

    def test_name_required(self):
        with pytest.raises(ValidationError):
            ContainerSpec(name="", image="nginx")


class TestStatsEntry:
    def test_text_fields(self):
        stats = StatsEntry.model_validate(
            {
                "ID": "abc",
                "CPUPerc": "12.5%",
                "MemUsage": "100MB / 2GB",
                "MemPerc": "5.00%",
                "NetIO": "1kB / 2kB",
                "BlockIO": "-- / --",
                "PIDs": "7",
            }
        ).to_stats("fallback")

        assert stats.container_id == "abc"
        assert stats.cpu_percent == 12.5
        assert stats.memory_used == 100_000_000
        assert stats.memory_limit == 2_000_000_000
        assert stats.network_rx == 1000
        assert stats.network_tx == 2000
        assert stats.block_read == 0
        assert stats.pids == 7

    def test_numeric_fields(self):
        stats = StatsEntry.model_validate({"cpu_percent": 3, "pids": 2}).to_stats("web")
        assert stats.container_id == "web"
        assert stats.cpu_percent == 3.0
        assert stats.pids == 2


class TestImages:
    def test_split_reference(self):
        assert split_reference("docker.io/library/nginx:1.25") == ("docker.io/library/nginx", "1.25")
        assert split_reference("localhost:5000/app") == ("localhost:5000/app", "")
        assert split_reference("app@sha256:abc") == ("app", "")

    def test_list_entry_from_names(self):
        image = ImageListEntry.model_validate(
            {"Id": "sha", "Names": ["docker.io/library/redis:7"], "Size": 1024, "Created": 1700000000}
        ).to_image()
        assert image.repository == "docker.io/library/redis"
        assert image.tag == "7"
        assert image.size == 1024

    def test_dangling_image(self):
        image = ImageListEntry.model_validate({"Id": "sha", "Size": "12.5MB"}).to_image()
        assert image.repository == "<none>"
        assert image.tag == "<none>"
        assert image.size == 12_500_000

    def test_inspect_config(self):
        config = ImageInspectEntry.model_validate(
            {
                "Id": "sha",
                "Config": {
                    "ExposedPorts": {"80/tcp": {}, "53/udp": {}},
                    "Env": ["PATH=/usr/bin", "EMPTY=", "BARE"],
                    "Volumes": {"/data": {}},
                    "Entrypoint": None,
                },
            }
        ).to_image_config("nginx")

        assert {(p.port, p.protocol) for p in config.exposed_ports} == {(80, "tcp"), (53, "udp")}
        env = {e.key: e for e in config.environment}
        assert env["PATH"].value == "/usr/bin"
        assert env["EMPTY"].has_value is True
        assert env["EMPTY"].value == ""
        assert env["BARE"].has_value is False
        assert config.volumes == ["/data"]
        assert config.entrypoint == []

    def test_update_check(self):
        assert ImageUpdateCheck(image="x", local_digest="a", remote_digest="b").has_update
        assert not ImageUpdateCheck(image="x", local_digest="a", remote_digest="a").has_update


class TestResources:
    def test_volume_entry(self):
        volume = VolumeEntry.model_validate(
            {"Name": "data", "Driver": "", "Mountpoint": "/var/lib/v", "Labels": None}
        ).to_volume()
        assert volume.name == "data"
        assert volume.driver == "local"
        assert volume.labels == {}

    def test_network_entry_podman_shape(self):
        network = NetworkEntry.model_validate(
            {
                "name": "backend",
                "id": "n1",
                "driver": "bridge",
                "subnets": [{"subnet": "10.89.0.0/24", "gateway": "10.89.0.1"}],
                "internal": True,
            }
        ).to_network()
        assert network.subnet == "10.89.0.0/24"
        assert network.gateway == "10.89.0.1"
        assert network.internal is True

    def test_network_entry_ipam_shape(self):
        network = NetworkEntry.model_validate(
            {"Name": "legacy", "Id": "n2", "IPAM": {"Config": [{"Subnet": "172.20.0.0/16"}]}}
        ).to_network()
        assert network.name == "legacy"
        assert network.subnet == "172.20.0.0/16"


class TestDecodeList:
    def test_single_object_is_wrapped(self):
        assert [e.id for e in decode_list(PsEntry, {"Id": "solo"})] == ["solo"]

    def test_non_objects_skipped(self):
        assert [e.id for e in decode_list(PsEntry, [{"Id": "a"}, "junk", None])] == ["a"]

    def test_rejects_non_array(self):
        with pytest.raises(ParseError):
            decode_list(PsEntry, "text")

    def test_invalid_shape_raises_parse_error(self):
        with pytest.raises(ParseError):
            decode_list(InspectEntry, [{"Id": "a", "State": {"Pid": "not-a-number"}}])


class TestUpdateRequest:
    def test_defaults(self):
        request = UpdateRequest(container_id="web")
        assert request.create_backup is True
        assert request.start_after is True
        assert request.stop_timeout == 30

    def test_blank_strings_become_none(self):
        request = UpdateRequest(container_id="web", new_image="  ", backup_path="")
        assert request.new_image is None
        assert request.backup_path is None

    def test_container_id_required(self):
        with pytest.raises(ValidationError):
            UpdateRequest(container_id="")
