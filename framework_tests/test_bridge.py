import dataclasses

import pytest

from ccm_bridge import bridge
from ccm_bridge.utils import bridge_config
from ccm_bridge.utils import errors

SIX_NODES_UP = "".join(f"node{i}: UP\n" for i in range(1, 7))


class TestClusterLifecycle:
    """Tests of cluster operations against the mock `ccm` tool."""

    def test_create_once_then_switch(self, mock_bridge: bridge.Bridge):
        assert mock_bridge.create_cluster(1)
        assert mock_bridge.create_cluster(1)
        assert mock_bridge.backend.count("create") == 1  # type: ignore[attr-defined]

        assert mock_bridge.create_cluster(2)
        assert mock_bridge.create_cluster(1)

        assert mock_bridge.backend.count("create") == 2  # type: ignore[attr-defined]
        assert mock_bridge.backend.count("switch") == 1  # type: ignore[attr-defined]
        assert mock_bridge.get_active_cluster() == "test_3-4_1"
        assert sorted(mock_bridge.get_available_clusters()) == ["test_3-4_1", "test_3-4_2"]

    def test_start_stop(self, mock_bridge: bridge.Bridge):
        assert mock_bridge.create_cluster(2)
        assert mock_bridge.start_cluster(["-Dcassandra.test=true"])
        assert mock_bridge.is_cluster_up()
        assert mock_bridge.cluster_contact_points() == "127.0.0.1,127.0.0.2"
        assert mock_bridge.is_node_up(2)

        assert mock_bridge.stop_cluster()
        assert mock_bridge.is_cluster_down()
        assert mock_bridge.cluster_status().nodes_down == ("127.0.0.1", "127.0.0.2")

    def test_node_lifecycle(self, mock_bridge: bridge.Bridge):
        assert mock_bridge.create_cluster(2)
        assert mock_bridge.start_cluster()

        assert mock_bridge.bootstrap_node() == 3
        assert mock_bridge.is_node_up(3)

        assert mock_bridge.stop_node(1)
        assert mock_bridge.start_node(1)
        assert mock_bridge.kill_node(2)

        assert mock_bridge.decommission_node(3)
        assert mock_bridge.is_node_decommissioned(3)
        assert mock_bridge.cluster_ip_addresses(is_all=False) == ["127.0.0.1"]

        # The id of the decommissioned node is reused
        assert mock_bridge.add_node("dc1") == 3
        assert mock_bridge.add_node() == 4

    def test_remove_all_with_prefix(self, mock_bridge: bridge.Bridge):
        assert mock_bridge.create_cluster(1)
        assert mock_bridge.create_cluster(2)
        mock_bridge.manager.execute(["create", "other", "-n", "1"])

        removed = mock_bridge.remove_all_clusters()

        assert sorted(removed) == ["test_3-4_1", "test_3-4_2"]
        assert mock_bridge.get_available_clusters() == ["other"]

        assert mock_bridge.remove_all_clusters(is_all=True) == ["other"]
        assert mock_bridge.get_available_clusters() == []

    def test_remove_active(self, mock_bridge: bridge.Bridge):
        assert mock_bridge.create_cluster(1)
        mock_bridge.remove_cluster()
        assert mock_bridge.get_active_cluster() == ""

        # The cluster is created again, not switched to
        assert mock_bridge.create_cluster(1)
        assert mock_bridge.backend.count("create") == 2  # type: ignore[attr-defined]

    def test_versions_and_cql(self, mock_bridge: bridge.Bridge):
        assert mock_bridge.create_cluster(1)
        assert mock_bridge.get_cassandra_version() == "3.4"
        assert mock_bridge.get_dse_version() == "4.8.5"
        out = mock_bridge.execute_cql_on_node(1, "SELECT release_version FROM system.local")
        assert out.strip() == "SELECT release_version FROM system.local"

    def test_node_toggles(self, mock_bridge: bridge.Bridge):
        assert mock_bridge.create_cluster(1)
        mock_bridge.pause_node(1)
        mock_bridge.resume_node(1)
        mock_bridge.disable_node_binary_protocol(1)
        mock_bridge.enable_node_binary_protocol(1)
        mock_bridge.disable_node_gossip(1)
        mock_bridge.enable_node_gossip(1)
        mock_bridge.clear_cluster_data()

        node_calls = [c[1:] for c in mock_bridge.backend.calls if c[1] == "node1"]  # type: ignore[attr-defined]
        assert node_calls == [
            ["node1", "pause"],
            ["node1", "resume"],
            ["node1", "nodetool", "disablebinary"],
            ["node1", "nodetool", "enablebinary"],
            ["node1", "nodetool", "disablegossip"],
            ["node1", "nodetool", "enablegossip"],
        ]

    def test_failed_command(self, mock_bridge: bridge.Bridge):
        with pytest.raises(errors.ExecutionFailedError) as excinfo:
            mock_bridge.cluster_status()
        assert "No currently active cluster" in excinfo.value.output


class TestClusterSwitch:
    def test_switch_to_active_issues_no_command(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_backend.add_response(["list"], "  foo\n *bar\n")
        assert fake_bridge.get_active_cluster() == "bar"
        calls_num = len(fake_backend.calls)

        assert fake_bridge.switch_cluster("bar")
        assert len(fake_backend.calls) == calls_num

    def test_list_clusters(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_backend.add_response(["list"], "  foo\n *bar\n")
        assert fake_bridge.list_clusters() == (["foo", "bar"], "bar")
        # The active cluster is remembered for the switch
        assert fake_bridge.switch_cluster("bar")
        assert fake_backend.commands == [["list"]]

    def test_switch(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_backend.add_response(["list"], "  foo\n *bar\n", " *foo\n  bar\n")

        assert fake_bridge.switch_cluster("foo")
        assert fake_backend.commands == [["list"], ["stop"], ["switch", "foo"], ["list"]]

    def test_switch_unknown(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_backend.add_response(["list"], "  foo\n")
        with pytest.raises(errors.ClusterNotFoundError):
            fake_bridge.switch_cluster("bar")
        assert fake_backend.count("switch") == 0

    def test_switch_empty_name(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_backend.add_response(["list"], "  foo\n")
        with pytest.raises(errors.ClusterNotFoundError):
            fake_bridge.switch_cluster("")
        assert fake_backend.calls == []

    def test_switch_not_verified(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_backend.add_response(["list"], "  foo\n")
        with pytest.raises(errors.ClusterNotFoundError):
            fake_bridge.switch_cluster("foo")
        assert fake_backend.count("switch") == 1


class TestClusterCreate:
    def test_create_commands(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_backend.add_response(["list"], "", " *test_3-4_2-1\n")

        assert fake_bridge.create_cluster(2, 1)
        assert fake_bridge.create_cluster(2, 1)

        assert [c[0] for c in fake_backend.commands] == ["list", "create", "updateconf", "list"]
        assert fake_backend.commands[1] == [
            "create",
            "test_3-4_2-1",
            "-v",
            "3.4",
            "-b",
            "-n",
            "2:1",
            "-i",
            "127.0.0.",
        ]

    def test_create_stops_active(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_backend.add_response(["list"], " *other\n", "  other\n *test_3-4_1\n")
        assert fake_bridge.create_cluster()
        assert [c[0] for c in fake_backend.commands] == [
            "list",
            "stop",
            "create",
            "updateconf",
            "list",
        ]

    @pytest.mark.parametrize(
        "credentials_type",
        tuple(bridge_config.DseCredentialsType),
    )
    def test_create_dse(
        self,
        fast_config: bridge_config.BridgeConfig,
        fake_backend,
        credentials_type: bridge_config.DseCredentialsType,
    ):
        config = dataclasses.replace(
            fast_config,
            use_dse=True,
            dse_version="4.8.5",
            dse_credentials_type=credentials_type,
            dse_username="user",
            dse_password="secret",
        )
        fake_backend.add_response(["list"], "")

        with bridge.Bridge(config, backend=fake_backend) as ccm_bridge:
            assert not ccm_bridge.create_cluster(1, is_ssl=True)

        create_args = fake_backend.commands[1]
        assert create_args[:5] == ["create", "test_dse-4-8-5_1-ssl", "-v", "4.8.5", "--dse"]
        assert create_args[-1] == "--ssl=ssl"
        has_login = "--dse-username=user" in create_args
        assert has_login == (credentials_type == bridge_config.DseCredentialsType.USERNAME_PASSWORD)

    def test_too_many_nodes(self, fake_bridge: bridge.Bridge, fake_backend):
        with pytest.raises(errors.CapacityExhaustedError):
            fake_bridge.create_cluster(4, 3)
        assert fake_backend.calls == []


class TestNodes:
    @pytest.mark.parametrize("node", (0, 7))
    def test_invalid_node(self, fake_bridge: bridge.Bridge, fake_backend, node: int):
        with pytest.raises(errors.NodeNotFoundError):
            fake_bridge.start_node(node)
        with pytest.raises(errors.NodeNotFoundError):
            fake_bridge.decommission_node(node)
        assert fake_backend.calls == []

    def test_add_node_capacity_exhausted(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_backend.add_response(["status"], SIX_NODES_UP)
        with pytest.raises(errors.CapacityExhaustedError):
            fake_bridge.add_node()
        assert fake_backend.commands == [["status"]]

    def test_add_node_failure_releases_id(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_backend.add_response(["status"], "node1: UP\nnode2: DECOMMISSIONED\n")
        fake_backend.add_response(
            ["add"], errors.ExecutionFailedError("add failed", exit_code=1, output="")
        )
        with pytest.raises(errors.ExecutionFailedError):
            fake_bridge.add_node()
        assert fake_bridge.allocator.in_use == (1,)

    def test_add_node_command(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_backend.add_response(["status"], "node1: UP\nnode2: DECOMMISSIONED\n")
        assert fake_bridge.add_node("dc2") == 2
        assert fake_backend.commands[-1] == [
            "add",
            "node2",
            "-b",
            "-i",
            "127.0.0.2",
            "-j",
            "7200",
            "-d",
            "dc2",
        ]

    def test_start_node_not_up(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_backend.add_response(["status"], "node1: DOWN\n")
        assert not fake_bridge.start_node(1)
        assert fake_backend.count("status") == 3

    def test_ip_addresses(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_backend.add_response(
            ["status"], "node1: UP\nnode2: DOWN\nnode3: DECOMMISSIONED\nnode4: DOWN (Not initialized)"
        )
        assert fake_bridge.cluster_ip_addresses(is_all=False) == ["127.0.0.1"]
        assert fake_bridge.cluster_ip_addresses() == ["127.0.0.1", "127.0.0.2", "127.0.0.4"]
        assert fake_bridge.get_ip_prefix() == "127.0.0."


class TestConfigurationUpdate:
    def test_mapping(self, fake_bridge: bridge.Bridge, fake_backend):
        fake_bridge.update_cluster_configuration({"a": 1, "b": "true"})
        fake_bridge.update_cluster_configuration(["c:2"], is_dse=True)
        assert fake_backend.commands == [["updateconf", "a:1", "b:true"], ["updatedseconf", "c:2"]]


def test_context_manager_closes_backend(fast_config: bridge_config.BridgeConfig, fake_backend):
    with bridge.Bridge(fast_config, backend=fake_backend):
        pass
    assert fake_backend.closed
