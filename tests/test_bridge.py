import pytest

from stagehand_automation import runner as runner_mod
from stagehand_automation.bridge import Handoff, HandoffBridge
from stagehand_automation.executors import Executor
from stagehand_automation.operations.base import Operation
from stagehand_automation.providers.simulated import SimulatedProvider
from stagehand_automation.reconciler import Reconciler
from stagehand_automation.types import ObservedResource, ResourceNode, TaskSpec


class NullExecutor(Executor):
    pass


class Configure(Operation):
    action = "configure"
    hosts: list = []

    def apply(self, host, executor):
        self.hosts.append((host.name, host.address, host.connection, host.variables.get("provider_id")))
        return self.result(host, True, "configured")


@pytest.fixture
def runner(monkeypatch):
    Configure.hosts = []
    monkeypatch.setitem(runner_mod.OPERATION_REGISTRY, "configure", Configure)
    return runner_mod.TaskRunner(executor_factory=lambda host, dry_run=False: NullExecutor(host, dry_run=dry_run))


def declaration():
    return [
        ResourceNode(id="net", kind="network", properties={"cidr_block": "10.0.0.0/16"}),
        ResourceNode(id="web", kind="compute-instance", properties={"network": {"ref": "net"}, "size": "small"}),
    ]


def handoff(**kwargs):
    tasks = [
        TaskSpec(name="install", action="configure", role="docker"),
        TaskSpec(name="unrelated", action="configure", role="db"),
    ]
    return Handoff(resource="web", role="docker", tasks=tasks, user="admin", **kwargs)


def test_created_instance_is_configured(runner):
    bridge = HandoffBridge(runner, [handoff()])
    reconciler = Reconciler(SimulatedProvider())
    reconciler.add_listener(bridge)
    observed = {}

    reconciler.apply(reconciler.plan(declaration(), observed), observed)

    outcome = bridge.outcomes["web"]
    assert not outcome.failed
    assert outcome.host.address == "10.0.1.1"
    assert outcome.host.user == "admin"
    assert [r.task for r in outcome.results["web"]] == ["wait for connection", "install"]
    assert Configure.hosts == [("web", "10.0.1.1", "ssh", observed["web"].provider_id)]


def test_no_handoff_without_create(runner):
    bridge = HandoffBridge(runner, [handoff()])
    reconciler = Reconciler(SimulatedProvider())
    reconciler.add_listener(bridge)
    observed = {}
    reconciler.apply(reconciler.plan(declaration(), observed), observed)
    Configure.hosts = []

    changed = declaration()
    changed[1].properties["size"] = "large"
    reconciler.apply(reconciler.plan(changed, observed), observed)

    assert Configure.hosts == []
    assert bridge.outcomes == {}


def test_replacement_triggers_a_new_handoff(runner):
    bridge = HandoffBridge(runner, [handoff()])
    reconciler = Reconciler(SimulatedProvider())
    reconciler.add_listener(bridge)
    observed = {}
    reconciler.apply(reconciler.plan(declaration(), observed), observed)

    replaced = declaration()
    replaced[1].properties["image"] = "ubuntu-24.04"
    reconciler.apply(reconciler.plan(replaced, observed), observed)

    assert len(Configure.hosts) == 2
    assert Configure.hosts[1][1] == "10.0.1.2"


def test_at_most_once_per_cycle(runner):
    bridge = HandoffBridge(runner, [handoff(wait_timeout=None)])
    node = declaration()[1]
    resource = ObservedResource(
        id="web",
        kind="compute-instance",
        properties={},
        provider_id="i-0001",
        outputs={"address": "10.0.1.9"},
    )

    bridge.begin_cycle()
    bridge.on_resource_created(node, resource)
    bridge.on_resource_created(node, resource)

    assert len(Configure.hosts) == 1
    assert [r.task for r in bridge.outcomes["web"].results["web"]] == ["install"]


def test_missing_address_is_recorded(runner):
    bridge = HandoffBridge(runner, [handoff(address_output="public_address")])
    resource = ObservedResource(
        id="web",
        kind="compute-instance",
        properties={},
        provider_id="i-0001",
        outputs={"address": "10.0.1.9"},
    )

    bridge.begin_cycle()
    bridge.on_resource_created(declaration()[1], resource)

    assert bridge.outcomes["web"].failed
    assert "public_address" in bridge.outcomes["web"].error
    assert Configure.hosts == []


def test_unbound_resources_are_ignored(runner):
    bridge = HandoffBridge(runner, [handoff()])
    network = declaration()[0]
    resource = ObservedResource(id="net", kind="network", properties={}, provider_id="net-0001")

    bridge.begin_cycle()
    bridge.on_resource_created(network, resource)

    assert bridge.outcomes == {}
