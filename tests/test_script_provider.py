import json
from pathlib import Path

import pytest

from stagehand_automation.providers.script import ScriptProvider
from stagehand_automation.types import ObservedResource, ResourceNode

HOOK = """#!/bin/sh
request=$(cat)
echo "$request" >> "$(dirname "$0")/requests.log"
case "$request" in
  *'"action": "create"'*) echo '{"provider_id": "net-42", "outputs": {"cidr": "10.0.0.0/16"}}' ;;
  *'"action": "read"'*) echo '{"exists": false}' ;;
  *'"action": "delete"'*) ;;
  *) echo "unsupported request" >&2; exit 2 ;;
esac
"""


@pytest.fixture
def hooks_dir(tmp_path: Path) -> Path:
    hook = tmp_path / "network"
    hook.write_text(HOOK)
    hook.chmod(0o755)
    return tmp_path


def requests(hooks_dir: Path) -> list[dict]:
    return [json.loads(line) for line in (hooks_dir / "requests.log").read_text().splitlines()]


def observed() -> ObservedResource:
    return ObservedResource(id="vpc", kind="network", properties={}, provider_id="net-42")


def test_create_sends_resolved_properties(hooks_dir: Path) -> None:
    provider = ScriptProvider(hooks_dir)
    node = ResourceNode(id="vpc", kind="network", properties={"cidr_block": {"ref": "x"}})

    response = provider.create(node, {"cidr_block": "10.0.0.0/16"})

    assert response.provider_id == "net-42"
    assert response.outputs == {"cidr": "10.0.0.0/16"}
    assert requests(hooks_dir) == [
        {"action": "create", "id": "vpc", "kind": "network", "properties": {"cidr_block": "10.0.0.0/16"}}
    ]


def test_read_reports_vanished_resource(hooks_dir: Path) -> None:
    assert ScriptProvider(hooks_dir).read(observed()) is None


def test_delete_passes_provider_id(hooks_dir: Path) -> None:
    ScriptProvider(hooks_dir).delete(observed())

    assert requests(hooks_dir)[0]["provider_id"] == "net-42"


def test_hook_failure_carries_stderr(hooks_dir: Path) -> None:
    node = ResourceNode(id="vpc", kind="network")

    with pytest.raises(RuntimeError, match="network update failed: unsupported request"):
        ScriptProvider(hooks_dir).update(node, observed(), {}, {"tags": (None, "x")})


def test_missing_hook_is_reported(hooks_dir: Path) -> None:
    node = ResourceNode(id="sn", kind="subnet")

    with pytest.raises(FileNotFoundError, match="subnet"):
        ScriptProvider(hooks_dir).create(node, {})
