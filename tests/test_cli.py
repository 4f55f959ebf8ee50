import json
from pathlib import Path
import textwrap

from botocore.exceptions import ClientError
import pytest

from stagehand_automation import cli
from stagehand_automation.types import CREATE, UPDATE, ExecutionResult, ResourceOperation

DECLARATION = """
[resources.main_vpc]
kind = "network"
properties = { cidr_block = "${vpc_cidr}" }

[resources.public_subnet]
kind = "subnet"
properties = { network = { ref = "main_vpc" }, cidr_block = "10.0.1.0/24" }
"""


@pytest.fixture(autouse=True)
def no_color(monkeypatch):
    monkeypatch.setenv("NO_COLOR", "1")


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    (tmp_path / "infra.toml").write_text(textwrap.dedent(DECLARATION))
    (tmp_path / "vars.toml").write_text('[variables]\nvpc_cidr = "10.0.0.0/16"\n')
    return tmp_path


def invoke(workspace: Path, *argv: str) -> int:
    return cli.main([*argv, "--config", str(workspace / "none.conf"), "--var-file", str(workspace / "vars.toml")])


def test_format_result_failed():
    result = ExecutionResult(host="web1", task="install", action="package", status="failed", details="boom")
    assert cli.format_result(result) == "web1::install failed - boom"


def test_format_result_changed_and_ok():
    changed = ExecutionResult(host="web1", task="install", action="package", status="success", details="x", changed=True)
    ok = ExecutionResult(host="web1", task="install", action="package", status="success", details="noop")
    assert cli.format_result(changed).startswith("web1::install changed - ")
    assert cli.format_result(ok).startswith("web1::install ok - ")


def test_format_operation_shows_diff():
    op = ResourceOperation(CREATE, "vm", diff={"image": ("a", "b")}, replacement=True)
    assert cli.format_operation(op) == "-/+ create vm (replace)\n    image: 'a' -> 'b'"


def test_plan_apply_then_no_changes(workspace: Path, capsys):
    decl = str(workspace / "infra.toml")

    assert invoke(workspace, "plan", decl) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "+ create main_vpc" in out
    assert "Plan: 2 to create, 0 to update, 0 to replace, 0 to delete" in out
    assert not (workspace / "infra.toml.state.json").exists()

    assert invoke(workspace, "apply", decl) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "main_vpc::create applied - created net-0001" in out
    assert (workspace / "infra.toml.state.json").exists()

    assert invoke(workspace, "plan", decl) == cli.EXIT_OK
    assert "No changes." in capsys.readouterr().out

    assert invoke(workspace, "destroy", decl) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert out.index("public_subnet::delete") < out.index("main_vpc::delete")


def test_cycle_is_a_plan_error(workspace: Path, capsys):
    (workspace / "infra.toml").write_text(
        '[resources.a]\nkind = "network"\ndepends_on = ["b"]\n\n[resources.b]\nkind = "subnet"\ndepends_on = ["a"]\n'
    )

    assert invoke(workspace, "apply", str(workspace / "infra.toml")) == cli.EXIT_PLAN_ERROR
    assert "dependency cycle between: a, b" in capsys.readouterr().err
    assert not (workspace / "infra.toml.state.json").exists()


def test_no_replace_refuses_immutable_change(workspace: Path, capsys):
    decl = str(workspace / "infra.toml")
    invoke(workspace, "apply", decl)
    (workspace / "vars.toml").write_text('[variables]\nvpc_cidr = "172.16.0.0/16"\n')

    assert invoke(workspace, "apply", decl, "--no-replace") == cli.EXIT_PLAN_ERROR
    assert "replacement required" in capsys.readouterr().err


def test_run_reports_partial_failure(tmp_path: Path, capsys):
    inventory = tmp_path / "inventory.toml"
    inventory.write_text('[hosts.local]\nconnection = "local"\n\n[roles]\napp = ["local"]\n')
    tasks = tmp_path / "tasks.toml"
    tasks.write_text(
        textwrap.dedent(
            """
            role = "app"

            [[tasks]]
            name = "broken"
            action = "exec"
            on_failure = "continue"
            args = { command = "exit 4" }

            [[tasks]]
            name = "works"
            action = "exec"
            args = { command = "true" }
            """
        )
    )

    code = cli.main(["run", str(tasks), "-i", str(inventory), "--config", str(tmp_path / "none.conf")])

    out = capsys.readouterr().out
    assert code == cli.EXIT_PARTIAL_FAILURE
    assert "local::broken failed - rc=4" in out
    assert "local::works changed - ran (rc=0)" in out
    assert "Ok: 0 | Changes: 1 | Skipped: 0 | Failures: 1" in out


def test_run_with_undefined_role(tmp_path: Path, capsys):
    inventory = tmp_path / "inventory.toml"
    inventory.write_text('[hosts.local]\nconnection = "local"\n\n[roles]\napp = ["local"]\n')
    tasks = tmp_path / "tasks.toml"
    tasks.write_text('[[tasks]]\nrole = "db"\naction = "exec"\nargs = { command = "true" }\n')

    code = cli.main(["run", str(tasks), "-i", str(inventory), "--config", str(tmp_path / "none.conf")])

    assert code == cli.EXIT_PLAN_ERROR
    assert "undefined roles: db" in capsys.readouterr().err


def test_bad_config_is_reported(tmp_path: Path, capsys):
    config = tmp_path / "main.conf"
    config.write_text('[defaults]\nprovider = "cloud9"\n')

    assert cli.main(["plan", str(tmp_path / "x.toml"), "--config", str(config)]) == cli.EXIT_PLAN_ERROR
    assert "Configuration failed" in capsys.readouterr().err


def test_format_operation_hides_resolved_values():
    op = ResourceOperation(UPDATE, "vm", diff={"user_data": ("pw=${password}", "pw=${password}")})
    assert cli.format_operation(op) == "~ update vm (user_data)\n    user_data: 'pw=${password}' (resolved value changed)"


def test_variable_values_never_reach_state_or_output(workspace: Path, capsys):
    decl = workspace / "infra.toml"
    decl.write_text(
        '[resources.vm]\nkind = "compute-instance"\n'
        'properties = { image = "ubuntu", user_data = "password=${registry_password}" }\n'
    )
    (workspace / "vars.toml").write_text('[variables]\nregistry_password = "s3cr3t-one"\n')

    assert invoke(workspace, "apply", str(decl)) == cli.EXIT_OK
    state_text = (workspace / "infra.toml.state.json").read_text()
    assert "s3cr3t-one" not in state_text
    assert "password=${registry_password}" in state_text

    (workspace / "vars.toml").write_text('[variables]\nregistry_password = "s3cr3t-two"\n')
    assert invoke(workspace, "plan", str(decl)) == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "~ update vm (user_data)" in out
    assert "s3cr3t" not in out


def test_new_instances_skip_recorded_addresses(workspace: Path):
    decl = workspace / "infra.toml"
    instance = '\n[resources.{0}]\nkind = "compute-instance"\nproperties = {{ image = "ubuntu", subnet = {{ ref = "public_subnet" }} }}\n'
    decl.write_text(textwrap.dedent(DECLARATION) + instance.format("web1"))
    assert invoke(workspace, "apply", str(decl)) == cli.EXIT_OK

    decl.write_text(decl.read_text() + instance.format("web2"))
    assert invoke(workspace, "apply", str(decl)) == cli.EXIT_OK

    resources = json.loads((workspace / "infra.toml.state.json").read_text())["resources"]
    assert resources["web1"]["outputs"]["address"] == "10.0.1.1"
    assert resources["web2"]["outputs"]["address"] == "10.0.1.2"


def test_secret_lookup_failure_is_a_configuration_error(workspace: Path, monkeypatch, capsys):
    class DeniedClient:
        def get_secret_value(self, SecretId):
            raise ClientError({"Error": {"Code": "AccessDeniedException", "Message": "no"}}, "GetSecretValue")

    class FakeBoto3:
        def client(self, name):
            return DeniedClient()

    monkeypatch.setattr("stagehand_automation.secrets.boto3", FakeBoto3())
    (workspace / "vars.toml").write_text('[variables]\nvpc_cidr = { aws_secret = "network/cidr" }\n')

    assert invoke(workspace, "plan", str(workspace / "infra.toml")) == cli.EXIT_PLAN_ERROR
    assert "Configuration failed: cannot read secret network/cidr" in capsys.readouterr().err
