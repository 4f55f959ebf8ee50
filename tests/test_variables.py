from pathlib import Path

import pytest

from stagehand_automation.secrets import SecretResolver
from stagehand_automation.variables import evaluate_guard, load_variables, render_value


class StaticResolver(SecretResolver):
    def lookup(self, ref):
        return f"secret:{ref.name}"


def test_load_variables_reads_table(tmp_path: Path) -> None:
    path = tmp_path / "vars.toml"
    path.write_text(
        """
        [variables]
        vpc_cidr = "10.0.0.0/16"
        registry_password = { aws_secret = "registry" }
        """
    )

    values = load_variables(path, StaticResolver())

    assert values == {"vpc_cidr": "10.0.0.0/16", "registry_password": "secret:registry"}


def test_load_variables_accepts_flat_document(tmp_path: Path) -> None:
    path = tmp_path / "vars.toml"
    path.write_text('ssh_user = "ubuntu"\n')

    assert load_variables(path, StaticResolver()) == {"ssh_user": "ubuntu"}


def test_no_variable_file_means_no_variables() -> None:
    assert load_variables(None) == {}


def test_whole_placeholder_keeps_type() -> None:
    context = {"ports": [22, 80], "count": 3}

    assert render_value("${ports}", context) == [22, 80]
    assert render_value({"n": "${count}"}, context) == {"n": 3}


def test_inline_placeholders_are_substituted() -> None:
    context = {"env": "prod", "name": "web"}

    assert render_value("${name}-${env}", context) == "web-prod"
    assert render_value("{{ name | upper }}-{{ env }}", context) == "WEB-prod"
    assert render_value("${unknown} stays", context) == "${unknown} stays"


def test_undefined_jinja_variable_is_an_error() -> None:
    with pytest.raises(ValueError, match="cannot render"):
        render_value("{{ missing }}", {})


def test_guards() -> None:
    context = {"os_family": "debian", "registry_password": ""}

    assert evaluate_guard("os_family == 'debian'", context) is True
    assert evaluate_guard("registry_password | length > 0", context) is False
    with pytest.raises(Exception):
        evaluate_guard("undefined_name + 1", context)
