from typing import Optional

from stagehand_automation.operations.user import UserInfo, UserManager, UserOperation
from stagehand_automation.types import HostConfig


class FakeManager(UserManager):
    def __init__(self, existing: Optional[UserInfo] = None):
        self._info = existing
        self.actions: list[tuple[str, tuple]] = []

    def get(self, executor, username: str):  # type: ignore[override]
        return self._info

    def add(self, executor, name, *, shell, groups, system):  # type: ignore[override]
        self.actions.append(("add", (name, shell, tuple(groups), system)))
        self._info = UserInfo(name=name, shell=shell or "/bin/bash", home=f"/home/{name}", groups=set(groups))

    def delete(self, executor, name):  # type: ignore[override]
        self.actions.append(("delete", (name,)))
        self._info = None

    def set_shell(self, executor, name, shell):  # type: ignore[override]
        self.actions.append(("shell", (name, shell)))

    def add_groups(self, executor, name, groups):  # type: ignore[override]
        self.actions.append(("groups", (name, tuple(groups))))


def test_creates_user_when_missing(scripted):
    op = UserOperation({"name": "deploy", "shell": "/bin/bash", "groups": ["docker"]})
    fake = FakeManager(existing=None)
    op.manager = fake

    result = op.apply(HostConfig("local"), scripted())

    assert result.changed is True
    assert result.details == "created"
    assert fake.actions == [("add", ("deploy", "/bin/bash", ("docker",), False))]


def test_appends_missing_groups():
    existing = UserInfo(name="deploy", shell="/bin/bash", home="/home/deploy", groups={"deploy", "sudo"})
    op = UserOperation({"name": "deploy", "groups": ["sudo", "docker"]})
    fake = FakeManager(existing=existing)
    op.manager = fake

    assert op.is_satisfied(HostConfig("local"), None) is False
    result = op.apply(HostConfig("local"), None)

    assert result.details == "groups+=docker"
    assert fake.actions == [("groups", ("deploy", ("docker",)))]


def test_satisfied_user_is_left_alone():
    existing = UserInfo(name="deploy", shell="/bin/bash", home="/home/deploy", groups={"docker"})
    op = UserOperation({"name": "deploy", "groups": "docker", "shell": "/bin/bash"})
    op.manager = FakeManager(existing=existing)

    assert op.is_satisfied(HostConfig("local"), None) is True


def test_removes_user():
    existing = UserInfo(name="svc", shell="/bin/sh", home="/home/svc")
    op = UserOperation({"name": "svc", "state": "absent"})
    fake = FakeManager(existing=existing)
    op.manager = fake

    result = op.apply(HostConfig("local"), None)

    assert result.changed is True
    assert result.details == "removed"
    assert ("delete", ("svc",)) in fake.actions


def test_manager_reads_passwd_and_groups(scripted):
    def responder(argv):
        if argv[0] == "getent":
            return 0, "deploy:x:1001:1001::/home/deploy:/bin/bash\n"
        return 0, "deploy docker\n"

    info = UserManager().get(scripted(responder), "deploy")

    assert info == UserInfo(name="deploy", shell="/bin/bash", home="/home/deploy", groups={"deploy", "docker"})
