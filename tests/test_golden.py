import pathlib
from typing import List

from voidstate.executor import apply_plan
from voidstate.interpreter import evaluate_file
from voidstate.reconciler import ActualState, ContentResolver, reconcile, simulate
from voidstate.registry import load_registry

DATA = pathlib.Path(__file__).parent / "data"
TESTS = str(DATA.resolve().parent) + "/"


class RecordingExecutor:
    def __init__(self):
        self.applied = []

    def apply(self, action):
        self.applied.append(action)


def plan_lines(actual: ActualState) -> List[str]:
    registry = load_registry(DATA / "packages")
    desired = evaluate_file(DATA / "system.conf", registry=registry)
    plan = reconcile(desired, registry, actual, content=ContentResolver(config_dir=DATA))
    return [line.strip().replace(TESTS, "") for line in plan.describe()]


def test_fresh_system_golden():
    assert plan_lines(ActualState()) == [
        "1. add repository nonfree (void sub-repository)",
        "2. add repository personal (https://github.com/sapein/void-packages@personal)",
        "3. install vim (vim-huge)",
        "4. install git",
        "5. install openssh",
        "6. install tmux",
        "7. install bash",
        "8. install discord (Discord) from personal",
        "9. configure vim:config -> /etc/vim/vimrc from data/packages/vimrc",
        "10. configure bash:bashrc -> /home/sapein/.bashrc from bash/bashrc",
        "11. configure bash:bash_profile -> /home/sapein/.bash_profile from <1 lines>",
        "12. enable service sshd",
        "13. enable service dhcpcd",
    ]


def test_partly_configured_system_golden():
    actual = ActualState(
        installed={"vim-huge", "git", "openssh", "bash", "curl", "htop", "firefox"},
        repositories={"nonfree"},
        services={"sshd", "udevd"},
        preserved={"htop"},
        owned={"curl", "bash", "htop"},
    )
    assert plan_lines(actual) == [
        "1. add repository personal (https://github.com/sapein/void-packages@personal)",
        "2. install tmux",
        "3. install discord (Discord) from personal",
        "4. configure vim:config -> /etc/vim/vimrc from data/packages/vimrc",
        "5. configure bash:bashrc -> /home/sapein/.bashrc from bash/bashrc",
        "6. configure bash:bash_profile -> /home/sapein/.bash_profile from <1 lines>",
        "7. enable service dhcpcd",
        "8. remove curl",
    ]


def test_applied_plan_converges():
    registry = load_registry(DATA / "packages")
    desired = evaluate_file(DATA / "system.conf", registry=registry)
    content = ContentResolver(config_dir=DATA)
    actual = ActualState(installed={"curl"}, owned={"curl"})

    plan = reconcile(desired, registry, actual, content=content)
    executor = RecordingExecutor()
    report = apply_plan(plan, executor)
    assert report.ok
    assert executor.applied == plan.actions

    assert reconcile(desired, registry, simulate(actual, plan, content), content=content).is_empty
