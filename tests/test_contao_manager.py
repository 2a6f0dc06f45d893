import allure
from click.testing import CliRunner

from contao_manager import __version__
from contao_manager.main import contao_manager

pytestmark = [
    allure.epic("Task Runtime"),
    allure.feature("CLI Ops"),
]


def test_version():
    assert __version__


def test_version_option():
    runner = CliRunner()
    result = runner.invoke(contao_manager, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output
