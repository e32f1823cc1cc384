import subprocess
from unittest import mock

import pytest

from utils import check_terraform_init, sanitize_name


class TestSanitizeName:
    """Terraform names derived from Twingate display names"""

    def test_examples(self):
        assert sanitize_name("my.server 1") == "my-server-1"
        assert sanitize_name("123-test") == "_123-test"

    def test_runs_collapse_to_single_hyphen(self):
        assert sanitize_name("a . \t b") == "a-b"
        assert sanitize_name("web..prod") == "web-prod"

    @pytest.mark.parametrize("name", [
        "HQ", "my.server 1", "123-test", "  leading", "9", "1 2 3", ".hidden", "_already", "", "a\nb",
    ])
    def test_idempotent(self, name):
        once = sanitize_name(name)
        assert sanitize_name(once) == once

    @pytest.mark.parametrize("name", ["0", "1.2.3", "42 servers", "7-eleven"])
    def test_never_starts_with_digit(self, name):
        assert not sanitize_name(name)[0].isdigit()


class TestCheckTerraformInit:

    @mock.patch("utils.subprocess.run")
    def test_runs_init_in_working_dir(self, run, tmp_path):
        assert check_terraform_init(str(tmp_path)) is True
        run.assert_called_once()
        assert run.call_args.args[0] == ["terraform", "init"]
        assert run.call_args.kwargs["cwd"] == str(tmp_path)

    @mock.patch("utils.subprocess.run")
    def test_upgrades_when_already_initialised(self, run, tmp_path):
        (tmp_path / ".terraform").mkdir()
        assert check_terraform_init(str(tmp_path)) is True
        assert run.call_args.args[0] == ["terraform", "init", "-upgrade"]

    @mock.patch("utils.subprocess.run", side_effect=subprocess.CalledProcessError(1, "terraform", stderr="boom"))
    def test_init_failure(self, run, tmp_path):
        assert check_terraform_init(str(tmp_path)) is False

    @mock.patch("utils.subprocess.run", side_effect=FileNotFoundError)
    def test_terraform_missing(self, run, tmp_path):
        assert check_terraform_init(str(tmp_path)) is False
