"""Management CLI tests"""

import json
from unittest.mock import patch

from click.testing import CliRunner

from oz_locator.cli import cli


def test_reset_then_status():
    runner = CliRunner()

    reset = runner.invoke(cli, ["reset", "--yes"])
    assert reset.exit_code == 0
    assert "Deleted" in reset.output

    status = runner.invoke(cli, ["status"])
    assert status.exit_code == 0
    assert "No snapshot stored" in status.output


def test_check_point(zone_service):
    runner = CliRunner()

    with patch("oz_locator.cli.ZoneService.from_settings", return_value=zone_service):
        result = runner.invoke(cli, ["check", "0.5", "0.5"])

    assert result.exit_code == 0
    body = json.loads(result.output[result.output.index("{"):])
    assert body["in_zone"] is True
    assert body["zone_id"] == "test-1"


def test_check_invalid_point(zone_service):
    runner = CliRunner()

    with patch("oz_locator.cli.ZoneService.from_settings", return_value=zone_service):
        result = runner.invoke(cli, ["check", "95", "0"])

    assert result.exit_code == 1
    assert "Lookup failed" in result.output
