from typer.testing import CliRunner

from postguard.cli.main import app

runner = CliRunner()


def test_scan_reports_attack():
    result = runner.invoke(app, ["scan", "1' UNION SELECT * FROM users--"])

    assert result.exit_code == 0
    assert "sql_injection" in result.output


def test_scan_safe_input():
    result = runner.invoke(app, ["scan", "Weekly digest"])

    assert result.exit_code == 0
    assert "Input is safe" in result.output


def test_validate_command():
    result = runner.invoke(app, ["validate", "not-an-email", "--context", "email"])

    assert result.exit_code == 0
    assert "invalid" in result.output
    assert "Invalid email format" in result.output


def test_validate_rejects_unknown_context():
    result = runner.invoke(app, ["validate", "x", "--context", "nowhere"])
    assert result.exit_code != 0


def test_api_command_without_server():
    result = runner.invoke(app, ["events", "--api", "http://127.0.0.1:9"])

    assert result.exit_code == 1
    assert "Could not connect" in result.output
