from click.testing import CliRunner

from harvester.cli import cli


def test_status_of_unknown_job_fails(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    result = CliRunner().invoke(cli, ["--in-memory", "status", "missing"])

    assert result.exit_code == 1
    assert "Job missing not found" in result.output


def test_scrape_rejects_invalid_url(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    result = CliRunner().invoke(cli, ["--in-memory", "scrape", "not-a-url"])

    assert result.exit_code == 1
    assert "Invalid URL" in result.output


def test_cleanup_and_latest_with_empty_store(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    runner = CliRunner()

    assert "Removed 0 job directories" in runner.invoke(cli, ["--in-memory", "cleanup"]).output
    assert "No jobs yet" in runner.invoke(cli, ["--in-memory", "latest"]).output


def test_catalog_status_without_key(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("CATALOG_API_KEY", raising=False)
    result = CliRunner().invoke(cli, ["catalog-status"])

    assert result.exit_code == 1
