"""
Command-line tests using click's CliRunner.
"""
import json
import os

from click.testing import CliRunner

from rehost import __version__
from rehost.cli import cli

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")
STATE_DIR = os.path.join(FIXTURES, "terraform")


class TestCli:
    def setup_method(self):
        self.runner = CliRunner()

    def invoke(self, *args):
        return self.runner.invoke(cli, list(args), obj={})

    def test_help_without_command(self):
        result = self.invoke()
        assert result.exit_code == 0
        assert "analyze" in result.output
        assert "generate" in result.output

    def test_version(self):
        result = self.invoke("--version")
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_platforms(self):
        result = self.invoke("platforms")
        assert result.exit_code == 0
        assert "Report formats: json, markdown" in result.output
        assert "HA levels: none, basic, multi-server, cluster, geo" in result.output

    def test_platforms_types(self):
        result = self.invoke("platforms", "--types")
        assert result.exit_code == 0
        assert "aws_s3_bucket" in result.output


class TestAnalyze:
    def setup_method(self):
        self.runner = CliRunner()

    def invoke(self, *args):
        return self.runner.invoke(cli, ["analyze"] + list(args), obj={})

    def test_table(self):
        result = self.invoke(STATE_DIR)
        assert result.exit_code == 0
        assert "Found 6 resources" in result.output

    def test_json(self, tmp_path):
        out = tmp_path / "report.json"
        result = self.invoke(STATE_DIR, "--format", "json", "-o", str(out))
        assert result.exit_code == 0
        report = json.loads(out.read_text())
        assert report["meta"]["tool"] == "rehost"
        assert len(report["infrastructure"]["resources"]) == 6
        assert report["skipped"] == ["aws_cloudwatch_dashboard.ops"]
        assert report["infrastructure"]["unresolved_dependencies"]["aws_instance.web[0]"] == ["sg-0deadbeef"]

    def test_markdown(self, tmp_path):
        out = tmp_path / "MIGRATION.md"
        result = self.invoke(STATE_DIR, "--format", "markdown", "-o", str(out))
        assert result.exit_code == 0
        assert out.read_text().startswith("# Migration Report")

    def test_category_filter(self, tmp_path):
        out = tmp_path / "report.json"
        result = self.invoke(STATE_DIR, "--category", "compute", "--format", "json", "-o", str(out))
        assert result.exit_code == 0
        ids = [r["id"] for r in json.loads(out.read_text())["infrastructure"]["resources"]]
        assert ids == ["aws_instance.web[0]", "aws_instance.web[1]"]

    def test_no_source(self):
        assert self.invoke().exit_code == 2

    def test_missing_source(self):
        assert self.invoke(os.path.join(FIXTURES, "nope")).exit_code == 2

    def test_unsupported_state_version(self):
        result = self.invoke(os.path.join(FIXTURES, "bad", "terraform.tfstate"))
        assert result.exit_code == 2


class TestGenerate:
    def setup_method(self):
        self.runner = CliRunner()

    def invoke(self, *args):
        return self.runner.invoke(cli, ["generate"] + list(args), obj={})

    def test_compose_written(self, tmp_path):
        out = tmp_path / "out"
        result = self.invoke(STATE_DIR, "-t", "compose", "-o", str(out), "--project-name", "shop")
        assert result.exit_code == 0
        assert (out / "docker-compose.yml").is_file()
        assert os.access(out / "scripts" / "backup.sh", os.X_OK)
        assert "Manual steps" in result.output

    def test_dry_run_writes_nothing(self, tmp_path):
        out = tmp_path / "out"
        result = self.invoke(STATE_DIR, "-t", "compose", "-o", str(out), "--dry-run")
        assert result.exit_code == 0
        assert "Dry run" in result.output
        assert not out.exists()

    def test_config_file(self, tmp_path):
        config = tmp_path / "rehost.yaml"
        config.write_text("platform: k3s\nproject_name: shop\nmonitoring: false\n")
        out = tmp_path / "out"
        result = self.invoke(STATE_DIR, "--config", str(config), "-o", str(out))
        assert result.exit_code == 0
        assert (out / "00-namespace.yaml").is_file()
        assert (out / "manifests.yaml").is_file()

    def test_hetzner_variables(self, tmp_path):
        out = tmp_path / "out"
        result = self.invoke(STATE_DIR, "-t", "hetzner", "-o", str(out), "--var", "location=hel1")
        assert result.exit_code == 0
        assert '"hel1"' in (out / "variables.tf").read_text()
        assert "Estimated cost" in result.output

    def test_no_platform(self):
        assert self.invoke(STATE_DIR).exit_code == 2

    def test_unknown_platform(self):
        assert self.invoke(STATE_DIR, "-t", "nomad", "--dry-run").exit_code == 2

    def test_bad_var(self):
        assert self.invoke(STATE_DIR, "-t", "compose", "--var", "novalue", "--dry-run").exit_code == 2

    def test_bad_config(self, tmp_path):
        config = tmp_path / "rehost.yaml"
        config.write_text("- not a mapping\n")
        assert self.invoke(STATE_DIR, "--config", str(config), "--dry-run").exit_code == 2

    def test_unsupported_ha_level(self):
        result = self.invoke(STATE_DIR, "-t", "compose", "--ha-level", "cluster", "--dry-run")
        assert result.exit_code == 1
        assert "Generation error" in result.output

    def test_generation_failure_keeps_mapping_findings(self):
        result = self.invoke(STATE_DIR, "-t", "compose", "--ha-level", "cluster", "--dry-run")
        assert result.exit_code == 1
        assert "no mapper for" in result.output
        assert "Manual steps" in result.output
        assert "Ensure all required" in result.output

    def test_nothing_mappable(self):
        result = self.invoke(STATE_DIR, "-t", "compose", "--type", "aws_cloudwatch_dashboard", "--dry-run")
        assert result.exit_code == 0
        assert "nothing to generate" in result.output
