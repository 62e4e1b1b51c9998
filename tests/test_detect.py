import os

from rehost.detect import detect_format

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")


class TestDetectFormat:
    def test_fixtures(self):
        assert detect_format(os.path.join(FIXTURES, "terraform", "terraform.tfstate")) == "tfstate"
        assert detect_format(os.path.join(FIXTURES, "hcl", "main.tf")) == "terraform"
        assert detect_format(os.path.join(FIXTURES, "cfn", "parent.yaml")) == "cloudformation"
        assert detect_format(os.path.join(FIXTURES, "arm", "azuredeploy.json")) == "arm"

    def test_state_snapshot_with_json_extension(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text('{"version": 4, "terraform_version": "1.6.0", "resources": []}')
        assert detect_format(str(path)) == "tfstate"

    def test_unrecognised(self, tmp_path):
        plain = tmp_path / "values.yaml"
        plain.write_text("replicas: 3\n")
        assert detect_format(str(plain)) == "unknown"
        broken = tmp_path / "broken.json"
        broken.write_text("{")
        assert detect_format(str(broken)) == "unknown"
        assert detect_format(str(tmp_path / "README.md")) == "unknown"
