# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Unit tests for manifest parsing.
"""
import pytest

from infrakit.MODELS.service_spec import ProbeKind, ServiceKind
from infrakit.PARSERS.manifest_parser import ManifestParser, load_context
from infrakit.UTILS.string_interpolation import EnvironmentInterpolator
from infrakit.errors import (
    ConstraintViolationError,
    DuplicateServiceError,
    InvalidEnumValueError,
    ManifestError,
    UnknownDependencyError,
)

MANIFEST = """
services:
  broker:
    kind: queue
  web:
    kind: backend
    depends_on: [broker]
    options:
      celery.enable: true
      domainName: ${DOMAIN:-localhost}
    probes:
      - kind: http
        target: http://127.0.0.1:8080/
        expected_status: [200, 302]
  lb:
    kind: proxy
    depends_on:
      web: {}
    ports: [443]
    probes:
      - port:127.0.0.1:443

environments:
  production:
    services:
      web:
        options:
          domainName: beiwe.example.org
          gunicorn:
            workers: 8
"""


class TestManifestParser:
    """Tests for ManifestParser."""

    def test_services_keep_declaration_order(self):
        """Test that services come back in declaration order."""
        deployment = ManifestParser({}).parse_from_string(MANIFEST)
        assert deployment.names == ["broker", "web", "lb"]
        assert deployment.get("web").kind == ServiceKind.BACKEND
        assert deployment.get("lb").depends_on == ["web"]

    def test_ports_and_probes_derived_from_options(self):
        """Test that ports and port probes default from the options."""
        broker = ManifestParser({}).parse_from_string(MANIFEST).get("broker")
        assert broker.ports == [5672, 15672]
        assert [p.target for p in broker.probes] == ["127.0.0.1:5672", "127.0.0.1:15672"]
        assert all(p.kind == ProbeKind.PORT for p in broker.probes)

    def test_wildcard_bind_probes_loopback(self):
        """Test that a wildcard bind is probed on loopback."""
        deployment = ManifestParser({}).parse_from_string(
            "services:\n  mq:\n    kind: queue\n    options:\n"
            "      bindToIp: 0.0.0.0\n      managementPlugin.enable: false\n")
        assert [p.target for p in deployment.get("mq").probes] == ["127.0.0.1:5672"]

    def test_declared_probes(self):
        """Test that declared probes replace the derived ones."""
        deployment = ManifestParser({}).parse_from_string(MANIFEST)
        web_probe = deployment.get("web").probes[0]
        assert web_probe.kind == ProbeKind.HTTP
        assert web_probe.expected_status == [200, 302]
        lb_probe = deployment.get("lb").probes[0]
        assert (lb_probe.kind, lb_probe.target) == (ProbeKind.PORT, "127.0.0.1:443")
        assert deployment.get("lb").ports == [443]

    def test_interpolation_default(self):
        """Test the default of an unset variable."""
        web = ManifestParser({}).parse_from_string(MANIFEST).get("web")
        assert web.options["domainName"] == "localhost"

    def test_interpolation_from_context(self):
        """Test a variable taken from the context."""
        web = ManifestParser({"DOMAIN": "beiwe.test"}).parse_from_string(MANIFEST).get("web")
        assert web.options["domainName"] == "beiwe.test"

    def test_unset_variable_names_location(self):
        """Test that an unset variable error names its location."""
        with pytest.raises(ManifestError) as exc:
            ManifestParser({}).parse_from_string(
                "services:\n  mq:\n    kind: queue\n    options:\n      bindToIp: ${MQ_HOST}\n")
        assert "MQ_HOST" in str(exc.value)
        assert "services.mq.options.bindToIp" in str(exc.value)

    def test_environment_overlay(self):
        """Test that an environment overlay merges over the base options."""
        deployment = ManifestParser({}, environment="production").parse_from_string(MANIFEST)
        web = deployment.get("web")
        assert deployment.environment == "production"
        assert web.options["domainName"] == "beiwe.example.org"
        assert web.options["gunicorn.workers"] == 8
        assert web.options["celery.enable"] is True

    def test_unknown_environment(self):
        """Test that an undeclared environment is rejected."""
        with pytest.raises(ManifestError) as exc:
            ManifestParser({}, environment="staging").parse_from_string(MANIFEST)
        assert "staging" in str(exc.value)

    def test_duplicate_service(self):
        """Test that a repeated service key is rejected."""
        with pytest.raises(DuplicateServiceError) as exc:
            ManifestParser({}).parse_from_string(
                "services:\n  web:\n    kind: backend\n  web:\n    kind: queue\n")
        assert exc.value.name == "web"
        assert exc.value.code == 3

    def test_duplicate_option_key(self):
        """Test that a repeated option key is rejected."""
        with pytest.raises(ManifestError) as exc:
            ManifestParser({}).parse_from_string(
                "services:\n  mq:\n    kind: queue\n    options:\n"
                "      bindToPort: 5672\n      bindToPort: 5673\n")
        assert "duplicate key 'bindToPort'" in str(exc.value)

    def test_invalid_yaml(self):
        """Test that malformed YAML is a manifest error."""
        with pytest.raises(ManifestError) as exc:
            ManifestParser({}).parse_from_string("services: [unclosed\n")
        assert exc.value.code == 2

    def test_empty_manifest(self):
        """Test that an empty manifest is rejected."""
        with pytest.raises(ManifestError):
            ManifestParser({}).parse_from_string("")

    def test_unknown_dependency(self):
        """Test that a dependency on an undeclared service is rejected."""
        with pytest.raises(UnknownDependencyError) as exc:
            ManifestParser({}).parse_from_string(
                "services:\n  lb:\n    kind: proxy\n    depends_on: [web]\n")
        assert exc.value.service == "lb"

    def test_unknown_kind(self):
        """Test that an unsupported kind is rejected."""
        with pytest.raises(InvalidEnumValueError):
            ManifestParser({}).parse_from_string("services:\n  mail:\n    kind: postfix\n")

    def test_unknown_service_key(self):
        """Test that unknown service keys are rejected."""
        with pytest.raises(ManifestError) as exc:
            ManifestParser({}).parse_from_string("services:\n  mq:\n    kind: queue\n    image: rabbitmq\n")
        assert "image" in str(exc.value)

    def test_invalid_options_fail_when_deriving_ports(self):
        """Test that options are validated when ports are derived."""
        with pytest.raises(ConstraintViolationError):
            ManifestParser({}).parse_from_string(
                "services:\n  mq:\n    kind: queue\n    options:\n      managementPlugin.port: 5672\n")

    def test_invalid_probe_shorthand(self):
        """Test that an unknown probe shorthand is rejected."""
        with pytest.raises(ManifestError):
            ManifestParser({}).parse_from_string(
                "services:\n  mq:\n    kind: queue\n    probes: ['ping:127.0.0.1']\n")

    def test_parse_missing_file(self, tmp_path):
        """Test parsing a missing file."""
        with pytest.raises(ManifestError):
            ManifestParser({}).parse(str(tmp_path / "missing.yml"))


class TestLoadContext:
    """Tests for the interpolation context."""

    def test_env_file_overrides_process_environment(self, tmp_path, monkeypatch):
        """Test that the env file wins over the process environment."""
        monkeypatch.setenv("DOMAIN", "from-process")
        monkeypatch.setenv("KEEP", "kept")
        env_file = tmp_path / ".env"
        env_file.write_text("DOMAIN=from-file\n")
        context = load_context(str(env_file))
        assert context["DOMAIN"] == "from-file"
        assert context["KEEP"] == "kept"

    def test_missing_env_file(self, tmp_path):
        """Test that a missing env file is a manifest error."""
        with pytest.raises(ManifestError):
            load_context(str(tmp_path / "missing.env"))


class TestInterpolation:
    """Tests for EnvironmentInterpolator."""

    def test_forms(self):
        """Test every substitution form."""
        context = {"A": "1", "EMPTY": ""}
        assert EnvironmentInterpolator.interpolate("${A}", context) == "1"
        assert EnvironmentInterpolator.interpolate("${EMPTY:-d}", context) == "d"
        assert EnvironmentInterpolator.interpolate("${A:+set}", context) == "set"
        assert EnvironmentInterpolator.interpolate("${B:+set}", context) == ""
        assert EnvironmentInterpolator.interpolate("$${A}", context) == "${A}"

    def test_unset(self):
        """Test that an unset variable raises KeyError."""
        with pytest.raises(KeyError):
            EnvironmentInterpolator.interpolate("${MISSING}", {})

    def test_non_strings_untouched(self):
        """Test that only strings are interpolated."""
        tree = {"port": 5672, "enable": True, "list": ["${A}", 1]}
        assert EnvironmentInterpolator.interpolate_tree(tree, {"A": "x"}) == {
            "port": 5672, "enable": True, "list": ["x", 1],
        }
