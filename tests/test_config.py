"""
Tests for the couchbase_bootstrap.config package.

Tests cover:
- Service parsing and canonical rendering
- NetworkPorts validation and static_config mapping
- ClusterConfig validation and immutability
- Settings file loading
"""

import dataclasses
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from couchbase_bootstrap.config import (
    ClusterConfig,
    ConfigFormat,
    MemoryQuota,
    NetworkPorts,
    Service,
    load_settings_file,
    parse_services,
    services_csv,
)
from couchbase_bootstrap.config.loader import detect_format, normalize_key
from couchbase_bootstrap.exceptions import ValidationError


def make_config(**overrides):
    values = dict(
        name='cluster',
        admin_username='admin',
        admin_password='secret',
        services=parse_services('data,query'),
        memory=MemoryQuota(data_mb=512),
    )
    values.update(overrides)
    return ClusterConfig(**values)


# ===========================================================================
# Service Tests
# ===========================================================================

class TestServices:
    """Tests for service parsing."""

    def test_parse_csv(self):
        """A comma-separated list should parse into a set."""
        assert parse_services("data,index,query,fts") == frozenset(Service)

    def test_search_alias(self):
        """'search' is accepted as an alias of fts."""
        assert parse_services("search") == {Service.SEARCH}

    def test_whitespace_and_case(self):
        """Whitespace and case should not matter."""
        assert parse_services(" Data , INDEX ") == {Service.DATA, Service.INDEX}

    def test_list_input(self):
        """A list of names (from a YAML settings file) is accepted."""
        assert parse_services(["data", "fts"]) == {Service.DATA, Service.SEARCH}

    def test_unknown_service(self):
        """Unknown names are rejected."""
        with pytest.raises(ValidationError) as exc_info:
            parse_services("data,eventing")
        assert "eventing" in str(exc_info.value)

    @pytest.mark.parametrize("value", ["", " , ", []])
    def test_empty(self, value):
        """At least one service is required."""
        with pytest.raises(ValidationError):
            parse_services(value)

    def test_csv_is_canonical(self):
        """Rendering uses a fixed order regardless of input order."""
        assert services_csv(parse_services("fts,query,data")) == "data,query,fts"


# ===========================================================================
# NetworkPorts Tests
# ===========================================================================

class TestNetworkPorts:
    """Tests for NetworkPorts."""

    def test_defaults(self):
        """Default ports are the standard Couchbase ports."""
        ports = NetworkPorts()
        assert ports.rest == 8091
        assert ports.capi == 8092
        assert ports.memcached == 11210
        assert ports.ssl_rest == 18091

    @pytest.mark.parametrize("value", [0, 65536, -1, "8091"])
    def test_invalid_port(self, value):
        """Ports must be integers in 1-65535."""
        with pytest.raises(ValidationError):
            NetworkPorts(rest=value)

    def test_duplicate_ports(self):
        """Two services cannot share a port."""
        with pytest.raises(ValidationError) as exc_info:
            NetworkPorts(query=8091)
        assert "rest" in str(exc_info.value)

    def test_static_config_entries(self):
        """static_config names should map to the right ports."""
        entries = NetworkPorts(rest=9091, fts=9094).static_config_entries()
        assert entries['rest_port'] == 9091
        assert entries['fts_http_port'] == 9094
        assert entries['memcached_port'] == 11210
        assert 'capi_port' not in entries


# ===========================================================================
# ClusterConfig Tests
# ===========================================================================

class TestClusterConfig:
    """Tests for ClusterConfig."""

    def test_valid(self):
        """A complete configuration should build."""
        config = make_config()
        assert config.services_csv == "data,query"
        assert config.index_storage_mode == "default"
        assert config.ports == NetworkPorts()

    def test_immutable(self):
        """ClusterConfig cannot be modified after creation."""
        config = make_config()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.name = 'other'

    @pytest.mark.parametrize("field_name", ['name', 'admin_username', 'admin_password'])
    def test_required_strings(self, field_name):
        """Name and credentials must not be empty."""
        with pytest.raises(ValidationError):
            make_config(**{field_name: ''})

    def test_empty_services(self):
        """At least one service is required."""
        with pytest.raises(ValidationError):
            make_config(services=frozenset())

    def test_invalid_storage_mode(self):
        """Only default and memopt index storage are accepted."""
        with pytest.raises(ValidationError):
            make_config(index_storage_mode='plasma')
        assert make_config(index_storage_mode='memopt').index_storage_mode == 'memopt'

    def test_quota_for_unselected_service(self):
        """A quota for an unselected service is rejected."""
        with pytest.raises(ValidationError):
            make_config(memory=MemoryQuota(data_mb=512, search_mb=128))

    def test_quota_for(self):
        """quota_for returns None for unselected or quota-less services."""
        config = make_config()
        assert config.quota_for(Service.DATA) == 512
        assert config.quota_for(Service.QUERY) is None
        assert config.quota_for(Service.INDEX) is None

    def test_password_not_exposed(self):
        """The password must not appear in repr or to_dict."""
        config = make_config(admin_password='hunter2')
        assert 'hunter2' not in repr(config)
        assert 'hunter2' not in json.dumps(config.to_dict())
        assert config.to_dict()['ports']['rest'] == 8091


# ===========================================================================
# Settings File Tests
# ===========================================================================

class TestLoadSettingsFile:
    """Tests for load_settings_file."""

    def test_yaml(self, temp_dir):
        """YAML keys should be normalized to argparse destinations."""
        path = temp_dir / "settings.yml"
        path.write_text(
            "cluster-username: admin\n"
            "\"--cluster-password\": secret\n"
            "services: [data, index]\n"
            "data-ramsize: 2048\n"
        )

        settings = load_settings_file(path)

        assert settings == {
            'cluster_username': 'admin',
            'cluster_password': 'secret',
            'services': ['data', 'index'],
            'data_ramsize': 2048,
        }

    def test_json(self, temp_dir):
        """JSON files are supported."""
        path = temp_dir / "settings.json"
        path.write_text(json.dumps({"asg-name": "couchbase-asg", "rest-port": 9091}))

        assert load_settings_file(path) == {'asg_name': 'couchbase-asg', 'rest_port': 9091}

    def test_sniffs_json_without_extension(self, temp_dir):
        """Content starting with '{' is parsed as JSON."""
        path = temp_dir / "settings"
        path.write_text('{"cluster-name": "prod"}')

        assert detect_format(path) == ConfigFormat.JSON
        assert load_settings_file(path) == {'cluster_name': 'prod'}

    def test_empty_file(self, temp_dir):
        """An empty file yields no settings."""
        path = temp_dir / "empty.yml"
        path.write_text("")
        assert load_settings_file(path) == {}

    def test_missing_file(self, temp_dir):
        """A missing file is a validation error."""
        with pytest.raises(ValidationError):
            load_settings_file(temp_dir / "nope.yml")

    def test_malformed(self, temp_dir):
        """Unparsable content is a validation error."""
        path = temp_dir / "bad.json"
        path.write_text("{not json")
        with pytest.raises(ValidationError):
            load_settings_file(path)

    def test_not_a_mapping(self, temp_dir):
        """The top level must be a mapping."""
        path = temp_dir / "list.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValidationError):
            load_settings_file(path)

    def test_normalize_key(self):
        """Leading dashes are stripped and dashes become underscores."""
        assert normalize_key('--index-storage-setting') == 'index_storage_setting'
