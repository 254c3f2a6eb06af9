import pytest

from config import TopologyConfig, load_config, parse_config

def test_load_config_reads_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "team: platform\n"
        "service: webapp\n"
        "environment: demo\n"
        "region: us-west-2\n"
        "tags:\n"
        "  Team: platform\n"
        "template_file: out.yaml\n"
    )
    config = load_config(str(path))
    assert config == TopologyConfig(
        team="platform",
        service="webapp",
        environment="demo",
        region="us-west-2",
        tags={"Team": "platform"},
        template_file="out.yaml",
    )

@pytest.mark.parametrize("missing", ["team", "service", "environment", "region"])
def test_missing_required_key(missing):
    data = {"team": "t", "service": "s", "environment": "e", "region": "us-east-1"}
    del data[missing]
    with pytest.raises(ValueError, match=f"Missing required configuration key: {missing}"):
        parse_config(data)

def test_tags_default_to_empty():
    config = parse_config({"team": "t", "service": "s", "environment": "e", "region": "us-east-1"})
    assert config.tags == {}
    assert config.template_file is None

def test_rejects_non_mapping_document():
    with pytest.raises(ValueError):
        parse_config(["team", "service"])

def test_rejects_non_mapping_tags():
    with pytest.raises(ValueError, match="tags"):
        parse_config({"team": "t", "service": "s", "environment": "e", "region": "r", "tags": ["a"]})

def test_config_is_immutable(config):
    with pytest.raises(AttributeError):
        config.region = "us-east-1"
