import pytest

from config import TopologyConfig
from declarations import declare_topology
from topology import Topology

@pytest.fixture
def config() -> TopologyConfig:
    return TopologyConfig(
        team="platform",
        service="webapp",
        environment="test",
        region="eu-west-1",
        tags={"Team": "platform"},
    )

def declare_for(config: TopologyConfig) -> Topology:
    with Topology(name=f"{config.service}-{config.environment}", region=config.region, tags=config.tags) as topology:
        declare_topology(topology)
    return topology

@pytest.fixture
def topology(config) -> Topology:
    return declare_for(config)
