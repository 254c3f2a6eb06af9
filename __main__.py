import pulumi
from builder import TopologyBuilder
from config import TopologyConfig, load_config
from declarations import declare_topology
from topology import Topology

def declare(config: TopologyConfig) -> Topology:
    """Declare the topology for a configuration and seal it."""
    name = f"{config.team}-{config.service}-{config.environment}"
    with Topology(name=name, region=config.region, tags=config.tags) as topology:
        declare_topology(topology)
    return topology

def write_template(topology: Topology, file_path: str) -> None:
    with open(file_path, "w") as file:
        file.write(topology.render_template())
    pulumi.log.info(f"Wrote topology template to {file_path}")

def main():
    # Load YAML configuration
    config = load_config("config.yaml")

    try:
        topology = declare(config)
    except Exception as e:
        pulumi.log.error(f"Failed to declare topology: {e}")
        raise

    if config.template_file:
        write_template(topology, config.template_file)

    builder = TopologyBuilder(config)
    try:
        builder.build(topology)
    except Exception as e:
        pulumi.log.error(f"Failed during resource build: {e}")
        raise

    builder.export_outputs(topology)

if __name__ == "__main__":
    main()
