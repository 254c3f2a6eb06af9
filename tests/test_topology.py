import pytest
import yaml

from topology import (
    REGION,
    BootScript,
    Join,
    Node,
    PolicyDocument,
    Ref,
    Statement,
    Topology,
    TopologyError,
    to_plain,
)

def ids(nodes):
    return [n.id for n in nodes]

def test_evaluation_order_follows_references_not_declaration_order():
    topology = Topology(name="t", region="us-east-1")
    topology.add(Node(id="Instance", type="ec2.Instance", args={"subnet_id": Ref("Subnet")}))
    topology.add(Node(id="Subnet", type="ec2.Subnet", args={"vpc_id": Ref("Vpc")}))
    topology.add(Node(id="Vpc", type="ec2.Vpc"))
    assert ids(topology.evaluation_order()) == ["Vpc", "Subnet", "Instance"]

def test_independent_nodes_keep_declaration_order():
    topology = Topology(name="t", region="us-east-1")
    for name in ["B", "A", "C"]:
        topology.add(Node(id=name, type="s3.Bucket"))
    assert ids(topology.evaluation_order()) == ["B", "A", "C"]

def test_explicit_depends_on_is_an_edge():
    topology = Topology(name="t", region="us-east-1")
    topology.add(Node(id="Instance", type="ec2.Instance", depends_on=("Route",)))
    topology.add(Node(id="Route", type="ec2.Route"))
    assert ids(topology.evaluation_order()) == ["Route", "Instance"]
    assert topology.dependents("Route") == ["Instance"]

def test_references_found_inside_nested_values():
    topology = Topology(name="t", region="us-east-1")
    topology.add(Node(id="Bucket", type="s3.Bucket"))
    topology.add(Node(id="Sg", type="ec2.SecurityGroup"))
    node = topology.add(Node(id="Policy", type="iam.RolePolicy", args={
        "policy": PolicyDocument(statements=(Statement(actions=("s3:GetObject",), resources=(Ref("Bucket", "arn"),)),)),
        "groups": [Ref("Sg")],
        "user_data": BootScript(commands=(Join("echo ", Ref("Bucket", "bucket")),)),
    }))
    assert topology.references(node) == ("Bucket", "Sg")

def test_cycle_is_rejected():
    topology = Topology(name="t", region="us-east-1")
    topology.add(Node(id="A", type="x.A", args={"b": Ref("B")}))
    topology.add(Node(id="B", type="x.B", args={"a": Ref("A")}))
    with pytest.raises(TopologyError, match="cycle"):
        topology.evaluation_order()

def test_self_reference_is_rejected():
    topology = Topology(name="t", region="us-east-1")
    topology.add(Node(id="A", type="x.A", args={"a": Ref("A")}))
    with pytest.raises(TopologyError, match="itself"):
        topology.evaluation_order()

def test_dangling_reference_is_rejected():
    topology = Topology(name="t", region="us-east-1")
    topology.add(Node(id="A", type="x.A", args={"b": Ref("Missing")}))
    with pytest.raises(TopologyError, match="Missing"):
        topology.evaluation_order()

def test_output_with_dangling_reference_is_rejected():
    topology = Topology(name="t", region="us-east-1")
    topology.output("Out", Ref("Missing", "arn"))
    with pytest.raises(TopologyError, match="Out"):
        topology.evaluation_order()

def test_duplicate_ids_are_rejected():
    topology = Topology(name="t", region="us-east-1")
    topology.add(Node(id="A", type="x.A"))
    with pytest.raises(TopologyError):
        topology.add(Node(id="A", type="x.B"))
    topology.output("O", "v")
    with pytest.raises(TopologyError):
        topology.output("O", "w")

def test_sealed_topology_rejects_declarations():
    with Topology(name="t", region="us-east-1") as topology:
        topology.add(Node(id="A", type="x.A"))
    assert topology.sealed
    with pytest.raises(TopologyError, match="sealed"):
        topology.add(Node(id="B", type="x.B"))
    with pytest.raises(TopologyError, match="sealed"):
        topology.output("O", "v")

def test_unknown_node_lookup():
    topology = Topology(name="t", region="us-east-1")
    with pytest.raises(TopologyError):
        topology.node("Nope")

def test_to_plain_serialises_tokens():
    value = Join("http://", Ref("Web", "public_dns"), "/", REGION)
    assert to_plain(value) == {
        "join": ["http://", {"ref": "Web.public_dns"}, "/", {"pseudo": "region"}],
    }

def test_policy_document_serialisation():
    document = PolicyDocument(statements=(Statement(actions=("s3:GetObject", "s3:PutObject")),))
    assert to_plain(document) == {
        "Version": "2012-10-17",
        "Statement": [{"Effect": "Allow", "Action": ["s3:GetObject", "s3:PutObject"], "Resource": "*"}],
    }
    assert document.actions() == ("s3:GetObject", "s3:PutObject")

def test_trust_document_has_single_principal():
    document = PolicyDocument.trust("ec2.amazonaws.com")
    assert to_plain(document)["Statement"] == [{
        "Action": "sts:AssumeRole",
        "Effect": "Allow",
        "Principal": {"Service": "ec2.amazonaws.com"},
    }]
    assert document.actions() == ("sts:AssumeRole",)

def test_boot_script_renders_shebang_and_lines():
    script = BootScript(commands=("echo one", "echo two"))
    assert script.render() == Join("#!/bin/bash -ex", "\n", "echo one", "\n", "echo two")

def test_render_template_is_yaml_of_to_dict():
    topology = Topology(name="t", region="us-east-1", tags={"Team": "x"})
    topology.add(Node(id="Vpc", type="ec2.Vpc", args={"cidr_block": "10.0.0.0/16"}))
    topology.add(Node(id="Image", type="ec2.Ami", args={"most_recent": True}, lookup=True))
    topology.output("VpcId", Ref("Vpc"), "The VPC")
    document = yaml.safe_load(topology.render_template())
    assert document == topology.to_dict()
    assert document["resources"]["Image"]["lookup"] is True
    assert document["outputs"]["VpcId"] == {"description": "The VPC", "value": {"ref": "Vpc.id"}}
