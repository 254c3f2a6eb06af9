"""
Declarations for the CodeDeploy web-app topology.

An artifact bucket, build and deploy roles for CodeBuild/CodeDeploy, and two
web servers (dev and prod) in a public VPC that run the CodeDeploy agent.
Every function takes the Topology context explicitly and only adds nodes to it.
"""

import ipaddress
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from topology import (
    PARTITION,
    REGION,
    BootScript,
    Join,
    Node,
    PolicyDocument,
    Ref,
    Statement,
    Topology,
)

APP_NAME = "DemoApp"

# Default public layout: one /16 split into /18 public subnets, one per AZ
VPC_CIDR = "10.0.0.0/16"
PUBLIC_SUBNET_NEWBITS = 2
AZ_SUFFIXES = ("a", "b")

BUILD_ACTIONS = (
    "codecommit:GitPull",
    "logs:CreateLogGroup",
    "logs:CreateLogStream",
    "logs:PutLogEvents",
    "s3:GetObject",
    "s3:GetObjectVersion",
    "s3:PutObject",
    "ssm:GetParameters",
)

WEB_INSTANCES = (
    ("DevWebApp01", "DEV"),
    ("PrdWebApp01", "PRD"),
)

# cidr_subnet function like terraform-aws-module
def cidr_subnet(prefix: str, newbits: int, netnum: int) -> str:
    network = ipaddress.ip_network(prefix)
    new_prefix_len = network.prefixlen + newbits
    new_subnet_size = 2 ** (32 - new_prefix_len)
    start_ip = network.network_address + (netnum * new_subnet_size)
    return f"{start_ip}/{new_prefix_len}"

def managed_policy_arn(name: str) -> Join:
    return Join("arn:", PARTITION, ":iam::aws:policy/", name)

@dataclass(frozen=True)
class Network:
    vpc_id: str
    public_subnet_ids: Tuple[str, ...]
    default_route_id: str

@dataclass(frozen=True)
class InstanceOptions:
    """Configuration shared by the web servers, passed to each by value."""
    instance_type: str
    image: Ref
    instance_profile: Ref
    security_group: Ref
    user_data: BootScript
    subnet: Ref
    depends_on: Tuple[str, ...] = ()

    def to_args(self) -> Dict[str, Any]:
        return {
            "ami": self.image,
            "instance_type": self.instance_type,
            "iam_instance_profile": self.instance_profile,
            "vpc_security_group_ids": [self.security_group],
            "subnet_id": self.subnet,
            "associate_public_ip_address": True,
            "user_data": self.user_data,
        }

def declare_role(ctx: Topology, role_id: str, service: str, managed_policies: Sequence[str] = ()) -> Node:
    """Role trusted by one service principal, with managed policies attached by reference."""
    role = ctx.add(Node(
        id=role_id,
        type="iam.Role",
        args={"assume_role_policy": PolicyDocument.trust(service)},
    ))
    for policy_name in managed_policies:
        ctx.add(Node(
            id=f"{role_id}{policy_name.split('/')[-1]}",
            type="iam.RolePolicyAttachment",
            args={"role": Ref(role_id, "name"), "policy_arn": managed_policy_arn(policy_name)},
        ))
    return role

def declare_policy(ctx: Topology, policy_id: str, statements: Sequence[Statement], roles: Sequence[str]) -> List[Node]:
    """Inline policy attached to every role given."""
    document = PolicyDocument(statements=tuple(statements))
    nodes = []
    for role_id in roles:
        node_id = policy_id if len(roles) == 1 else f"{policy_id}{role_id}"
        nodes.append(ctx.add(Node(
            id=node_id,
            type="iam.RolePolicy",
            args={"role": Ref(role_id, "name"), "policy": document},
        )))
    return nodes

def declare_artifact_bucket(ctx: Topology) -> Node:
    # Contents go with the stack on teardown
    return ctx.add(Node(id="ArtifactBucket", type="s3.Bucket", args={"force_destroy": True}))

def declare_build_role(ctx: Topology) -> Node:
    role = declare_role(ctx, "CodeBuildRole", "codebuild.amazonaws.com")
    declare_policy(ctx, "CodeBuildRolePolicy", [Statement(actions=BUILD_ACTIONS)], roles=[role.id])
    return role

def declare_deploy_role(ctx: Topology) -> Node:
    return declare_role(
        ctx, "CodeDeployRole", "codedeploy.amazonaws.com",
        managed_policies=["service-role/AWSCodeDeployRole"],
    )

def declare_network(ctx: Topology, network_id: str = "VPC") -> Network:
    ctx.add(Node(
        id=network_id,
        type="ec2.Vpc",
        args={
            "cidr_block": VPC_CIDR,
            "enable_dns_hostnames": True,
            "enable_dns_support": True,
            "tags": {"Name": f"{ctx.name}/{network_id}"},
        },
    ))
    igw = ctx.add(Node(
        id=f"{network_id}IGW",
        type="ec2.InternetGateway",
        args={"vpc_id": Ref(network_id), "tags": {"Name": f"{ctx.name}/{network_id}"}},
    ))
    route_table = ctx.add(Node(
        id=f"{network_id}PublicRouteTable",
        type="ec2.RouteTable",
        args={"vpc_id": Ref(network_id), "tags": {"Name": f"{ctx.name}/{network_id}/Public"}},
    ))
    default_route = ctx.add(Node(
        id=f"{network_id}PublicDefaultRoute",
        type="ec2.Route",
        args={
            "route_table_id": Ref(route_table.id),
            "destination_cidr_block": "0.0.0.0/0",
            "gateway_id": Ref(igw.id),
        },
    ))

    subnet_ids = []
    for idx, suffix in enumerate(AZ_SUFFIXES):
        subnet_id = f"{network_id}PublicSubnet{idx + 1}"
        ctx.add(Node(
            id=subnet_id,
            type="ec2.Subnet",
            args={
                "vpc_id": Ref(network_id),
                "cidr_block": cidr_subnet(VPC_CIDR, PUBLIC_SUBNET_NEWBITS, idx),
                "availability_zone": Join(REGION, suffix),
                "map_public_ip_on_launch": True,
                "tags": {"Name": f"{ctx.name}/{subnet_id}"},
            },
        ))
        ctx.add(Node(
            id=f"{subnet_id}RouteTableAssociation",
            type="ec2.RouteTableAssociation",
            args={"route_table_id": Ref(route_table.id), "subnet_id": Ref(subnet_id)},
        ))
        subnet_ids.append(subnet_id)

    return Network(vpc_id=network_id, public_subnet_ids=tuple(subnet_ids), default_route_id=default_route.id)

def declare_instance_role(ctx: Topology) -> Tuple[Node, Node]:
    """Role and instance profile used by the web servers."""
    role = declare_role(
        ctx, "WebAppInstanceRole", "ec2.amazonaws.com",
        managed_policies=["AWSCodeDeployReadOnlyAccess", "AmazonEC2ReadOnlyAccess"],
    )
    declare_policy(ctx, "DeploymentInstancePolicy", [Statement(actions=("s3:GetObject",))], roles=[role.id])
    profile = ctx.add(Node(
        id="WebAppInstanceProfile",
        type="iam.InstanceProfile",
        args={"role": Ref(role.id, "name")},
    ))
    return role, profile

def declare_security_group(ctx: Topology, network: Network) -> Node:
    return ctx.add(Node(
        id="WebServersSecurityGroup",
        type="ec2.SecurityGroup",
        args={
            "description": f"{ctx.name}/WebServersSecurityGroup",
            "vpc_id": Ref(network.vpc_id),
            "ingress": [{
                "protocol": "tcp",
                "from_port": 80,
                "to_port": 80,
                "cidr_blocks": ["0.0.0.0/0"],
                "description": "from 0.0.0.0/0:80",
            }],
            # Platform default: all outbound traffic allowed
            "egress": [{
                "protocol": "-1",
                "from_port": 0,
                "to_port": 0,
                "cidr_blocks": ["0.0.0.0/0"],
                "description": "Allow all outbound traffic by default",
            }],
        },
    ))

def build_boot_script(region: Any = REGION) -> BootScript:
    """Install the CLI and git, then install and start the CodeDeploy agent."""
    return BootScript(commands=(
        "yum install -y aws-cli",
        "yum install -y git",
        "cd /home/ec2-user/",
        Join("wget https://aws-codedeploy-", region, ".s3.amazonaws.com/latest/codedeploy-agent.noarch.rpm"),
        "yum -y install codedeploy-agent.noarch.rpm",
        "service codedeploy-agent start",
    ))

def declare_machine_image(ctx: Topology) -> Node:
    # Latest Amazon Linux 2 image
    return ctx.add(Node(
        id="AmazonLinuxImage",
        type="ec2.Ami",
        args={
            "most_recent": True,
            "owners": ["amazon"],
            "filters": [
                {"name": "name", "values": ["amzn2-ami-hvm-*-x86_64-gp2"]},
                {"name": "state", "values": ["available"]},
            ],
        },
        lookup=True,
    ))

def declare_instance(ctx: Topology, instance_id: str, options: InstanceOptions, env: str) -> Node:
    args = options.to_args()
    args["tags"] = {"Name": instance_id, "App": APP_NAME, "Env": env}
    return ctx.add(Node(id=instance_id, type="ec2.Instance", args=args, depends_on=options.depends_on))

def declare_web_instances(ctx: Topology, network: Network, profile: Node, security_group: Node,
                          boot_script: BootScript) -> List[Node]:
    image = declare_machine_image(ctx)
    options = InstanceOptions(
        instance_type="t3.small",
        image=Ref(image.id),
        instance_profile=Ref(profile.id, "name"),
        security_group=Ref(security_group.id),
        user_data=boot_script,
        subnet=Ref(network.public_subnet_ids[0]),
        depends_on=(network.default_route_id,),
    )
    return [declare_instance(ctx, instance_id, options, env) for instance_id, env in WEB_INSTANCES]

def declare_outputs(ctx: Topology, dev: Node, prd: Node, bucket: Node, build_role: Node, deploy_role: Node) -> None:
    ctx.output("DevLocation", Join("http://", Ref(dev.id, "public_dns")), "Development web server location")
    ctx.output("PrdLocation", Join("http://", Ref(prd.id, "public_dns")), "Production web server location")
    ctx.output("BucketName", Ref(bucket.id, "bucket"), "Bucket for storing artifacts")
    ctx.output("BuildRoleArn", Ref(build_role.id, "arn"), "Build role ARN")
    ctx.output("DeployRoleArn", Ref(deploy_role.id, "arn"), "Deploy role ARN")

def declare_topology(ctx: Topology) -> Topology:
    """Declare the whole web-app topology into ctx, in a fixed order."""
    bucket = declare_artifact_bucket(ctx)
    build_role = declare_build_role(ctx)
    deploy_role = declare_deploy_role(ctx)
    network = declare_network(ctx)
    _, profile = declare_instance_role(ctx)
    security_group = declare_security_group(ctx, network)
    boot_script = build_boot_script()
    dev, prd = declare_web_instances(ctx, network, profile, security_group, boot_script)
    declare_outputs(ctx, dev, prd, bucket, build_role, deploy_role)
    return ctx
