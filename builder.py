import inspect
import json
import re
import pulumi
import pulumi_aws as aws
from typing import Any, Dict, List

from config import TopologyConfig
from topology import (
    BootScript,
    Join,
    Node,
    PolicyDocument,
    Pseudo,
    Ref,
    Statement,
    Topology,
    TopologyError,
    statement_to_dict,
)

AWS_REGION_ABBREVIATIONS = {
    "us-east-1": "use1",
    "us-east-2": "use2",
    "us-west-1": "usw1",
    "us-west-2": "usw2",
    "af-south-1": "afs1",
    "ap-east-1": "ape1",
    "ap-south-1": "aps1",
    "ap-northeast-1": "apne1",
    "ap-northeast-2": "apne2",
    "ap-northeast-3": "apne3",
    "ap-southeast-1": "apse1",
    "ap-southeast-2": "apse2",
    "ca-central-1": "cac1",
    "eu-central-1": "euc1",
    "eu-west-1": "euw1",
    "eu-west-2": "euw2",
    "eu-west-3": "euw3",
    "eu-north-1": "eun1",
    "eu-south-1": "eus1",
    "me-south-1": "mes1",
    "sa-east-1": "sae1",
    "us-gov-east-1": "usge1",
    "us-gov-west-1": "usgw1",
    "cn-north-1": "cnn1",
    "cn-northwest-1": "cnnw1",
}

def to_snake_case(name: str) -> str:
    name = re.sub(r'([A-Z]+)([A-Z][a-z])', r'\1_\2', name)
    return re.sub(r'([a-z\d])([A-Z])', r'\1_\2', name).lower()

def partition_for(region: str) -> str:
    if region.startswith("cn-"):
        return "aws-cn"
    if region.startswith("us-gov-"):
        return "aws-us-gov"
    return "aws"

def contains_output(value: Any) -> bool:
    if isinstance(value, pulumi.Output):
        return True
    if isinstance(value, dict):
        return any(contains_output(v) for v in value.values())
    if isinstance(value, (list, tuple)):
        return any(contains_output(v) for v in value)
    return False

def resolve_value(value: Any, resources: Dict[str, Any], pseudo: Dict[str, str]) -> Any:
    if isinstance(value, Ref):
        if value.node_id not in resources:
            raise TopologyError(f"Referenced resource '{value.node_id}' not found.")
        attr_val = getattr(resources[value.node_id], value.attribute, None)
        if attr_val is None:
            raise TopologyError(f"Attribute '{value.attribute}' not found on resource '{value.node_id}'")
        return attr_val
    elif isinstance(value, Pseudo):
        if value.name not in pseudo:
            raise TopologyError(f"Unknown pseudo parameter '{value.name}'")
        return pseudo[value.name]
    elif isinstance(value, Join):
        parts = [resolve_value(part, resources, pseudo) for part in value.parts]
        if contains_output(parts):
            return pulumi.Output.concat(*parts)
        return "".join(str(part) for part in parts)
    elif isinstance(value, BootScript):
        return resolve_value(value.render(), resources, pseudo)
    elif isinstance(value, Statement):
        return resolve_value(statement_to_dict(value), resources, pseudo)
    elif isinstance(value, PolicyDocument):
        document = {
            "Version": value.version,
            "Statement": [resolve_value(s, resources, pseudo) for s in value.statements],
        }
        if contains_output(document):
            return pulumi.Output.from_input(document).apply(json.dumps)
        return json.dumps(document)
    elif isinstance(value, dict):
        return {k: resolve_value(v, resources, pseudo) for k, v in value.items()}
    elif isinstance(value, (list, tuple)):
        return [resolve_value(item, resources, pseudo) for item in value]
    else:
        return value

class TopologyBuilder:
    """Materialises a declared Topology into pulumi_aws resources."""

    def __init__(self, config: TopologyConfig):
        self.config = config
        self.resources: Dict[str, Any] = {}
        self.outputs: Dict[str, Any] = {}
        self.pseudo: Dict[str, str] = {}

    def get_abbreviation(self, region: str) -> str:
        return AWS_REGION_ABBREVIATIONS.get(region.lower(), region.split("-")[0].lower())

    def generate_resource_name(self, base_name: str) -> str:
        team = self.config.team.strip().lower()
        service = self.config.service.strip().lower()
        env = self.config.environment.strip().lower()
        reg_abbr = self.get_abbreviation(self.config.region)
        base = to_snake_case(base_name).replace("_", "-")
        return f"{team}-{service}-{env}-{reg_abbr}-{base}".lower()

    def resolve_args(self, args: dict) -> dict:
        return {key: resolve_value(value, self.resources, self.pseudo) for key, value in args.items()}

    def _apply_common_parameters(self, resolved_args: dict, init_sig: inspect.Signature, tags: Dict[str, str]) -> dict:
        if "tags" in init_sig.parameters:
            if tags or resolved_args.get("tags"):
                resolved_args["tags"] = {**tags, **(resolved_args.get("tags") or {})}
        else:
            resolved_args.pop("tags", None)
        if "region" in init_sig.parameters:
            if "region" not in resolved_args:
                resolved_args["region"] = self.pseudo["region"]
        else:
            resolved_args.pop("region", None)
        return resolved_args

    def _resolve_module(self, node: Node) -> Any:
        if "." not in node.type:
            raise TopologyError(f"Resource type '{node.type}' of '{node.id}' is not '<module>.<Class>'")
        module_name, _ = node.type.rsplit(".", 1)
        module = getattr(aws, module_name, None)
        if not module:
            raise TopologyError(f"AWS module '{module_name}' not found for '{node.id}'.")
        return module

    def _lookup(self, node: Node, resolved_args: dict) -> Any:
        module = self._resolve_module(node)
        class_name = node.type.rsplit(".", 1)[1]
        get_func_name = f"get_{to_snake_case(class_name)}"
        get_func = getattr(module, get_func_name, None)
        if get_func is None:
            raise TopologyError(f"Function '{get_func_name}' not found for '{node.type}'.")
        sig = inspect.signature(get_func)
        get_required = {k for k, param in sig.parameters.items() if k not in {"opts"} and param.default == param.empty}
        missing = {k for k in get_required if k not in resolved_args}
        if missing:
            raise TopologyError(f"Missing required params {missing} for lookup '{node.id}'.")
        # Lookups run in the deployment region, same as the resources built from them
        if "region" in sig.parameters and "region" not in resolved_args:
            resolved_args["region"] = self.pseudo["region"]
        result = get_func(**resolved_args)
        pulumi.log.info(f"Looked up '{node.id}' via '{get_func_name}'")
        return result

    def _create(self, node: Node, resolved_args: dict, tags: Dict[str, str]) -> Any:
        module = self._resolve_module(node)
        class_name = node.type.rsplit(".", 1)[1]
        ResourceClass = getattr(module, class_name, None)
        if ResourceClass is None:
            raise TopologyError(f"Resource class '{class_name}' not found for '{node.id}'.")
        # Generated resources take **kwargs in __init__; the real parameters live on _internal_init
        init_sig = inspect.signature(getattr(ResourceClass, "_internal_init", ResourceClass.__init__))
        resolved_args = self._apply_common_parameters(resolved_args, init_sig, tags)

        opts = None
        if node.depends_on:
            opts = pulumi.ResourceOptions(depends_on=[self.resources[dep] for dep in node.depends_on])

        pulumi_name = self.generate_resource_name(node.id)
        pulumi.log.debug(f"Resolved args for '{node.id}': {resolved_args}")
        resource_instance = ResourceClass(pulumi_name, opts=opts, **resolved_args)
        pulumi.log.info(f"Created resource: {pulumi_name} ({node.type})")
        return resource_instance

    def build(self, topology: Topology) -> Dict[str, Any]:
        self.pseudo = {"region": topology.region, "partition": partition_for(topology.region)}
        order: List[Node] = topology.evaluation_order()
        for node in order:
            resolved_args = self.resolve_args(node.args)
            if node.lookup:
                self.resources[node.id] = self._lookup(node, resolved_args)
            else:
                self.resources[node.id] = self._create(node, resolved_args, topology.tags)
        return self.resources

    def export_outputs(self, topology: Topology) -> Dict[str, Any]:
        for spec in topology.outputs:
            # Stack outputs carry no description; it only appears in the rendered template
            value = resolve_value(spec.value, self.resources, self.pseudo)
            pulumi.export(spec.name, value)
            self.outputs[spec.name] = value
        return self.outputs
