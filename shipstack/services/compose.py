"""Base stack rendering.

``compose`` turns a ``WorkloadConfig`` and an ``AddonBundle`` into the
workload's stack template: a Fargate task definition and service, their
roles and log group, optional autoscaling, and the addons nested stack.

Rendering is deterministic. Identical inputs produce byte-identical YAML,
which is what makes the deploy-time diff meaningful.
"""

from __future__ import annotations

from shipstack.core.workload import WorkloadConfig
from shipstack.template.document import StackTemplate

from .addons import AddonBundle, to_upper_snake

__all__ = [
    "compose",
    "stack_parameters",
    "ADDONS_STACK_ID",
    "EXECUTION_ROLE_ID",
    "TASK_DEFINITION_ID",
    "ADDONS_TEMPLATE_URL_PARAM",
]

ADDONS_STACK_ID = "AddonsStack"
EXECUTION_ROLE_ID = "ExecutionRole"
TASK_ROLE_ID = "TaskRole"
TASK_DEFINITION_ID = "TaskDefinition"
SERVICE_ID = "Service"
LOG_GROUP_ID = "LogGroup"

ADDONS_TEMPLATE_URL_PARAM = "AddonsTemplateURL"

_EXECUTION_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"
_LOG_RETENTION_DAYS = 30
_STREAM_PREFIX = "shipstack"


def _ref(name: str) -> dict[str, object]:
    return {"Ref": name}


def _get_att(logical_id: str, attribute: str) -> dict[str, object]:
    return {"Fn::GetAtt": [logical_id, attribute]}


def _sub(text: str) -> dict[str, object]:
    return {"Fn::Sub": text}


def _import(export_suffix: str) -> dict[str, object]:
    return {"Fn::ImportValue": _sub("${AppName}-${EnvName}-" + export_suffix)}


def _addons_output(name: str) -> dict[str, object]:
    return _get_att(ADDONS_STACK_ID, f"Outputs.{name}")


def _assume_role(service: str) -> dict[str, object]:
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Service": service},
                "Action": "sts:AssumeRole",
            }
        ],
    }


def _parameters(config: WorkloadConfig, bundle: AddonBundle) -> dict[str, object]:
    params: dict[str, object] = {
        "AppName": {"Type": "String"},
        "EnvName": {"Type": "String"},
        "WorkloadName": {"Type": "String"},
        "ContainerImage": {"Type": "String"},
        "TaskCPU": {"Type": "String"},
        "TaskMemory": {"Type": "String"},
        "TaskCount": {"Type": "Number"},
    }
    if config.port is not None:
        params["ContainerPort"] = {"Type": "Number"}
    if not bundle.is_empty:
        params[ADDONS_TEMPLATE_URL_PARAM] = {"Type": "String"}
    return params


def _environment(config: WorkloadConfig, bundle: AddonBundle) -> list[dict[str, object]]:
    env: dict[str, object] = {
        "SHIPSTACK_APPLICATION_NAME": _ref("AppName"),
        "SHIPSTACK_ENVIRONMENT_NAME": _ref("EnvName"),
        "SHIPSTACK_SERVICE_NAME": _ref("WorkloadName"),
    }
    for key, value in config.variables.items():
        env[key] = value
    for output in bundle.variable_outputs:
        env[to_upper_snake(output)] = _addons_output(output)
    return [{"Name": key, "Value": env[key]} for key in sorted(env)]


def _secrets(config: WorkloadConfig, bundle: AddonBundle) -> list[dict[str, object]]:
    secrets: dict[str, object] = dict(config.secrets)
    for output in bundle.secret_outputs:
        secrets[to_upper_snake(output)] = _addons_output(output)
    return [{"Name": key, "ValueFrom": secrets[key]} for key in sorted(secrets)]


def _container(config: WorkloadConfig, bundle: AddonBundle) -> dict[str, object]:
    container: dict[str, object] = {
        "Name": config.name,
        "Image": _ref("ContainerImage"),
        "Essential": True,
    }
    if config.port is not None:
        container["PortMappings"] = [{"ContainerPort": _ref("ContainerPort"), "Protocol": "tcp"}]
    container["Environment"] = _environment(config, bundle)
    secrets = _secrets(config, bundle)
    if secrets:
        container["Secrets"] = secrets
    if config.health_check_path and config.port is not None:
        url = f"http://localhost:{config.port}{config.health_check_path}"
        container["HealthCheck"] = {
            "Command": ["CMD-SHELL", f"curl -f {url} || exit 1"],
            "Interval": 10,
            "Retries": 2,
            "StartPeriod": 0,
            "Timeout": 5,
        }
    container["LogConfiguration"] = {
        "LogDriver": "awslogs",
        "Options": {
            "awslogs-region": _ref("AWS::Region"),
            "awslogs-group": _ref(LOG_GROUP_ID),
            "awslogs-stream-prefix": _STREAM_PREFIX,
        },
    }
    return container


def _execution_role(config: WorkloadConfig, bundle: AddonBundle) -> dict[str, object]:
    policy_arns: list[object] = [_EXECUTION_POLICY_ARN]
    policy_arns.extend(_addons_output(name) for name in bundle.policy_outputs)

    props: dict[str, object] = {
        "AssumeRolePolicyDocument": _assume_role("ecs-tasks.amazonaws.com"),
        "ManagedPolicyArns": policy_arns,
    }
    if config.secrets or bundle.secret_outputs:
        props["Policies"] = [
            {
                "PolicyName": "ReadSecrets",
                "PolicyDocument": {
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Action": ["ssm:GetParameters", "secretsmanager:GetSecretValue"],
                            "Resource": "*",
                            "Condition": {
                                "StringEquals": {
                                    "aws:ResourceTag/shipstack-application": _ref("AppName"),
                                    "aws:ResourceTag/shipstack-environment": _ref("EnvName"),
                                }
                            },
                        }
                    ],
                },
            }
        ]
    return {"Type": "AWS::IAM::Role", "Properties": props}


def _service() -> dict[str, object]:
    return {
        "Type": "AWS::ECS::Service",
        "Properties": {
            "Cluster": _import("ClusterId"),
            "TaskDefinition": _ref(TASK_DEFINITION_ID),
            "DesiredCount": _ref("TaskCount"),
            "LaunchType": "FARGATE",
            "PropagateTags": "SERVICE",
            "DeploymentConfiguration": {
                "MinimumHealthyPercent": 100,
                "MaximumPercent": 200,
                "DeploymentCircuitBreaker": {"Enable": True, "Rollback": True},
            },
            "NetworkConfiguration": {
                "AwsvpcConfiguration": {
                    "AssignPublicIp": "DISABLED",
                    "Subnets": {"Fn::Split": [",", _import("PrivateSubnets")]},
                    "SecurityGroups": [_import("EnvironmentSecurityGroup")],
                }
            },
        },
    }


def _autoscaling(config: WorkloadConfig) -> dict[str, object]:
    if config.count_range is None:
        return {}
    scaling = config.count_range
    return {
        "AutoScalingTarget": {
            "Type": "AWS::ApplicationAutoScaling::ScalableTarget",
            "Properties": {
                "MinCapacity": scaling.min,
                "MaxCapacity": scaling.max,
                "ResourceId": {
                    "Fn::Join": [
                        "/",
                        ["service", _import("ClusterId"), _get_att(SERVICE_ID, "Name")],
                    ]
                },
                "ScalableDimension": "ecs:service:DesiredCount",
                "ServiceNamespace": "ecs",
                "RoleARN": _sub(
                    "arn:${AWS::Partition}:iam::${AWS::AccountId}:role/aws-service-role/"
                    "ecs.application-autoscaling.amazonaws.com/"
                    "AWSServiceRoleForApplicationAutoScaling_ECSService"
                ),
            },
        },
        "AutoScalingPolicy": {
            "Type": "AWS::ApplicationAutoScaling::ScalingPolicy",
            "Properties": {
                "PolicyName": _sub("${AWS::StackName}-cpu"),
                "PolicyType": "TargetTrackingScaling",
                "ScalingTargetId": _ref("AutoScalingTarget"),
                "TargetTrackingScalingPolicyConfiguration": {
                    "PredefinedMetricSpecification": {
                        "PredefinedMetricType": "ECSServiceAverageCPUUtilization"
                    },
                    "ScaleInCooldown": 120,
                    "ScaleOutCooldown": 60,
                    "TargetValue": scaling.cpu_percentage,
                },
            },
        },
    }


def _addons_stack(bundle: AddonBundle) -> dict[str, object]:
    params: dict[str, object] = {
        "App": _ref("AppName"),
        "Env": _ref("EnvName"),
        "Name": _ref("WorkloadName"),
    }
    for name in sorted(bundle.parameter_values):
        params[name] = bundle.parameter_values[name]
    return {
        "Type": "AWS::CloudFormation::Stack",
        "Properties": {
            "TemplateURL": _ref(ADDONS_TEMPLATE_URL_PARAM),
            "Parameters": params,
        },
    }


def compose(config: WorkloadConfig, bundle: AddonBundle) -> StackTemplate:
    """Render the workload stack, embedding the addons bundle when present."""
    resources: dict[str, object] = {
        LOG_GROUP_ID: {
            "Type": "AWS::Logs::LogGroup",
            "Properties": {
                "LogGroupName": _sub("/shipstack/${AppName}/${EnvName}/${WorkloadName}"),
                "RetentionInDays": _LOG_RETENTION_DAYS,
            },
        },
        EXECUTION_ROLE_ID: _execution_role(config, bundle),
        TASK_ROLE_ID: {
            "Type": "AWS::IAM::Role",
            "Properties": {"AssumeRolePolicyDocument": _assume_role("ecs-tasks.amazonaws.com")},
        },
        TASK_DEFINITION_ID: {
            "Type": "AWS::ECS::TaskDefinition",
            "Properties": {
                "Family": _sub("${AppName}-${EnvName}-${WorkloadName}"),
                "Cpu": _ref("TaskCPU"),
                "Memory": _ref("TaskMemory"),
                "NetworkMode": "awsvpc",
                "RequiresCompatibilities": ["FARGATE"],
                "ExecutionRoleArn": _get_att(EXECUTION_ROLE_ID, "Arn"),
                "TaskRoleArn": _get_att(TASK_ROLE_ID, "Arn"),
                "ContainerDefinitions": [_container(config, bundle)],
            },
        },
        SERVICE_ID: _service(),
    }
    resources.update(_autoscaling(config))
    if not bundle.is_empty:
        resources[ADDONS_STACK_ID] = _addons_stack(bundle)

    return StackTemplate.from_plain(
        {
            "AWSTemplateFormatVersion": "2010-09-09",
            "Description": f"Workload {config.name} of application {config.app}.",
            "Parameters": _parameters(config, bundle),
            "Resources": resources,
            "Outputs": {
                "ServiceName": {"Value": _get_att(SERVICE_ID, "Name")},
                "TaskDefinitionArn": {"Value": _ref(TASK_DEFINITION_ID)},
            },
        }
    )


def stack_parameters(
    config: WorkloadConfig,
    *,
    addons_template_url: str | None = None,
) -> dict[str, str]:
    """Parameter values matching the Parameters section rendered by ``compose``."""
    values = {
        "AppName": config.app,
        "EnvName": config.env,
        "WorkloadName": config.name,
        "ContainerImage": config.image,
        "TaskCPU": str(config.cpu),
        "TaskMemory": str(config.memory),
        "TaskCount": str(config.count),
    }
    if config.port is not None:
        values["ContainerPort"] = str(config.port)
    if addons_template_url is not None:
        values[ADDONS_TEMPLATE_URL_PARAM] = addons_template_url
    return values
