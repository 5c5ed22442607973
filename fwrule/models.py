"""
Pydantic models for rule definitions and API responses.
"""
from typing import Dict, List, Literal, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

from . import config
from .plan import AddressSet, RulePlan, RuleSpec, ServiceSpec

Protocol = Literal["ah", "esp", "icmp", "tcp", "udp", "all"]
ApplyTo = Literal["ipv4", "ipv6", "all", "auto"]


class RuleRequest(BaseModel):
    """A high-level firewall rule: who may reach what."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(
        min_length=1,
        max_length=128,
        description="Identifier of the rule; used in generated object names.",
        json_schema_extra={"example": "allow ssh"}
    )
    trusted_nets: Union[str, List[str]] = Field(
        description="Addresses, CIDR networks or 'ALL' allowed by the rule.",
        json_schema_extra={"example": ["10.0.0.1", "10.0.0.0/24"]}
    )
    protocol: Protocol = Field(
        description="Protocol matched by the rule.",
        json_schema_extra={"example": "tcp"}
    )
    dports: Optional[Union[int, str, List[Union[int, str]]]] = Field(
        None,
        description="Destination ports or ranges ('1024:2048' or '1024-2048').",
        json_schema_extra={"example": [22, "8000:8080"]}
    )
    icmp_blocks: Optional[Union[str, List[str]]] = Field(
        None,
        description="ICMP types for icmp rules.",
        json_schema_extra={"example": ["echo-request"]}
    )
    order: Optional[int] = Field(
        None,
        ge=0,
        description="Ordering number embedded in generated rich rule names.",
        json_schema_extra={"example": 11}
    )
    apply_to: ApplyTo = Field(
        "auto",
        description="Address families to generate rules for; 'auto' derives them from trusted_nets."
    )
    prefix: Optional[str] = Field(None, description="Prefix for generated object names.")
    zone: Optional[str] = Field(None, description="Zone receiving the rules.")

    @field_validator('prefix')
    @classmethod
    def validate_prefix(cls, v):
        if v is not None and not config.is_valid_prefix(v):
            raise ValueError("Invalid prefix: must start with a letter and contain at most 16 of [A-Za-z0-9_-]")
        return v

    @field_validator('zone')
    @classmethod
    def validate_zone(cls, v):
        if v is not None and not config.is_valid_zone(v):
            raise ValueError("Invalid zone name")
        return v


class PlanResponse(BaseModel):
    """Objects compiled for one rule, in the order they would be applied."""
    rule: str
    services: List[ServiceSpec]
    address_sets: List[AddressSet]
    rich_rules: List[RuleSpec]
    rendered_rich_rules: Dict[str, List[str]] = Field(
        description="firewalld rich rule text per generated rich rule name."
    )
    order: List[str] = Field(description="Object references in apply order.")
    edges: List[Tuple[str, str]]
    warnings: List[str]

    @classmethod
    def from_plan(cls, plan: RulePlan, rendered: Dict[str, List[str]]) -> "PlanResponse":
        return cls(
            rule=plan.rule,
            services=plan.services,
            address_sets=plan.address_sets,
            rich_rules=plan.rich_rules,
            rendered_rich_rules=rendered,
            order=[obj.ref for obj in plan.ordered()],
            edges=plan.edges,
            warnings=plan.warnings,
        )


class ApplyResponse(BaseModel):
    rule: str
    applied: List[str] = Field(description="Object references written to firewalld.")
    warnings: List[str]


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(
        description="Service status indicator",
        json_schema_extra={"example": "ok"}
    )


class ErrorResponse(BaseModel):
    """Response schema for error responses."""
    error: str = Field(
        description="Error message describing what went wrong",
        json_schema_extra={"example": "Invalid or missing API key."}
    )
