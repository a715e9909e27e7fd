from __future__ import annotations

import os
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Literal, Mapping, Optional


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class GatewayConfig:
    """Settings for the OpenAI chat-completions gateway."""
    model: str = "gpt-4.1"
    temperature: float = 0.3
    timeout: float = 60.0  # seconds, per call
    response_format: Literal["json_object", "json_schema"] = "json_object"
    max_transport_attempts: int = 1  # 1 = no retry

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PipelineConfig:
    concurrent_mapping: bool = False  # run MapConditions and MapProcedures together
    severity_concurrency: int = 1  # max in-flight AssessSeverity calls

    def __post_init__(self):
        if self.severity_concurrency < 1:
            raise ValueError("severity_concurrency must be >= 1")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class MedScribeConfig:
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "MedScribeConfig":
        env = os.environ if environ is None else environ
        gateway = GatewayConfig(
            model=env.get("MEDSCRIBE_MODEL", GatewayConfig.model),
            temperature=float(env.get("MEDSCRIBE_TEMPERATURE", GatewayConfig.temperature)),
            timeout=float(env.get("MEDSCRIBE_TIMEOUT", GatewayConfig.timeout)),
            response_format=env.get("MEDSCRIBE_RESPONSE_FORMAT", GatewayConfig.response_format),  # type: ignore[arg-type]
            max_transport_attempts=int(env.get("MEDSCRIBE_MAX_TRANSPORT_ATTEMPTS", GatewayConfig.max_transport_attempts)),
        )
        pipeline = PipelineConfig(
            concurrent_mapping=_env_bool(env.get("MEDSCRIBE_CONCURRENT_MAPPING"), PipelineConfig.concurrent_mapping),
            severity_concurrency=int(env.get("MEDSCRIBE_SEVERITY_CONCURRENCY", PipelineConfig.severity_concurrency)),
        )
        return cls(gateway=gateway, pipeline=pipeline)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
