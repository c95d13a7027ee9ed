#!/usr/bin/env python3
"""Order service configuration

Aggregates the sub-configs the order service needs:
- logging: log level, format and file
- infrastructure: PostgreSQL order store and NATS JetStream
- services: inventory service endpoint and order lifecycle tunables
"""
import os
from dataclasses import dataclass, field

from .logging_config import LoggingConfig
from .infra_config import InfraConfig
from .service_config import ServiceConfig

def _bool(val: str) -> bool:
    return val.lower() == "true"


# ===========================================
# Main Order Service Configuration
# ===========================================

@dataclass
class OrderServiceSettings:
    """Main order service configuration with all sub-configs"""

    # Environment
    environment: str = "development"
    debug: bool = False

    # Sub-configurations
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    infrastructure: InfraConfig = field(default_factory=InfraConfig)
    services: ServiceConfig = field(default_factory=ServiceConfig)

    @property
    def is_testing(self) -> bool:
        return self.environment in ("testing", "test")

    @classmethod
    def from_env(cls) -> 'OrderServiceSettings':
        """Load complete configuration from environment"""
        env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
        return cls(
            environment=env,
            debug=_bool(os.getenv("DEBUG", "true" if env == "development" else "false")),

            # Load sub-configs
            logging=LoggingConfig.from_env(),
            infrastructure=InfraConfig.from_env(),
            services=ServiceConfig.from_env(),
        )
