from .models import Base, Deployment, DeploymentStatus, AutoDeployRule, TERMINAL_STATUSES
from .connection import Database, get_db
from .repositories import DeploymentRepository, AutoDeployRuleRepository, DeploymentFilter

__all__ = [
    "Base",
    "Deployment",
    "DeploymentStatus",
    "AutoDeployRule",
    "TERMINAL_STATUSES",
    "Database",
    "get_db",
    "DeploymentRepository",
    "AutoDeployRuleRepository",
    "DeploymentFilter",
]
