"""Four-tier operation classification and permission checks.

Every operation is mapped to a tier (1 Assessment ... 4 Production).
Higher tiers need a higher user clearance and, from tier 3, human approval.
Operations missing from the catalogue are treated as tier 4.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional

from core.observability.logging import get_logger


logger = get_logger(__name__)


class SecurityTier(IntEnum):
    """Tier levels, ordered by risk."""
    ASSESSMENT = 1
    DEVELOPMENT = 2
    STAGING = 3
    PRODUCTION = 4


@dataclass(frozen=True)
class TierDefinition:
    level: int
    label: str
    description: str
    requires_approval: bool
    approvers: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level,
            "label": self.label,
            "description": self.description,
            "requiresApproval": self.requires_approval,
            "approvers": self.approvers,
        }


SECURITY_TIERS: Dict[SecurityTier, TierDefinition] = {
    SecurityTier.ASSESSMENT: TierDefinition(
        1, "Assessment", "Read-only analysis and discovery", False, 0),
    SecurityTier.DEVELOPMENT: TierDefinition(
        2, "Development", "Development and sandbox changes", False, 0),
    SecurityTier.STAGING: TierDefinition(
        3, "Staging", "Pre-production validation and staging loads", True, 1),
    SecurityTier.PRODUCTION: TierDefinition(
        4, "Production", "Production system changes, highest risk", True, 2),
}

PRODUCTION_ROLES = ("admin", "production")


# =============================================================================
# Operation -> Tier Catalogue
# =============================================================================

OPERATION_TIERS: Dict[str, int] = {
    # Extraction (read-only)
    "extraction.run": 1,
    "extraction.export": 1,
    "extraction.schedule": 1,
    "extraction.profile": 1,

    # Process intelligence (read-only)
    "process_mining.analyze": 1,
    "process_mining.discover": 1,
    "process_mining.conformance": 1,
    "process_mining.export": 1,

    # Migration - analysis
    "migration.analyze": 1,
    "migration.assess": 1,
    "migration.map_fields": 1,
    "migration.compare": 1,

    # Migration - development
    "migration.transform": 2,
    "migration.validate": 2,
    "migration.load_sandbox": 2,
    "migration.test_run": 2,
    "migration.generate_template": 2,

    # Migration - staging
    "migration.load_staging": 3,
    "migration.cutover_rehearsal": 3,
    "migration.data_reconciliation": 3,

    # Migration - production
    "migration.load_production": 4,
    "migration.cutover_execute": 4,
    "migration.go_live": 4,

    # Transport management
    "transport.create": 2,
    "transport.modify": 2,
    "transport.release": 3,
    "transport.import": 4,
    "transport.import_staging": 3,
    "transport.import_production": 4,

    # Code changes
    "code.read": 1,
    "code.analyze": 1,
    "code.generate": 2,
    "code.write_sandbox": 2,
    "code.write_dev": 2,
    "code.activate_staging": 3,
    "code.activate_production": 4,

    # Configuration
    "config.read": 1,
    "config.export": 1,
    "config.change_sandbox": 2,
    "config.change_dev": 2,
    "config.change_staging": 3,
    "config.change_production": 4,

    # System administration
    "system.info": 1,
    "system.health_check": 1,
    "system.connection_test": 1,
    "system.user_management": 3,
    "system.auth_config": 4,
    "system.security_policy": 4,

    # AI-assisted operations
    "ai.generate": 2,
    "ai.review": 1,
    "ai.auto_remediate_sandbox": 2,
    "ai.auto_remediate_staging": 3,
    "ai.auto_remediate_production": 4,
}


def get_tier_definition(level: int) -> Optional[TierDefinition]:
    try:
        return SECURITY_TIERS[SecurityTier(level)]
    except ValueError:
        return None


# =============================================================================
# Permission Checks
# =============================================================================

@dataclass
class UserContext:
    """Who is asking, and how far they are cleared."""
    user_id: str
    max_tier: int = 1
    roles: List[str] = field(default_factory=list)


@dataclass
class PermissionDecision:
    """Outcome of a permission check. A denial is a value, not an error."""
    allowed: bool
    tier: int
    tier_label: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "tier": self.tier,
            "tierLabel": self.tier_label,
            "reason": self.reason,
        }


class TierManager:
    """Classifies operations and checks user permissions against tiers."""

    def __init__(self, default_tier: int = SecurityTier.PRODUCTION,
                 operation_tiers: Optional[Dict[str, int]] = None):
        self.default_tier = int(default_tier)
        self._operation_tiers = dict(OPERATION_TIERS if operation_tiers is None else operation_tiers)

    def get_tier(self, operation: str) -> int:
        """Tier for an operation; unknown operations get the default (tier 4)."""
        if not operation or not isinstance(operation, str):
            return self.default_tier
        tier = self._operation_tiers.get(operation)
        if tier is not None:
            return tier
        logger.warning(
            f'Unknown operation "{operation}", defaulting to tier {self.default_tier}',
            extra_fields={"operation": operation},
        )
        return self.default_tier

    def get_tier_definition(self, operation: str) -> Optional[TierDefinition]:
        return get_tier_definition(self.get_tier(operation))

    def _label(self, tier: int) -> str:
        definition = get_tier_definition(tier)
        return definition.label if definition else f"Tier {tier}"

    def check_permission(self, operation: str, user_context: UserContext) -> PermissionDecision:
        """Compare the user's clearance with the operation's tier.

        Tier-4 operations additionally require the ``admin`` or
        ``production`` role, also for users with no roles at all.
        """
        tier = self.get_tier(operation)
        label = self._label(tier)
        max_tier = user_context.max_tier if user_context.max_tier is not None else 1

        if tier > max_tier:
            return PermissionDecision(
                allowed=False,
                tier=tier,
                tier_label=label,
                reason=(
                    f'Operation "{operation}" requires tier {tier} ({label}) '
                    f"but user is authorized up to tier {max_tier}"
                ),
            )

        if tier == SecurityTier.PRODUCTION:
            roles = set(user_context.roles or [])
            if not roles.intersection(PRODUCTION_ROLES):
                return PermissionDecision(
                    allowed=False,
                    tier=tier,
                    tier_label=label,
                    reason='Tier 4 (Production) operations require "admin" or "production" role',
                )

        return PermissionDecision(allowed=True, tier=tier, tier_label=label, reason="Permission granted")

    def requires_approval(self, operation: str) -> bool:
        definition = self.get_tier_definition(operation)
        return definition.requires_approval if definition else True

    def get_required_approvers(self, operation: str) -> int:
        definition = self.get_tier_definition(operation)
        return definition.approvers if definition else 2

    def list_operations_by_tier(self) -> Dict[int, List[str]]:
        grouped: Dict[int, List[str]] = {level.value: [] for level in SecurityTier}
        for operation, tier in self._operation_tiers.items():
            if tier in grouped:
                grouped[tier].append(operation)
        return grouped

    def classify(self, operation: str) -> Dict[str, Any]:
        """Full classification of one operation."""
        tier = self.get_tier(operation)
        definition = get_tier_definition(tier)
        return {
            "operation": operation,
            "tier": tier,
            "label": definition.label if definition else f"Tier {tier}",
            "description": definition.description if definition else "Unknown tier",
            "requiresApproval": definition.requires_approval if definition else True,
            "requiredApprovers": definition.approvers if definition else 2,
        }
