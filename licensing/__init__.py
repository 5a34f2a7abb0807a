"""License-key issuance, agent hierarchy and commission services."""
