from __future__ import annotations

from typing import List, Optional


class MaintenanceError(Exception):
    pass


class ConfigurationError(MaintenanceError):
    pass


class RuleNotFoundError(ConfigurationError):
    def __init__(self, rule_id: str) -> None:
        super().__init__(f'Rule not found: {rule_id}')
        self.rule_id = rule_id


class RuleDisabledError(ConfigurationError):
    def __init__(self, rule_id: str) -> None:
        super().__init__(f'Rule is disabled: {rule_id}')
        self.rule_id = rule_id


class IntegrationNotConfiguredError(ConfigurationError):
    def __init__(self, service_name: str) -> None:
        super().__init__(f'{service_name} integration is not configured')
        self.service_name = service_name


class CriteriaValidationError(MaintenanceError):
    def __init__(self, errors: List[str]) -> None:
        super().__init__('Invalid rule criteria: ' + '; '.join(errors))
        self.errors = list(errors)


class CandidateStateError(MaintenanceError):
    def __init__(self, message: str, candidate_ids: Optional[List[str]] = None) -> None:
        super().__init__(message)
        self.candidate_ids = list(candidate_ids or [])
