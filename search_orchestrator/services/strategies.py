from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from search_orchestrator.errors import InvalidSearchConfigError
from search_orchestrator.models import ContactSearchConfig

logger = logging.getLogger(__name__)


class StrategyKind(str, Enum):
    CORE_LEADERSHIP = 'core_leadership'
    DEPARTMENT_HEADS = 'department_heads'
    MIDDLE_MANAGEMENT = 'middle_management'
    CUSTOM = 'custom'


@dataclass(frozen=True)
class SearchStrategy:
    kind: StrategyKind
    target: str | None = None

    @property
    def focus(self) -> str:
        if self.kind is StrategyKind.CUSTOM:
            return self.target or ''
        return STRATEGY_REGISTRY[self.kind]


STRATEGY_REGISTRY: dict[StrategyKind, str] = {
    StrategyKind.CORE_LEADERSHIP: 'founders, owners, CEO, president and other C-level executives',
    StrategyKind.DEPARTMENT_HEADS: 'heads and directors of sales, marketing, operations and engineering',
    StrategyKind.MIDDLE_MANAGEMENT: 'managers and team leads with purchasing influence',
    StrategyKind.CUSTOM: 'user supplied role focus',
}


def strategies_from_config(config: ContactSearchConfig) -> list[SearchStrategy]:
    strategies: list[SearchStrategy] = []
    if config.enable_core_leadership:
        strategies.append(SearchStrategy(StrategyKind.CORE_LEADERSHIP))
    if config.enable_department_heads:
        strategies.append(SearchStrategy(StrategyKind.DEPARTMENT_HEADS))
    if config.enable_middle_management:
        strategies.append(SearchStrategy(StrategyKind.MIDDLE_MANAGEMENT))
    if config.enable_custom_search:
        strategies.append(SearchStrategy(StrategyKind.CUSTOM, _clean(config.custom_search_target)))
    if config.enable_custom_search_2:
        strategies.append(SearchStrategy(StrategyKind.CUSTOM, _clean(config.custom_search_target_2)))
    return strategies


def validate_search_config(config: ContactSearchConfig) -> list[SearchStrategy]:
    strategies = strategies_from_config(config)
    if not strategies:
        logger.warning('Contact search config has no strategies enabled')
        raise InvalidSearchConfigError('At least one contact search strategy must be enabled')

    for strategy in strategies:
        if strategy.kind is StrategyKind.CUSTOM and not strategy.target:
            logger.warning('Custom contact search enabled without a target')
            raise InvalidSearchConfigError('Custom search is enabled but no target was given')

    return strategies


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    return value.strip() or None
