"""Strategy registry: the fixed set of strategies the engine trades.

The registry is populated once from configuration and then frozen;
strategy changes require a restart.
"""
from __future__ import annotations

import logging
from typing import Mapping

from copytrader.core.config import StrategyConfig
from copytrader.core.exceptions import StrategyError
from copytrader.strategy.arbitrage import Arbitrage
from copytrader.strategy.base import Strategy
from copytrader.strategy.breakout import VolumeBreakout
from copytrader.strategy.copy_trade import CopyTrade
from copytrader.strategy.early_gem import EarlyGem
from copytrader.strategy.memecoin import Memecoin
from copytrader.strategy.smart_money import SmartMoney

logger = logging.getLogger(__name__)

BUILTIN_STRATEGIES: dict[str, type[Strategy]] = {
    cls.name: cls
    for cls in (CopyTrade, VolumeBreakout, SmartMoney, Arbitrage, Memecoin, EarlyGem)
}


class StrategyRegistry:
    def __init__(self) -> None:
        self._strategies: dict[str, Strategy] = {}
        self._frozen = False

    @classmethod
    def from_configs(cls, configs: Mapping[str, StrategyConfig]) -> StrategyRegistry:
        """Build and freeze a registry from named strategy configs.

        Names matching a built-in get that class; any other name gets the
        generic config-driven ``Strategy``.  Disabled configs are skipped.
        """
        registry = cls()
        for name, config in configs.items():
            if not config.enabled:
                logger.info("Strategy %s disabled, not registered", name)
                continue
            strategy_cls = BUILTIN_STRATEGIES.get(name, Strategy)
            registry.register(strategy_cls(config, name=name))
        registry.freeze()
        return registry

    def register(self, strategy: Strategy) -> None:
        if self._frozen:
            raise StrategyError(f"Registry is frozen, cannot register {strategy.name}")
        if strategy.name in self._strategies:
            raise ValueError(f"Strategy already registered: {strategy.name}")
        self._strategies[strategy.name] = strategy

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Strategy | None:
        return self._strategies.get(name)

    def require(self, name: str) -> Strategy:
        strategy = self._strategies.get(name)
        if strategy is None:
            raise StrategyError(f"Unknown strategy: {name}")
        return strategy

    def all(self) -> list[Strategy]:
        return list(self._strategies.values())

    def __len__(self) -> int:
        return len(self._strategies)

    def __contains__(self, name: object) -> bool:
        return name in self._strategies
