from copytrader.strategy.base import Strategy
from copytrader.strategy.matcher import StrategyMatcher
from copytrader.strategy.registry import BUILTIN_STRATEGIES, StrategyRegistry
from copytrader.strategy.copy_trade import CopyTrade
from copytrader.strategy.breakout import VolumeBreakout
from copytrader.strategy.smart_money import SmartMoney
from copytrader.strategy.arbitrage import Arbitrage
from copytrader.strategy.memecoin import Memecoin
from copytrader.strategy.early_gem import EarlyGem
