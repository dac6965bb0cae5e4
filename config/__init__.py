from .config_loader import config
from .settings import BotSettings, interval_to_minutes

__all__ = ['config', 'BotSettings', 'interval_to_minutes']
