from chronicle.config.settings import ContextConfig, StalenessThresholds, load_config

__all__ = ["ContextConfig", "StalenessThresholds", "load_config"]
