from offline_resilience.config.loader import YamlConfigLoader

__all__ = ["YamlConfigLoader"]
