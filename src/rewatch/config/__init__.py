from rewatch.config.io import get_cache_dir, get_config_path, load_config
from rewatch.config.models import RewatchConfig

__all__ = ["RewatchConfig", "get_cache_dir", "get_config_path", "load_config"]
