import json
import logging
import os

logger = logging.getLogger(__name__)


def _home():
    base = os.environ.get('CHURCHCOMPASS_HOME') or os.path.join(os.path.expanduser('~'), '.churchcompass')
    os.makedirs(base, exist_ok=True)
    return base


def _config_path():
    return os.path.join(_home(), 'churchcompass_config.json')


def default_config() -> dict:
    base = _home()
    return {
        'store': 'sqlite',
        'db_path': os.path.join(base, 'churchcompass.db'),
        'json_dir': os.path.join(base, 'data'),
        'generation_horizon_days': 90,
        'log_level': 'INFO',
    }


def load_config() -> dict:
    cfg = default_config()
    path = _config_path()
    if not os.path.exists(path):
        return cfg
    try:
        with open(path, 'r', encoding='utf-8') as f:
            cfg.update(json.load(f))
    except (OSError, ValueError) as e:
        logger.warning(f"Config {path} unreadable, using defaults: {e}")
    return cfg


def save_config(cfg: dict):
    path = _config_path()
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(cfg, f, ensure_ascii=False, indent=2)


def configure_logging(cfg: dict = None):
    cfg = cfg or load_config()
    level = getattr(logging, str(cfg.get('log_level', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
