import logging.config
import os


def setup_logging(log_dir: str | None = "logs", level: str = "INFO"):
    """Console + fichiers tournants (app.log, error.log). log_dir=None : console seule."""
    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "default",
            "stream": "ext://sys.stdout",
        },
    }
    root_handlers = ["console"]

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "default",
            "filename": os.path.join(log_dir, "app.log"),
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
            "encoding": "utf-8",
        }
        handlers["error_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "default",
            "filename": os.path.join(log_dir, "error.log"),
            "maxBytes": 10485760,
            "backupCount": 5,
            "level": "ERROR",
            "encoding": "utf-8",
        }
        root_handlers = ["console", "file", "error_file"]

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "handlers": handlers,
        "loggers": {
            "": {  # Root logger
                "handlers": root_handlers,
                "level": level,
            },
            "portail": {
                "handlers": root_handlers,
                "level": level,
                "propagate": False,
            },
        },
    }

    logging.config.dictConfig(config)
    return logging.getLogger("portail")


def mask_url(url: str) -> str:
    """Masque le mot de passe d'une URL de connexion (user:***@hôte) avant affichage."""
    if "://" not in url or "@" not in url:
        return url
    scheme, rest = url.split("://", 1)
    creds, tail = rest.rsplit("@", 1)
    if ":" in creds:
        creds = creds.split(":", 1)[0] + ":***"
    return f"{scheme}://{creds}@{tail}"
