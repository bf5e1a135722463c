import os

from waitress import serve

from portail.logging_config import mask_url
from wsgi import app


def _safe_print(msg: str) -> None:
    """
    Evite que Windows Services / NSSM crashe sur l'encodage (cp1252).
    """
    try:
        print(msg)
    except UnicodeEncodeError:
        print(msg.encode("ascii", "ignore").decode("ascii"))


if __name__ == "__main__":
    host = os.environ.get("PORTAIL_HOST", "127.0.0.1")
    port = int(os.environ.get("PORTAIL_PORT", "8000"))
    threads = int(os.environ.get("PORTAIL_THREADS", "12"))

    _safe_print("Démarrage du portail d'inscriptions ...")
    _safe_print(f"Host={host}  Port={port}  Threads={threads}")
    _safe_print(f"DATA_BACKEND={app.config.get('DATA_BACKEND')}")
    db_url = os.environ.get("DATABASE_URL", "")
    if db_url:
        _safe_print(f"DATABASE_URL={mask_url(db_url)}")

    serve(app, host=host, port=port, threads=threads)
