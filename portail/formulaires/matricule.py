from __future__ import annotations

import random
from datetime import datetime


def generate_matricule(prefix: str = "ISTM", now: datetime | None = None, rng: random.Random | None = None) -> str:
    """Préfixe + année + 4 chiffres tirés de l'horodatage et d'un suffixe aléatoire.

    Deux appels dans la même milliseconde peuvent produire le même matricule :
    l'unicité est garantie par la contrainte du stockage, pas ici.
    """
    now = now or datetime.now()
    rng = rng or random
    millis = int(now.timestamp() * 1000)
    timestamp = str(millis)[-6:]
    extra = f"{rng.randint(0, 99):02d}"
    tail = (timestamp + extra)[-4:]
    return f"{prefix}{now.year:04d}{tail}"
