from .base import (  # noqa: F401
    CMS_COLLECTIONS,
    ConflictError,
    DuplicateError,
    NotFoundError,
    RegistrationStore,
    StoreError,
    StoreResult,
)
from .selector import BACKENDS, StoreSelector, current_store, init_stores  # noqa: F401
